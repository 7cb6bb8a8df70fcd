from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.api.deps import get_current_active_user, get_current_admin_user
from zenscribe.crud.crud_patient import patient_crud
from zenscribe.crud.crud_user import user_crud
from zenscribe.db.session import get_db
from zenscribe.db.transaction import transaction
from zenscribe.models.models import Patient, User
from zenscribe.schemas.user import UserAdminUpdate, UserOut, UserUpdate, UserWithUsage
from zenscribe.services.quota_service import quota_guard

router = APIRouter()


@router.get("/me", response_model=UserOut)
async def read_user_me(
        current_user: User = Depends(get_current_active_user),
) -> Any:
    """
    Get current user
    """
    return current_user


@router.patch("/me", response_model=UserOut)
async def update_user_me(
        user_in: UserUpdate,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Update current user
    """
    if user_in.email and user_in.email.lower() != current_user.email:
        existing = await user_crud.get_by_email(db, email=user_in.email)
        if existing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered",
            )
        user_in.email = user_in.email.lower()

    async with transaction(db):
        user = await user_crud.update(db, db_obj=current_user, obj_in=user_in)
    return user


@router.get(
    "/",
    response_model=List[UserWithUsage],
    dependencies=[Depends(get_current_admin_user)],
)
async def read_users(
        skip: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=500),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    List users with their usage of the current period (admin only)
    """
    users = await user_crud.get_multi(db, skip=skip, limit=limit)

    results = []
    async with transaction(db):
        for user in users:
            plan, subscription = await quota_guard.current_usage(db, user)
            patient_count = await patient_crud.count(db, condition=Patient.user_id == user.id)
            results.append(
                UserWithUsage(
                    **UserOut.model_validate(user).model_dump(),
                    minutes_used=subscription.minutes_used,
                    monthly_minutes=plan.monthly_minutes,
                    patient_count=patient_count,
                )
            )
    return results


@router.get(
    "/{user_id}",
    response_model=UserOut,
    dependencies=[Depends(get_current_admin_user)],
)
async def read_user(
        user_id: UUID,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Get a specific user by id (admin only)
    """
    return await user_crud.get_or_404(db, id=user_id)


@router.patch(
    "/{user_id}",
    response_model=UserOut,
    dependencies=[Depends(get_current_admin_user)],
)
async def update_user(
        user_id: UUID,
        user_in: UserAdminUpdate,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Update a user's role, status or plan (admin only)
    """
    user = await user_crud.get_or_404(db, id=user_id)
    async with transaction(db):
        user = await user_crud.update(db, db_obj=user, obj_in=user_in)
        if user_in.subscription_tier is not None:
            # Attach the current period to the new plan
            await quota_guard.current_usage(db, user)
    return user
