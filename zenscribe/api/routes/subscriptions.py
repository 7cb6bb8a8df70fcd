from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.api.deps import get_current_active_user, get_current_admin_user
from zenscribe.crud.crud_subscription import plan_crud
from zenscribe.crud.crud_user import user_crud
from zenscribe.db.session import get_db
from zenscribe.db.transaction import transaction
from zenscribe.models.models import User
from zenscribe.schemas.subscription import (
    MinutesCheckOut, MinutesCheckRequest, PlanChange, PlanOut, SubscriptionStatusOut
)
from zenscribe.services.quota_service import quota_guard

router = APIRouter()


async def _status_of(db: AsyncSession, user: User) -> SubscriptionStatusOut:
    plan, subscription = await quota_guard.current_usage(db, user)
    remaining = None
    if plan.monthly_minutes is not None:
        remaining = max(plan.monthly_minutes - subscription.minutes_used, 0)
    return SubscriptionStatusOut(
        plan=plan.name,
        monthly_minutes=plan.monthly_minutes,
        minutes_used=subscription.minutes_used,
        minutes_remaining=remaining,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
    )


@router.get("/plans", response_model=List[PlanOut])
async def read_plans(
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    List subscription plans
    """
    return await plan_crud.list_plans(db)


@router.get("/me", response_model=SubscriptionStatusOut)
async def read_my_subscription(
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Plan and minute usage of the current period
    """
    async with transaction(db):
        subscription_status = await _status_of(db, current_user)
    return subscription_status


@router.post("/check", response_model=MinutesCheckOut)
async def check_minutes(
        check_in: MinutesCheckRequest,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Check whether a recording of the given length fits the remaining minutes
    """
    async with transaction(db):
        decision = await quota_guard.check(db, current_user, check_in.duration_seconds)
    return MinutesCheckOut(
        allowed=decision.allowed,
        minutes_required=decision.minutes_required,
        minutes_remaining=decision.minutes_remaining,
        state=decision.state.value,
    )


@router.put(
    "/users/{user_id}",
    response_model=SubscriptionStatusOut,
    dependencies=[Depends(get_current_admin_user)],
)
async def change_user_plan(
        user_id: UUID,
        plan_in: PlanChange,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Move a user to another plan (admin only)
    """
    user = await user_crud.get_or_404(db, id=user_id)
    async with transaction(db):
        user = await user_crud.update(db, db_obj=user, obj_in={"subscription_tier": plan_in.tier})
        subscription_status = await _status_of(db, user)
    logger.info(f"User {user_id} moved to plan {plan_in.tier.value}")
    return subscription_status


@router.post(
    "/users/{user_id}/ensure",
    response_model=SubscriptionStatusOut,
    dependencies=[Depends(get_current_admin_user)],
)
async def ensure_user_subscription(
        user_id: UUID,
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Open the current period for a user if it is missing (admin only)
    """
    user = await user_crud.get_or_404(db, id=user_id)
    async with transaction(db):
        subscription_status = await _status_of(db, user)
    return subscription_status
