from typing import Optional, Union

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.core.exceptions import TransientAuthError
from zenscribe.crud.base import CRUDBase
from zenscribe.models.models import SubscriptionTier, User, UserRole
from zenscribe.schemas.user import UserCreate, UserUpdate
from zenscribe.utils.security import get_password_hash, verify_password


class CRUDUser(CRUDBase[User, UserCreate, UserUpdate]):
    """CRUD operations for user model"""

    async def get_by_email(self, db: AsyncSession, *, email: str) -> Optional[User]:
        """Get user by email"""
        result = await db.execute(select(User).where(User.email == email.lower()))
        return result.scalars().first()

    async def create(
        self,
        db: AsyncSession,
        *,
        obj_in: UserCreate,
        role: UserRole = UserRole.DOCTOR,
        tier: SubscriptionTier = SubscriptionTier.FREE,
    ) -> User:
        """Create a new user"""
        db_obj = User(
            email=obj_in.email.lower(),
            hashed_password=get_password_hash(obj_in.password),
            full_name=obj_in.full_name,
            role=role,
            subscription_tier=tier,
        )
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def update(
        self, db: AsyncSession, *, db_obj: User, obj_in: Union[UserUpdate, dict]
    ) -> User:
        """Update a user"""
        if isinstance(obj_in, dict):
            update_data = dict(obj_in)
        else:
            update_data = obj_in.model_dump(exclude_unset=True)

        if update_data.get("password"):
            update_data["hashed_password"] = get_password_hash(update_data.pop("password"))
        update_data.pop("password", None)

        return await super().update(db, db_obj=db_obj, obj_in=update_data)

    async def authenticate(
        self, db: AsyncSession, *, email: str, password: str
    ) -> Optional[User]:
        """
        Authenticate user

        Raises:
            TransientAuthError: If the credential lookup itself failed
        """
        try:
            user = await self.get_by_email(db, email=email)
        except SQLAlchemyError as e:
            logger.warning(f"Credential lookup failed for {email}: {e}")
            await db.rollback()
            raise TransientAuthError()
        if not user:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user


user_crud = CRUDUser(User)
