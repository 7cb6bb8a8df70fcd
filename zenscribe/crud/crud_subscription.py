from datetime import datetime
from typing import Dict, List, Optional
import uuid

from loguru import logger
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.core.exceptions import DatabaseError
from zenscribe.crud.base import CRUDBase
from zenscribe.models.models import SubscriptionPlan, SubscriptionTier, UserSubscription
from zenscribe.utils.dates import month_period

# Monthly minutes and price in EUR; None means unlimited / custom
DEFAULT_PLANS: Dict[SubscriptionTier, Dict[str, Optional[int]]] = {
    SubscriptionTier.FREE: {"monthly_minutes": 30, "price_monthly": 0},
    SubscriptionTier.BASIC: {"monthly_minutes": 600, "price_monthly": 99},
    SubscriptionTier.ADVANCED: {"monthly_minutes": 1200, "price_monthly": 199},
    SubscriptionTier.ENTERPRISE: {"monthly_minutes": None, "price_monthly": None},
}

TIER_ORDER = list(DEFAULT_PLANS)


class CRUDSubscriptionPlan(CRUDBase[SubscriptionPlan, BaseModel, BaseModel]):
    """CRUD operations for subscription plans"""

    async def get_by_name(self, db: AsyncSession, *, name: SubscriptionTier) -> Optional[SubscriptionPlan]:
        """Get a plan by tier name"""
        result = await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.name == name))
        return result.scalars().first()

    async def list_plans(self, db: AsyncSession) -> List[SubscriptionPlan]:
        """All plans from cheapest to most generous"""
        result = await db.execute(select(SubscriptionPlan))
        plans = list(result.scalars().all())
        return sorted(plans, key=lambda p: TIER_ORDER.index(p.name))

    async def ensure_defaults(self, db: AsyncSession) -> None:
        """Create missing default plans"""
        for name, values in DEFAULT_PLANS.items():
            if await self.get_by_name(db, name=name) is None:
                db.add(SubscriptionPlan(name=name, **values))
                logger.info(f"Created subscription plan {name.value}")
        await db.flush()


class CRUDUserSubscription(CRUDBase[UserSubscription, BaseModel, BaseModel]):
    """CRUD operations for per-period minute usage"""

    async def get_for_period(
        self, db: AsyncSession, *, user_id: uuid.UUID, period_start: datetime
    ) -> Optional[UserSubscription]:
        """Get the usage row of a user for the period starting at period_start"""
        result = await db.execute(
            select(UserSubscription).where(
                UserSubscription.user_id == user_id,
                UserSubscription.current_period_start == period_start,
            )
        )
        return result.scalars().first()

    async def get_or_create_current(
        self, db: AsyncSession, *, user_id: uuid.UUID, plan: SubscriptionPlan, now: datetime
    ) -> UserSubscription:
        """
        Get the usage row of the period containing now, creating it at zero

        Args:
            db: Database session
            user_id: Owner of the row
            plan: Plan attached to a newly created row
            now: Naive UTC moment inside the wanted period

        Returns:
            Usage row for the period

        Raises:
            DatabaseError: If a concurrent request created the same row first
        """
        period_start, period_end = month_period(now)
        subscription = await self.get_for_period(db, user_id=user_id, period_start=period_start)
        if subscription is not None:
            if subscription.plan_id != plan.id:
                subscription.plan_id = plan.id
                await db.flush()
            return subscription

        subscription = UserSubscription(
            user_id=user_id,
            plan_id=plan.id,
            current_period_start=period_start,
            current_period_end=period_end,
            minutes_used=0,
        )
        db.add(subscription)
        try:
            await db.flush()
        except IntegrityError as e:
            logger.error(f"Concurrent period creation for user {user_id}: {e}")
            await db.rollback()
            raise DatabaseError("Subscription period is being created, retry the request")
        await db.refresh(subscription)
        logger.info(f"Opened subscription period {period_start:%Y-%m} for user {user_id}")
        return subscription

    async def add_minutes(self, db: AsyncSession, *, subscription: UserSubscription, minutes: int) -> UserSubscription:
        """Atomically add minutes to a usage row"""
        await db.execute(
            update(UserSubscription)
            .where(UserSubscription.id == subscription.id)
            .values(minutes_used=UserSubscription.minutes_used + minutes)
        )
        await db.flush()
        await db.refresh(subscription)
        return subscription


plan_crud = CRUDSubscriptionPlan(SubscriptionPlan)
user_subscription_crud = CRUDUserSubscription(UserSubscription)
