import math
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.core.config import settings
from zenscribe.core.exceptions import BaseAPIException, QuotaExceededError
from zenscribe.crud.crud_subscription import plan_crud, user_subscription_crud
from zenscribe.crud.crud_user import user_crud
from zenscribe.models.models import Consultation, SubscriptionPlan, SubscriptionTier, User, UserSubscription
from zenscribe.utils.dates import utcnow


class QuotaState(str, Enum):
    """Lifecycle of one quota decision"""
    UNCHECKED = "unchecked"
    CHECKED = "checked"
    CONSUMED = "consumed"


class QuotaCheck(BaseModel):
    """Outcome of a pre-flight minute check"""
    user_id: str
    minutes_required: int
    minutes_used: int
    monthly_minutes: Optional[int] = None
    state: QuotaState = QuotaState.UNCHECKED
    allowed: bool = False
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    @property
    def minutes_remaining(self) -> Optional[int]:
        if self.monthly_minutes is None:
            return None
        return max(self.monthly_minutes - self.minutes_used, 0)


def minutes_for(duration_seconds: Optional[float]) -> int:
    """Billable minutes for a duration, rounded up"""
    if not duration_seconds or duration_seconds <= 0:
        return 0
    return math.ceil(duration_seconds / 60)


class QuotaGuard:
    """
    Monthly minute allowance enforcement

    check() reads the current period without locking, so two concurrent
    checks for the same user can both pass before either consultation is
    stored. consume() increments the counter with an atomic UPDATE.
    """

    async def resolve_plan(self, db: AsyncSession, user: User) -> SubscriptionPlan:
        """Plan of a user; falls back to the free plan"""
        plan = await plan_crud.get_by_name(db, name=user.subscription_tier)
        if plan is None:
            logger.warning(f"Plan {user.subscription_tier} missing, using {settings.DEFAULT_PLAN}")
            plan = await plan_crud.get_by_name(db, name=SubscriptionTier(settings.DEFAULT_PLAN))
        if plan is None:
            await plan_crud.ensure_defaults(db)
            plan = await plan_crud.get_by_name(db, name=SubscriptionTier(settings.DEFAULT_PLAN))
        return plan

    async def current_usage(
        self, db: AsyncSession, user: User, now: Optional[datetime] = None
    ) -> Tuple[SubscriptionPlan, UserSubscription]:
        """Plan and usage row of the period containing now"""
        plan = await self.resolve_plan(db, user)
        subscription = await user_subscription_crud.get_or_create_current(
            db, user_id=user.id, plan=plan, now=now or utcnow()
        )
        return plan, subscription

    async def check(
        self, db: AsyncSession, user: User, duration_seconds: Optional[float], now: Optional[datetime] = None
    ) -> QuotaCheck:
        """
        Pre-flight check of an expected recording length

        Args:
            db: Database session
            user: Clinician about to record
            duration_seconds: Known or estimated duration
            now: Moment used to pick the period, defaults to current UTC time

        Returns:
            Checked decision
        """
        required = minutes_for(duration_seconds)
        decision = QuotaCheck(user_id=str(user.id), minutes_required=required, minutes_used=0)

        try:
            plan, subscription = await self.current_usage(db, user, now=now)
        except (BaseAPIException, SQLAlchemyError) as e:
            logger.error(f"Usage lookup failed for user {user.id}: {e}")
            decision.monthly_minutes = settings.DEFAULT_MONTHLY_MINUTES
        else:
            decision.monthly_minutes = plan.monthly_minutes
            decision.minutes_used = subscription.minutes_used
            decision.period_start = subscription.current_period_start
            decision.period_end = subscription.current_period_end

        if decision.monthly_minutes is None:
            decision.allowed = True
        else:
            decision.allowed = decision.minutes_used + required <= decision.monthly_minutes
        decision.state = QuotaState.CHECKED

        logger.info(
            f"Quota check for user {user.id}: need {required} min, used {decision.minutes_used}"
            f"/{decision.monthly_minutes if decision.monthly_minutes is not None else 'unlimited'}, "
            f"{'allowed' if decision.allowed else 'denied'}"
        )
        return decision

    async def enforce(
        self, db: AsyncSession, user: User, duration_seconds: Optional[float], now: Optional[datetime] = None
    ) -> QuotaCheck:
        """
        Pre-flight check that raises on denial

        Raises:
            QuotaExceededError: If the recording does not fit the remaining minutes
        """
        decision = await self.check(db, user, duration_seconds, now=now)
        if not decision.allowed:
            raise QuotaExceededError(
                f"This consultation needs {decision.minutes_required} minutes but only "
                f"{decision.minutes_remaining} remain this month"
            )
        return decision

    async def consume(
        self,
        db: AsyncSession,
        consultation: Consultation,
        previous_duration: Optional[float] = None,
        decision: Optional[QuotaCheck] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Charge a stored consultation against its owner's period

        Consultations without a positive duration are skipped. On update,
        only extra rounded minutes are charged; usage never goes down
        within a period.

        Args:
            db: Database session
            consultation: Inserted or updated consultation
            previous_duration: Duration before an update, None for inserts
            decision: Pre-flight decision to mark as consumed
            now: Moment used to pick the period

        Returns:
            Minutes added, never negative
        """
        minutes = max(minutes_for(consultation.duration_seconds) - minutes_for(previous_duration), 0)
        if decision is not None:
            decision.state = QuotaState.CONSUMED
        if not consultation.duration_seconds or minutes == 0:
            logger.debug(f"No usage to record for consultation {consultation.id}")
            return 0

        owner = await user_crud.get(db, id=consultation.user_id)
        if owner is None:
            logger.warning(f"Consultation {consultation.id} has no owner, usage not recorded")
            return 0

        _, subscription = await self.current_usage(db, owner, now=now)
        await user_subscription_crud.add_minutes(db, subscription=subscription, minutes=minutes)
        logger.info(
            f"Recorded {minutes} min for consultation {consultation.id}, "
            f"user {owner.id} now at {subscription.minutes_used}"
        )
        return minutes


quota_guard = QuotaGuard()
