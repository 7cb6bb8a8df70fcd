from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from zenscribe.models.models import SubscriptionTier


class PlanOut(BaseModel):
    """Subscription plan"""
    id: UUID
    name: SubscriptionTier
    monthly_minutes: Optional[int] = Field(None, description="NULL means unlimited")
    price_monthly: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionStatusOut(BaseModel):
    """Current period usage of a user"""
    plan: SubscriptionTier
    monthly_minutes: Optional[int] = None
    minutes_used: int
    minutes_remaining: Optional[int] = Field(None, description="NULL means unlimited")
    current_period_start: datetime
    current_period_end: datetime


class MinutesCheckRequest(BaseModel):
    """Pre-flight check of an expected recording length"""
    duration_seconds: int = Field(..., ge=0)


class MinutesCheckOut(BaseModel):
    """Pre-flight check result"""
    allowed: bool
    minutes_required: int
    minutes_remaining: Optional[int] = None
    state: str


class PlanChange(BaseModel):
    """Admin change of a user's plan"""
    tier: SubscriptionTier
