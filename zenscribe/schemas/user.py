from typing import Optional

from pydantic import BaseModel, EmailStr, Field, ConfigDict

from zenscribe.models.models import SubscriptionTier, UserRole
from zenscribe.schemas.base import IdentifiedBase


class UserBase(BaseModel):
    """Base User schema with common attributes"""
    email: EmailStr
    full_name: Optional[str] = None


class UserCreate(UserBase):
    """User creation schema"""
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    """User update schema with optional fields"""
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    password: Optional[str] = Field(None, min_length=8)

    model_config = ConfigDict(extra="ignore")


class UserOut(UserBase, IdentifiedBase):
    """User output schema without sensitive information"""
    role: UserRole
    is_active: bool
    subscription_tier: SubscriptionTier


class UserAdminUpdate(UserUpdate):
    """User update schema for admins with additional fields"""
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    subscription_tier: Optional[SubscriptionTier] = None


class UserWithUsage(UserOut):
    """User output schema with the current period usage"""
    minutes_used: int = 0
    monthly_minutes: Optional[int] = None
    patient_count: int = 0


class PasswordReset(BaseModel):
    """Password reset request schema"""
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    """Password reset confirmation schema"""
    token: str
    password: str = Field(..., min_length=8)
