from typing import Optional
from datetime import datetime

from pydantic import BaseModel, EmailStr


class Token(BaseModel):
    """Token schema for authentication response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenPayload(BaseModel):
    """Token payload schema (decoded JWT)"""
    sub: Optional[str] = None
    exp: Optional[datetime] = None
    type: Optional[str] = None


class RefreshToken(BaseModel):
    """Schema for refresh token request"""
    refresh_token: str


class MagicLinkRequest(BaseModel):
    """Request a one-time login link"""
    email: EmailStr


class MagicLinkVerify(BaseModel):
    """Exchange a one-time login token"""
    token: str


class LoginDegraded(BaseModel):
    """Sign-in could not complete; a login link was emailed instead"""
    detail: str
    magic_link_sent: bool
    attempts: int
