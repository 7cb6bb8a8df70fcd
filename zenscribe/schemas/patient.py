from datetime import date
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator

from zenscribe.schemas.base import OwnedBase


class PatientBase(BaseModel):
    """Base Patient schema"""
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    birth_date: date
    gender: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("first_name", "last_name", "phone", "notes")
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None

    @field_validator("email", mode="before")
    def blank_email(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class PatientCreate(PatientBase):
    """Patient creation schema"""
    pass


class PatientUpdate(BaseModel):
    """Patient update schema"""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class PatientOut(PatientBase, OwnedBase):
    """Patient output schema"""
