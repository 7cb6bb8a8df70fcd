from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class TimestampedBase(BaseModel):
    """Output schema for rows with server-set timestamps"""
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IdentifiedBase(TimestampedBase):
    """Output schema for rows with a UUID primary key"""
    id: UUID


class OwnedBase(IdentifiedBase):
    """Output schema for rows that belong to one clinician"""
    user_id: UUID
