from typing import Annotated
import uuid

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.core.config import settings
from zenscribe.core.exceptions import (
    CredentialsException, PermissionDeniedException, ResourceNotFoundError
)
from zenscribe.crud.crud_consultation import consultation_crud
from zenscribe.crud.crud_patient import patient_crud
from zenscribe.db.session import get_db
from zenscribe.models.models import Consultation, Patient, User, UserRole
from zenscribe.services.token_service import token_service

# OAuth2 scheme for token extraction
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")


async def get_current_user(
        token: Annotated[str, Depends(oauth2_scheme)],
        db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency for getting the current authenticated user.

    Args:
        token: OAuth2 token
        db: Database session

    Returns:
        User object

    Raises:
        CredentialsException: If token is invalid or user does not exist
    """
    try:
        return await token_service.get_current_user(token, db)
    except ValueError as e:
        raise CredentialsException(str(e))


async def get_current_active_user(
        current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Dependency for getting the current active user.

    Raises:
        PermissionDeniedException: If user is inactive
    """
    if not current_user.is_active:
        raise PermissionDeniedException("Inactive user")
    return current_user


async def get_current_admin_user(
        current_user: Annotated[User, Depends(get_current_active_user)],
) -> User:
    """
    Dependency for getting the current admin user.

    Raises:
        PermissionDeniedException: If user is not an admin
    """
    if current_user.role != UserRole.ADMIN:
        raise PermissionDeniedException("Admin privileges required")
    return current_user


async def validate_patient_ownership(
        db: AsyncSession,
        patient_id: uuid.UUID,
        user: User,
) -> Patient:
    """
    Validate that the user has access to the patient.

    Admins can access every patient; clinicians only their own.

    Raises:
        ResourceNotFoundError: If patient doesn't exist
        PermissionDeniedException: If user doesn't have access
    """
    patient = await patient_crud.get(db, id=patient_id)
    if not patient:
        raise ResourceNotFoundError("Patient", str(patient_id))
    if patient.user_id != user.id and user.role != UserRole.ADMIN:
        raise PermissionDeniedException("You don't have access to this patient")
    return patient


async def validate_consultation_ownership(
        db: AsyncSession,
        consultation_id: uuid.UUID,
        user: User,
) -> Consultation:
    """
    Validate that the user has access to the consultation.

    Raises:
        ResourceNotFoundError: If consultation doesn't exist
        PermissionDeniedException: If user doesn't have access
    """
    consultation = await consultation_crud.get(db, id=consultation_id)
    if not consultation:
        raise ResourceNotFoundError("Consultation", str(consultation_id))
    if consultation.user_id != user.id and user.role != UserRole.ADMIN:
        raise PermissionDeniedException("You don't have access to this consultation")
    return consultation
