from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.api.deps import get_current_active_user, validate_patient_ownership
from zenscribe.crud.crud_consultation import consultation_crud
from zenscribe.crud.crud_patient import patient_crud
from zenscribe.db.session import get_db
from zenscribe.db.transaction import transaction
from zenscribe.models.models import User, UserRole
from zenscribe.schemas.consultation import ConsultationOut
from zenscribe.schemas.patient import PatientCreate, PatientOut, PatientUpdate

router = APIRouter()


@router.get("/", response_model=List[PatientOut])
async def read_patients(
        skip: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=500),
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    List patients of the current clinician; admins see all
    """
    if current_user.role == UserRole.ADMIN:
        return await patient_crud.get_multi(db, skip=skip, limit=limit)
    return await patient_crud.get_by_owner(db, user_id=current_user.id, skip=skip, limit=limit)


@router.post("/", response_model=PatientOut, status_code=status.HTTP_201_CREATED)
async def create_patient(
        patient_in: PatientCreate,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Create a new patient
    """
    async with transaction(db):
        patient = await patient_crud.create(db, obj_in=patient_in, user_id=current_user.id)
    logger.info(f"Patient {patient.id} created by user {current_user.id}")
    return patient


@router.get("/{patient_id}", response_model=PatientOut)
async def read_patient(
        patient_id: UUID,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Get a specific patient by id
    """
    return await validate_patient_ownership(db, patient_id, current_user)


@router.patch("/{patient_id}", response_model=PatientOut)
async def update_patient(
        patient_id: UUID,
        patient_in: PatientUpdate,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Update a patient
    """
    patient = await validate_patient_ownership(db, patient_id, current_user)
    async with transaction(db):
        patient = await patient_crud.update(db, db_obj=patient, obj_in=patient_in)
    return patient


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient(
        patient_id: UUID,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> None:
    """
    Delete a patient and all of their consultations
    """
    await validate_patient_ownership(db, patient_id, current_user)
    async with transaction(db):
        await patient_crud.remove(db, id=patient_id)
    logger.info(f"Patient {patient_id} deleted by user {current_user.id}")


@router.get("/{patient_id}/consultations", response_model=List[ConsultationOut])
async def read_patient_consultations(
        patient_id: UUID,
        skip: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=500),
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    List consultations of a patient, newest first
    """
    await validate_patient_ownership(db, patient_id, current_user)
    return await consultation_crud.get_by_patient(db, patient_id=patient_id, skip=skip, limit=limit)
