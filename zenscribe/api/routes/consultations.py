from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.api.deps import (
    get_current_active_user, validate_consultation_ownership, validate_patient_ownership
)
from zenscribe.crud.crud_consultation import consultation_crud
from zenscribe.db.session import get_db
from zenscribe.db.transaction import transaction
from zenscribe.models.models import User, UserRole
from zenscribe.schemas.consultation import (
    ConsultationCreate, ConsultationCreated, ConsultationOut, ConsultationUpdate
)
from zenscribe.schemas.report import (
    REPORT_FIELDS, MedicalReport, ReportFieldOut, ReportFieldUpdate
)
from zenscribe.services.analysis_service import validate_report
from zenscribe.services.quota_service import minutes_for, quota_guard

router = APIRouter()


@router.get("/report-fields", response_model=List[ReportFieldOut])
async def read_report_fields() -> Any:
    """
    Report sections with their labels, in display order
    """
    return [
        ReportFieldOut(field=field, label=mapping.label, heading=mapping.heading)
        for field, mapping in REPORT_FIELDS.items()
    ]


@router.get("/", response_model=List[ConsultationOut])
async def read_consultations(
        skip: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=500),
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    List consultations of the current clinician, newest first; admins see all
    """
    if current_user.role == UserRole.ADMIN:
        return await consultation_crud.get_multi(db, skip=skip, limit=limit)
    return await consultation_crud.get_by_owner(db, user_id=current_user.id, skip=skip, limit=limit)


@router.post("/", response_model=ConsultationCreated, status_code=status.HTTP_201_CREATED)
async def create_consultation(
        consultation_in: ConsultationCreate,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Store a consultation and charge its minutes to the current period

    The minute check runs first; a recording that does not fit the
    remaining allowance is rejected with 402.
    """
    await validate_patient_ownership(db, consultation_in.patient_id, current_user)

    async with transaction(db):
        decision = await quota_guard.enforce(db, current_user, consultation_in.duration_seconds)
        consultation = await consultation_crud.create(db, obj_in=consultation_in, user_id=current_user.id)
        minutes = await quota_guard.consume(db, consultation, decision=decision)

    logger.info(f"Consultation {consultation.id} stored for patient {consultation.patient_id}")
    return ConsultationCreated(
        consultation=ConsultationOut.model_validate(consultation),
        minutes_charged=minutes,
        warnings=validate_report(consultation_in.report),
    )


@router.get("/{consultation_id}", response_model=ConsultationOut)
async def read_consultation(
        consultation_id: UUID,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Get a specific consultation by id
    """
    return await validate_consultation_ownership(db, consultation_id, current_user)


@router.patch("/{consultation_id}", response_model=ConsultationOut)
async def update_consultation(
        consultation_id: UUID,
        consultation_in: ConsultationUpdate,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Update a consultation

    A longer duration is checked against the remaining minutes and only
    the difference is charged.
    """
    consultation = await validate_consultation_ownership(db, consultation_id, current_user)
    previous_duration = consultation.duration_seconds

    async with transaction(db):
        if consultation_in.duration_seconds is not None:
            extra_minutes = minutes_for(consultation_in.duration_seconds) - minutes_for(previous_duration)
            if extra_minutes > 0:
                await quota_guard.enforce(db, current_user, extra_minutes * 60)
        consultation = await consultation_crud.update(db, db_obj=consultation, obj_in=consultation_in)
        await quota_guard.consume(db, consultation, previous_duration=previous_duration)
    return consultation


@router.get("/{consultation_id}/report", response_model=MedicalReport)
async def read_consultation_report(
        consultation_id: UUID,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Report of a consultation, empty sections as N.A.
    """
    consultation = await validate_consultation_ownership(db, consultation_id, current_user)
    return MedicalReport.from_columns(consultation)


@router.patch("/{consultation_id}/report", response_model=ConsultationOut)
async def update_consultation_report_field(
        consultation_id: UUID,
        field_in: ReportFieldUpdate,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Edit one report section
    """
    consultation = await validate_consultation_ownership(db, consultation_id, current_user)
    async with transaction(db):
        consultation = await consultation_crud.update_report_field(
            db, db_obj=consultation, field=field_in.field, value=field_in.value
        )
    logger.info(f"Consultation {consultation_id} section {field_in.field.value} updated")
    return consultation
