from typing import List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.crud.base import CRUDBase
from zenscribe.models.models import Consultation
from zenscribe.schemas.consultation import ConsultationCreate, ConsultationUpdate
from zenscribe.schemas.report import NOT_AVAILABLE, ReportField


class CRUDConsultation(CRUDBase[Consultation, ConsultationCreate, ConsultationUpdate]):
    """CRUD operations for consultations"""

    async def create(
        self, db: AsyncSession, *, obj_in: ConsultationCreate, user_id: uuid.UUID
    ) -> Consultation:
        """Create a consultation, mapping the report onto its columns"""
        data = obj_in.model_dump(exclude={"report", "date"})
        data.update(obj_in.report.to_columns())
        if obj_in.date is not None:
            data["date"] = obj_in.date
        db_obj = Consultation(**data, user_id=user_id)
        db.add(db_obj)
        await db.flush()
        await db.refresh(db_obj)
        return db_obj

    async def get_by_patient(
        self, db: AsyncSession, *, patient_id: uuid.UUID, skip: int = 0, limit: int = 100
    ) -> List[Consultation]:
        """Get consultations of one patient, newest first"""
        return await self.get_by_condition(
            db, condition=Consultation.patient_id == patient_id, skip=skip, limit=limit
        )

    async def get_by_owner(
        self, db: AsyncSession, *, user_id: uuid.UUID, skip: int = 0, limit: int = 100
    ) -> List[Consultation]:
        """Get consultations of one clinician, newest first"""
        return await self.get_by_condition(
            db, condition=Consultation.user_id == user_id, skip=skip, limit=limit
        )

    async def update_report_field(
        self, db: AsyncSession, *, db_obj: Consultation, field: ReportField, value: Optional[str]
    ) -> Consultation:
        """Set one report section; blank or N.A. clears it"""
        cleaned = value.strip() if value else ""
        column_value = None if not cleaned or cleaned == NOT_AVAILABLE else value
        return await self.update(db, db_obj=db_obj, obj_in={field.value: column_value})


consultation_crud = CRUDConsultation(Consultation)
