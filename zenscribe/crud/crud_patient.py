from typing import List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.crud.base import CRUDBase
from zenscribe.crud.crud_consultation import consultation_crud
from zenscribe.models.models import Consultation, Patient
from zenscribe.schemas.patient import PatientCreate, PatientUpdate


class CRUDPatient(CRUDBase[Patient, PatientCreate, PatientUpdate]):
    """CRUD operations for patients"""

    async def get_by_owner(
        self, db: AsyncSession, *, user_id: uuid.UUID, skip: int = 0, limit: int = 100
    ) -> List[Patient]:
        """Get patients of one clinician"""
        return await self.get_by_condition(
            db, condition=Patient.user_id == user_id, skip=skip, limit=limit
        )

    async def remove(self, db: AsyncSession, *, id: uuid.UUID) -> Optional[Patient]:
        """Remove a patient together with all of its consultations"""
        patient = await self.get(db, id=id)
        if patient is None:
            return None
        await consultation_crud.remove_by_condition(db, condition=Consultation.patient_id == id)
        return await super().remove(db, id=id)


patient_crud = CRUDPatient(Patient)
