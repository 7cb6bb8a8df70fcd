from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from zenscribe.models.models import VisitType
from zenscribe.schemas.base import OwnedBase
from zenscribe.schemas.report import MedicalReport


class ConsultationCreate(BaseModel):
    """Consultation creation schema"""
    patient_id: UUID
    transcription: str = Field(..., min_length=1)
    report: MedicalReport = MedicalReport()
    duration_seconds: Optional[int] = Field(None, ge=0)
    gdpr_consent: bool
    visit_type: VisitType = VisitType.PRIMA_VISITA
    audio_url: Optional[str] = None
    date: Optional[datetime] = None

    @field_validator("gdpr_consent")
    def consent_required(cls, v: bool) -> bool:
        if not v:
            raise ValueError("GDPR consent is required to store a consultation")
        return v


class ConsultationUpdate(BaseModel):
    """Consultation update schema"""
    transcription: Optional[str] = None
    duration_seconds: Optional[int] = Field(None, ge=0)
    visit_type: Optional[VisitType] = None
    audio_url: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ConsultationOut(OwnedBase):
    """Consultation output schema"""
    patient_id: UUID
    date: Optional[datetime] = None
    visit_type: VisitType
    gdpr_consent: bool
    duration_seconds: Optional[int] = None
    audio_url: Optional[str] = None
    transcription: Optional[str] = None
    motivo_visita: Optional[str] = None
    storia_medica: Optional[str] = None
    storia_ponderale: Optional[str] = None
    abitudini_alimentari: Optional[str] = None
    attivita_fisica: Optional[str] = None
    fattori_psi: Optional[str] = None
    esami_parametri: Optional[str] = None
    punti_critici: Optional[str] = None
    note_specialista: Optional[str] = None


class ConsultationCreated(BaseModel):
    """Created consultation with the minutes charged"""
    consultation: ConsultationOut
    minutes_charged: int = 0
    warnings: List[str] = []
