from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, Field

NOT_AVAILABLE = "N.A."


class ReportField(str, Enum):
    """Report sections; values are the consultation column names"""
    MOTIVO_VISITA = "motivo_visita"
    STORIA_MEDICA = "storia_medica"
    STORIA_PONDERALE = "storia_ponderale"
    ABITUDINI_ALIMENTARI = "abitudini_alimentari"
    ATTIVITA_FISICA = "attivita_fisica"
    FATTORI_PSI = "fattori_psi"
    ESAMI_PARAMETRI = "esami_parametri"
    PUNTI_CRITICI = "punti_critici"
    NOTE_SPECIALISTA = "note_specialista"


class ReportFieldSpec(NamedTuple):
    json_key: str
    label: str
    heading: str
    missing_warning: str


REPORT_FIELDS: Dict[ReportField, ReportFieldSpec] = {
    ReportField.MOTIVO_VISITA: ReportFieldSpec(
        "motivoVisita", "Motivo della Visita", "1. Motivo della visita",
        "Motivo della visita mancante",
    ),
    ReportField.STORIA_MEDICA: ReportFieldSpec(
        "storiaMedica", "Storia Medica", "2. Storia medica e familiare",
        "Storia medica e familiare mancante",
    ),
    ReportField.STORIA_PONDERALE: ReportFieldSpec(
        "storiaPonderale", "Storia Ponderale", "3. Storia ponderale",
        "Storia ponderale non riportata",
    ),
    ReportField.ABITUDINI_ALIMENTARI: ReportFieldSpec(
        "abitudiniAlimentari", "Abitudini Alimentari", "4. Abitudini alimentari",
        "Abitudini alimentari non riportate",
    ),
    ReportField.ATTIVITA_FISICA: ReportFieldSpec(
        "attivitaFisica", "Attività Fisica", "5. Attività fisica",
        "Attività fisica non riportata",
    ),
    ReportField.FATTORI_PSI: ReportFieldSpec(
        "fattoriPsi", "Fattori Psicologici", "6. Fattori psicologici/motivazionali",
        "Fattori psicologici/motivazionali non riportati",
    ),
    ReportField.ESAMI_PARAMETRI: ReportFieldSpec(
        "esamiParametri", "Esami e Parametri", "7. Esami e parametri rilevanti",
        "Esami e parametri rilevanti mancanti",
    ),
    ReportField.PUNTI_CRITICI: ReportFieldSpec(
        "puntiCritici", "Punti Critici", "8. Punti critici e rischi individuati",
        "Punti critici e rischi non specificati",
    ),
    ReportField.NOTE_SPECIALISTA: ReportFieldSpec(
        "noteSpecialista", "Note dello Specialista", "9. Note della specialista",
        "Note della specialista mancanti",
    ),
}


class MedicalReport(BaseModel):
    """Nine-section consultation report"""
    motivo_visita: str = NOT_AVAILABLE
    storia_medica: str = NOT_AVAILABLE
    storia_ponderale: str = NOT_AVAILABLE
    abitudini_alimentari: str = NOT_AVAILABLE
    attivita_fisica: str = NOT_AVAILABLE
    fattori_psi: str = NOT_AVAILABLE
    esami_parametri: str = NOT_AVAILABLE
    punti_critici: str = NOT_AVAILABLE
    note_specialista: str = NOT_AVAILABLE

    @classmethod
    def from_model_output(cls, data: Dict[str, Any]) -> "MedicalReport":
        """Build a report from the model's camelCase JSON keys"""
        values = {}
        for field, mapping in REPORT_FIELDS.items():
            value = data.get(mapping.json_key, data.get(field.value))
            if value is not None:
                values[field.value] = value if isinstance(value, str) else str(value)
        return cls(**values)

    @classmethod
    def from_columns(cls, obj: Any) -> "MedicalReport":
        """Build a report from a consultation row, NULL columns become N.A."""
        values = {}
        for field in ReportField:
            value = getattr(obj, field.value)
            values[field.value] = value if value else NOT_AVAILABLE
        return cls(**values)

    def to_columns(self) -> Dict[str, Optional[str]]:
        """Column values for persistence; N.A. and blank sections are stored as NULL"""
        columns = {}
        for field in ReportField:
            value = getattr(self, field.value)
            columns[field.value] = None if not value.strip() or value.strip() == NOT_AVAILABLE else value
        return columns


class AnalysisRequest(BaseModel):
    """Transcript analysis request"""
    transcription: str = Field(..., min_length=1)
    patient_name: Optional[str] = None
    date: Optional[str] = None


class AnalysisResponse(BaseModel):
    """Analysis result with validation warnings"""
    report: MedicalReport
    warnings: List[str] = []


class ReportFieldUpdate(BaseModel):
    """Single report section edit"""
    field: ReportField
    value: Optional[str] = None


class ReportFieldOut(BaseModel):
    """Section metadata for edit screens"""
    field: ReportField
    label: str
    heading: str
