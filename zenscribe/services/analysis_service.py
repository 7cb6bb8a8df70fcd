import json
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from zenscribe.core.config import settings
from zenscribe.schemas.report import NOT_AVAILABLE, REPORT_FIELDS, MedicalReport, ReportField
from zenscribe.services.openai_service import OpenAIService, openai_service

JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """Sei un assistente specializzato nell'analisi di consultazioni mediche in ambito nutrizionale.
Il tuo compito è analizzare la trascrizione della consultazione e creare un report strutturato.
Rispondi ESCLUSIVAMENTE in formato JSON valido con i seguenti campi, senza testo introduttivo o conclusivo:
{schema}

IMPORTANTE: La tua risposta deve contenere SOLO il JSON, nessun testo aggiuntivo prima o dopo.
Se un'informazione non è disponibile, usa "{not_available}"."""

FIELD_HINTS = {
    ReportField.MOTIVO_VISITA: "Motivo principale della visita",
    ReportField.STORIA_MEDICA: "Storia medica rilevante",
    ReportField.STORIA_PONDERALE: "Storia del peso e variazioni",
    ReportField.ABITUDINI_ALIMENTARI: "Abitudini alimentari attuali",
    ReportField.ATTIVITA_FISICA: "Livello di attività fisica",
    ReportField.FATTORI_PSI: "Fattori psicologici rilevanti",
    ReportField.ESAMI_PARAMETRI: "Esami e parametri clinici",
    ReportField.PUNTI_CRITICI: "Punti critici identificati",
    ReportField.NOTE_SPECIALISTA: "Note aggiuntive dello specialista",
}


def build_messages(transcription: str, patient_name: Optional[str] = None, visit_date: Optional[str] = None) -> List[Dict[str, str]]:
    """Chat messages asking for the nine-section JSON report"""
    schema = json.dumps(
        {mapping.json_key: FIELD_HINTS[field] for field, mapping in REPORT_FIELDS.items()},
        ensure_ascii=False,
        indent=2,
    )
    return [
        {
            "role": "system",
            "content": SYSTEM_PROMPT.format(schema=schema, not_available=NOT_AVAILABLE),
        },
        {
            "role": "user",
            "content": (
                "Analizza questa consultazione:\n"
                f"Data: {visit_date or date.today().isoformat()}\n"
                f"Paziente: {patient_name or 'Non specificato'}\n"
                f"Trascrizione:\n{transcription}"
            ),
        },
    ]


def load_json_object(response: str) -> Optional[Dict[str, Any]]:
    """JSON object of a response, or of its outermost {...} block"""
    candidates = [response]
    match = JSON_BLOCK_RE.search(response)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _parse_sections(response: str) -> Optional[Dict[str, str]]:
    """Numbered markdown sections ("## 1. Motivo della visita") keyed by column"""
    sections = {}
    for field, mapping in REPORT_FIELDS.items():
        pattern = re.compile(rf"## {re.escape(mapping.heading)}\n([\s\S]*?)(?:\n## |$)")
        match = pattern.search(response)
        if match and match.group(1).strip():
            sections[field.value] = match.group(1).strip()
    return sections or None


def parse_report(response: str) -> MedicalReport:
    """
    Report from a model response

    Tries the whole response as JSON, then the outermost {...} block, then
    numbered markdown sections. When nothing works, the first section holds
    an excerpt of the response and the rest are N.A.

    Args:
        response: Raw model output

    Returns:
        Parsed report
    """
    data = load_json_object(response)
    if data is not None:
        return MedicalReport.from_model_output(data)

    sections = _parse_sections(response)
    if sections:
        logger.warning("Analysis response was not JSON, using markdown sections")
        return MedicalReport(**sections)

    logger.error(f"Could not parse analysis response: {response[:200]}")
    return MedicalReport(
        motivo_visita=f"Errore di parsing: {response[:100]}...",
        note_specialista="Errore: impossibile analizzare la risposta. Per favore riprova o verifica la trascrizione.",
    )


def validate_report(report: MedicalReport, raw: Optional[Dict[str, Any]] = None) -> List[str]:
    """
    Warnings for missing or empty report sections

    Args:
        report: Parsed report
        raw: Model JSON, used to name keys the model left out

    Returns:
        Warning messages, empty when every section is present
    """
    warnings = []
    for field, mapping in REPORT_FIELDS.items():
        if raw is not None and mapping.json_key not in raw and field.value not in raw:
            warnings.append(f"Campo mancante: {mapping.json_key}")
        elif getattr(report, field.value).strip() in ("", NOT_AVAILABLE):
            warnings.append(mapping.missing_warning)
    return warnings


class AnalysisService:
    """Turns a consultation transcript into a structured report"""

    def __init__(self, client: Optional[OpenAIService] = None):
        self.client = client or openai_service

    async def analyze(
        self,
        transcription: str,
        patient_name: Optional[str] = None,
        visit_date: Optional[str] = None,
    ) -> Tuple[MedicalReport, List[str]]:
        """
        Analyze a transcript

        Args:
            transcription: Consultation transcript
            patient_name: Patient name for the prompt
            visit_date: Consultation date for the prompt

        Returns:
            (report, warnings)

        Raises:
            UpstreamConfigError: If the API key is missing
            ExternalServiceError: If the chat completion failed
        """
        logger.info(f"Analyzing transcript of {len(transcription)} characters")
        content = await self.client.create_chat_completion(
            messages=build_messages(transcription, patient_name, visit_date),
            max_tokens=settings.OPENAI_CHAT_MAX_TOKENS,
            temperature=settings.OPENAI_CHAT_TEMPERATURE,
            json_response=True,
        )

        report = parse_report(content)
        warnings = validate_report(report, load_json_object(content))
        if warnings:
            logger.warning(f"Analysis report has {len(warnings)} warnings: {', '.join(warnings)}")
        return report, warnings


analysis_service = AnalysisService()
