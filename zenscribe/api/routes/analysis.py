from typing import Any

from fastapi import APIRouter, Depends

from zenscribe.api.deps import get_current_active_user
from zenscribe.models.models import User
from zenscribe.schemas.report import AnalysisRequest, AnalysisResponse
from zenscribe.services.analysis_service import analysis_service

router = APIRouter()


@router.post("/analyze-consultation", response_model=AnalysisResponse)
async def analyze_consultation(
        analysis_in: AnalysisRequest,
        current_user: User = Depends(get_current_active_user),
) -> Any:
    """
    Turn a consultation transcript into the nine-section report
    """
    report, warnings = await analysis_service.analyze(
        analysis_in.transcription,
        patient_name=analysis_in.patient_name,
        visit_date=analysis_in.date,
    )
    return AnalysisResponse(report=report, warnings=warnings)
