from fastapi import APIRouter

from zenscribe.api.routes import (
    analysis, auth, consultations, patients, subscriptions, transcribe, users
)

# Create main API router
api_router = APIRouter()

# Include all route modules
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(patients.router, prefix="/patients", tags=["patients"])
api_router.include_router(consultations.router, prefix="/consultations", tags=["consultations"])
api_router.include_router(transcribe.router, tags=["transcription"])
api_router.include_router(analysis.router, tags=["analysis"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
