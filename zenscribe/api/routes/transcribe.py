from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.api.deps import get_current_active_user
from zenscribe.db.session import get_db
from zenscribe.db.transaction import transaction
from zenscribe.models.models import User
from zenscribe.schemas.transcription import TranscriptionOut
from zenscribe.services.quota_service import quota_guard
from zenscribe.services.transcription_service import transcription_service
from zenscribe.utils.http import prefers_plain_text, request_id_of

router = APIRouter()

BASE64_ENCODING = "base64"


@router.post(
    "/transcribe",
    response_model=TranscriptionOut,
    responses={200: {"content": {"text/plain": {}}}},
)
async def transcribe(
        request: Request,
        current_user: User = Depends(get_current_active_user),
        db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Transcribe the audio file of a multipart/form-data body

    The body carries a `file` part and optionally a `session_id` or
    `client_id` field. Send `X-Body-Encoding: base64` when the body is
    base64 text. Clients accepting text/plain get the bare transcript.

    The body is read against the size ceiling as it arrives, and the
    estimated length of the recording must fit the remaining minutes
    before anything is sent to the speech API.
    """
    base64_encoded = request.headers.get("x-body-encoding", "").strip().lower() == BASE64_ENCODING
    body = await transcription_service.decoder.read_body(
        request.stream(),
        content_length=request.headers.get("content-length"),
        base64_encoded=base64_encoded,
    )

    upload, audio = transcription_service.decode_upload(
        body, request.headers.get("content-type"), base64_encoded=base64_encoded
    )
    async with transaction(db):
        await quota_guard.enforce(db, current_user, audio.duration_seconds)

    result = await transcription_service.transcribe_audio(
        audio, client_id=upload.client_id, request_id=request_id_of(request)
    )

    if prefers_plain_text(request):
        headers = {"X-Client-Id": result.client_id} if result.client_id else None
        return PlainTextResponse(result.text, headers=headers)

    return TranscriptionOut(
        result=result.text,
        requestId=result.request_id,
        clientId=result.client_id,
        fileInfo=result.file_info,
    )


@router.options("/transcribe", status_code=status.HTTP_204_NO_CONTENT)
async def transcribe_options() -> Response:
    """
    Preflight for clients that do not send CORS headers
    """
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers={"Allow": "POST, OPTIONS"})
