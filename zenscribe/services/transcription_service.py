import asyncio
import json
import time
from typing import Any, Dict, Optional, Tuple

import httpx
from loguru import logger
from pydantic import BaseModel
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from zenscribe.core.config import settings
from zenscribe.core.exceptions import (
    EmptyTranscriptionError, TranscriptionTimeoutError, TransportError,
    UnparsableResponseError, UpstreamAPIError, UpstreamConfigError
)
from zenscribe.schemas.transcription import FileInfo
from zenscribe.services.audio_format import AudioAsset
from zenscribe.services.multipart_decoder import DecodedUpload, MultipartDecoder, get_decoder
from zenscribe.utils.security import generate_request_id

SERVICE_NAME = "OpenAI Whisper"


class RetryPolicy(BaseModel):
    """Retry settings for transport-level failures"""
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 8.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.TRANSCRIPTION_MAX_RETRIES,
            base_delay=settings.TRANSCRIPTION_RETRY_DELAY,
            max_delay=settings.TRANSCRIPTION_RETRY_MAX_DELAY,
        )


class TranscriptionRequest(BaseModel):
    """One audio file plus the fixed decoding parameters"""
    audio: AudioAsset
    model: str
    language: str
    response_format: str
    temperature: float = 0.0
    prompt: Optional[str] = None
    correlation_id: Optional[str] = None

    @classmethod
    def for_audio(cls, audio: AudioAsset, correlation_id: Optional[str] = None) -> "TranscriptionRequest":
        return cls(
            audio=audio,
            model=settings.TRANSCRIPTION_MODEL,
            language=settings.TRANSCRIPTION_LANGUAGE,
            response_format=settings.TRANSCRIPTION_RESPONSE_FORMAT,
            temperature=settings.TRANSCRIPTION_TEMPERATURE,
            prompt=settings.TRANSCRIPTION_PROMPT,
            correlation_id=correlation_id,
        )


class TranscriptionResult(BaseModel):
    """Complete transcript of one request"""
    text: str
    request_id: str
    client_id: Optional[str] = None
    file_info: FileInfo


def compute_timeout(size_bytes: int, minimum: float, maximum: float) -> float:
    """
    Deadline for one transcription, one millisecond per KiB of audio

    Args:
        size_bytes: Payload size
        minimum: Lower bound in seconds
        maximum: Upper bound in seconds

    Returns:
        Timeout in seconds
    """
    return min(max(size_bytes / 1024 / 1000, minimum), maximum)


def parse_error_detail(response: httpx.Response) -> Optional[str]:
    """Upstream error message from a JSON error body, else the raw text"""
    text = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        return text or None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return text or None


def _transcript_from_json(payload: Any) -> Optional[str]:
    if isinstance(payload, str):
        return payload
    if not isinstance(payload, dict):
        return None

    for key in ("text", "result", "transcript"):
        value = payload.get(key)
        if isinstance(value, str):
            return value
        if isinstance(value, dict):
            nested = _transcript_from_json(value)
            if nested is not None:
                return nested

    segments = payload.get("segments")
    if isinstance(segments, list) and segments:
        return " ".join(
            segment["text"].strip()
            for segment in segments
            if isinstance(segment, dict) and isinstance(segment.get("text"), str)
        )
    return None


def extract_transcript(response: httpx.Response) -> str:
    """
    Transcript string from a speech API response

    Plain text bodies are returned verbatim. JSON bodies yield their
    text/result field. When the declared content type does not match the
    body, the other interpretation is tried.

    Args:
        response: Successful upstream response

    Returns:
        Transcript text

    Raises:
        UnparsableResponseError: If a JSON body carries no transcript
        EmptyTranscriptionError: If the transcript is blank
    """
    content_type = response.headers.get("content-type", "").lower()
    body = response.text

    if "json" in content_type:
        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("Response declared JSON but is not; using it as text")
            text = body
        else:
            text = _transcript_from_json(payload)
            if text is None:
                logger.error(f"JSON response without transcript field: {body[:200]}")
                raise UnparsableResponseError()
    else:
        text = body
        stripped = body.strip()
        if stripped.startswith("{") and stripped.endswith("}"):
            try:
                candidate = _transcript_from_json(json.loads(stripped))
            except ValueError:
                candidate = None
            if candidate is not None:
                text = candidate

    if not text.strip():
        raise EmptyTranscriptionError()
    return text


class TranscriptionDispatcher:
    """
    Client for the speech-to-text API

    One deadline covers all attempts. Transport failures are retried with
    exponential backoff; any HTTP response, successful or not, is final.
    Retried requests are not deduplicated upstream.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        min_timeout: Optional[float] = None,
        max_timeout: Optional[float] = None,
    ):
        self._api_key = api_key
        self.api_url = api_url or settings.TRANSCRIPTION_API_URL
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.min_timeout = min_timeout if min_timeout is not None else settings.TRANSCRIPTION_MIN_TIMEOUT
        self.max_timeout = max_timeout if max_timeout is not None else settings.TRANSCRIPTION_MAX_TIMEOUT

    @property
    def api_key(self) -> str:
        """
        Configured API key

        Raises:
            UpstreamConfigError: If no key is configured
        """
        key = self._api_key or settings.transcription_api_key
        if not key or key.startswith("your-"):
            logger.error("Speech API key is not configured (OPENAI_API_KEY / VITE_OPENAI_API_KEY)")
            raise UpstreamConfigError(SERVICE_NAME)
        return key

    def build_form(self, request: TranscriptionRequest) -> Tuple[Dict[str, Tuple[str, bytes, str]], Dict[str, str]]:
        """Multipart file and field parts for one request"""
        audio = request.audio
        files = {"file": (audio.upstream_filename, audio.data, audio.mime_type)}
        data = {
            "model": request.model,
            "language": request.language,
            "response_format": request.response_format,
            "temperature": f"{request.temperature:g}",
        }
        if request.prompt:
            data["prompt"] = request.prompt
        return files, data

    async def dispatch(self, request: TranscriptionRequest) -> httpx.Response:
        """
        Send one transcription request

        Args:
            request: Audio and parameters

        Returns:
            Successful upstream response

        Raises:
            UpstreamConfigError: If the API key is missing
            TranscriptionTimeoutError: If the deadline expires
            TransportError: If every attempt failed at the network level
            UpstreamAPIError: If the API answered with a non-2xx status
        """
        api_key = self.api_key
        timeout = compute_timeout(request.audio.size, self.min_timeout, self.max_timeout)
        logger.info(
            f"Sending {request.audio.upstream_filename} ({request.audio.size} bytes) to {SERVICE_NAME}, "
            f"timeout {timeout:.0f}s"
        )

        started = time.monotonic()
        try:
            response = await asyncio.wait_for(self._send_with_retry(api_key, request, timeout), timeout=timeout)
        except asyncio.TimeoutError:
            elapsed = time.monotonic() - started
            logger.error(f"{SERVICE_NAME} request aborted after {elapsed:.1f}s")
            raise TranscriptionTimeoutError(elapsed)

        elapsed = time.monotonic() - started
        if not response.is_success:
            detail = parse_error_detail(response)
            logger.error(f"{SERVICE_NAME} returned {response.status_code} after {elapsed:.1f}s: {detail}")
            # Avoid exposing upstream error details in prod
            if settings.ENVIRONMENT == "production":
                detail = None
            raise UpstreamAPIError(SERVICE_NAME, response.status_code, detail)

        logger.info(f"{SERVICE_NAME} answered {response.status_code} in {elapsed:.1f}s")
        return response

    async def _send_with_retry(self, api_key: str, request: TranscriptionRequest, timeout: float) -> httpx.Response:
        policy = self.retry_policy
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._post(api_key, request, timeout)
        except httpx.TransportError as e:
            logger.error(f"{SERVICE_NAME} unreachable after {policy.max_attempts} attempts: {e!r}")
            raise TransportError(SERVICE_NAME, str(e) or e.__class__.__name__)

    async def _post(self, api_key: str, request: TranscriptionRequest, timeout: float) -> httpx.Response:
        files, data = self.build_form(request)
        headers = {"Authorization": f"Bearer {api_key}"}
        if request.correlation_id:
            headers["X-Client-Request-Id"] = request.correlation_id

        if self.client is not None:
            return await self.client.post(self.api_url, headers=headers, files=files, data=data, timeout=timeout)

        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(self.api_url, headers=headers, files=files, data=data)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{SERVICE_NAME} attempt {retry_state.attempt_number} failed ({error!r}), retrying in {wait:.1f}s"
        )


class TranscriptionService:
    """Upload pipeline: decode, normalize, tag, dispatch, read the transcript"""

    def __init__(
        self,
        dispatcher: Optional[TranscriptionDispatcher] = None,
        decoder: Optional[MultipartDecoder] = None,
    ):
        self.dispatcher = dispatcher or TranscriptionDispatcher()
        self.decoder = decoder or get_decoder()
        logger.info(f"Transcription service initialized with {self.decoder.name} multipart decoder")

    def decode_upload(
        self, body: Optional[bytes], content_type: Optional[str], base64_encoded: bool = False
    ) -> Tuple[DecodedUpload, AudioAsset]:
        """Decoded multipart body and the normalized audio it carries"""
        upload = self.decoder.decode(body, content_type, base64_encoded=base64_encoded)
        audio = AudioAsset.from_upload(upload.file_bytes, upload.filename, upload.mime_type)
        logger.info(
            f"Received {upload.filename} ({upload.mime_type}) as {audio.mime_type}, "
            f"{audio.size} bytes, about {audio.duration_seconds}s, hash {audio.tag}"
        )
        return upload, audio

    async def transcribe_upload(
        self,
        body: Optional[bytes],
        content_type: Optional[str],
        base64_encoded: bool = False,
        request_id: Optional[str] = None,
    ) -> TranscriptionResult:
        """
        Transcribe the audio file of a multipart request body

        Args:
            body: Raw request body
            content_type: Request Content-Type header
            base64_encoded: Whether the body is base64 text
            request_id: Correlation id of the HTTP request

        Returns:
            Transcript with correlation ids and file info
        """
        upload, audio = self.decode_upload(body, content_type, base64_encoded=base64_encoded)
        return await self.transcribe_audio(audio, client_id=upload.client_id, request_id=request_id)

    async def transcribe_audio(
        self,
        audio: AudioAsset,
        client_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> TranscriptionResult:
        """Transcribe audio that is already in memory"""
        request_id = request_id or generate_request_id()
        request = TranscriptionRequest.for_audio(audio, correlation_id=client_id or request_id)
        response = await self.dispatcher.dispatch(request)
        text = extract_transcript(response)
        logger.info(f"Transcription {request_id} completed, {len(text)} characters")
        return TranscriptionResult(
            text=text,
            request_id=request_id,
            client_id=client_id,
            file_info=FileInfo(type=audio.mime_type, extension=audio.extension, size=audio.size, hash=audio.tag),
        )


# Create singleton instance
transcription_service = TranscriptionService()
