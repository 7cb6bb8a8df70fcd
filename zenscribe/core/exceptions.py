from typing import Optional

from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base API exception with status code and detail"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        code: str = "error",
        headers: dict = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


class CredentialsException(BaseAPIException):
    """Exception for invalid credentials"""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            code="invalid_credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


class PermissionDeniedException(BaseAPIException):
    """Exception for permission denied"""

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            code="permission_denied",
        )


class NotFoundException(BaseAPIException):
    """Exception for resource not found"""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            code="not_found",
        )


class ResourceNotFoundError(NotFoundException):
    """Exception for a missing resource identified by type and ID"""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(detail=f"{resource} {resource_id} not found")


class QuotaExceededError(BaseAPIException):
    """Exception for a consultation exceeding the monthly minute allowance"""

    def __init__(self, detail: str = "Monthly minutes exhausted"):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=detail,
            code="quota_exceeded",
        )


class DatabaseError(BaseAPIException):
    """Exception for failed database operations"""

    def __init__(self, detail: str = "Database error"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            code="database_error",
        )


class TransientAuthError(BaseAPIException):
    """Credential store failed while granting a session; the attempt may be retried"""

    def __init__(self, detail: str = "Database error granting user"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            code="auth_unavailable",
        )


# Upload errors


class InvalidInputError(BaseAPIException):
    """Caller sent a request the upload pipeline cannot accept"""

    def __init__(self, detail: str, code: str = "invalid_input", status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=detail, code=code)


class NoBodyError(InvalidInputError):
    def __init__(self, detail: str = "Request body is empty"):
        super().__init__(detail, code="no_body")


class InvalidContentTypeError(InvalidInputError):
    def __init__(self, detail: str = "Content-Type must be multipart/form-data with a boundary"):
        super().__init__(detail, code="invalid_content_type")


class NoFileError(InvalidInputError):
    def __init__(self, detail: str = "No file part found in the request"):
        super().__init__(detail, code="no_file")


class SizeLimitError(InvalidInputError):
    def __init__(self, limit: int, subject: str = "File"):
        super().__init__(
            f"{subject} exceeds the maximum size of {limit} bytes",
            code="size_limit",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        )
        self.limit = limit


class MalformedBodyError(InvalidInputError):
    def __init__(self, detail: str = "Malformed multipart body"):
        super().__init__(detail, code="malformed_body")


# Upstream errors


class UpstreamConfigError(BaseAPIException):
    """Upstream credentials are missing or unusable"""

    def __init__(self, service: str, message: str = "API key is not configured"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Service is not configured",
            code="upstream_config",
        )
        self.service = service
        self.message = message

    def __str__(self) -> str:
        return f"{self.service}: {self.message}"


class UpstreamAPIError(BaseAPIException):
    """Upstream API answered with a non-2xx status"""

    def __init__(self, service: str, upstream_status: int, upstream_detail: Optional[str] = None):
        message = f"{service} returned status {upstream_status}"
        if upstream_detail:
            message = f"{message}: {upstream_detail}"
        super().__init__(
            status_code=upstream_status if 400 <= upstream_status < 600 else status.HTTP_502_BAD_GATEWAY,
            detail=message,
            code="upstream_error",
        )
        self.service = service
        self.upstream_status = upstream_status
        self.upstream_detail = upstream_detail


class TranscriptionTimeoutError(BaseAPIException):
    """Transcription did not complete before its deadline"""

    def __init__(self, elapsed: float):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Transcription timed out after {elapsed:.1f}s. Try a shorter or smaller file.",
            code="transcription_timeout",
        )
        self.elapsed = elapsed


class TransportError(BaseAPIException):
    """Network failure talking to an upstream service"""

    def __init__(self, service: str, message: str):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Could not reach {service}",
            code="transport_error",
        )
        self.service = service
        self.message = message

    def __str__(self) -> str:
        return f"{self.service}: {self.message}"


class UnparsableResponseError(BaseAPIException):
    """Upstream response carried no usable transcript"""

    def __init__(self, detail: str = "Could not read the transcription response"):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail,
            code="unparsable_response",
        )


class EmptyTranscriptionError(BaseAPIException):
    """Upstream returned an empty transcript"""

    def __init__(self, detail: str = "Transcription is empty"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            code="empty_transcription",
        )


class ExternalServiceError(BaseAPIException):
    """Exception for failures of other external services"""

    def __init__(self, service: str, message: str):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"{service} error",
            code="external_service_error",
        )
        self.service = service
        self.message = message

    def __str__(self) -> str:
        return f"{self.service}: {self.message}"
