import hashlib
import math
from typing import Optional, Tuple

from pydantic import BaseModel

# Canonical (content type, extension) pairs forwarded to the speech API
MP3 = ("audio/mpeg", "mp3")
WAV = ("audio/wav", "wav")
M4A = ("audio/mp4", "m4a")
WEBM = ("audio/webm", "webm")

_MIME_MARKERS = (
    (("mp3", "mpeg"), MP3),
    (("wav",), WAV),
    (("m4a", "mp4"), M4A),
)

_EXTENSIONS = {
    ".mp3": MP3,
    ".wav": WAV,
    ".m4a": M4A,
    ".mp4": M4A,
    ".webm": WEBM,
}

# Rough bytes per second: 128 kbps for mp3, double that for everything else
MP3_BYTES_PER_SECOND = 16 * 1024
DEFAULT_BYTES_PER_SECOND = 32 * 1024


def normalize_format(filename: Optional[str], mime_type: Optional[str]) -> Tuple[str, str]:
    """
    Pick the canonical content type and extension for an upload

    The sniffed MIME type wins; the filename suffix is only consulted when
    the MIME type is inconclusive. Anything unrecognized is treated as webm.

    Args:
        filename: Uploaded filename
        mime_type: Content type declared for the file part

    Returns:
        (content type, extension)
    """
    mime = (mime_type or "").lower()
    for markers, canonical in _MIME_MARKERS:
        if any(marker in mime for marker in markers):
            return canonical

    name = (filename or "").lower()
    for suffix, canonical in _EXTENSIONS.items():
        if name.endswith(suffix):
            return canonical

    return WEBM


def integrity_tag(data: bytes) -> str:
    """First 8 hex characters of the MD5 digest, for log correlation only"""
    return hashlib.md5(data).hexdigest()[:8]


def estimate_duration(size: int, extension: str) -> int:
    """
    Seconds of audio a file of this size probably holds, rounded up

    Used before transcription, when the real duration is still unknown.
    """
    rate = MP3_BYTES_PER_SECOND if extension == MP3[1] else DEFAULT_BYTES_PER_SECOND
    return math.ceil(size / rate)


class AudioAsset(BaseModel):
    """Audio held in memory for the duration of one request"""
    data: bytes
    mime_type: str
    extension: str
    tag: str
    duration_seconds: Optional[float] = None

    @classmethod
    def from_upload(
        cls, data: bytes, filename: Optional[str], mime_type: Optional[str], duration_seconds: Optional[float] = None
    ) -> "AudioAsset":
        canonical_type, extension = normalize_format(filename, mime_type)
        if duration_seconds is None:
            duration_seconds = estimate_duration(len(data), extension)
        return cls(
            data=data,
            mime_type=canonical_type,
            extension=extension,
            tag=integrity_tag(data),
            duration_seconds=duration_seconds,
        )

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def upstream_filename(self) -> str:
        return f"audio_{self.tag}.{self.extension}"
