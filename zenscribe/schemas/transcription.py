from typing import Optional

from pydantic import BaseModel


class FileInfo(BaseModel):
    """Canonical description of the forwarded audio"""
    type: str
    extension: str
    size: int
    hash: str


class TranscriptionOut(BaseModel):
    """Transcription endpoint response"""
    result: str
    requestId: str
    clientId: Optional[str] = None
    fileInfo: FileInfo
