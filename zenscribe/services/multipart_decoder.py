import base64
import binascii
import re
from typing import AsyncIterator, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from zenscribe.core.config import settings
from zenscribe.core.exceptions import (
    InvalidContentTypeError, MalformedBodyError, NoBodyError, NoFileError, SizeLimitError
)

DEFAULT_FILENAME = "audio.webm"
DEFAULT_MIME_TYPE = "audio/webm"
FILE_FIELD = "file"
CLIENT_ID_FIELDS = ("session_id", "client_id")

BOUNDARY_RE = re.compile(r'boundary=(?:"([^"]+)"|([^;]+))', re.IGNORECASE)
FILENAME_RE = re.compile(r'filename="([^"]+)"')
PART_NAME_RE = re.compile(r'name="([^"]+)"')
PART_CONTENT_TYPE_RE = re.compile(r"Content-Type: ([^\r\n]+)", re.IGNORECASE)
FILE_MARKER = b'Content-Disposition: form-data; name="file"'
HEADER_SEPARATOR = b"\r\n\r\n"
CRLF = b"\r\n"
# Room for part headers, boundaries and the plain fields around the file
MULTIPART_OVERHEAD = 64 * 1024


class DecodedUpload(BaseModel):
    """First file part of a multipart body plus its plain fields"""
    file_bytes: bytes
    filename: str = DEFAULT_FILENAME
    mime_type: str = DEFAULT_MIME_TYPE
    fields: Dict[str, str] = {}

    @property
    def client_id(self) -> Optional[str]:
        for name in CLIENT_ID_FIELDS:
            if self.fields.get(name):
                return self.fields[name]
        return None


class MultipartDecoder:
    """
    Extract the audio file from a multipart/form-data request body

    Subclasses implement the actual scanning; this class handles body
    decoding, content type checks and the size ceiling.
    """

    name = "base"

    def __init__(self, max_size: Optional[int] = None, max_field_size: Optional[int] = None):
        self.max_size = max_size if max_size is not None else settings.MAX_UPLOAD_SIZE
        self.max_field_size = max_field_size if max_field_size is not None else settings.MAX_FIELD_SIZE

    @property
    def body_limit(self) -> int:
        """Largest decoded multipart body accepted"""
        return self.max_size + MULTIPART_OVERHEAD

    def raw_body_limit(self, base64_encoded: bool = False) -> int:
        """Largest body accepted on the wire; base64 text may be half again as large"""
        return self.body_limit * 3 // 2 if base64_encoded else self.body_limit

    async def read_body(
        self, chunks: AsyncIterator[bytes], content_length: Optional[str] = None, base64_encoded: bool = False
    ) -> bytes:
        """
        Collect a request body, giving up as soon as it outgrows the ceiling

        Args:
            chunks: Body chunks as they arrive
            content_length: Declared Content-Length, checked before reading
            base64_encoded: Whether the body is base64 text

        Returns:
            The complete body

        Raises:
            SizeLimitError: If the declared or received size exceeds the ceiling
        """
        limit = self.raw_body_limit(base64_encoded)
        if content_length and content_length.strip().isdigit() and int(content_length) > limit:
            raise SizeLimitError(limit, subject="Request body")

        body = bytearray()
        async for chunk in chunks:
            body += chunk
            self._check_body_size(len(body), limit)
        return bytes(body)

    def decode(self, body: Optional[bytes], content_type: Optional[str], base64_encoded: bool = False) -> DecodedUpload:
        """
        Decode a request body

        Args:
            body: Raw request body
            content_type: Request Content-Type header
            base64_encoded: Whether the body is base64 text

        Returns:
            Decoded file and form fields

        Raises:
            NoBodyError: If the body is empty
            InvalidContentTypeError: If the content type is not multipart or lacks a boundary
            NoFileError: If no file part is present
            SizeLimitError: If the body, the file or a plain field exceeds its ceiling
            MalformedBodyError: If the body cannot be parsed
        """
        if not body:
            raise NoBodyError()
        if not content_type or "multipart/form-data" not in content_type.lower():
            raise InvalidContentTypeError()

        boundary = self.extract_boundary(content_type)
        self._check_body_size(len(body), self.raw_body_limit(base64_encoded))
        if base64_encoded:
            body = self._decode_base64(body)
            if not body:
                raise NoBodyError()
            self._check_body_size(len(body), self.body_limit)

        upload = self._decode(body, boundary)
        logger.debug(
            f"Decoded multipart body with {self.name} decoder: {upload.filename} "
            f"({upload.mime_type}, {len(upload.file_bytes)} bytes)"
        )
        return upload

    def extract_boundary(self, content_type: str) -> bytes:
        """Boundary parameter of a multipart content type"""
        match = BOUNDARY_RE.search(content_type)
        if not match:
            raise InvalidContentTypeError("Missing multipart boundary")
        boundary = (match.group(1) or match.group(2)).strip()
        if not boundary:
            raise InvalidContentTypeError("Missing multipart boundary")
        return boundary.encode("latin-1")

    def _check_size(self, size: int) -> None:
        if size > self.max_size:
            raise SizeLimitError(self.max_size)

    def _check_field_size(self, name: Optional[str], size: int) -> None:
        if size > self.max_field_size:
            raise SizeLimitError(self.max_field_size, subject=f"Field {name or ''!r}")

    @staticmethod
    def _check_body_size(size: int, limit: int) -> None:
        if size > limit:
            raise SizeLimitError(limit, subject="Request body")

    @staticmethod
    def _decode_base64(body: bytes) -> bytes:
        # Line breaks are allowed; any other non-alphabet byte is an error
        try:
            return base64.b64decode(b"".join(body.split()), validate=True)
        except (binascii.Error, ValueError):
            raise MalformedBodyError("Body is not valid base64")

    def _decode(self, body: bytes, boundary: bytes) -> DecodedUpload:
        raise NotImplementedError


class _Part:
    """Headers and data of one part seen by the streaming parser"""

    def __init__(self):
        self.headers: Dict[str, str] = {}
        self.name: Optional[str] = None
        self.filename: Optional[str] = None
        self.content_type: Optional[str] = None
        self.data = bytearray()
        self.is_file = False


class StreamingMultipartDecoder(MultipartDecoder):
    """Decoder driven by the python-multipart event parser"""

    name = "streaming"
    chunk_size = 64 * 1024

    def _decode(self, body: bytes, boundary: bytes) -> DecodedUpload:
        parts: List[_Part] = []
        state = {"field": bytearray(), "value": bytearray(), "file": None}

        def on_part_begin() -> None:
            parts.append(_Part())

        def on_header_field(data: bytes, start: int, end: int) -> None:
            state["field"] += data[start:end]

        def on_header_value(data: bytes, start: int, end: int) -> None:
            state["value"] += data[start:end]

        def on_header_end() -> None:
            name = bytes(state["field"]).decode("latin-1").strip().lower()
            parts[-1].headers[name] = bytes(state["value"]).decode("utf-8", errors="replace").strip()
            state["field"] = bytearray()
            state["value"] = bytearray()

        def on_headers_finished() -> None:
            part = parts[-1]
            _, options = parse_options_header(part.headers.get("content-disposition", ""))
            if b"name" in options:
                part.name = options[b"name"].decode("utf-8", errors="replace")
            if b"filename" in options:
                part.filename = options[b"filename"].decode("utf-8", errors="replace")
            part.content_type = part.headers.get("content-type")
            if state["file"] is None and (part.filename is not None or part.name == FILE_FIELD):
                part.is_file = True
                state["file"] = part
            elif part.filename is not None:
                logger.warning(f"Ignoring extra file part {part.name!r}")

        def on_part_data(data: bytes, start: int, end: int) -> None:
            part = parts[-1]
            if part.is_file:
                self._check_size(len(part.data) + (end - start))
            elif part.filename is not None:
                return
            else:
                self._check_field_size(part.name, len(part.data) + (end - start))
            part.data += data[start:end]

        parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": on_part_begin,
                "on_header_field": on_header_field,
                "on_header_value": on_header_value,
                "on_header_end": on_header_end,
                "on_headers_finished": on_headers_finished,
                "on_part_data": on_part_data,
            },
        )

        try:
            for offset in range(0, len(body), self.chunk_size):
                parser.write(body[offset:offset + self.chunk_size])
            parser.finalize()
        except MultipartParseError as e:
            raise MalformedBodyError(f"Malformed multipart body: {e}")

        file_part: Optional[_Part] = state["file"]
        if file_part is None:
            raise NoFileError()

        fields = {
            part.name: bytes(part.data).decode("utf-8", errors="replace")
            for part in parts
            if part.name and not part.is_file and part.filename is None
        }
        return DecodedUpload(
            file_bytes=bytes(file_part.data),
            filename=file_part.filename or DEFAULT_FILENAME,
            mime_type=file_part.content_type or DEFAULT_MIME_TYPE,
            fields=fields,
        )


class ManualMultipartDecoder(MultipartDecoder):
    """
    Byte-scanning decoder for deployments without the parser library

    Locates the part named "file", its header/body separator and the next
    boundary marker. Nested multipart bodies are not supported.
    """

    name = "manual"

    def _decode(self, body: bytes, boundary: bytes) -> DecodedUpload:
        delimiter = b"--" + boundary

        marker_at = body.find(FILE_MARKER)
        if marker_at == -1:
            raise NoFileError()

        separator_at = body.find(HEADER_SEPARATOR, marker_at)
        if separator_at == -1:
            raise NoFileError("File part has no body")

        headers = body[marker_at:separator_at].decode("latin-1")
        filename_match = FILENAME_RE.search(headers)
        type_match = PART_CONTENT_TYPE_RE.search(headers)

        data_start = separator_at + len(HEADER_SEPARATOR)
        data_end = body.find(delimiter, data_start)
        if data_end == -1:
            data_end = len(body)
        file_bytes = body[data_start:data_end]
        if file_bytes.endswith(CRLF):
            file_bytes = file_bytes[:-len(CRLF)]

        self._check_size(len(file_bytes))

        return DecodedUpload(
            file_bytes=file_bytes,
            filename=filename_match.group(1) if filename_match else DEFAULT_FILENAME,
            mime_type=type_match.group(1).strip() if type_match else DEFAULT_MIME_TYPE,
            fields=self._scan_fields(body, delimiter),
        )

    def _scan_fields(self, body: bytes, delimiter: bytes) -> Dict[str, str]:
        """Plain (non-file) fields of the body"""
        fields = {}
        for chunk in body.split(delimiter):
            separator_at = chunk.find(HEADER_SEPARATOR)
            if separator_at == -1:
                continue
            headers = chunk[:separator_at].decode("latin-1")
            if "filename=" in headers or FILE_MARKER.decode("latin-1") in headers:
                continue
            name_match = PART_NAME_RE.search(headers)
            if not name_match:
                continue
            value = chunk[separator_at + len(HEADER_SEPARATOR):]
            if value.endswith(CRLF):
                value = value[:-len(CRLF)]
            self._check_field_size(name_match.group(1), len(value))
            fields[name_match.group(1)] = value.decode("utf-8", errors="replace")
        return fields


def get_decoder(
    mode: Optional[str] = None, max_size: Optional[int] = None, max_field_size: Optional[int] = None
) -> MultipartDecoder:
    """
    Decoder selected by MULTIPART_DECODER

    Args:
        mode: "streaming" or "manual", defaults to the configured mode
        max_size: File size ceiling override in bytes
        max_field_size: Plain field size ceiling override in bytes

    Returns:
        Multipart decoder instance
    """
    mode = mode or settings.MULTIPART_DECODER
    if mode == "manual":
        return ManualMultipartDecoder(max_size=max_size, max_field_size=max_field_size)
    return StreamingMultipartDecoder(max_size=max_size, max_field_size=max_field_size)
