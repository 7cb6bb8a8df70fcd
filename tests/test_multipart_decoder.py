"""Tests for the multipart decoders."""

import base64

import pytest

from zenscribe.core.exceptions import (
    InvalidContentTypeError, MalformedBodyError, NoBodyError, NoFileError, SizeLimitError
)
from zenscribe.services.multipart_decoder import (
    ManualMultipartDecoder, StreamingMultipartDecoder, get_decoder
)

# Bytes that would break a text-based scanner
AUDIO = bytes(range(256)) * 4 + b"\r\n\r\n--not-a-boundary\x00\xff"

DECODERS = [StreamingMultipartDecoder, ManualMultipartDecoder]


@pytest.fixture(params=DECODERS, ids=lambda cls: cls.name)
def decoder(request):
    return request.param(max_size=1024 * 1024)


class TestDecode:
    def test_extracts_file_bytes_exactly(self, decoder, multipart_body, multipart_content_type):
        upload = decoder.decode(multipart_body(AUDIO), multipart_content_type)
        assert upload.file_bytes == AUDIO
        assert upload.filename == "registrazione.webm"
        assert upload.mime_type == "audio/webm"

    def test_byte_range_between_separator_and_boundary(self, decoder, multipart_body, multipart_content_type):
        body = multipart_body(b"payload")
        start = body.index(b"\r\n\r\n", body.index(b'name="file"')) + 4
        end = body.index(b"--", start)
        upload = decoder.decode(body, multipart_content_type)
        assert upload.file_bytes == body[start:end][:-2]

    def test_reads_client_id_fields(self, decoder, multipart_body, multipart_content_type):
        body = multipart_body(b"abc", fields={"session_id": "sess-42", "note": "prima visita"})
        upload = decoder.decode(body, multipart_content_type)
        assert upload.fields["session_id"] == "sess-42"
        assert upload.fields["note"] == "prima visita"
        assert upload.client_id == "sess-42"

    def test_client_id_field_fallback(self, decoder, multipart_body, multipart_content_type):
        body = multipart_body(b"abc", fields={"client_id": "web-7"})
        assert decoder.decode(body, multipart_content_type).client_id == "web-7"

    def test_defaults_when_part_headers_missing(self, decoder, multipart_body, multipart_content_type):
        body = multipart_body(b"abc", filename=None, content_type=None)
        upload = decoder.decode(body, multipart_content_type)
        assert upload.file_bytes == b"abc"
        assert upload.filename == "audio.webm"
        assert upload.mime_type == "audio/webm"

    def test_base64_body(self, decoder, multipart_body, multipart_content_type):
        body = base64.b64encode(multipart_body(AUDIO))
        upload = decoder.decode(body, multipart_content_type, base64_encoded=True)
        assert upload.file_bytes == AUDIO

    def test_line_wrapped_base64_body(self, decoder, multipart_body, multipart_content_type):
        body = base64.encodebytes(multipart_body(AUDIO))
        upload = decoder.decode(body, multipart_content_type, base64_encoded=True)
        assert upload.file_bytes == AUDIO

    def test_quoted_boundary(self, decoder, multipart_body):
        body = multipart_body(b"abc", boundary="quoted-boundary")
        upload = decoder.decode(body, 'multipart/form-data; boundary="quoted-boundary"')
        assert upload.file_bytes == b"abc"


class TestErrors:
    @pytest.mark.parametrize("body", [None, b""])
    def test_empty_body(self, decoder, body, multipart_content_type):
        with pytest.raises(NoBodyError):
            decoder.decode(body, multipart_content_type)

    @pytest.mark.parametrize("content_type", [None, "", "application/json", "audio/webm"])
    def test_not_multipart(self, decoder, multipart_body, content_type):
        with pytest.raises(InvalidContentTypeError):
            decoder.decode(multipart_body(b"abc"), content_type)

    def test_missing_boundary(self, decoder, multipart_body):
        with pytest.raises(InvalidContentTypeError):
            decoder.decode(multipart_body(b"abc"), "multipart/form-data")

    def test_no_file_part(self, decoder, multipart_content_type):
        body = (
            b"------ZenScribeBoundary7MA4YWxkTrZu0gW\r\n"
            b'Content-Disposition: form-data; name="session_id"\r\n\r\n'
            b"sess-1\r\n"
            b"------ZenScribeBoundary7MA4YWxkTrZu0gW--\r\n"
        )
        with pytest.raises(NoFileError):
            decoder.decode(body, multipart_content_type)

    def test_invalid_base64(self, decoder, multipart_content_type):
        with pytest.raises(MalformedBodyError):
            decoder.decode(b"not base64 at all!", multipart_content_type, base64_encoded=True)

    def test_base64_with_stray_bytes(self, decoder, multipart_body, multipart_content_type):
        encoded = base64.b64encode(multipart_body(AUDIO))
        body = encoded[:40] + b"*$" + encoded[40:]
        with pytest.raises(MalformedBodyError):
            decoder.decode(body, multipart_content_type, base64_encoded=True)

    def test_errors_are_client_errors(self, decoder, multipart_content_type):
        with pytest.raises(NoBodyError) as exc_info:
            decoder.decode(b"", multipart_content_type)
        assert exc_info.value.status_code == 400


class TestSizeCeiling:
    @pytest.mark.parametrize("decoder_cls", DECODERS, ids=lambda cls: cls.name)
    def test_exact_ceiling_accepted(self, decoder_cls, multipart_body, multipart_content_type):
        decoder = decoder_cls(max_size=1000)
        upload = decoder.decode(multipart_body(b"x" * 1000), multipart_content_type)
        assert len(upload.file_bytes) == 1000

    @pytest.mark.parametrize("decoder_cls", DECODERS, ids=lambda cls: cls.name)
    def test_one_byte_over_rejected(self, decoder_cls, multipart_body, multipart_content_type):
        decoder = decoder_cls(max_size=1000)
        with pytest.raises(SizeLimitError) as exc_info:
            decoder.decode(multipart_body(b"x" * 1001), multipart_content_type)
        assert exc_info.value.status_code == 413
        assert exc_info.value.limit == 1000

    def test_streaming_ceiling_spans_chunks(self, multipart_body, multipart_content_type):
        decoder = StreamingMultipartDecoder(max_size=200 * 1024)
        decoder.chunk_size = 1024
        upload = decoder.decode(multipart_body(b"y" * 200 * 1024), multipart_content_type)
        assert len(upload.file_bytes) == 200 * 1024
        with pytest.raises(SizeLimitError):
            decoder.decode(multipart_body(b"y" * (200 * 1024 + 1)), multipart_content_type)


class TestManualDecoder:
    def test_data_runs_to_body_end_without_closing_boundary(self, multipart_content_type):
        body = (
            b"------ZenScribeBoundary7MA4YWxkTrZu0gW\r\n"
            b'Content-Disposition: form-data; name="file"; filename="a.mp3"\r\n'
            b"Content-Type: audio/mpeg\r\n\r\n"
            b"truncated-audio"
        )
        upload = ManualMultipartDecoder().decode(body, multipart_content_type)
        assert upload.file_bytes == b"truncated-audio"
        assert upload.filename == "a.mp3"
        assert upload.mime_type == "audio/mpeg"


class TestGetDecoder:
    def test_default_is_streaming(self):
        assert isinstance(get_decoder(), StreamingMultipartDecoder)

    def test_manual_mode(self):
        decoder = get_decoder("manual", max_size=10)
        assert isinstance(decoder, ManualMultipartDecoder)
        assert decoder.max_size == 10


@pytest.mark.parametrize("decoder_cls", DECODERS, ids=lambda cls: cls.name)
class TestFieldCeiling:
    def test_field_at_ceiling_accepted(self, multipart_body, multipart_content_type, decoder_cls):
        decoder = decoder_cls(max_size=1000, max_field_size=100)
        upload = decoder.decode(multipart_body(b"a", fields={"note": "n" * 100}), multipart_content_type)
        assert upload.fields["note"] == "n" * 100

    def test_field_over_ceiling_rejected(self, multipart_body, multipart_content_type, decoder_cls):
        decoder = decoder_cls(max_size=1000, max_field_size=100)
        with pytest.raises(SizeLimitError) as exc_info:
            decoder.decode(multipart_body(b"a", fields={"note": "n" * 101}), multipart_content_type)
        assert exc_info.value.status_code == 413
        assert exc_info.value.limit == 100

    def test_huge_field_counts_against_body_ceiling(self, multipart_body, multipart_content_type, decoder_cls):
        decoder = decoder_cls(max_size=1000)
        body = multipart_body(b"a", fields={"note": "n" * 5_000_000})
        with pytest.raises(SizeLimitError) as exc_info:
            decoder.decode(body, multipart_content_type)
        assert exc_info.value.limit == decoder.body_limit


class TestReadBody:
    @staticmethod
    async def chunks(count, size, pulled):
        for _ in range(count):
            pulled.append(size)
            yield b"c" * size

    @pytest.mark.asyncio
    async def test_collects_chunks(self):
        pulled = []
        body = await StreamingMultipartDecoder(max_size=1000).read_body(self.chunks(3, 10, pulled))
        assert body == b"c" * 30

    @pytest.mark.asyncio
    async def test_declared_length_rejected_before_reading(self):
        decoder = StreamingMultipartDecoder(max_size=1000)
        pulled = []
        with pytest.raises(SizeLimitError):
            await decoder.read_body(self.chunks(3, 10, pulled), content_length=str(decoder.body_limit + 1))
        assert pulled == []

    @pytest.mark.asyncio
    async def test_stops_reading_once_over_ceiling(self):
        decoder = StreamingMultipartDecoder(max_size=1000)
        pulled = []
        with pytest.raises(SizeLimitError) as exc_info:
            await decoder.read_body(self.chunks(1000, 16 * 1024, pulled))
        assert exc_info.value.limit == decoder.body_limit
        assert len(pulled) * 16 * 1024 <= decoder.body_limit + 16 * 1024

    @pytest.mark.asyncio
    async def test_base64_body_gets_larger_ceiling(self):
        decoder = StreamingMultipartDecoder(max_size=1000)
        pulled = []
        body = await decoder.read_body(
            self.chunks(1, decoder.body_limit + 1, pulled), base64_encoded=True
        )
        assert len(body) == decoder.body_limit + 1
