"""Tests for the single-pass digest/sniff stream processor"""

from __future__ import annotations

import hashlib
import io

import pytest

from core import stream
from core.models import DEFAULT_MEDIA_TYPE
from core.stream import SNIFF_BYTES, detect_media_type, process

PNG_HEADER = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x10\x00\x00\x00\x10\x08\x06\x00\x00\x00"


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


class _RecordingSink(io.BytesIO):
    def __init__(self) -> None:
        super().__init__()
        self.writes: list[int] = []

    def write(self, data) -> int:
        self.writes.append(len(data))
        return super().write(data)


# ---------------------------------------------------------------------------
# Media type detection
# ---------------------------------------------------------------------------


class TestDetectMediaType:
    def test_empty_is_generic_binary(self):
        assert detect_media_type(b"") == DEFAULT_MEDIA_TYPE

    def test_plain_text(self):
        assert detect_media_type(b"hello world\n") == "text/plain"

    def test_png(self):
        assert detect_media_type(PNG_HEADER + b"\x00" * 64) == "image/png"

    def test_pdf(self):
        assert detect_media_type(b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n") == "application/pdf"


# ---------------------------------------------------------------------------
# process()
# ---------------------------------------------------------------------------


class TestProcess:
    @pytest.mark.asyncio
    async def test_digest_matches_independent_hash(self):
        data = b"The quick brown fox jumps over the lazy dog" * 100
        sink = io.BytesIO()
        result = await process(_chunks(data[:7], data[7:900], data[900:]), sink)

        assert result.digest == hashlib.sha256(data).hexdigest()
        assert result.size == len(data)

    @pytest.mark.asyncio
    async def test_sink_receives_every_byte_in_order(self):
        parts = [bytes([i % 256]) * (i * 37 % 300 + 1) for i in range(40)]
        sink = io.BytesIO()
        await process(_chunks(*parts), sink)
        assert sink.getvalue() == b"".join(parts)

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        sink = io.BytesIO()
        result = await process(_chunks(), sink)

        assert result.size == 0
        assert result.digest == hashlib.sha256(b"").hexdigest()
        assert result.media_type == DEFAULT_MEDIA_TYPE
        assert sink.getvalue() == b""

    @pytest.mark.asyncio
    async def test_empty_chunks_are_skipped(self):
        sink = io.BytesIO()
        result = await process(_chunks(b"", b"abc", b"", b"def", b""), sink)
        assert sink.getvalue() == b"abcdef"
        assert result.size == 6

    @pytest.mark.asyncio
    async def test_short_stream_classified_on_full_content(self):
        sink = io.BytesIO()
        result = await process(_chunks(b"hello ", b"world\n"), sink)
        assert result.media_type == "text/plain"

    @pytest.mark.asyncio
    async def test_sink_writes_wait_for_sniff_window(self):
        sink = _RecordingSink()
        await process(_chunks(*[b"x" * 100] * 8), sink)

        # Nothing is forwarded until the window is full
        assert sink.writes[0] >= SNIFF_BYTES
        assert sum(sink.writes) == 800

    @pytest.mark.asyncio
    async def test_classification_sees_only_bounded_prefix(self, monkeypatch):
        seen: list[bytes] = []

        def fake_from_buffer(buf, mime=False):
            seen.append(buf)
            return "text/plain"

        monkeypatch.setattr(stream.magic, "from_buffer", fake_from_buffer)
        data = b"a" * 2000
        sink = io.BytesIO()
        result = await process(_chunks(data), sink, sniff_bytes=512)

        assert len(seen) == 1
        assert seen[0] == data[:512]
        assert result.media_type == "text/plain"
        assert sink.getvalue() == data

    @pytest.mark.asyncio
    async def test_magic_failure_falls_back_to_binary(self, monkeypatch):
        def broken(buf, mime=False):
            raise stream.magic.MagicException("boom")

        monkeypatch.setattr(stream.magic, "from_buffer", broken)
        result = await process(_chunks(b"whatever"), io.BytesIO())
        assert result.media_type == DEFAULT_MEDIA_TYPE

    @pytest.mark.asyncio
    async def test_read_error_propagates(self):
        async def failing():
            yield b"partial"
            raise OSError("connection reset")

        with pytest.raises(OSError, match="connection reset"):
            await process(failing(), io.BytesIO())

    @pytest.mark.asyncio
    async def test_sink_error_propagates(self):
        class FullDisk(io.BytesIO):
            def write(self, data):
                raise OSError(28, "No space left on device")

        with pytest.raises(OSError):
            await process(_chunks(b"y" * 4096), FullDisk())

    @pytest.mark.asyncio
    async def test_non_bytes_chunk_rejected(self):
        with pytest.raises(TypeError):
            await process(_chunks("text"), io.BytesIO())  # type: ignore[arg-type]
