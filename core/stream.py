"""Single-pass digest + media type detection for upload streams.

The stream is read exactly once. Leading bytes are held back until the sniff
window is full (or the stream ends), classified with libmagic, and then
forwarded to the sink along with everything that follows.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass
from typing import BinaryIO

import magic

from core.models import DEFAULT_MEDIA_TYPE

logger = logging.getLogger(__name__)

SNIFF_BYTES = 512

# libmagic answers these when it has nothing to go on
_UNKNOWN_MEDIA_TYPES = frozenset({"", "application/x-empty", "inode/x-empty"})


@dataclass(frozen=True)
class StreamDigest:
    digest: str
    size: int
    media_type: str


def detect_media_type(prefix: bytes) -> str:
    """Classify a content prefix; empty input is generic binary."""
    if not prefix:
        return DEFAULT_MEDIA_TYPE
    try:
        media_type = magic.from_buffer(prefix, mime=True)
    except magic.MagicException:
        logger.warning("libmagic could not classify %d-byte prefix", len(prefix))
        return DEFAULT_MEDIA_TYPE
    if media_type in _UNKNOWN_MEDIA_TYPES:
        return DEFAULT_MEDIA_TYPE
    return media_type


async def process(
    chunks: AsyncIterable[bytes],
    sink: BinaryIO,
    sniff_bytes: int = SNIFF_BYTES,
) -> StreamDigest:
    """Hash, size and classify chunks while copying them to sink unmodified.

    Read and sink errors propagate as-is; nothing here is durable.
    """
    hasher = hashlib.sha256()
    size = 0
    pending = bytearray()
    media_type: str | None = None

    async for chunk in chunks:
        if not chunk:
            continue
        if not isinstance(chunk, (bytes, bytearray, memoryview)):
            raise TypeError(f"stream chunks must be bytes, got {type(chunk).__name__}")
        hasher.update(chunk)
        size += len(chunk)

        if media_type is not None:
            sink.write(chunk)
            continue

        pending += chunk
        if len(pending) >= sniff_bytes:
            media_type = detect_media_type(bytes(pending[:sniff_bytes]))
            sink.write(pending)
            pending = bytearray()

    # Stream ended inside the sniff window
    if media_type is None:
        media_type = detect_media_type(bytes(pending))
        if pending:
            sink.write(pending)

    return StreamDigest(digest=hasher.hexdigest(), size=size, media_type=media_type)
