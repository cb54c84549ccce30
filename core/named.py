"""Named-object facade: bucket/key names on top of the content store."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterable

from core.blob_store import ContentStore, StoredBlob
from core.errors import BlobIntegrityError, BlobNotFoundError, KeyNotFoundError
from core.models import IndexEntry
from core.validation import compose_key
from db.key_index import KeyIndex

logger = logging.getLogger(__name__)


class NamedObjectStore:
    def __init__(self, content_store: ContentStore, key_index: KeyIndex) -> None:
        self._content = content_store
        self._index = key_index

    async def put_named(self, bucket: str, key: str, chunks: AsyncIterable[bytes]) -> IndexEntry:
        # Key syntax is checked before the body is consumed
        index_key = compose_key(bucket, key)
        result = await self._content.put(chunks)
        entry = IndexEntry(
            key=index_key,
            digest=result.digest,
            size=result.size,
            media_type=result.media_type,
            modified_at_ms=int(time.time() * 1000),
        )
        return await self._index.put(entry)

    async def get_named(self, bucket: str, key: str) -> tuple[StoredBlob, IndexEntry]:
        index_key = compose_key(bucket, key)
        entry = await self._index.get(index_key)
        if entry is None:
            raise KeyNotFoundError(index_key)

        try:
            blob = self._content.get(entry.digest)
        except BlobNotFoundError as exc:
            logger.error("Index entry %s references missing blob %s", index_key, entry.digest)
            raise BlobIntegrityError(index_key, entry.digest) from exc
        return blob, entry

    async def delete_named(self, bucket: str, key: str) -> bool:
        """Drop the name only; the blob stays for other names."""
        return await self._index.delete(compose_key(bucket, key))
