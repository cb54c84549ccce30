"""Content-addressed local filesystem blob store.

Layout under the store root:

    sha256/{first2}/{digest}             blob bytes
    sha256/{first2}/{digest}.meta.json   sidecar metadata
    tmp/                                 staging files for in-flight uploads

Publication is an ``os.replace`` from ``tmp/`` into ``sha256/``; both live
under the same root so the rename never crosses a volume. No in-process
locks: concurrent writers of one digest race on the rename and every
outcome leaves identical bytes behind.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import AsyncIterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from pydantic import ValidationError

from core.errors import BlobNotFoundError, StorageIOError
from core.models import DEFAULT_MEDIA_TYPE, BlobMeta, PutResult
from core.stream import SNIFF_BYTES, process
from core.validation import validate_digest

logger = logging.getLogger(__name__)

_BLOB_DIR = "sha256"
_STAGING_DIR = "tmp"
_META_SUFFIX = ".meta.json"


def _shard_path(root: Path, digest: str, suffix: str = "") -> Path:
    validate_digest(digest)
    return root / _BLOB_DIR / digest[:2] / f"{digest}{suffix}"


def _fsync_dir(path: Path) -> None:
    # Persist the directory entry created by a rename (POSIX only)
    if os.name != "posix":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Failed to remove staging file %s", path, exc_info=True)


@dataclass
class StagingFile:
    """Uniquely named temp file owned by one in-flight write."""

    path: Path
    handle: BinaryIO
    consumed: bool = False


@dataclass
class StoredBlob:
    """Open blob plus what the retrieval path needs to serve it."""

    digest: str
    handle: BinaryIO
    media_type: str
    size: int
    last_modified: datetime
    meta_missing: bool = False

    def close(self) -> None:
        self.handle.close()

    def __enter__(self) -> StoredBlob:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Atomic blob writer
# ---------------------------------------------------------------------------


class AtomicBlobWriter:
    """Stages bytes in ``tmp/`` and publishes them by atomic rename."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._staging_dir = self._root / _STAGING_DIR
        self._staging_dir.mkdir(parents=True, exist_ok=True)
        (self._root / _BLOB_DIR).mkdir(parents=True, exist_ok=True)

    @property
    def staging_dir(self) -> Path:
        return self._staging_dir

    def blob_path(self, digest: str) -> Path:
        return _shard_path(self._root, digest)

    def exists(self, digest: str) -> bool:
        return self.blob_path(digest).is_file()

    @contextmanager
    def staging(self) -> Iterator[StagingFile]:
        """Yield a fresh staging file, removing it on every exit but a publish."""
        try:
            fd, name = tempfile.mkstemp(prefix="put-", suffix=".tmp", dir=self._staging_dir)
        except OSError as exc:
            raise StorageIOError(f"Failed to create staging file: {exc}") from exc

        staging = StagingFile(path=Path(name), handle=os.fdopen(fd, "wb"))
        try:
            yield staging
        finally:
            if not staging.handle.closed:
                staging.handle.close()
            if not staging.consumed:
                _discard(staging.path)

    def publish(self, digest: str, staging: StagingFile) -> bool:
        """Make the staged bytes visible as ``digest``.

        Returns True for a fresh write and False when the blob already
        existed. The existence check is intentional: content addressing
        guarantees an existing blob holds exactly these bytes, so the
        staged copy is dropped instead of re-written.
        """
        final_path = self.blob_path(digest)
        if final_path.is_file():
            logger.debug("Blob %s already present; skipping write", digest)
            return False

        try:
            staging.handle.flush()
            os.fsync(staging.handle.fileno())
            staging.handle.close()
            final_path.parent.mkdir(parents=True, exist_ok=True)
            # Sole commit point; a racing publisher of the same digest
            # replaces identical bytes.
            os.replace(staging.path, final_path)
        except OSError as exc:
            raise StorageIOError(f"Failed to publish blob {digest}: {exc}") from exc
        staging.consumed = True

        # Already committed; a failed directory sync cannot un-publish it
        try:
            _fsync_dir(final_path.parent)
        except OSError:
            logger.warning("Failed to sync directory for blob %s", digest, exc_info=True)
        return True


# ---------------------------------------------------------------------------
# Sidecar metadata
# ---------------------------------------------------------------------------


class MetadataSidecarStore:
    """One small JSON record per digest, always written whole."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._staging_dir = self._root / _STAGING_DIR
        self._staging_dir.mkdir(parents=True, exist_ok=True)

    def meta_path(self, digest: str) -> Path:
        return _shard_path(self._root, digest, _META_SUFFIX)

    def has_meta(self, digest: str) -> bool:
        return self.meta_path(digest).is_file()

    def put_meta(self, digest: str, media_type: str, size: int) -> BlobMeta:
        meta = BlobMeta(media_type=media_type, size=size)
        path = self.meta_path(digest)
        tmp_path: Path | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix="meta-", suffix=".tmp", dir=self._staging_dir)
            tmp_path = Path(name)
            with os.fdopen(fd, "wb") as f:
                f.write(meta.model_dump_json().encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as exc:
            raise StorageIOError(f"Failed to write metadata for {digest}: {exc}") from exc
        finally:
            if tmp_path is not None:
                _discard(tmp_path)
        return meta

    def get_meta(self, digest: str) -> BlobMeta | None:
        path = self.meta_path(digest)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Unreadable metadata for blob %s", digest, exc_info=True)
            return None
        try:
            return BlobMeta.model_validate_json(raw)
        except ValidationError:
            logger.warning("Corrupt metadata for blob %s; ignoring", digest)
            return None


# ---------------------------------------------------------------------------
# Content store
# ---------------------------------------------------------------------------


class ContentStore:
    """Public ingestion/retrieval primitive: put(stream) -> digest, get(digest)."""

    def __init__(self, root: str | Path, sniff_bytes: int = SNIFF_BYTES) -> None:
        self._root = Path(root)
        self._sniff_bytes = sniff_bytes
        self.writer = AtomicBlobWriter(self._root)
        self.meta = MetadataSidecarStore(self._root)

    @property
    def root(self) -> Path:
        return self._root

    def exists(self, digest: str) -> bool:
        return self.writer.exists(digest)

    async def put(self, chunks: AsyncIterable[bytes]) -> PutResult:
        with self.writer.staging() as staging:
            try:
                streamed = await process(chunks, staging.handle, self._sniff_bytes)
            except OSError as exc:
                raise StorageIOError(f"Failed to stage upload: {exc}") from exc
            # fsync and rename block; keep them off the event loop
            created = await asyncio.to_thread(self.writer.publish, streamed.digest, staging)

        if created:
            await asyncio.to_thread(
                self.meta.put_meta, streamed.digest, streamed.media_type, streamed.size
            )
            logger.info(
                "Stored blob %s (%d bytes, %s)",
                streamed.digest, streamed.size, streamed.media_type,
            )
        elif not await asyncio.to_thread(self.meta.has_meta, streamed.digest):
            # Blob survived an earlier failure that lost its sidecar
            logger.info("Restoring missing metadata for blob %s", streamed.digest)
            await asyncio.to_thread(
                self.meta.put_meta, streamed.digest, streamed.media_type, streamed.size
            )

        return PutResult(
            digest=streamed.digest,
            size=streamed.size,
            media_type=streamed.media_type,
        )

    def get(self, digest: str) -> StoredBlob:
        """Open a blob for reading. Caller owns the returned handle."""
        path = self.writer.blob_path(digest)
        try:
            handle = path.open("rb")
        except FileNotFoundError as exc:
            raise BlobNotFoundError(digest) from exc
        except OSError as exc:
            raise StorageIOError(f"Failed to open blob {digest}: {exc}") from exc

        try:
            st = os.fstat(handle.fileno())
        except OSError as exc:
            handle.close()
            raise StorageIOError(f"Failed to stat blob {digest}: {exc}") from exc

        meta = self.meta.get_meta(digest)
        if meta is not None and meta.size != st.st_size:
            logger.warning(
                "Metadata size %d disagrees with blob %s on disk (%d bytes)",
                meta.size, digest, st.st_size,
            )

        return StoredBlob(
            digest=digest,
            handle=handle,
            media_type=meta.media_type if meta else DEFAULT_MEDIA_TYPE,
            size=st.st_size,
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            meta_missing=meta is None,
        )
