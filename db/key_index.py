"""Transactional bucket/key -> digest index.

Every operation is exactly one transaction against one key. Isolation
between concurrent writers of the same key is left to the database.
"""

from __future__ import annotations

import logging

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.errors import IndexUnavailableError
from core.models import IndexEntry
from db.models import IndexEntryRow

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}
_UPDATED_COLUMNS = ("digest", "size", "media_type", "modified_at_ms")


def _upsert(dialect_name: str, entry: IndexEntry):
    """INSERT ... ON CONFLICT (key) DO UPDATE for one entry."""
    insert = _UPSERT_DIALECTS.get(dialect_name)
    if insert is None:
        raise IndexUnavailableError(f"Unsupported index dialect: {dialect_name}")
    stmt = insert(IndexEntryRow).values(
        key=entry.key,
        digest=entry.digest,
        size=entry.size,
        media_type=entry.media_type,
        modified_at_ms=entry.modified_at_ms,
    )
    return stmt.on_conflict_do_update(
        index_elements=[IndexEntryRow.key],
        set_={name: stmt.excluded[name] for name in _UPDATED_COLUMNS},
    )


def _row_to_entry(row: IndexEntryRow) -> IndexEntry:
    return IndexEntry(
        key=row.key,
        digest=row.digest,
        size=row.size,
        media_type=row.media_type,
        modified_at_ms=row.modified_at_ms,
    )


class KeyIndex:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def put(self, entry: IndexEntry) -> IndexEntry:
        """Insert or overwrite the record for entry.key."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    # Single statement: concurrent writers of a new key
                    # cannot both take the insert path
                    await session.execute(_upsert(session.get_bind().dialect.name, entry))
        except SQLAlchemyError as exc:
            logger.exception("Index write failed for key %s", entry.key)
            raise IndexUnavailableError(f"Failed to write index entry {entry.key}") from exc

        logger.info("Indexed %s -> %s", entry.key, entry.digest)
        return entry

    async def get(self, key: str) -> IndexEntry | None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(IndexEntryRow, key)
                    return _row_to_entry(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Index read failed for key %s", key)
            raise IndexUnavailableError(f"Failed to read index entry {key}") from exc

    async def delete(self, key: str) -> bool:
        """Remove the record; returns False when there was nothing to remove."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(IndexEntryRow, key)
                    if row is None:
                        return False
                    await session.delete(row)
        except SQLAlchemyError as exc:
            logger.exception("Index delete failed for key %s", key)
            raise IndexUnavailableError(f"Failed to delete index entry {key}") from exc

        logger.info("Removed index entry %s", key)
        return True
