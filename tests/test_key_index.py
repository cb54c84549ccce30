"""Tests for the bucket/key index and object path parsing"""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from core.errors import IndexUnavailableError, InvalidObjectKeyError
from core.models import IndexEntry
from core.validation import compose_key, split_object_path
from db.key_index import KeyIndex
from db.session import create_index_engine, create_session_factory, init_db

DIGEST_A = "a" * 64
DIGEST_B = "b" * 64


def _entry(key: str, digest: str = DIGEST_A, **overrides) -> IndexEntry:
    fields = dict(key=key, digest=digest, size=3, media_type="text/plain", modified_at_ms=1_700_000_000_000)
    fields.update(overrides)
    return IndexEntry(**fields)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def index_engine(tmp_path):
    engine = create_index_engine(f"sqlite+aiosqlite:///{tmp_path / 'index.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def key_index(index_engine):
    return KeyIndex(create_session_factory(index_engine))


# ---------------------------------------------------------------------------
# Path parsing
# ---------------------------------------------------------------------------


class TestObjectPath:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("photos/cat.png", ("photos", "cat.png")),
            ("photos/2024/01/cat.png", ("photos", "2024/01/cat.png")),
            ("b/k/", ("b", "k/")),
        ],
    )
    def test_split_on_first_separator(self, path, expected):
        assert split_object_path(path) == expected

    @pytest.mark.parametrize("path", ["", "bucket", "bucket/", "/key", "/", "//"])
    def test_malformed_paths_rejected(self, path):
        with pytest.raises(InvalidObjectKeyError):
            split_object_path(path)

    def test_compose_key(self):
        assert compose_key("x", "y/z") == "x/y/z"

    @pytest.mark.parametrize("bucket, key", [("", "k"), ("b", ""), ("a/b", "k")])
    def test_compose_key_rejects_bad_segments(self, bucket, key):
        with pytest.raises(InvalidObjectKeyError):
            compose_key(bucket, key)


# ---------------------------------------------------------------------------
# KeyIndex
# ---------------------------------------------------------------------------


class TestKeyIndex:
    @pytest.mark.asyncio
    async def test_put_get_roundtrip(self, key_index: KeyIndex):
        entry = _entry("x/y")
        await key_index.put(entry)
        assert await key_index.get("x/y") == entry

    @pytest.mark.asyncio
    async def test_get_missing_is_none(self, key_index: KeyIndex):
        assert await key_index.get("x/nothing") is None

    @pytest.mark.asyncio
    async def test_put_overwrites(self, key_index: KeyIndex):
        await key_index.put(_entry("x/y", DIGEST_A))
        await key_index.put(_entry("x/y", DIGEST_B, size=9, modified_at_ms=1_800_000_000_000))

        fetched = await key_index.get("x/y")
        assert fetched is not None
        assert fetched.digest == DIGEST_B
        assert fetched.size == 9

    @pytest.mark.asyncio
    async def test_concurrent_puts_to_new_key_last_writer_wins(self, key_index: KeyIndex):
        written = [_entry("race/k", f"{i:064x}", size=i) for i in range(8)]

        results = await asyncio.gather(*(key_index.put(e) for e in written))

        assert results == written
        assert await key_index.get("race/k") in written

    @pytest.mark.asyncio
    async def test_keys_are_exact(self, key_index: KeyIndex):
        await key_index.put(_entry("x/y"))
        assert await key_index.get("x/Y") is None
        assert await key_index.get("x/y/") is None

    @pytest.mark.asyncio
    async def test_delete(self, key_index: KeyIndex):
        await key_index.put(_entry("x/y"))
        assert await key_index.delete("x/y") is True
        assert await key_index.get("x/y") is None

    @pytest.mark.asyncio
    async def test_delete_missing(self, key_index: KeyIndex):
        assert await key_index.delete("x/ghost") is False

    @pytest.mark.asyncio
    async def test_entries_survive_reopen(self, tmp_path, key_index: KeyIndex):
        await key_index.put(_entry("x/y"))

        engine = create_index_engine(f"sqlite+aiosqlite:///{tmp_path / 'index.db'}")
        try:
            reopened = KeyIndex(create_session_factory(engine))
            assert (await reopened.get("x/y")) is not None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_unavailable_store_raises(self, tmp_path):
        engine = create_index_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'index.db'}")
        broken = KeyIndex(create_session_factory(engine))
        try:
            with pytest.raises(IndexUnavailableError):
                await broken.put(_entry("x/y"))
            with pytest.raises(IndexUnavailableError):
                await broken.get("x/y")
            with pytest.raises(IndexUnavailableError):
                await broken.delete("x/y")
        finally:
            await engine.dispose()

    def test_modified_at_is_utc(self):
        entry = _entry("x/y", modified_at_ms=0)
        assert entry.modified_at.isoformat() == "1970-01-01T00:00:00+00:00"
