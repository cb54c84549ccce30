"""Pydantic models for blob metadata, index entries and API responses"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

DEFAULT_MEDIA_TYPE = "application/octet-stream"


# ---------------------------------------------------------------------------
# Storage records
# ---------------------------------------------------------------------------

# Sidecar record stored next to each blob
class BlobMeta(BaseModel):
    media_type: str = DEFAULT_MEDIA_TYPE
    size: int = Field(..., ge=0)


# Outcome of one ingestion; identical for fresh writes and dedup hits
class PutResult(BaseModel):
    digest: str
    size: int = Field(..., ge=0)
    media_type: str


class IndexEntry(BaseModel):
    key: str
    digest: str
    size: int = Field(..., ge=0)
    media_type: str
    modified_at_ms: int = Field(..., ge=0)

    @property
    def modified_at(self) -> datetime:
        return datetime.fromtimestamp(self.modified_at_ms / 1000, tz=timezone.utc)


# ---------------------------------------------------------------------------
# API response models
# ---------------------------------------------------------------------------

class ObjectPutResponse(BaseModel):
    id: str
    size: int
    content_type: str

    @classmethod
    def from_result(cls, result: PutResult) -> ObjectPutResponse:
        return cls(id=result.digest, size=result.size, content_type=result.media_type)
