"""Error taxonomy for the object store.

Each error carries the HTTP status and a stable machine-readable code so the
API layer can render it without knowing which component raised it.
"""

from __future__ import annotations


class ObjectStoreError(Exception):
    """Base class for all storage engine failures."""

    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_response_body(self) -> dict:
        return {"detail": self.message, "error": self.error}


# ---------------------------------------------------------------------------
# Client input errors
# ---------------------------------------------------------------------------


class InvalidObjectIdError(ObjectStoreError):
    status_code = 400
    error = "invalid_id"

    def __init__(self, object_id: str):
        self.object_id = object_id
        super().__init__(f"Invalid object id: {object_id!r}")


class InvalidObjectKeyError(ObjectStoreError):
    status_code = 400
    error = "invalid_key"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Invalid object path: {path!r} (expected bucket/key)")


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class BlobNotFoundError(ObjectStoreError):
    status_code = 404
    error = "not_found"

    def __init__(self, digest: str):
        self.digest = digest
        super().__init__(f"Object not found: {digest}")


class KeyNotFoundError(ObjectStoreError):
    status_code = 404
    error = "not_found"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Key not found: {key}")


# ---------------------------------------------------------------------------
# Server-side failures
# ---------------------------------------------------------------------------


class StorageIOError(ObjectStoreError):
    """Disk full, permission denied, fsync or rename failure."""

    status_code = 500
    error = "storage_error"


class BlobIntegrityError(ObjectStoreError):
    """An index entry references a digest whose blob is gone.

    This signals corruption of the store, so it is never reported as 404.
    """

    status_code = 500
    error = "integrity_error"

    def __init__(self, key: str, digest: str):
        self.key = key
        self.digest = digest
        super().__init__(f"Key {key} references missing blob {digest}")


class IndexUnavailableError(ObjectStoreError):
    status_code = 500
    error = "index_error"
