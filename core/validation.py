"""Syntax checks for object ids and bucket/key paths.

Digests are used verbatim to build filesystem paths, so these checks run
before any storage access and double as the path-traversal guard.
"""

from __future__ import annotations

import re

from core.errors import InvalidObjectIdError, InvalidObjectKeyError

DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")
KEY_SEPARATOR = "/"


def is_valid_digest(value: str) -> bool:
    return DIGEST_RE.fullmatch(value) is not None


def validate_digest(value: str) -> str:
    """Return value unchanged, or raise InvalidObjectIdError."""
    if not is_valid_digest(value):
        raise InvalidObjectIdError(value)
    return value


def split_object_path(path: str) -> tuple[str, str]:
    """Split "bucket/key..." on the first separator.

    Both segments must be non-empty; the key may itself contain separators.
    """
    bucket, sep, key = path.partition(KEY_SEPARATOR)
    if not sep or not bucket or not key:
        raise InvalidObjectKeyError(path)
    return bucket, key


def compose_key(bucket: str, key: str) -> str:
    if not bucket or not key or KEY_SEPARATOR in bucket:
        raise InvalidObjectKeyError(f"{bucket}{KEY_SEPARATOR}{key}")
    return f"{bucket}{KEY_SEPARATOR}{key}"
