"""Range + conditional responses for blob downloads.

Handles single byte ranges (``a-b``, ``a-``, ``-n``), ``If-Range``, and the
``If-Match`` / ``If-None-Match`` / ``If-Modified-Since`` /
``If-Unmodified-Since`` preconditions. Multi-range requests and unknown
range units are ignored and the full body is served.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime

from fastapi import BackgroundTasks, Request
from fastapi.responses import Response, StreamingResponse

from core.blob_store import StoredBlob

_DIGITS_RE = re.compile(r"[0-9]+")
_SAFE_METHODS = ("GET", "HEAD")


class RangeNotSatisfiable(Exception):
    pass


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


def _parse_int(value: str) -> int:
    if not _DIGITS_RE.fullmatch(value):
        raise RangeNotSatisfiable(value)
    return int(value)


def parse_range(header: str | None, size: int) -> ByteRange | None:
    """Resolve a Range header against a body of ``size`` bytes.

    Returns None when the whole body should be served.
    """
    if not header:
        return None
    unit, sep, spec = header.strip().partition("=")
    if not sep or unit.strip().lower() != "bytes":
        return None
    specs = [s.strip() for s in spec.split(",") if s.strip()]
    if not specs:
        raise RangeNotSatisfiable(header)
    if len(specs) > 1:
        return None

    first, dash, last = specs[0].partition("-")
    first, last = first.strip(), last.strip()
    if not dash:
        raise RangeNotSatisfiable(header)

    if not first:
        # Suffix range: the final n bytes
        suffix = _parse_int(last)
        if suffix == 0 or size == 0:
            raise RangeNotSatisfiable(header)
        suffix = min(suffix, size)
        return ByteRange(start=size - suffix, end=size - 1)

    start = _parse_int(first)
    if start >= size:
        raise RangeNotSatisfiable(header)
    if not last:
        return ByteRange(start=start, end=size - 1)
    end = _parse_int(last)
    if end < start:
        raise RangeNotSatisfiable(header)
    return ByteRange(start=start, end=min(end, size - 1))


# ---------------------------------------------------------------------------
# Conditional requests
# ---------------------------------------------------------------------------


def http_date(value: datetime) -> str:
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _etag_matches(header: str, etag: str, *, weak: bool) -> bool:
    if header.strip() == "*":
        return True
    for candidate in header.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            if not weak:
                continue
            candidate = candidate[2:]
        if candidate == etag:
            return True
    return False


def evaluate_preconditions(request: Request, etag: str, last_modified: datetime) -> int | None:
    """Return 304/412 when a precondition short-circuits the request."""
    headers = request.headers
    modified = last_modified.replace(microsecond=0)

    if_match = headers.get("if-match")
    if if_match is not None:
        if not _etag_matches(if_match, etag, weak=False):
            return 412
    else:
        since = _parse_http_date(headers.get("if-unmodified-since"))
        if since is not None and modified > since:
            return 412

    if_none_match = headers.get("if-none-match")
    if if_none_match is not None:
        if _etag_matches(if_none_match, etag, weak=True):
            return 304 if request.method in _SAFE_METHODS else 412
    elif request.method in _SAFE_METHODS:
        since = _parse_http_date(headers.get("if-modified-since"))
        if since is not None and modified <= since:
            return 304
    return None


def _range_applies(request: Request, etag: str, last_modified: datetime) -> bool:
    if_range = request.headers.get("if-range")
    if not if_range:
        return True
    if_range = if_range.strip()
    if if_range.startswith('"') or if_range.startswith("W/"):
        return _etag_matches(if_range, etag, weak=False)
    validator = _parse_http_date(if_range)
    return validator is not None and last_modified.replace(microsecond=0) == validator


# ---------------------------------------------------------------------------
# Response assembly
# ---------------------------------------------------------------------------


def _iter_blob(blob: StoredBlob, offset: int, length: int, chunk_size: int) -> Iterator[bytes]:
    try:
        blob.handle.seek(offset)
        remaining = length
        while remaining > 0:
            chunk = blob.handle.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        blob.close()


def serve_blob(
    request: Request,
    blob: StoredBlob,
    *,
    etag: str,
    last_modified: datetime,
    chunk_size: int,
    media_type: str | None = None,
) -> Response:
    """Build the GET/HEAD response for an open blob; takes ownership of it."""
    validators = {"ETag": etag, "Last-Modified": http_date(last_modified)}

    status = evaluate_preconditions(request, etag, last_modified)
    if status is not None:
        blob.close()
        return Response(status_code=status, headers=validators if status == 304 else None)

    try:
        byte_range = (
            parse_range(request.headers.get("range"), blob.size)
            if _range_applies(request, etag, last_modified)
            else None
        )
    except RangeNotSatisfiable:
        blob.close()
        return Response(
            status_code=416,
            headers={"Content-Range": f"bytes */{blob.size}", "Accept-Ranges": "bytes"},
        )

    headers = {
        **validators,
        "Accept-Ranges": "bytes",
        "Content-Type": media_type or blob.media_type,
    }
    if byte_range is None:
        status_code, offset, length = 200, 0, blob.size
    else:
        status_code, offset, length = 206, byte_range.start, byte_range.length
        headers["Content-Range"] = byte_range.content_range(blob.size)
    headers["Content-Length"] = str(length)

    if request.method == "HEAD":
        blob.close()
        return Response(status_code=status_code, headers=headers)

    # Closes the handle even if the body iterator never starts
    background_tasks = BackgroundTasks()
    background_tasks.add_task(blob.close)
    return StreamingResponse(
        _iter_blob(blob, offset, length, chunk_size),
        status_code=status_code,
        headers=headers,
        background=background_tasks,
    )
