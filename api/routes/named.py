"""Named object endpoints: PUT|GET|HEAD|DELETE /{bucket}/{key...}"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from api.serving import serve_blob
from core.config import settings
from core.models import IndexEntry
from core.named import NamedObjectStore
from core.validation import split_object_path

# No prefix: this router is a catch-all and must be included last
router = APIRouter(tags=["named"])


def get_named_store(request: Request) -> NamedObjectStore:
    return request.app.state.named_store


def _etag(digest: str) -> str:
    return f'"{digest}"'


@router.put("/{object_path:path}", status_code=201, response_model=IndexEntry)
async def put_named_object(
    object_path: str,
    request: Request,
    response: Response,
    store: NamedObjectStore = Depends(get_named_store),
) -> IndexEntry:
    bucket, key = split_object_path(object_path)
    entry = await store.put_named(bucket, key, request.stream())
    response.headers["ETag"] = _etag(entry.digest)
    return entry


@router.api_route("/{object_path:path}", methods=["GET", "HEAD"])
async def get_named_object(
    object_path: str,
    request: Request,
    store: NamedObjectStore = Depends(get_named_store),
) -> Response:
    bucket, key = split_object_path(object_path)
    blob, entry = await store.get_named(bucket, key)
    return serve_blob(
        request,
        blob,
        etag=_etag(entry.digest),
        last_modified=entry.modified_at,
        chunk_size=settings.CHUNK_SIZE,
        media_type=entry.media_type,
    )


@router.delete("/{object_path:path}", status_code=204)
async def delete_named_object(
    object_path: str,
    store: NamedObjectStore = Depends(get_named_store),
) -> Response:
    bucket, key = split_object_path(object_path)
    await store.delete_named(bucket, key)
    return Response(status_code=204)
