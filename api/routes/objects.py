"""Anonymous content-addressed endpoints: POST /objects, GET|HEAD /objects/{id}"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from api.serving import serve_blob
from core.blob_store import ContentStore
from core.config import settings
from core.models import ObjectPutResponse

router = APIRouter(prefix="/objects", tags=["objects"])


def get_content_store(request: Request) -> ContentStore:
    return request.app.state.content_store


@router.post("", response_model=ObjectPutResponse)
async def put_object(
    request: Request,
    content_store: ContentStore = Depends(get_content_store),
) -> ObjectPutResponse:
    result = await content_store.put(request.stream())
    return ObjectPutResponse.from_result(result)


@router.api_route("/{object_id:path}", methods=["GET", "HEAD"])
async def get_object(
    object_id: str,
    request: Request,
    content_store: ContentStore = Depends(get_content_store),
) -> Response:
    # Rejects anything but a lowercase hex digest before touching disk
    blob = content_store.get(object_id)
    return serve_blob(
        request,
        blob,
        etag=f'"{blob.digest}"',
        last_modified=blob.last_modified,
        chunk_size=settings.CHUNK_SIZE,
    )


# Without these the catch-all bucket/key routes would accept e.g. PUT /objects/x
@router.api_route(
    "", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE"], include_in_schema=False
)
async def objects_method_not_allowed() -> None:
    raise HTTPException(status_code=405, detail="Method not allowed", headers={"Allow": "POST"})


@router.api_route(
    "/{object_id:path}", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False
)
async def object_method_not_allowed(object_id: str) -> None:
    raise HTTPException(status_code=405, detail="Method not allowed", headers={"Allow": "GET, HEAD"})
