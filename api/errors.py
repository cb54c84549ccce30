"""Exception handlers for the FastAPI app"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import ObjectStoreError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ObjectStoreError)
    async def object_store_error_handler(
        request: Request, exc: ObjectStoreError
    ) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response_body())
