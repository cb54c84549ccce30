"""Entrypoint for the FastAPI object store service"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from api.errors import register_error_handlers
from api.routes import named, objects
from core.blob_store import ContentStore
from core.config import settings
from core.named import NamedObjectStore
from db.key_index import KeyIndex
from db.session import create_index_engine, create_session_factory, init_db

logger = logging.getLogger(__name__)


# Store directory and index are opened once here; any failure aborts startup
@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.LOG_LEVEL)

    store_dir = Path(settings.STORE_DIR)
    store_dir.mkdir(parents=True, exist_ok=True)
    content_store = ContentStore(store_dir, sniff_bytes=settings.SNIFF_BYTES)

    engine = create_index_engine(settings.index_database_url)
    await init_db(engine)

    app.state.content_store = content_store
    app.state.named_store = NamedObjectStore(content_store, KeyIndex(create_session_factory(engine)))
    logger.info("Object store ready at %s", store_dir.resolve())
    try:
        yield
    finally:
        await engine.dispose()


app = FastAPI(
    title="Content-Addressed Object Store",
    version="0.1.0",
    description="Content-addressed blob storage with a bucket/key naming index",
    lifespan=lifespan,
)

register_error_handlers(app)


@app.api_route("/healthz", methods=["GET", "HEAD"], response_class=PlainTextResponse)
async def healthz() -> str:
    return "ok"


app.include_router(objects.router)
# Catch-all bucket/key routes go last
app.include_router(named.router)
