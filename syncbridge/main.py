"""FastAPI application for the SAP B1 / Odoo sync bridge."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from syncbridge.config import settings
from syncbridge.database import init_db, close_db
from syncbridge.errors import SyncBridgeError
from syncbridge.queue.worker import QueueWorker
from syncbridge.routes.cogs import router as cogs_router
from syncbridge.routes.queue import router as queue_router
from syncbridge.routes.resync import router as resync_router
from syncbridge.routes.webhooks import router as webhooks_router
from syncbridge.schemas.api import ApiResponse

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("syncbridge starting up")
    await init_db()

    stop_event = asyncio.Event()
    worker_task = None
    if settings.queue_worker_autostart:
        worker_task = asyncio.create_task(QueueWorker().run(stop_event), name="queue-worker")
    yield
    logger.info("syncbridge shutting down")
    if worker_task is not None:
        stop_event.set()
        await worker_task
    await close_db()


app = FastAPI(
    title="SAP B1 / Odoo Sync Bridge",
    description="Durable delivery queue, COGS journal idempotency and SAP document resync between SAP Business One and Odoo",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SyncBridgeError)
async def sync_bridge_error_handler(_request: Request, exc: SyncBridgeError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=ApiResponse.fail(exc.message).model_dump())


app.include_router(webhooks_router, prefix=settings.api_prefix)
app.include_router(queue_router, prefix=settings.api_prefix)
app.include_router(resync_router, prefix=settings.api_prefix)
app.include_router(cogs_router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "syncbridge"}
