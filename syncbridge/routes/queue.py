"""Webhook queue management: inspect entries and retry failed ones."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.database import get_db
from syncbridge.models.queue_item import QueueStatus
from syncbridge.queue.store import QueueStore
from syncbridge.schemas.api import ApiResponse
from syncbridge.schemas.queue import EnqueueRequest, EnqueueResponse, QueueItemOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook-queue", tags=["webhook-queue"])


@router.get("", response_model=ApiResponse[list[QueueItemOut]])
async def list_entries(status: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    """List entries newest first, optionally filtered by status."""
    if status and status.strip().lower() not in QueueStatus.ALL:
        return JSONResponse(
            status_code=400,
            content=ApiResponse.fail(
                f"Unknown status '{status}'. Expected one of: {', '.join(QueueStatus.ALL)}"
            ).model_dump(),
        )
    items = await QueueStore(db).list_items(status)
    logger.info("Queue list: returned %d entries (filter=%s)", len(items), status or "all")
    return ApiResponse.ok([QueueItemOut.model_validate(item) for item in items])


@router.get("/failed", response_model=ApiResponse[list[QueueItemOut]])
async def failed_entries(db: AsyncSession = Depends(get_db)):
    """Entries that exhausted their retries, with the last error for diagnosis."""
    items = await QueueStore(db).list_items(QueueStatus.FAILED)
    return ApiResponse.ok(
        [QueueItemOut.model_validate(item) for item in items],
        meta={"total_failed": len(items)},
    )


@router.get("/summary", response_model=ApiResponse[dict[str, int]])
async def summary(db: AsyncSession = Depends(get_db)):
    return ApiResponse.ok(await QueueStore(db).summary())


@router.get("/{item_id}", response_model=ApiResponse[QueueItemOut])
async def get_entry(item_id: int, db: AsyncSession = Depends(get_db)):
    item = await QueueStore(db).get(item_id)
    return ApiResponse.ok(QueueItemOut.model_validate(item))


@router.post("", response_model=ApiResponse[EnqueueResponse])
async def enqueue(request: EnqueueRequest, db: AsyncSession = Depends(get_db)):
    item = await QueueStore(db).enqueue(
        external_doc_ref=request.external_doc_ref,
        correlation_ref=request.correlation_ref,
        event_category=request.event_category,
        payload=request.payload,
    )
    return ApiResponse.ok(EnqueueResponse(id=item.id, status=item.status))


@router.post("/{item_id}/retry", response_model=ApiResponse[dict])
async def retry_entry(item_id: int, db: AsyncSession = Depends(get_db)):
    """Reset one failed entry to pending with a fresh retry budget."""
    item = await QueueStore(db).manual_reset(item_id)
    return ApiResponse.ok({"id": item.id, "new_status": item.status})


@router.post("/retry-all", response_model=ApiResponse[dict])
async def retry_all(db: AsyncSession = Depends(get_db)):
    count = await QueueStore(db).reset_all_failed()
    return ApiResponse.ok({"retried_count": count})
