"""COGS journal route, for re-runs and one-off corrections outside the queue."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.clients.odoo_client import OdooClient
from syncbridge.database import get_db
from syncbridge.handlers.queue_handlers import COGS_CATEGORY
from syncbridge.queue.store import QueueStore
from syncbridge.schemas.api import ApiResponse
from syncbridge.schemas.documents import CogsJournalRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cogs"])


@router.post("/cogs-journals", response_model=ApiResponse[dict])
async def create_cogs_journal(
    request: CogsJournalRequest,
    defer: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Create, update or skip the COGS journal entry for a SAP AR invoice.

    With ``defer=true`` the request is queued for the worker instead of being
    sent to Odoo on this call.
    """
    if defer:
        item = await QueueStore(db).enqueue(
            external_doc_ref=str(request.doc_entry),
            correlation_ref=str(request.doc_num or ""),
            event_category=COGS_CATEGORY,
            payload=request.model_dump(mode="json"),
        )
        return ApiResponse.ok({"id": item.id, "status": item.status})

    try:
        odoo = OdooClient()
        try:
            result = await odoo.create_or_update_cogs_journal(request)
        finally:
            await odoo.close()
    except Exception as exc:
        logger.error("COGS journal failed for SAP DocEntry=%d: %s", request.doc_entry, exc)
        return JSONResponse(status_code=500, content=ApiResponse.fail(str(exc)).model_dump())
    return ApiResponse.ok(result.model_dump())
