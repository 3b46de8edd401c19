"""Webhook routes: inbound events are queued and handled by the worker."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.database import get_db
from syncbridge.queue.store import QueueStore
from syncbridge.schemas.api import ApiResponse
from syncbridge.schemas.documents import DeliveryUpdateRequest
from syncbridge.schemas.queue import EnqueueResponse

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/delivery", response_model=ApiResponse[EnqueueResponse])
async def delivery_webhook(
    request: DeliveryUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Receive a SAP delivery note and queue the Odoo delivery confirmation.

    Returns as soon as the item is stored; the outcome shows up later in the
    webhook queue listing.
    """
    if not request.resolved_so_id:
        return JSONResponse(
            status_code=400,
            content=ApiResponse.fail("u_odoo_so_id is required").model_dump(),
        )
    item = await QueueStore(db).enqueue(
        external_doc_ref=request.sap_delivery_no,
        correlation_ref=request.resolved_so_id,
        event_category="webhook",
        payload={"delivery_date": request.delivery_date, "status": request.status},
    )
    return ApiResponse.ok(EnqueueResponse(id=item.id, status=item.status))
