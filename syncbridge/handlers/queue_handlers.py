"""External-write operations executed by the queue worker, one per event category."""

from __future__ import annotations

import json
import logging
from typing import Any

from syncbridge.clients.odoo_client import OdooClient
from syncbridge.errors import UnsupportedEventCategory
from syncbridge.models.queue_item import QueueItem
from syncbridge.schemas.documents import (
    CogsJournalRequest,
    CogsJournalResponse,
    DeliveryUpdateRequest,
    DeliveryUpdateResponse,
)

logger = logging.getLogger(__name__)

COGS_CATEGORY = "cogs"


def _payload(item: QueueItem) -> dict[str, Any]:
    if not item.payload_json:
        return {}
    return json.loads(item.payload_json)


async def confirm_delivery(item: QueueItem) -> DeliveryUpdateResponse:
    payload = _payload(item)
    request = DeliveryUpdateRequest(
        u_odoo_so_id=item.correlation_ref,
        sap_delivery_no=item.external_doc_ref,
        delivery_date=payload.get("delivery_date"),
        status=payload.get("status") or "delivered",
    )
    odoo = OdooClient()
    try:
        return await odoo.confirm_delivery(request)
    finally:
        await odoo.close()


async def post_cogs_journal(item: QueueItem) -> CogsJournalResponse:
    request = CogsJournalRequest.model_validate(_payload(item))
    odoo = OdooClient()
    try:
        result = await odoo.create_or_update_cogs_journal(request)
    finally:
        await odoo.close()
    logger.info(
        "COGS journal %s for SAP DocEntry %d (entry=%d, hash=%s)",
        result.action, result.sap_doc_entry, result.cogs_journal_entry_id, result.hash,
    )
    return result


async def dispatch_queue_item(item: QueueItem) -> Any:
    """Default worker executor: route a claimed item to its Odoo operation."""
    match item.event_category:
        case "webhook" | "delivery":
            return await confirm_delivery(item)
        case "cogs":
            return await post_cogs_journal(item)
        case other:
            raise UnsupportedEventCategory(other)
