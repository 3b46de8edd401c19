"""Best-effort status feed to the Odoo integration control center.

Every queue outcome is posted to an Odoo ``type='json'`` controller so
operators can follow webhook activity from inside Odoo. Nothing here may
interrupt queue processing: failures are logged and dropped.
"""

from __future__ import annotations

import logging

import httpx

from syncbridge.config import settings
from syncbridge.models.queue_item import QueueItem
from syncbridge.schemas.documents import DeliveryMonitorPayload

logger = logging.getLogger(__name__)


def build_monitor_payload(item: QueueItem) -> DeliveryMonitorPayload:
    return DeliveryMonitorPayload(
        queue_id=item.id,
        odoo_so_id=item.correlation_ref,
        sap_delivery_no=item.external_doc_ref,
        state=item.status,
        retry_count=item.retry_count,
        error_message=item.error_message,
    )


async def notify_monitor(item: QueueItem) -> None:
    if not settings.monitor_enabled:
        return
    if not settings.monitor_callback_url:
        logger.debug("Monitor callback URL not configured — skipping notification")
        return

    params = build_monitor_payload(item).model_dump()
    params["api_key"] = settings.monitor_api_key
    rpc_payload = {"jsonrpc": "2.0", "method": "call", "id": 1, "params": params}

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(settings.monitor_callback_url, json=rpc_payload)
        if resp.is_success:
            logger.debug("Monitor notified for queue item %d (state=%s)", item.id, item.status)
        else:
            logger.warning("Monitor callback returned %d: %s", resp.status_code, resp.text[:500])
    except Exception as exc:
        logger.warning("Failed to notify monitor for queue item %d: %s", item.id, exc)
