"""Resync route: correct an existing SAP document from a fresh Odoo payload."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.database import get_db
from syncbridge.errors import SyncBridgeError
from syncbridge.handlers.resync import ResyncCoordinator
from syncbridge.schemas.api import ApiResponse
from syncbridge.schemas.resync import ResyncRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["resync"])


@router.post("/resync", response_model=ApiResponse[dict])
async def resync(request: ResyncRequest, db: AsyncSession = Depends(get_db)):
    """Re-apply an Odoo payload to a SAP document.

    Runs synchronously. Validation problems return 400, SAP rejections 502;
    nothing is retried, the caller decides whether to resubmit.
    """
    try:
        result = await ResyncCoordinator(db).resync(request)
    except SyncBridgeError as exc:
        return JSONResponse(status_code=exc.http_status, content=ApiResponse.fail(exc.message).model_dump())
    except Exception as exc:
        logger.exception("Unexpected resync failure for DocEntry=%d", request.doc_entry)
        return JSONResponse(status_code=500, content=ApiResponse.fail(str(exc)).model_dump())
    return ApiResponse.ok(
        result.document.model_dump(mode="json"),
        meta={"document_type": result.document_type, "ledger_id": result.ledger_id},
    )
