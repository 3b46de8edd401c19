"""Synchronous resync of an existing SAP document from a fresh Odoo payload.

Unlike queued work the resync runs on the caller's request and is never
retried here; the caller resubmits. Each run is still recorded in the queue
table under ``resync:<document_type>`` so it shows up next to queued work.

Incoming payments whose allocations changed are reallocated by SAP (cancel
and recreate under a new DocEntry). The new identifiers are written back to
the Odoo payment; a failed write-back is reported on the result but does not
fail the resync, because SAP already holds the corrected payment.
"""

from __future__ import annotations

import logging
from contextlib import suppress

from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.clients.odoo_client import OdooClient
from syncbridge.clients.sap_client import SapClient
from syncbridge.errors import ResyncValidationError
from syncbridge.queue.store import QueueStore
from syncbridge.schemas.documents import (
    IncomingPaymentResponse,
    IncomingPaymentWriteBack,
    SapDocumentResponse,
)
from syncbridge.schemas.resync import (
    CreditMemoResync,
    GoodsReturnResync,
    IncomingPaymentResync,
    InvoiceResync,
    ResyncCommand,
    ResyncRequest,
    ResyncResult,
    SalesOrderResync,
)

logger = logging.getLogger(__name__)


class ResyncCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        sap: SapClient | None = None,
        odoo: OdooClient | None = None,
    ) -> None:
        self._db = db
        self._store = QueueStore(db)
        self._sap = sap
        self._odoo = odoo

    async def resync(self, request: ResyncRequest) -> ResyncResult:
        logger.info("Resync request: type=%s doc_entry=%d", request.document_type, request.doc_entry)
        ledger_id = await self._open_ledger(request)

        try:
            command = request.to_command()
            document = await self._execute(command)
            if (
                isinstance(command, IncomingPaymentResync)
                and isinstance(document, IncomingPaymentResponse)
                and document.reallocated
                and command.payload.odoo_payment_id
            ):
                await self._write_back_payment(command.payload.odoo_payment_id, document)
        except ResyncValidationError as exc:
            logger.warning("Resync validation error: %s", exc)
            await self._close_ledger(ledger_id, error=exc)
            raise
        except Exception as exc:
            logger.error(
                "Resync failed: type=%s doc_entry=%d: %s", request.document_type, request.doc_entry, exc
            )
            await self._close_ledger(ledger_id, error=exc)
            raise

        await self._close_ledger(ledger_id, result=document)
        logger.info("Resync completed: type=%s doc_entry=%d", request.document_type, request.doc_entry)
        return ResyncResult(
            document_type=request.normalized_type,
            doc_entry=request.doc_entry,
            ledger_id=ledger_id,
            document=document,
        )

    async def _execute(self, command: ResyncCommand) -> SapDocumentResponse | IncomingPaymentResponse:
        owns_client = self._sap is None
        sap = self._sap or SapClient()
        try:
            match command:
                case SalesOrderResync(doc_entry, payload):
                    return await sap.update_sales_order(doc_entry, payload)
                case InvoiceResync(doc_entry, payload):
                    return await sap.update_invoice(doc_entry, payload)
                case IncomingPaymentResync(doc_entry, payload):
                    return await sap.update_incoming_payment(doc_entry, payload)
                case CreditMemoResync(doc_entry, payload):
                    return await sap.update_credit_memo(doc_entry, payload)
                case GoodsReturnResync(doc_entry, payload):
                    return await sap.update_goods_return(doc_entry, payload)
            raise ResyncValidationError(f"Unsupported resync command: {type(command).__name__}")
        finally:
            if owns_client:
                await sap.close()

    async def _write_back_payment(self, odoo_payment_id: int, result: IncomingPaymentResponse) -> None:
        logger.info(
            "Writing reallocated payment back to Odoo: payment=%d old=%s new=%d/%d",
            odoo_payment_id, result.cancelled_doc_entry, result.doc_entry, result.doc_num,
        )
        owns_client = self._odoo is None
        odoo = None
        try:
            odoo = self._odoo or OdooClient()
            await odoo.update_incoming_payment(
                IncomingPaymentWriteBack(
                    odoo_payment_id=odoo_payment_id,
                    sap_doc_entry=result.doc_entry,
                    sap_doc_num=result.doc_num,
                )
            )
            result.odoo_write_back_success = True
        except Exception as exc:
            logger.error(
                "Odoo write-back failed for reallocated payment %d (new DocEntry=%d); "
                "SAP is already updated, manual update may be needed: %s",
                odoo_payment_id, result.doc_entry, exc,
            )
            result.odoo_write_back_success = False
            result.odoo_write_back_error = str(exc)
        finally:
            if owns_client and odoo is not None:
                with suppress(Exception):
                    await odoo.close()

    async def _open_ledger(self, request: ResyncRequest) -> int | None:
        try:
            entry = await self._store.open_ledger_entry(
                external_doc_ref=str(request.doc_entry),
                correlation_ref=request.correlation_ref,
                document_type=request.normalized_type,
            )
        except Exception as exc:
            logger.warning(
                "Could not record resync ledger entry for DocEntry=%d, continuing without it: %s",
                request.doc_entry, exc,
            )
            with suppress(Exception):
                await self._db.rollback()
            return None
        logger.info("Resync ledger entry %d opened for DocEntry=%d", entry.id, request.doc_entry)
        return entry.id

    async def _close_ledger(self, ledger_id: int | None, *, result=None, error=None) -> None:
        if ledger_id is None:
            return
        try:
            await self._store.close_ledger_entry(ledger_id, result=result, error=error)
        except Exception as exc:
            logger.warning("Could not close resync ledger entry %d: %s", ledger_id, exc)
            with suppress(Exception):
                await self._db.rollback()
