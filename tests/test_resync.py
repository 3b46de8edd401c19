"""Tests for synchronous SAP document resync."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from syncbridge.database import async_session
from syncbridge.errors import ExternalStoreError, OdooRpcError, ResyncValidationError
from syncbridge.handlers.resync import ResyncCoordinator
from syncbridge.main import app
from syncbridge.models.queue_item import QueueStatus
from syncbridge.queue.store import QueueStore
from syncbridge.schemas.documents import IncomingPaymentResponse, SapDocumentResponse
from syncbridge.schemas.resync import InvoiceResync, ResyncRequest


PAYMENT_REQUEST = {
    "document_type": "incoming_payment",
    "doc_entry": 901,
    "incoming_payment": {
        "external_payment_id": "PAY/2026/0042",
        "customer_code": "C20000",
        "u_odoo_so_id": "SO0042",
        "payment_total": 1500.0,
        "bank_or_cash_account_code": "_SYS00000000120",
        "odoo_payment_id": 55,
        "lines": [{"sap_invoice_doc_entry": 812, "applied_amount": 1500.0}],
    },
}


def _reallocated_payment() -> IncomingPaymentResponse:
    return IncomingPaymentResponse(
        doc_entry=902,
        doc_num=7002,
        external_payment_id="PAY/2026/0042",
        odoo_payment_id=55,
        total_applied=1500.0,
        reallocated=True,
        cancelled_doc_entry=901,
    )


async def _ledger(ledger_id: int):
    async with async_session() as db:
        return await QueueStore(db).get(ledger_id)


def test_request_resolves_to_typed_command():
    request = ResyncRequest(document_type=" Invoice ", doc_entry=812, invoice={"u_odoo_so_id": "SO0042"})

    command = request.to_command()

    assert isinstance(command, InvoiceResync)
    assert command.doc_entry == 812
    assert request.correlation_ref == "SO0042"


def test_unknown_document_type_is_a_validation_error():
    request = ResyncRequest(document_type="delivery_note", doc_entry=1)

    with pytest.raises(ResyncValidationError, match="Unsupported document type"):
        request.to_command()


def test_missing_sub_payload_is_a_validation_error():
    request = ResyncRequest(document_type="sales_order", doc_entry=1)

    with pytest.raises(ResyncValidationError, match="sales_order payload is required"):
        request.to_command()


async def test_reallocated_payment_write_back_failure_is_not_fatal():
    """SAP recreated the payment; Odoo write-back fails; the resync still succeeds."""
    sap = AsyncMock()
    sap.update_incoming_payment.return_value = _reallocated_payment()
    odoo = AsyncMock()
    odoo.update_incoming_payment.side_effect = OdooRpcError("Odoo RPC error: access denied")

    async with async_session() as db:
        result = await ResyncCoordinator(db, sap=sap, odoo=odoo).resync(ResyncRequest(**PAYMENT_REQUEST))

    assert result.document.reallocated is True
    assert result.document.doc_entry == 902
    assert result.document.odoo_write_back_success is False
    assert "access denied" in result.document.odoo_write_back_error

    writeback = odoo.update_incoming_payment.await_args.args[0]
    assert writeback.odoo_payment_id == 55
    assert writeback.sap_doc_entry == 902
    assert writeback.sap_doc_num == 7002

    ledger = await _ledger(result.ledger_id)
    assert ledger.status == QueueStatus.DONE
    assert ledger.event_category == "resync:incoming_payment"
    assert ledger.correlation_ref == "SO0042"


async def test_reallocated_payment_write_back_success():
    sap = AsyncMock()
    sap.update_incoming_payment.return_value = _reallocated_payment()
    odoo = AsyncMock()

    async with async_session() as db:
        result = await ResyncCoordinator(db, sap=sap, odoo=odoo).resync(ResyncRequest(**PAYMENT_REQUEST))

    assert result.document.odoo_write_back_success is True
    assert result.document.odoo_write_back_error is None


async def test_payment_updated_in_place_skips_write_back():
    sap = AsyncMock()
    sap.update_incoming_payment.return_value = IncomingPaymentResponse(doc_entry=901, doc_num=7001)
    odoo = AsyncMock()

    async with async_session() as db:
        result = await ResyncCoordinator(db, sap=sap, odoo=odoo).resync(ResyncRequest(**PAYMENT_REQUEST))

    odoo.update_incoming_payment.assert_not_awaited()
    assert result.document.odoo_write_back_success is None


async def test_sap_rejection_fails_the_ledger_entry():
    sap = AsyncMock()
    sap.update_invoice.side_effect = ExternalStoreError(
        "SAP Service Layer PATCH Invoices(812) failed", "Document is already closed", 400
    )
    request = ResyncRequest(document_type="invoice", doc_entry=812, invoice={"u_odoo_so_id": "SO0042"})

    async with async_session() as db:
        with pytest.raises(ExternalStoreError):
            await ResyncCoordinator(db, sap=sap).resync(request)

    async with async_session() as db:
        (ledger,) = await QueueStore(db).list_items(QueueStatus.FAILED)
    assert "Document is already closed" in ledger.error_message


async def test_ledger_write_failure_does_not_block_resync():
    sap = AsyncMock()
    sap.update_sales_order.return_value = SapDocumentResponse(
        document_type="sales_order", doc_entry=500, doc_num=6001, updated_fields=["Comments"]
    )
    request = ResyncRequest(document_type="sales_order", doc_entry=500, sales_order={"comments": "rush"})

    with patch.object(QueueStore, "open_ledger_entry", AsyncMock(side_effect=RuntimeError("disk full"))):
        async with async_session() as db:
            result = await ResyncCoordinator(db, sap=sap).resync(request)

    assert result.ledger_id is None
    assert result.document.doc_num == 6001


async def test_resync_route_success():
    sap = AsyncMock()
    sap.update_credit_memo.return_value = SapDocumentResponse(
        document_type="credit_memo", doc_entry=300, doc_num=4001, u_odoo_so_id="SO0042"
    )

    with patch("syncbridge.handlers.resync.SapClient", return_value=sap):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post(
                "/api/v1/resync",
                json={"document_type": "credit_memo", "doc_entry": 300, "credit_memo": {"u_odoo_so_id": "SO0042"}},
            )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["doc_num"] == 4001
    assert body["meta"]["document_type"] == "credit_memo"
    sap.close.assert_awaited_once()


async def test_resync_route_validation_error_returns_400():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/api/v1/resync", json={"document_type": "invoice", "doc_entry": 812})

    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "data": None,
        "meta": None,
        "errors": ["invoice payload is required"],
    }


async def test_resync_route_sap_rejection_returns_502():
    sap = AsyncMock()
    sap.update_goods_return.side_effect = ExternalStoreError("SAP Service Layer PATCH Returns(77) failed", "locked")

    with patch("syncbridge.handlers.resync.SapClient", return_value=sap):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post(
                "/api/v1/resync",
                json={"document_type": "goods_return", "doc_entry": 77, "goods_return": {}},
            )

    assert resp.status_code == 502
    assert resp.json()["errors"] == ["SAP Service Layer PATCH Returns(77) failed: locked"]


def test_unprefixed_user_defined_field_is_a_validation_error():
    request = ResyncRequest(document_type="invoice", doc_entry=812, invoice={"udfs": {"OdooRef": "x"}})

    with pytest.raises(ResyncValidationError, match="must start with 'U_'"):
        request.to_command()


async def test_resync_route_unprefixed_user_defined_field_returns_400():
    with patch("syncbridge.handlers.resync.SapClient") as sap_cls:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post(
                "/api/v1/resync",
                json={"document_type": "invoice", "doc_entry": 812, "invoice": {"udfs": {"OdooRef": "x"}}},
            )

    assert resp.status_code == 400
    assert resp.json()["errors"] == ["user-defined field 'OdooRef' must start with 'U_'"]
    sap_cls.assert_not_called()

    async with async_session() as db:
        (ledger,) = await QueueStore(db).list_items(QueueStatus.FAILED)
    assert ledger.event_category == "resync:invoice"
