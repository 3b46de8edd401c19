"""Tests for SAP Service Layer document updates."""

from unittest.mock import AsyncMock, patch

import pytest

from syncbridge.clients.sap_client import SapClient
from syncbridge.config import settings
from syncbridge.errors import ResyncValidationError
from syncbridge.schemas.documents import IncomingPaymentPayload, InvoicePayload


def _payment(**overrides) -> IncomingPaymentPayload:
    payload = {
        "external_payment_id": "PAY/2026/0042",
        "customer_code": "C20000",
        "u_odoo_so_id": "SO0042",
        "payment_total": 1500.0,
        "bank_or_cash_account_code": "_SYS00000000120",
        "odoo_payment_id": 55,
        "lines": [{"sap_invoice_doc_entry": 812, "applied_amount": 1500.0}],
    }
    payload.update(overrides)
    return IncomingPaymentPayload(**payload)


@pytest.fixture
async def sap():
    with patch.object(settings, "sap_company_db", "SBODEMO"):
        client = SapClient()
        client._request = AsyncMock()
        yield client
        await client.close()


async def test_invoice_patch_maps_fields(sap):
    sap._request.side_effect = [{}, {"DocEntry": 812, "DocNum": 5001, "U_OdooSoId": "SO0042"}]
    payload = InvoicePayload(u_odoo_so_id="SO0042", comments="corrected", external_invoice_id="INV/2026/0001")

    result = await sap.update_invoice(812, payload)

    method, path = sap._request.await_args_list[0].args
    body = sap._request.await_args_list[0].kwargs["json"]
    assert (method, path) == ("PATCH", "Invoices(812)")
    assert body == {"U_OdooSoId": "SO0042", "Comments": "corrected", "U_OdooInvoiceRef": "INV/2026/0001"}
    assert result.doc_num == 5001
    assert result.updated_fields == ["Comments", "U_OdooInvoiceRef", "U_OdooSoId"]


def test_user_defined_fields_must_be_prefixed():
    payload = InvoicePayload(udfs={"OdooRef": "x"})

    with pytest.raises(ResyncValidationError, match="must start with 'U_'"):
        payload.to_sap_patch()


async def test_payment_with_same_allocations_is_patched_in_place(sap):
    sap._request.side_effect = [
        {"DocNum": 7001, "PaymentInvoices": [{"DocEntry": 812, "SumApplied": 1500.0}]},
        {},
    ]

    result = await sap.update_incoming_payment(901, _payment())

    assert result.reallocated is False
    assert result.doc_entry == 901
    assert result.doc_num == 7001
    method, path = sap._request.await_args_list[1].args
    assert (method, path) == ("PATCH", "IncomingPayments(901)")


async def test_payment_with_new_allocations_is_cancelled_and_recreated(sap):
    sap._request.side_effect = [
        {"DocNum": 7001, "PaymentInvoices": [{"DocEntry": 811, "SumApplied": 1500.0}]},
        {},
        {"DocEntry": 902, "DocNum": 7002},
    ]

    result = await sap.update_incoming_payment(901, _payment())

    assert result.reallocated is True
    assert result.cancelled_doc_entry == 901
    assert (result.doc_entry, result.doc_num) == (902, 7002)
    calls = [call.args for call in sap._request.await_args_list]
    assert calls == [
        ("GET", "IncomingPayments(901)"),
        ("POST", "IncomingPayments(901)/Cancel"),
        ("POST", "IncomingPayments"),
    ]
    body = sap._request.await_args_list[2].kwargs["json"]
    assert body["TransferSum"] == 1500.0
    assert body["PaymentInvoices"][0]["DocEntry"] == 812
