"""Tests for the Odoo client's COGS journal and delivery flows."""

from unittest.mock import AsyncMock, patch

import pytest

from syncbridge.clients.odoo_client import OdooClient
from syncbridge.config import settings
from syncbridge.core.fingerprint import cogs_fingerprint
from syncbridge.errors import OdooRpcError
from syncbridge.schemas.documents import CogsJournalRequest, DeliveryUpdateRequest


def _cogs_request(**overrides) -> CogsJournalRequest:
    payload = {
        "doc_entry": 812,
        "doc_num": 5001,
        "lines": [
            {"line_num": 0, "item_code": "ITEM001", "quantity": 5, "unit_cost": 80.0},
            {"line_num": 1, "item_code": "ITEM002", "quantity": 2, "stock_sum": 0},
        ],
    }
    payload.update(overrides)
    return CogsJournalRequest(**payload)


@pytest.fixture
async def odoo():
    with (
        patch.object(settings, "odoo_base_url", "http://odoo.test"),
        patch.object(settings, "odoo_database", "prod"),
        patch.object(settings, "odoo_cogs_expense_account_id", 510),
        patch.object(settings, "odoo_cogs_stock_account_id", 140),
    ):
        client = OdooClient()
        client.search = AsyncMock()
        client.read = AsyncMock()
        client.write = AsyncMock(return_value=True)
        client.create = AsyncMock(return_value=3001)
        client.execute = AsyncMock(return_value=True)
        yield client
        await client.close()


def test_client_requires_configuration():
    with patch.object(settings, "odoo_base_url", ""):
        with pytest.raises(RuntimeError, match="Odoo not configured"):
            OdooClient()


async def test_cogs_entry_created_when_none_exists(odoo):
    odoo.search.side_effect = [[77], []]
    odoo.read.return_value = [{"name": "INV/2026/0001", "invoice_date": "2026-03-14"}]

    result = await odoo.create_or_update_cogs_journal(_cogs_request())

    assert result.action == "created"
    assert result.cogs_journal_entry_id == 3001
    assert result.odoo_invoice_id == 77
    assert result.total_cogs == 400.0
    # Zero-cost lines get no debit line.
    assert result.debit_line_count == 1

    values = odoo.create.await_args.args[1]
    assert values["x_cogs_hash"] == result.hash
    assert values["x_cogs_source_invoice_id"] == 77
    assert values["date"] == "2026-03-14"
    debit, credit = (command[2] for command in values["line_ids"])
    assert debit["account_id"] == 510 and debit["debit"] == 400.0
    assert credit["account_id"] == 140 and credit["credit"] == 400.0
    odoo.execute.assert_awaited_once_with("account.move", "action_post", [3001])


async def test_cogs_entry_skipped_when_hash_matches(odoo):
    request = _cogs_request()
    odoo.search.side_effect = [[77], [3001]]
    odoo.read.side_effect = [
        [{"name": "INV/2026/0001", "invoice_date": "2026-03-14"}],
        [{"x_cogs_hash": cogs_fingerprint(request)}],
    ]

    result = await odoo.create_or_update_cogs_journal(request)

    assert result.action == "skipped"
    assert result.cogs_journal_entry_id == 3001
    odoo.write.assert_not_awaited()
    odoo.execute.assert_not_awaited()


async def test_cogs_entry_rewritten_when_hash_differs(odoo):
    odoo.search.side_effect = [[77], [3001]]
    odoo.read.side_effect = [
        [{"name": "INV/2026/0001", "invoice_date": "2026-03-14"}],
        [{"x_cogs_hash": "0" * 64}],
    ]

    result = await odoo.create_or_update_cogs_journal(_cogs_request())

    assert result.action == "updated"
    values = odoo.write.await_args.args[2]
    assert values["line_ids"][0] == [5, 0, 0]
    assert values["x_cogs_hash"] == result.hash
    assert [call.args[1] for call in odoo.execute.await_args_list] == ["button_draft", "action_post"]


async def test_cogs_entry_requires_linked_invoice(odoo):
    odoo.search.side_effect = [[]]

    with pytest.raises(OdooRpcError, match="No Odoo invoice linked to SAP DocEntry 812"):
        await odoo.create_or_update_cogs_journal(_cogs_request())


async def test_confirm_delivery_validates_picking(odoo):
    odoo.search.side_effect = [[12], [34]]
    odoo.read.return_value = [{"name": "WH/OUT/00034", "state": "done"}]
    request = DeliveryUpdateRequest(u_odoo_so_id="SO0042", sap_delivery_no="DN-1001", delivery_date="2026-03-14")

    result = await odoo.confirm_delivery(request)

    assert result.picking_id == 34
    assert result.state == "done"
    assert [call.args[1] for call in odoo.execute.await_args_list] == [
        "action_assign",
        "action_set_quantities_to_reservation",
        "button_validate",
    ]
    odoo.write.assert_awaited_once_with(
        "stock.picking", [34], {"x_sap_delivery_no": "DN-1001", "x_sap_delivery_date": "2026-03-14"}
    )


async def test_confirm_delivery_unknown_sale_order(odoo):
    odoo.search.side_effect = [[]]
    request = DeliveryUpdateRequest(u_odoo_so_id="SO9999", sap_delivery_no="DN-1")

    with pytest.raises(OdooRpcError, match="SO9999"):
        await odoo.confirm_delivery(request)
