"""Odoo JSON-RPC client.

Covers the handful of Odoo operations the bridge needs: delivery confirmation
on stock.picking, SAP reference write-back on account.payment, and the COGS
journal entry flow on account.move.
"""

from __future__ import annotations

import itertools
import logging
from decimal import Decimal
from typing import Any

import httpx

from syncbridge.config import settings
from syncbridge.core.fingerprint import cogs_fingerprint, line_cost, ordered_lines
from syncbridge.errors import OdooRpcError
from syncbridge.schemas.documents import (
    CogsJournalRequest,
    CogsJournalResponse,
    DeliveryUpdateRequest,
    DeliveryUpdateResponse,
    IncomingPaymentWriteBack,
)

logger = logging.getLogger(__name__)


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01")))


class OdooClient:
    """Authenticated session against one Odoo database."""

    def __init__(self) -> None:
        if not settings.odoo_base_url or not settings.odoo_database:
            raise RuntimeError("Odoo not configured — set SYNC_ODOO_BASE_URL and SYNC_ODOO_DATABASE")
        self._base_url = settings.odoo_base_url.rstrip("/")
        self._database = settings.odoo_database
        self._username = settings.odoo_username
        self._password = settings.odoo_password
        self._uid: int | None = None
        self._rpc_ids = itertools.count(1)
        self._client = httpx.AsyncClient(timeout=settings.odoo_timeout_seconds)

    # ── JSON-RPC plumbing ────────────────────────────────────────────

    async def _call(self, path: str, params: dict) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": "call",
            "id": next(self._rpc_ids),
            "params": params,
        }
        resp = await self._client.post(f"{self._base_url}{path}", json=payload)
        resp.raise_for_status()
        data = resp.json()
        error = data.get("error")
        if error:
            message = (error.get("data") or {}).get("message") or error.get("message") or "Unknown Odoo RPC error"
            raise OdooRpcError(f"Odoo RPC error: {message}")
        return data.get("result")

    async def authenticate(self) -> int:
        if self._uid is not None:
            return self._uid
        result = await self._call(
            "/web/session/authenticate",
            {"db": self._database, "login": self._username, "password": self._password},
        )
        uid = (result or {}).get("uid")
        if not uid:
            raise OdooRpcError("Odoo authentication failed — uid is null")
        self._uid = uid
        logger.info("Authenticated with Odoo as uid=%d", uid)
        return uid

    async def execute(self, model: str, method: str, *args: Any, **kwargs: Any) -> Any:
        """Run ``model.method(*args, **kwargs)`` through ``execute_kw``."""
        uid = await self.authenticate()
        return await self._call(
            "/jsonrpc",
            {
                "service": "object",
                "method": "execute_kw",
                "args": [self._database, uid, self._password, model, method, list(args), kwargs],
            },
        )

    async def search(self, model: str, domain: list, limit: int | None = None) -> list[int]:
        kwargs = {"limit": limit} if limit else {}
        return list(await self.execute(model, "search", domain, **kwargs) or [])

    async def read(self, model: str, ids: list[int], fields: list[str]) -> list[dict]:
        return list(await self.execute(model, "read", ids, fields) or [])

    async def write(self, model: str, ids: list[int], values: dict) -> bool:
        return bool(await self.execute(model, "write", ids, values))

    async def create(self, model: str, values: dict) -> int:
        return int(await self.execute(model, "create", values))

    # ── delivery confirmation ────────────────────────────────────────

    async def confirm_delivery(self, request: DeliveryUpdateRequest) -> DeliveryUpdateResponse:
        """Validate the open outgoing picking of a sale order and stamp the SAP delivery number."""
        so_ref = request.resolved_so_id
        so_ids = await self.search("sale.order", [["name", "=", so_ref]], limit=1)
        if not so_ids:
            raise OdooRpcError(f"Sale order '{so_ref}' not found in Odoo")
        so_id = so_ids[0]

        picking_ids = await self.search(
            "stock.picking",
            [
                ["sale_id", "=", so_id],
                ["picking_type_code", "=", "outgoing"],
                ["state", "not in", ["done", "cancel"]],
            ],
            limit=1,
        )
        if not picking_ids:
            raise OdooRpcError(f"No pending outgoing picking found for sale order '{so_ref}'")
        picking_id = picking_ids[0]

        await self.execute("stock.picking", "action_assign", [picking_id])
        await self.execute("stock.picking", "action_set_quantities_to_reservation", [picking_id])
        await self.execute(
            "stock.picking",
            "button_validate",
            [picking_id],
            context={"skip_backorder": True, "skip_immediate": True},
        )

        values: dict[str, Any] = {"x_sap_delivery_no": request.sap_delivery_no}
        if request.delivery_date is not None:
            values["x_sap_delivery_date"] = request.delivery_date.isoformat()
        await self.write("stock.picking", [picking_id], values)

        rows = await self.read("stock.picking", [picking_id], ["name", "state"])
        picking = rows[0] if rows else {}
        logger.info(
            "Delivery confirmed in Odoo: SO=%s picking=%d state=%s SAP=%s",
            so_ref, picking_id, picking.get("state", ""), request.sap_delivery_no,
        )
        return DeliveryUpdateResponse(
            u_odoo_so_id=so_ref,
            picking_id=picking_id,
            picking_name=picking.get("name") or "",
            state=picking.get("state") or "",
            sap_delivery_no=request.sap_delivery_no,
        )

    # ── incoming payment write-back ──────────────────────────────────

    async def update_incoming_payment(self, request: IncomingPaymentWriteBack) -> None:
        """Point an Odoo payment at its (possibly new) SAP incoming payment."""
        await self.write(
            "account.payment",
            [request.odoo_payment_id],
            {
                "x_sap_inpay_docentry": request.sap_doc_entry,
                "x_sap_inpay_docnum": request.sap_doc_num,
            },
        )
        logger.info(
            "Wrote SAP incoming payment %d/%d onto Odoo payment %d",
            request.sap_doc_entry, request.sap_doc_num, request.odoo_payment_id,
        )

    # ── COGS journal entries ─────────────────────────────────────────

    def _cogs_line_commands(self, request: CogsJournalRequest, label: str) -> tuple[list, Decimal, int]:
        commands: list = []
        total = Decimal(0)
        for line in ordered_lines(request.lines):
            cost = line_cost(line)
            if cost == 0:
                continue
            total += cost
            commands.append([0, 0, {
                "account_id": settings.odoo_cogs_expense_account_id,
                "name": f"COGS {line.item_code} x {line.quantity:g}",
                "debit": _money(cost),
                "credit": 0.0,
            }])
        debit_count = len(commands)
        commands.append([0, 0, {
            "account_id": settings.odoo_cogs_stock_account_id,
            "name": f"Stock out {label}",
            "debit": 0.0,
            "credit": _money(total),
        }])
        return commands, total, debit_count

    async def create_or_update_cogs_journal(self, request: CogsJournalRequest) -> CogsJournalResponse:
        """Create, rewrite or skip the COGS entry for a SAP AR invoice.

        The entry carries the payload fingerprint in ``x_cogs_hash``; a request
        with the same fingerprint as the stored one is a no-op.
        """
        fingerprint = cogs_fingerprint(request)

        invoice_ids = await self.search(
            "account.move",
            [["x_sap_invoice_docentry", "=", request.doc_entry], ["move_type", "=", "out_invoice"]],
            limit=1,
        )
        if not invoice_ids:
            raise OdooRpcError(f"No Odoo invoice linked to SAP DocEntry {request.doc_entry}")
        invoice_id = invoice_ids[0]
        invoices = await self.read("account.move", [invoice_id], ["name", "invoice_date"])
        invoice = invoices[0] if invoices else {}
        invoice_name = invoice.get("name") or ""

        existing_ids = await self.search(
            "account.move",
            [
                ["x_cogs_source_invoice_id", "=", invoice_id],
                ["move_type", "=", "entry"],
                ["state", "!=", "cancel"],
            ],
            limit=1,
        )

        label = f"{invoice_name} (SAP {request.doc_num or request.doc_entry})"
        commands, total, debit_count = self._cogs_line_commands(request, label)
        response = dict(
            sap_doc_entry=request.doc_entry,
            odoo_invoice_id=invoice_id,
            odoo_invoice_name=invoice_name,
            hash=fingerprint,
            debit_line_count=debit_count,
            total_cogs=_money(total),
        )

        if existing_ids:
            entry_id = existing_ids[0]
            stored = await self.read("account.move", [entry_id], ["x_cogs_hash"])
            stored_hash = (stored[0] if stored else {}).get("x_cogs_hash") or ""
            if stored_hash == fingerprint:
                logger.info("COGS entry %d for invoice %s unchanged, skipping", entry_id, invoice_name)
                return CogsJournalResponse(cogs_journal_entry_id=entry_id, action="skipped", **response)

            await self.execute("account.move", "button_draft", [entry_id])
            await self.write(
                "account.move",
                [entry_id],
                {"line_ids": [[5, 0, 0]] + commands, "x_cogs_hash": fingerprint},
            )
            await self.execute("account.move", "action_post", [entry_id])
            logger.info("COGS entry %d for invoice %s updated", entry_id, invoice_name)
            return CogsJournalResponse(cogs_journal_entry_id=entry_id, action="updated", **response)

        values: dict[str, Any] = {
            "move_type": "entry",
            "ref": f"COGS {label}",
            "x_cogs_source_invoice_id": invoice_id,
            "x_cogs_hash": fingerprint,
            "line_ids": commands,
        }
        if settings.odoo_cogs_journal_id:
            values["journal_id"] = settings.odoo_cogs_journal_id
        entry_date = request.doc_date.isoformat() if request.doc_date else invoice.get("invoice_date")
        if entry_date:
            values["date"] = entry_date
        entry_id = await self.create("account.move", values)
        await self.execute("account.move", "action_post", [entry_id])
        logger.info("COGS entry %d for invoice %s created", entry_id, invoice_name)
        return CogsJournalResponse(cogs_journal_entry_id=entry_id, action="created", **response)

    async def close(self) -> None:
        await self._client.aclose()
