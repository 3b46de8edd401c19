"""SAP Business One Service Layer client (session cookie auth)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from syncbridge.config import settings
from syncbridge.errors import ExternalStoreError
from syncbridge.schemas.documents import (
    CreditMemoPayload,
    DocumentUpdatePayload,
    GoodsReturnPayload,
    IncomingPaymentPayload,
    IncomingPaymentResponse,
    InvoicePayload,
    SalesOrderPayload,
    SapDocumentResponse,
)

logger = logging.getLogger(__name__)

# Service Layer sessions time out after 30 minutes of inactivity.
_SESSION_LIFETIME = timedelta(minutes=25)


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    message = (body.get("error") or {}).get("message")
    if isinstance(message, dict):
        return message.get("value") or resp.text
    return message or resp.text


def _allocations(lines: list[dict]) -> set[tuple[int, float]]:
    return {(int(line["DocEntry"]), round(float(line.get("SumApplied") or 0), 2)) for line in lines}


class SapClient:
    """Create and update SAP marketing documents and incoming payments."""

    def __init__(self) -> None:
        if not settings.sap_service_layer_url or not settings.sap_company_db:
            raise RuntimeError("SAP not configured — set SYNC_SAP_SERVICE_LAYER_URL and SYNC_SAP_COMPANY_DB")
        base_url = settings.sap_service_layer_url
        if not base_url.endswith("/"):
            base_url += "/"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=settings.sap_timeout_seconds,
            verify=settings.sap_verify_tls,
        )
        self._session_id: str | None = None
        self._session_expiry = datetime.min.replace(tzinfo=timezone.utc)

    async def login(self) -> None:
        resp = await self._client.post(
            "Login",
            json={
                "CompanyDB": settings.sap_company_db,
                "UserName": settings.sap_username,
                "Password": settings.sap_password,
            },
        )
        if resp.is_error:
            raise ExternalStoreError("SAP Service Layer login failed", _error_detail(resp), resp.status_code)
        self._session_id = resp.json()["SessionId"]
        self._session_expiry = datetime.now(timezone.utc) + _SESSION_LIFETIME
        logger.info("SAP Service Layer login successful")

    def _session_headers(self) -> dict[str, str]:
        return {"Cookie": f"B1SESSION={self._session_id}"}

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        if self._session_id is None or datetime.now(timezone.utc) >= self._session_expiry:
            await self.login()
        resp = await self._client.request(method, path, json=json, headers=self._session_headers())
        if resp.status_code == 401:
            # Session dropped server-side; one fresh login.
            await self.login()
            resp = await self._client.request(method, path, json=json, headers=self._session_headers())
        if resp.is_error:
            detail = _error_detail(resp)
            logger.error("SAP Service Layer %s %s failed: %d - %s", method, path, resp.status_code, detail)
            raise ExternalStoreError(f"SAP Service Layer {method} {path} failed", detail, resp.status_code)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    # ── marketing documents ──────────────────────────────────────────

    async def _patch_document(
        self, entity: str, document_type: str, doc_entry: int, payload: DocumentUpdatePayload
    ) -> SapDocumentResponse:
        body = payload.to_sap_patch()
        if body:
            await self._request("PATCH", f"{entity}({doc_entry})", json=body)
        current = await self._request("GET", f"{entity}({doc_entry})?$select=DocEntry,DocNum,U_OdooSoId")
        logger.info("SAP %s %d updated: %s", entity, doc_entry, ", ".join(body) or "no fields")
        return SapDocumentResponse(
            document_type=document_type,
            doc_entry=int(current.get("DocEntry", doc_entry)),
            doc_num=int(current.get("DocNum") or 0),
            u_odoo_so_id=current.get("U_OdooSoId") or payload.u_odoo_so_id,
            updated_fields=sorted(body),
        )

    async def update_sales_order(self, doc_entry: int, payload: SalesOrderPayload) -> SapDocumentResponse:
        return await self._patch_document("Orders", "sales_order", doc_entry, payload)

    async def update_invoice(self, doc_entry: int, payload: InvoicePayload) -> SapDocumentResponse:
        return await self._patch_document("Invoices", "invoice", doc_entry, payload)

    async def update_credit_memo(self, doc_entry: int, payload: CreditMemoPayload) -> SapDocumentResponse:
        return await self._patch_document("CreditNotes", "credit_memo", doc_entry, payload)

    async def update_goods_return(self, doc_entry: int, payload: GoodsReturnPayload) -> SapDocumentResponse:
        return await self._patch_document("Returns", "goods_return", doc_entry, payload)

    # ── incoming payments ────────────────────────────────────────────

    def _payment_body(self, payload: IncomingPaymentPayload) -> dict[str, Any]:
        body: dict[str, Any] = {
            "CardCode": payload.customer_code,
            "CounterReference": payload.external_payment_id,
            "PaymentInvoices": [
                {
                    "DocEntry": line.sap_invoice_doc_entry,
                    "SumApplied": line.applied_amount,
                    "InvoiceType": "it_Invoice",
                    **({"TotalDiscount": line.discount_amount} if line.discount_amount else {}),
                }
                for line in payload.lines
            ],
        }
        if payload.doc_date is not None:
            body["DocDate"] = payload.doc_date.isoformat()
        if payload.currency:
            body["DocCurrency"] = payload.currency
        if payload.journal_remarks:
            body["JournalRemarks"] = payload.journal_remarks
        if payload.u_odoo_so_id:
            body["U_OdooSoId"] = payload.u_odoo_so_id
        if payload.is_cash_payment:
            body["CashAccount"] = payload.bank_or_cash_account_code
            body["CashSum"] = payload.payment_total
        else:
            body["TransferAccount"] = payload.bank_or_cash_account_code
            body["TransferSum"] = payload.payment_total
        return body

    async def create_incoming_payment(self, payload: IncomingPaymentPayload) -> IncomingPaymentResponse:
        created = await self._request("POST", "IncomingPayments", json=self._payment_body(payload))
        logger.info(
            "SAP incoming payment created: DocEntry=%s DocNum=%s ref=%s",
            created.get("DocEntry"), created.get("DocNum"), payload.external_payment_id,
        )
        return IncomingPaymentResponse(
            doc_entry=int(created["DocEntry"]),
            doc_num=int(created["DocNum"]),
            external_payment_id=payload.external_payment_id,
            odoo_payment_id=payload.odoo_payment_id,
            total_applied=sum(line.applied_amount for line in payload.lines),
        )

    async def update_incoming_payment(self, doc_entry: int, payload: IncomingPaymentPayload) -> IncomingPaymentResponse:
        """Apply a corrected payment.

        SAP does not allow the invoice allocations of an incoming payment to be
        edited. When they differ the payment is cancelled and recreated, which
        gives it a new DocEntry and DocNum (``reallocated=True``).
        """
        current = await self._request("GET", f"IncomingPayments({doc_entry})")
        requested = {(line.sap_invoice_doc_entry, round(line.applied_amount, 2)) for line in payload.lines}

        if _allocations(current.get("PaymentInvoices") or []) == requested:
            body: dict[str, Any] = {"CounterReference": payload.external_payment_id}
            if payload.journal_remarks:
                body["JournalRemarks"] = payload.journal_remarks
            if payload.u_odoo_so_id:
                body["U_OdooSoId"] = payload.u_odoo_so_id
            await self._request("PATCH", f"IncomingPayments({doc_entry})", json=body)
            logger.info("SAP incoming payment %d updated in place", doc_entry)
            return IncomingPaymentResponse(
                doc_entry=doc_entry,
                doc_num=int(current.get("DocNum") or 0),
                external_payment_id=payload.external_payment_id,
                odoo_payment_id=payload.odoo_payment_id,
                total_applied=sum(line.applied_amount for line in payload.lines),
            )

        logger.info("SAP incoming payment %d allocations changed, cancelling and recreating", doc_entry)
        await self._request("POST", f"IncomingPayments({doc_entry})/Cancel")
        recreated = await self.create_incoming_payment(payload)
        recreated.reallocated = True
        recreated.cancelled_doc_entry = doc_entry
        return recreated

    async def close(self) -> None:
        await self._client.aclose()
