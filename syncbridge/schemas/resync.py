"""Resync request and the typed commands it resolves to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from syncbridge.errors import ResyncValidationError
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

SUPPORTED_DOCUMENT_TYPES = ("sales_order", "invoice", "incoming_payment", "credit_memo", "goods_return")


@dataclass(frozen=True)
class SalesOrderResync:
    doc_entry: int
    payload: SalesOrderPayload


@dataclass(frozen=True)
class InvoiceResync:
    doc_entry: int
    payload: InvoicePayload


@dataclass(frozen=True)
class IncomingPaymentResync:
    doc_entry: int
    payload: IncomingPaymentPayload


@dataclass(frozen=True)
class CreditMemoResync:
    doc_entry: int
    payload: CreditMemoPayload


@dataclass(frozen=True)
class GoodsReturnResync:
    doc_entry: int
    payload: GoodsReturnPayload


ResyncCommand = Union[SalesOrderResync, InvoiceResync, IncomingPaymentResync, CreditMemoResync, GoodsReturnResync]


def _require(payload, document_type: str):
    if payload is None:
        raise ResyncValidationError(f"{document_type} payload is required")
    if isinstance(payload, DocumentUpdatePayload):
        # Surfaces a bad user-defined field before SAP is contacted.
        payload.to_sap_patch()
    return payload


class ResyncRequest(BaseModel):
    """Wire format: a document type, the SAP DocEntry and the matching sub-payload."""

    model_config = ConfigDict(extra="ignore")

    document_type: str
    doc_entry: int
    sales_order: Optional[SalesOrderPayload] = None
    invoice: Optional[InvoicePayload] = None
    incoming_payment: Optional[IncomingPaymentPayload] = None
    credit_memo: Optional[CreditMemoPayload] = None
    goods_return: Optional[GoodsReturnPayload] = None

    @property
    def normalized_type(self) -> str:
        return self.document_type.strip().lower()

    @property
    def correlation_ref(self) -> str:
        """Odoo sale order reference of whichever sub-payload was sent, for the ledger."""
        for payload in (self.sales_order, self.invoice, self.incoming_payment, self.credit_memo, self.goods_return):
            if payload is not None and payload.u_odoo_so_id:
                return payload.u_odoo_so_id
        return ""

    def to_command(self) -> ResyncCommand:
        match self.normalized_type:
            case "sales_order":
                return SalesOrderResync(self.doc_entry, _require(self.sales_order, "sales_order"))
            case "invoice":
                return InvoiceResync(self.doc_entry, _require(self.invoice, "invoice"))
            case "incoming_payment":
                return IncomingPaymentResync(self.doc_entry, _require(self.incoming_payment, "incoming_payment"))
            case "credit_memo":
                return CreditMemoResync(self.doc_entry, _require(self.credit_memo, "credit_memo"))
            case "goods_return":
                return GoodsReturnResync(self.doc_entry, _require(self.goods_return, "goods_return"))
            case _:
                raise ResyncValidationError(
                    f"Unsupported document type: '{self.document_type}'. "
                    f"Supported types: {', '.join(SUPPORTED_DOCUMENT_TYPES)}"
                )


class ResyncResult(BaseModel):
    document_type: str
    doc_entry: int
    ledger_id: Optional[int] = None
    document: Union[IncomingPaymentResponse, SapDocumentResponse]
