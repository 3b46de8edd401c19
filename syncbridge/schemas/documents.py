"""Pydantic models for the documents exchanged with SAP and Odoo."""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from syncbridge.errors import ResyncValidationError


# ── COGS journal entries (SAP invoice cost → Odoo account.move) ─────────


class CogsJournalLine(BaseModel):
    """Cost data for one SAP invoice line (INV1).

    Provide either ``unit_cost`` (line cost = unit cost × quantity) or
    ``stock_sum`` (line cost as-is).
    """

    model_config = ConfigDict(extra="ignore")

    line_num: Optional[int] = None
    item_code: str
    quantity: float = Field(gt=0)
    unit_cost: Optional[float] = None
    stock_sum: Optional[float] = None


class CogsJournalRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    doc_entry: int
    doc_num: Optional[int] = None
    doc_date: Optional[date] = None
    lines: list[CogsJournalLine] = Field(min_length=1)


class CogsJournalResponse(BaseModel):
    sap_doc_entry: int
    odoo_invoice_id: int
    odoo_invoice_name: str = ""
    cogs_journal_entry_id: int
    action: str  # created | updated | skipped
    hash: str
    debit_line_count: int = 0
    total_cogs: float = 0.0


# ── Delivery confirmation (SAP delivery note → Odoo stock.picking) ──────


class DeliveryUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    u_odoo_so_id: str = ""
    # Deprecated alias, used only when u_odoo_so_id is empty.
    odoo_so_ref: Optional[str] = None
    sap_delivery_no: str
    delivery_date: Optional[date] = None
    status: str = "delivered"

    @property
    def resolved_so_id(self) -> str:
        return self.u_odoo_so_id or (self.odoo_so_ref or "")


class DeliveryUpdateResponse(BaseModel):
    u_odoo_so_id: str
    picking_id: int
    picking_name: str = ""
    state: str = ""
    sap_delivery_no: str


class DeliveryMonitorPayload(BaseModel):
    """Status line posted to the Odoo integration control center."""

    queue_id: int
    odoo_so_id: str
    sap_delivery_no: str
    state: str
    retry_count: int = 0
    error_message: Optional[str] = None


# ── Resync sub-payloads (Odoo → SAP document corrections) ───────────────


class DocumentUpdatePayload(BaseModel):
    """Fields shared by every SAP marketing document resync."""

    model_config = ConfigDict(extra="ignore")

    u_odoo_so_id: str = ""
    comments: Optional[str] = None
    num_at_card: Optional[str] = None
    # Additional user-defined fields, keyed by their SAP name (U_...).
    udfs: dict[str, Any] = Field(default_factory=dict)

    def to_sap_patch(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.u_odoo_so_id:
            body["U_OdooSoId"] = self.u_odoo_so_id
        if self.comments is not None:
            body["Comments"] = self.comments
        if self.num_at_card is not None:
            body["NumAtCard"] = self.num_at_card
        for key, value in self.udfs.items():
            if not key.startswith("U_"):
                raise ResyncValidationError(f"user-defined field '{key}' must start with 'U_'")
            body[key] = value
        return body


class SalesOrderPayload(DocumentUpdatePayload):
    doc_due_date: Optional[date] = None

    def to_sap_patch(self) -> dict[str, Any]:
        body = super().to_sap_patch()
        if self.doc_due_date is not None:
            body["DocDueDate"] = self.doc_due_date.isoformat()
        return body


class InvoicePayload(DocumentUpdatePayload):
    external_invoice_id: Optional[str] = None
    odoo_invoice_id: Optional[int] = None

    def to_sap_patch(self) -> dict[str, Any]:
        body = super().to_sap_patch()
        if self.external_invoice_id:
            body["U_OdooInvoiceRef"] = self.external_invoice_id
        return body


class CreditMemoPayload(DocumentUpdatePayload):
    external_credit_memo_id: Optional[str] = None

    def to_sap_patch(self) -> dict[str, Any]:
        body = super().to_sap_patch()
        if self.external_credit_memo_id:
            body["U_OdooCreditMemoRef"] = self.external_credit_memo_id
        return body


class GoodsReturnPayload(DocumentUpdatePayload):
    external_return_id: Optional[str] = None

    def to_sap_patch(self) -> dict[str, Any]:
        body = super().to_sap_patch()
        if self.external_return_id:
            body["U_OdooReturnRef"] = self.external_return_id
        return body


class PaymentAllocation(BaseModel):
    """Allocation of an incoming payment to one SAP AR invoice (RCT2)."""

    model_config = ConfigDict(extra="ignore")

    sap_invoice_doc_entry: int
    applied_amount: float
    discount_amount: Optional[float] = None
    odoo_invoice_id: Optional[int] = None


class IncomingPaymentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    external_payment_id: str
    customer_code: str
    u_odoo_so_id: str = ""
    doc_date: Optional[date] = None
    currency: Optional[str] = None
    payment_total: float = 0.0
    is_cash_payment: bool = False
    bank_or_cash_account_code: Optional[str] = None
    journal_remarks: Optional[str] = None
    odoo_payment_id: Optional[int] = None
    lines: list[PaymentAllocation] = Field(default_factory=list)


# ── SAP responses ───────────────────────────────────────────────────────


class SapDocumentResponse(BaseModel):
    document_type: str
    doc_entry: int
    doc_num: int
    u_odoo_so_id: str = ""
    updated_fields: list[str] = Field(default_factory=list)


class IncomingPaymentResponse(BaseModel):
    doc_entry: int
    doc_num: int
    external_payment_id: Optional[str] = None
    odoo_payment_id: Optional[int] = None
    total_applied: float = 0.0
    # Set when the allocations changed and SAP required cancel + recreate.
    reallocated: bool = False
    cancelled_doc_entry: Optional[int] = None
    # None when no write-back to Odoo was attempted.
    odoo_write_back_success: Optional[bool] = None
    odoo_write_back_error: Optional[str] = None


class IncomingPaymentWriteBack(BaseModel):
    odoo_payment_id: int
    sap_doc_entry: int
    sap_doc_num: int
