from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field

from po_lifecycle.models.purchase_order import PurchaseOrder, PoLineItem
from po_lifecycle.schemas.common import iso
from po_lifecycle.services.lifecycle_service import LineItemInput


class PoLineItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    variant_id: Optional[str] = Field(None, max_length=64)
    quantity: int = Field(..., ge=1)
    unit_price_cents: int = Field(..., ge=0)
    notes: Optional[str] = None

    def to_input(self) -> LineItemInput:
        return LineItemInput(
            product_id=self.product_id,
            variant_id=self.variant_id,
            quantity=self.quantity,
            unit_price_cents=self.unit_price_cents,
            notes=self.notes,
        )


class PoLineItemResponse(BaseModel):
    id: str
    line_number: int
    product_id: str
    variant_id: Optional[str] = None
    ordered_quantity: int
    unit_price_cents: int
    received_quantity: int = 0
    pending_quantity: int
    line_total_cents: int
    notes: Optional[str] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, li: PoLineItem) -> "PoLineItemResponse":
        received = li.received_quantity or 0
        return cls(
            id=str(li.id),
            line_number=li.line_number,
            product_id=li.product_id,
            variant_id=li.variant_id,
            ordered_quantity=li.ordered_quantity,
            unit_price_cents=li.unit_price_cents,
            received_quantity=received,
            pending_quantity=li.ordered_quantity - received,
            line_total_cents=li.line_total_cents,
            notes=li.notes,
        )


class PurchaseOrderCreate(BaseModel):
    vendor_id: str = Field(..., min_length=1, max_length=64)
    vendor_email: Optional[str] = Field(None, max_length=255)
    warehouse_id: Optional[str] = Field(None, max_length=64)
    expected_delivery_date: Optional[date] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    notes: Optional[str] = None
    line_items: List[PoLineItemCreate] = Field(default_factory=list)


class PurchaseOrderUpdate(BaseModel):
    vendor_email: Optional[str] = Field(None, max_length=255)
    warehouse_id: Optional[str] = Field(None, max_length=64)
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    line_items: Optional[List[PoLineItemCreate]] = None


class SubmitRequest(BaseModel):
    approver_ids: List[str] = Field(default_factory=list)


class PaymentStatusUpdate(BaseModel):
    payment_status: str = Field(..., pattern="^(PENDING|PARTIAL|PAID)$")


class PurchaseOrderResponse(BaseModel):
    id: str
    po_number: str
    vendor_id: str
    vendor_email: Optional[str] = None
    warehouse_id: Optional[str] = None
    status: str
    total_cents: int
    received_cents: int
    remaining_balance_cents: int
    currency: str
    payment_status: str
    is_vendor_accepted: Optional[bool] = None
    vendor_notes: Optional[str] = None
    expected_delivery_date: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    submitted_at: Optional[str] = None
    approved_at: Optional[str] = None
    dispatched_at: Optional[str] = None
    vendor_responded_at: Optional[str] = None
    line_items: List[PoLineItemResponse] = []
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, po: PurchaseOrder, line_items: list[PoLineItem]) -> "PurchaseOrderResponse":
        return cls(
            id=str(po.id),
            po_number=po.po_number,
            vendor_id=po.vendor_id,
            vendor_email=po.vendor_email,
            warehouse_id=po.warehouse_id,
            status=po.status,
            total_cents=po.total_cents,
            received_cents=po.received_cents,
            remaining_balance_cents=po.remaining_balance_cents,
            currency=po.currency,
            payment_status=po.payment_status,
            is_vendor_accepted=po.is_vendor_accepted,
            vendor_notes=po.vendor_notes,
            expected_delivery_date=iso(po.expected_delivery_date),
            notes=po.notes,
            created_by=po.created_by,
            submitted_at=iso(po.submitted_at),
            approved_at=iso(po.approved_at),
            dispatched_at=iso(po.dispatched_at),
            vendor_responded_at=iso(po.vendor_responded_at),
            line_items=[PoLineItemResponse.from_model(li) for li in line_items],
            created_at=iso(po.created_at) or "",
            updated_at=iso(po.updated_at) or "",
        )


class DispatchResponse(BaseModel):
    purchase_order: PurchaseOrderResponse
    accept_url: str
    token_expires_at: str


class PoStatusResponse(BaseModel):
    po_id: str
    po_number: str
    status: str
    is_terminal: bool
    approval_status: Optional[str] = None
    approvals: dict
    is_vendor_accepted: Optional[bool] = None
    receiving: Optional[str] = None
    payment_status: str
    total_cents: int
    received_cents: int
    remaining_balance_cents: int


class LedgerLineResponse(BaseModel):
    line_item_id: str
    line_number: int
    product_id: str
    variant_id: Optional[str] = None
    ordered_quantity: int
    received_quantity: int
    remaining_quantity: int
    unit_price_cents: int
    line_total_cents: int
    received_value_cents: int

    model_config = {"from_attributes": True}


class LedgerSummaryResponse(BaseModel):
    po_id: str
    currency: str
    total_cents: int
    received_cents: int
    remaining_balance_cents: int
    ordered_quantity: int
    received_quantity: int
    remaining_quantity: int
    lines: List[LedgerLineResponse] = []

    model_config = {"from_attributes": True}
