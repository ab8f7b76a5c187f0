from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from po_lifecycle.models.receipt import GoodsReceivedNote, GrnLineItem
from po_lifecycle.schemas.common import iso
from po_lifecycle.services.receiving_service import GrnLineRequest


class GrnLineItemCreate(BaseModel):
    po_line_item_id: Optional[str] = None
    product_id: Optional[str] = Field(None, max_length=64)
    variant_id: Optional[str] = Field(None, max_length=64)
    quantity_received: int = Field(..., ge=1)
    condition: str = Field("GOOD", pattern="^(GOOD|DAMAGED|PARTIAL)$")
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _line_reference(self):
        if not self.po_line_item_id and not self.product_id:
            raise ValueError("po_line_item_id or product_id is required")
        return self

    def to_request(self) -> GrnLineRequest:
        return GrnLineRequest(
            quantity=self.quantity_received,
            po_line_item_id=self.po_line_item_id,
            product_id=self.product_id,
            variant_id=self.variant_id,
            condition=self.condition,
            notes=self.notes,
        )


class GrnCreate(BaseModel):
    po_id: str
    warehouse_id: Optional[str] = Field(None, max_length=64)
    received_date: Optional[date] = None
    notes: Optional[str] = None
    line_items: List[GrnLineItemCreate] = Field(..., min_length=1)


class GrnLineItemResponse(BaseModel):
    id: str
    po_line_item_id: str
    product_id: str
    variant_id: Optional[str] = None
    quantity_received: int
    unit_price_cents: int
    line_total_cents: int
    condition: str
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class GrnResponse(BaseModel):
    id: str
    grn_number: str
    po_id: str
    warehouse_id: str
    received_by: Optional[str] = None
    received_date: str
    status: str
    total_received_cents: int
    notes: Optional[str] = None
    line_items: List[GrnLineItemResponse] = []
    created_at: str
    po_status: Optional[str] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(
        cls,
        grn: GoodsReceivedNote,
        line_items: list[GrnLineItem],
        po_status: Optional[str] = None,
    ) -> "GrnResponse":
        return cls(
            id=str(grn.id),
            grn_number=grn.grn_number,
            po_id=str(grn.po_id),
            warehouse_id=grn.warehouse_id,
            received_by=grn.received_by,
            received_date=iso(grn.received_date) or "",
            status=grn.status,
            total_received_cents=grn.total_received_cents,
            notes=grn.notes,
            line_items=[
                GrnLineItemResponse(
                    id=str(li.id),
                    po_line_item_id=str(li.po_line_item_id),
                    product_id=li.product_id,
                    variant_id=li.variant_id,
                    quantity_received=li.quantity_received,
                    unit_price_cents=li.unit_price_cents,
                    line_total_cents=li.line_total_cents,
                    condition=li.condition,
                    notes=li.notes,
                )
                for li in line_items
            ],
            created_at=iso(grn.created_at) or "",
            po_status=po_status,
        )
