from typing import List, Optional
from pydantic import BaseModel, Field

from po_lifecycle.schemas.purchase_order import PoLineItemResponse


class VendorResponseRequest(BaseModel):
    token: str = Field(..., min_length=1)
    is_accepted: bool
    notes: Optional[str] = Field(None, max_length=2000)
    po_id: Optional[str] = None


class VendorPoView(BaseModel):
    """What an unauthenticated vendor may see: no internal approval detail."""

    po_id: str
    po_number: str
    status: str
    currency: str
    total_cents: int
    expected_delivery_date: Optional[str] = None
    warehouse_id: Optional[str] = None
    notes: Optional[str] = None
    line_items: List[PoLineItemResponse] = []


class VendorResponseResult(BaseModel):
    po_id: str
    po_number: str
    status: str
    is_vendor_accepted: bool
