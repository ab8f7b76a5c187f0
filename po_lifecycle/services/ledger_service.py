"""
Line item ledger — ordered/received quantities and the value fields derived
from them.

Functions here only touch the objects they are given; the caller owns the
session and the transaction.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from po_lifecycle.errors import OverReceiptError, ValidationError
from po_lifecycle.models.purchase_order import PurchaseOrder, PoLineItem

logger = structlog.get_logger()


@dataclass
class LineSummary:
    line_item_id: str
    line_number: int
    product_id: str
    variant_id: Optional[str]
    ordered_quantity: int
    received_quantity: int
    remaining_quantity: int
    unit_price_cents: int
    line_total_cents: int
    received_value_cents: int


@dataclass
class LedgerSummary:
    po_id: str
    currency: str
    total_cents: int
    received_cents: int
    remaining_balance_cents: int
    ordered_quantity: int
    received_quantity: int
    remaining_quantity: int
    lines: list[LineSummary] = field(default_factory=list)


def validate_line_input(quantity: int, unit_price_cents: int) -> None:
    if quantity is None or quantity <= 0:
        raise ValidationError(
            f"Ordered quantity must be greater than zero (got {quantity})",
            field="ordered_quantity",
        )
    if unit_price_cents is None or unit_price_cents < 0:
        raise ValidationError(
            f"Unit price cannot be negative (got {unit_price_cents})",
            field="unit_price_cents",
        )


def add_line(
    session: AsyncSession,
    po: PurchaseOrder,
    line_number: int,
    product_id: str,
    quantity: int,
    unit_price_cents: int,
    variant_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> PoLineItem:
    """Create a PO line with nothing received and add its value to the PO total."""
    validate_line_input(quantity, unit_price_cents)
    if not product_id:
        raise ValidationError("product_id is required", field="product_id")

    line = PoLineItem(
        po_id=po.id,
        line_number=line_number,
        product_id=str(product_id),
        variant_id=str(variant_id) if variant_id is not None else None,
        ordered_quantity=quantity,
        unit_price_cents=unit_price_cents,
        received_quantity=0,
        notes=notes,
    )
    session.add(line)
    po.total_cents = (po.total_cents or 0) + line.line_total_cents
    return line


def remaining(line: PoLineItem) -> int:
    return line.ordered_quantity - (line.received_quantity or 0)


def check_receipt(line: PoLineItem, qty: int) -> None:
    """Raise unless qty can be posted against line without overshooting it."""
    if qty is None or qty <= 0:
        raise ValidationError(
            f"Received quantity must be greater than zero (got {qty})",
            field="quantity",
            po_line_item_id=str(line.id),
        )
    left = remaining(line)
    if qty > left:
        raise OverReceiptError(
            f"Quantity received ({qty}) exceeds remaining ({left}) "
            f"for line {line.line_number} ({line.product_id})",
            po_line_item_id=str(line.id),
            requested=qty,
            remaining=left,
        )


def post_receipt(po: PurchaseOrder, line: PoLineItem, qty: int) -> None:
    """Advance line.received_quantity by qty and the PO's received value with it."""
    check_receipt(line, qty)
    line.received_quantity = (line.received_quantity or 0) + qty
    po.received_cents = (po.received_cents or 0) + qty * line.unit_price_cents


def recompute_po_values(po: PurchaseOrder, lines: list[PoLineItem]) -> None:
    po.total_cents = sum(li.line_total_cents for li in lines)
    po.received_cents = sum(li.received_value_cents for li in lines)


def ledger_summary(po: PurchaseOrder, lines: list[PoLineItem]) -> LedgerSummary:
    line_summaries = [
        LineSummary(
            line_item_id=str(li.id),
            line_number=li.line_number,
            product_id=li.product_id,
            variant_id=li.variant_id,
            ordered_quantity=li.ordered_quantity,
            received_quantity=li.received_quantity or 0,
            remaining_quantity=remaining(li),
            unit_price_cents=li.unit_price_cents,
            line_total_cents=li.line_total_cents,
            received_value_cents=li.received_value_cents,
        )
        for li in lines
    ]
    ordered = sum(ls.ordered_quantity for ls in line_summaries)
    received = sum(ls.received_quantity for ls in line_summaries)
    return LedgerSummary(
        po_id=str(po.id),
        currency=po.currency,
        total_cents=po.total_cents,
        received_cents=po.received_cents,
        remaining_balance_cents=po.remaining_balance_cents,
        ordered_quantity=ordered,
        received_quantity=received,
        remaining_quantity=ordered - received,
        lines=line_summaries,
    )
