"""
Receiving reconciler — posts goods-received notes against a PO's ledger.

A GRN is applied all-or-nothing: every requested line is matched and checked
against its remaining quantity before any line is touched. A GRN that would
overshoot any line is rejected as a whole; the caller posts a new, corrected
GRN instead. Posted GRNs are never edited.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from po_lifecycle.errors import ValidationError
from po_lifecycle.models.number_sequence import GRN_PREFIX
from po_lifecycle.models.purchase_order import PurchaseOrder, PoLineItem
from po_lifecycle.models.receipt import GoodsReceivedNote, GrnLineItem
from po_lifecycle.services import ledger_service
from po_lifecycle.services.numbering import next_number
from po_lifecycle.services.state_machine import ReceivingProgress

logger = structlog.get_logger()

CONDITIONS = frozenset({"GOOD", "DAMAGED", "PARTIAL"})


class GrnStatus:
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"


@dataclass
class GrnLineRequest:
    quantity: int
    po_line_item_id: Optional[str] = None
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    condition: str = "GOOD"
    notes: Optional[str] = None


def match_line(lines: list[PoLineItem], req: GrnLineRequest) -> PoLineItem:
    """Find the PO line a GRN line refers to, by line id or by product/variant."""
    if req.po_line_item_id:
        for li in lines:
            if str(li.id) == str(req.po_line_item_id):
                return li
        raise ValidationError(
            f"PO line item '{req.po_line_item_id}' not found on this PO",
            po_line_item_id=str(req.po_line_item_id),
        )

    if not req.product_id:
        raise ValidationError(
            "Each GRN line needs a po_line_item_id or a product_id",
            field="product_id",
        )

    variant = str(req.variant_id) if req.variant_id is not None else None
    candidates = [
        li for li in lines
        if li.product_id == str(req.product_id) and li.variant_id == variant
    ]
    if not candidates:
        raise ValidationError(
            f"Product '{req.product_id}' (variant {variant}) is not on this PO",
            product_id=str(req.product_id),
            variant_id=variant,
        )
    if len(candidates) > 1:
        raise ValidationError(
            f"Product '{req.product_id}' appears on several PO lines; "
            "reference the line by po_line_item_id",
            product_id=str(req.product_id),
        )
    return candidates[0]


def plan_receipts(
    lines: list[PoLineItem], requests: list[GrnLineRequest]
) -> list[tuple[PoLineItem, GrnLineRequest]]:
    """Validate a whole GRN against the ledger without mutating anything."""
    if not requests:
        raise ValidationError("A GRN needs at least one line", field="line_items")

    plan = []
    totals: dict[str, int] = {}
    for req in requests:
        line = match_line(lines, req)
        if req.condition not in CONDITIONS:
            raise ValidationError(
                f"Condition must be one of {sorted(CONDITIONS)}",
                field="condition",
            )
        if req.quantity is None or req.quantity <= 0:
            raise ValidationError(
                f"Received quantity must be greater than zero (got {req.quantity})",
                field="quantity",
                po_line_item_id=str(line.id),
            )
        totals[str(line.id)] = totals.get(str(line.id), 0) + req.quantity
        plan.append((line, req))

    by_id = {str(li.id): li for li in lines}
    for line_id, qty in totals.items():
        ledger_service.check_receipt(by_id[line_id], qty)
    return plan


def recompute_po_status(lines: list[PoLineItem]) -> Optional[str]:
    """Receiving progress of the PO as a whole, or None if nothing was received."""
    if lines and all(ledger_service.remaining(li) == 0 for li in lines):
        return ReceivingProgress.FULL
    if any((li.received_quantity or 0) > 0 for li in lines):
        return ReceivingProgress.PARTIAL
    return None


async def post_grn(
    session: AsyncSession,
    po: PurchaseOrder,
    lines: list[PoLineItem],
    requests: list[GrnLineRequest],
    warehouse_id: Optional[str] = None,
    received_by: Optional[str] = None,
    received_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> tuple[GoodsReceivedNote, list[GrnLineItem]]:
    plan = plan_receipts(lines, requests)

    warehouse = warehouse_id or po.warehouse_id
    if not warehouse:
        raise ValidationError(
            "warehouse_id is required when the PO has no default warehouse",
            field="warehouse_id",
        )

    remaining_before = {str(li.id): ledger_service.remaining(li) for li in lines}
    requested: dict[str, int] = {}
    for line, req in plan:
        requested[str(line.id)] = requested.get(str(line.id), 0) + req.quantity
    fully_consumed = all(
        qty == remaining_before[line_id] for line_id, qty in requested.items()
    )

    grn = GoodsReceivedNote(
        grn_number=await next_number(session, GRN_PREFIX),
        po_id=po.id,
        warehouse_id=str(warehouse),
        received_by=received_by,
        received_date=received_date or date.today(),
        status=GrnStatus.COMPLETED if fully_consumed else GrnStatus.PARTIAL,
        total_received_cents=0,
        notes=notes,
    )
    session.add(grn)
    await session.flush()

    grn_lines = []
    for line, req in plan:
        ledger_service.post_receipt(po, line, req.quantity)
        line_total = req.quantity * line.unit_price_cents
        grn.total_received_cents += line_total
        grn_line = GrnLineItem(
            grn_id=grn.id,
            po_line_item_id=line.id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            quantity_received=req.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line_total,
            condition=req.condition,
            notes=req.notes,
        )
        session.add(grn_line)
        grn_lines.append(grn_line)

    ledger_service.recompute_po_values(po, lines)
    await session.flush()

    logger.info(
        "grn_posted",
        grn_id=str(grn.id),
        grn_number=grn.grn_number,
        po_id=str(po.id),
        status=grn.status,
        total_received_cents=grn.total_received_cents,
    )
    return grn, grn_lines


async def get_grn_lines(session: AsyncSession, grn_id) -> list[GrnLineItem]:
    result = await session.execute(
        select(GrnLineItem).where(GrnLineItem.grn_id == grn_id)
    )
    return list(result.scalars().all())
