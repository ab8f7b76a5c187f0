"""
Unit tests for po_lifecycle/services/receiving_service.py

match_line / plan_receipts / recompute_po_status are pure; post_grn atomicity
is exercised end to end in test_lifecycle_engine.py.
"""

import uuid

import pytest

from po_lifecycle.errors import OverReceiptError, ValidationError
from po_lifecycle.models.purchase_order import PoLineItem
from po_lifecycle.services.receiving_service import (
    GrnLineRequest,
    match_line,
    plan_receipts,
    recompute_po_status,
)
from po_lifecycle.services.state_machine import ReceivingProgress


def _line(number: int, ordered: int, received: int = 0, product_id=None, variant_id=None) -> PoLineItem:
    return PoLineItem(
        id=uuid.uuid4(),
        line_number=number,
        product_id=product_id or f"prod-{number}",
        variant_id=variant_id,
        ordered_quantity=ordered,
        unit_price_cents=100,
        received_quantity=received,
    )


# ---------------------------------------------------------------------------
# match_line
# ---------------------------------------------------------------------------


def test_match_by_line_id():
    lines = [_line(1, 5), _line(2, 5)]
    req = GrnLineRequest(quantity=1, po_line_item_id=str(lines[1].id))
    assert match_line(lines, req) is lines[1]


def test_match_by_product_and_variant():
    lines = [_line(1, 5, product_id="sku", variant_id="red"), _line(2, 5, product_id="sku", variant_id="blue")]
    req = GrnLineRequest(quantity=1, product_id="sku", variant_id="blue")
    assert match_line(lines, req) is lines[1]


def test_match_unknown_product_raises():
    with pytest.raises(ValidationError):
        match_line([_line(1, 5)], GrnLineRequest(quantity=1, product_id="nope"))


def test_match_ambiguous_product_requires_line_id():
    lines = [_line(1, 5, product_id="sku"), _line(2, 5, product_id="sku")]
    with pytest.raises(ValidationError):
        match_line(lines, GrnLineRequest(quantity=1, product_id="sku"))


# ---------------------------------------------------------------------------
# plan_receipts
# ---------------------------------------------------------------------------


def test_plan_rejects_whole_grn_when_any_line_overshoots():
    lines = [_line(1, 10), _line(2, 4)]
    requests = [
        GrnLineRequest(quantity=10, po_line_item_id=str(lines[0].id)),
        GrnLineRequest(quantity=5, po_line_item_id=str(lines[1].id)),
    ]

    with pytest.raises(OverReceiptError):
        plan_receipts(lines, requests)

    assert [li.received_quantity for li in lines] == [0, 0]


def test_plan_sums_repeated_lines_before_checking():
    lines = [_line(1, 10, received=6)]
    requests = [
        GrnLineRequest(quantity=3, po_line_item_id=str(lines[0].id)),
        GrnLineRequest(quantity=2, po_line_item_id=str(lines[0].id), condition="DAMAGED"),
    ]

    with pytest.raises(OverReceiptError):
        plan_receipts(lines, requests)


def test_plan_rejects_unknown_condition():
    lines = [_line(1, 10)]
    with pytest.raises(ValidationError):
        plan_receipts(lines, [GrnLineRequest(quantity=1, po_line_item_id=str(lines[0].id), condition="WET")])


def test_plan_rejects_empty_grn():
    with pytest.raises(ValidationError):
        plan_receipts([_line(1, 10)], [])


# ---------------------------------------------------------------------------
# recompute_po_status
# ---------------------------------------------------------------------------


def test_recompute_nothing_received():
    assert recompute_po_status([_line(1, 5), _line(2, 5)]) is None


def test_recompute_partial():
    assert recompute_po_status([_line(1, 5, received=5), _line(2, 5)]) == ReceivingProgress.PARTIAL


def test_recompute_full():
    assert recompute_po_status([_line(1, 5, received=5), _line(2, 3, received=3)]) == ReceivingProgress.FULL
