"""
Unit tests for po_lifecycle/services/ledger_service.py
"""

import uuid
from unittest.mock import MagicMock

import pytest

from po_lifecycle.errors import OverReceiptError, ValidationError
from po_lifecycle.models.purchase_order import PurchaseOrder, PoLineItem
from po_lifecycle.services import ledger_service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _po(total_cents: int = 0, received_cents: int = 0) -> PurchaseOrder:
    return PurchaseOrder(
        id=uuid.uuid4(),
        po_number="PO-000001",
        vendor_id="vendor-1",
        currency="USD",
        total_cents=total_cents,
        received_cents=received_cents,
    )


def _line(ordered: int, price: int, received: int = 0, number: int = 1) -> PoLineItem:
    return PoLineItem(
        id=uuid.uuid4(),
        line_number=number,
        product_id=f"prod-{number}",
        ordered_quantity=ordered,
        unit_price_cents=price,
        received_quantity=received,
    )


# ---------------------------------------------------------------------------
# add_line
# ---------------------------------------------------------------------------


def test_add_line_accumulates_po_total():
    session = MagicMock()
    po = _po()

    ledger_service.add_line(session, po, 1, "prod-1", quantity=10, unit_price_cents=500)
    ledger_service.add_line(session, po, 2, "prod-2", quantity=4, unit_price_cents=1000)

    assert po.total_cents == 9000
    assert session.add.call_count == 2


@pytest.mark.parametrize("qty", [0, -3])
def test_add_line_rejects_non_positive_quantity(qty):
    session = MagicMock()

    with pytest.raises(ValidationError):
        ledger_service.add_line(session, _po(), 1, "prod-1", quantity=qty, unit_price_cents=100)

    session.add.assert_not_called()


def test_add_line_rejects_negative_price():
    with pytest.raises(ValidationError):
        ledger_service.add_line(MagicMock(), _po(), 1, "prod-1", quantity=1, unit_price_cents=-1)


# ---------------------------------------------------------------------------
# receipts
# ---------------------------------------------------------------------------


def test_post_receipt_advances_line_and_po_value():
    po = _po(total_cents=10000)
    line = _line(ordered=20, price=500)

    ledger_service.post_receipt(po, line, 12)

    assert line.received_quantity == 12
    assert ledger_service.remaining(line) == 8
    assert po.received_cents == 6000


def test_post_receipt_overshoot_raises_and_leaves_line_unchanged():
    po = _po(total_cents=10000)
    line = _line(ordered=20, price=500, received=12)

    with pytest.raises(OverReceiptError) as exc_info:
        ledger_service.post_receipt(po, line, 9)

    assert exc_info.value.details["remaining"] == 8
    assert line.received_quantity == 12
    assert po.received_cents == 0


def test_post_receipt_exactly_remaining_is_allowed():
    po = _po(total_cents=1000)
    line = _line(ordered=2, price=500, received=1)

    ledger_service.post_receipt(po, line, 1)

    assert ledger_service.remaining(line) == 0


def test_check_receipt_rejects_zero():
    with pytest.raises(ValidationError):
        ledger_service.check_receipt(_line(ordered=5, price=1), 0)


# ---------------------------------------------------------------------------
# summaries
# ---------------------------------------------------------------------------


def test_recompute_po_values_matches_line_sums():
    po = _po(total_cents=1, received_cents=1)
    lines = [_line(10, 500, received=10, number=1), _line(4, 1000, received=1, number=2)]

    ledger_service.recompute_po_values(po, lines)

    assert po.total_cents == 9000
    assert po.received_cents == 10 * 500 + 1 * 1000
    assert po.remaining_balance_cents == 3000


def test_ledger_summary_reports_remaining_quantities():
    po = _po()
    lines = [_line(10, 500, received=10, number=1), _line(4, 1000, received=1, number=2)]
    ledger_service.recompute_po_values(po, lines)

    summary = ledger_service.ledger_summary(po, lines)

    assert summary.total_cents == 9000
    assert summary.received_cents == 6000
    assert summary.remaining_balance_cents == 3000
    assert summary.ordered_quantity == 14
    assert summary.remaining_quantity == 3
    assert [ls.remaining_quantity for ls in summary.lines] == [0, 3]
