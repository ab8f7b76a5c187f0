"""
Lifecycle tests through LifecycleEngine against a real SQLite database.

Covers the end-to-end behaviours: value round trip, partial receipt and
over-receipt, fail-fast rejection, single-use vendor tokens, illegal
transitions leaving the PO untouched, and per-PO serialization.
"""

import asyncio

import pytest
from sqlalchemy import func, select

from po_lifecycle.errors import (
    AlreadyResolvedError,
    ConfigurationError,
    IllegalTransitionError,
    NotAuthorizedError,
    NotFoundError,
    OverReceiptError,
    TokenInvalidError,
    ValidationError,
)
from po_lifecycle.models.receipt import GoodsReceivedNote
from po_lifecycle.services import lifecycle_service
from po_lifecycle.services.lifecycle_service import LineItemInput
from po_lifecycle.services.notification_service import EventType
from po_lifecycle.services.receiving_service import GrnLineRequest, GrnStatus
from po_lifecycle.services.state_machine import POStatus


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_po_totals_lines(lifecycle_engine, driver):
    po_id = await driver.draft()

    detail = await lifecycle_engine.get_po(po_id)

    assert detail.po.status == POStatus.DRAFT
    assert detail.po.po_number == "PO-000001"
    assert detail.po.total_cents == 9000
    assert [li.line_number for li in detail.lines] == [1, 2]


@pytest.mark.asyncio
async def test_create_po_rejects_non_positive_quantity_without_writing(lifecycle_engine):
    with pytest.raises(ValidationError):
        await lifecycle_engine.create_po(
            vendor_id="vendor-1",
            lines=[
                LineItemInput(product_id="ok", quantity=1, unit_price_cents=100),
                LineItemInput(product_id="bad", quantity=0, unit_price_cents=100),
            ],
        )

    outcomes, total = await lifecycle_engine.list_pos()
    assert total == 0


@pytest.mark.asyncio
async def test_concurrent_creates_get_distinct_po_numbers(lifecycle_engine, driver):
    po_ids = await asyncio.gather(driver.draft(), driver.draft(), driver.draft())

    numbers = sorted([(await lifecycle_engine.get_po(p)).po.po_number for p in po_ids])
    assert numbers == ["PO-000001", "PO-000002", "PO-000003"]


@pytest.mark.asyncio
async def test_update_draft_replaces_lines(lifecycle_engine, driver):
    po_id = await driver.draft()

    outcome = await lifecycle_engine.update_draft(
        po_id,
        {"notes": "Rush order"},
        lines=[LineItemInput(product_id="prod-9", quantity=3, unit_price_cents=250)],
        actor_id="buyer-1",
    )

    assert outcome.po.notes == "Rush order"
    assert outcome.po.total_cents == 750
    assert [li.product_id for li in outcome.lines] == ["prod-9"]


@pytest.mark.asyncio
async def test_update_draft_rejects_unknown_fields(lifecycle_engine, driver):
    po_id = await driver.draft()

    with pytest.raises(ValidationError):
        await lifecycle_engine.update_draft(po_id, {"status": POStatus.APPROVED})


@pytest.mark.asyncio
async def test_delete_draft_hides_po(lifecycle_engine, driver):
    po_id = await driver.draft()

    await lifecycle_engine.delete_draft(po_id, actor_id="buyer-1")

    with pytest.raises(NotFoundError):
        await lifecycle_engine.get_po(po_id)


@pytest.mark.asyncio
async def test_submitted_po_cannot_be_edited(lifecycle_engine, driver):
    po_id = await driver.pending()

    with pytest.raises(IllegalTransitionError):
        await lifecycle_engine.update_draft(po_id, {"notes": "late change"})


# ---------------------------------------------------------------------------
# Submission and approval
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_submit_without_lines_is_illegal(lifecycle_engine, driver):
    po_id = await driver.draft(lines=())

    with pytest.raises(IllegalTransitionError) as exc_info:
        await lifecycle_engine.submit_for_approval(po_id, ["approver-1"])

    assert exc_info.value.current_state == POStatus.DRAFT
    assert (await lifecycle_engine.get_po(po_id)).po.status == POStatus.DRAFT


@pytest.mark.asyncio
async def test_submit_without_approvers_raises_configuration_error(lifecycle_engine, driver):
    po_id = await driver.draft()

    with pytest.raises(ConfigurationError):
        await lifecycle_engine.submit_for_approval(po_id, [])

    detail = await lifecycle_engine.get_po(po_id)
    assert detail.po.status == POStatus.DRAFT
    assert detail.approvals == []


@pytest.mark.asyncio
async def test_submit_notifies_approvers(lifecycle_engine, driver):
    po_id = await driver.draft()

    outcome = await lifecycle_engine.submit_for_approval(po_id, ["approver-1", "approver-2"])

    assert outcome.po.status == POStatus.PENDING_APPROVAL
    assert [e.event_type for e in outcome.events] == [EventType.APPROVAL_REQUESTED]
    assert outcome.events[0].recipient_user_ids == ["approver-1", "approver-2"]


@pytest.mark.asyncio
async def test_unanimous_approval_approves_po(lifecycle_engine, driver):
    po_id = await driver.pending()

    first = await lifecycle_engine.resolve_approval(po_id, "approver-1", "approve")
    second = await lifecycle_engine.resolve_approval(po_id, "approver-2", "approve")
    last = await lifecycle_engine.resolve_approval(po_id, "approver-3", "approve")

    assert first.po.status == POStatus.PENDING_APPROVAL
    assert second.po.status == POStatus.PENDING_APPROVAL
    assert last.po.status == POStatus.APPROVED
    assert last.po.approved_at is not None
    assert [e.event_type for e in last.events] == [EventType.APPROVED]


@pytest.mark.asyncio
async def test_two_approvals_then_one_rejection_rejects_po(lifecycle_engine, driver):
    po_id = await driver.pending()

    await lifecycle_engine.resolve_approval(po_id, "approver-1", "approve")
    await lifecycle_engine.resolve_approval(po_id, "approver-2", "approve")
    outcome = await lifecycle_engine.resolve_approval(
        po_id, "approver-3", "reject", comment="Budget frozen"
    )

    assert outcome.po.status == POStatus.REJECTED
    assert [e.event_type for e in outcome.events] == [EventType.REJECTED]


@pytest.mark.asyncio
async def test_first_rejection_is_terminal_for_outstanding_approvers(lifecycle_engine, driver):
    po_id = await driver.pending()

    outcome = await lifecycle_engine.resolve_approval(po_id, "approver-1", "reject")
    assert outcome.po.status == POStatus.REJECTED

    with pytest.raises(IllegalTransitionError):
        await lifecycle_engine.resolve_approval(po_id, "approver-2", "approve")

    status = await lifecycle_engine.get_status(po_id)
    assert status["status"] == POStatus.REJECTED
    assert status["approvals"] == {"PENDING": 2, "APPROVED": 0, "REJECTED": 1}


@pytest.mark.asyncio
async def test_resolving_twice_raises_already_resolved(lifecycle_engine, driver):
    po_id = await driver.pending()
    await lifecycle_engine.resolve_approval(po_id, "approver-1", "approve")

    with pytest.raises(AlreadyResolvedError):
        await lifecycle_engine.resolve_approval(po_id, "approver-1", "reject")


@pytest.mark.asyncio
async def test_resolving_on_a_draft_is_illegal_transition(lifecycle_engine, driver):
    po_id = await driver.draft()

    with pytest.raises(IllegalTransitionError):
        await lifecycle_engine.resolve_approval(po_id, "approver-1", "approve")


@pytest.mark.asyncio
async def test_unassigned_approver_is_not_authorized(lifecycle_engine, driver):
    po_id = await driver.pending()

    with pytest.raises(NotAuthorizedError):
        await lifecycle_engine.resolve_approval(po_id, "someone-else", "approve")


@pytest.mark.asyncio
async def test_concurrent_approvals_yield_single_terminal_transition(lifecycle_engine, driver):
    po_id = await driver.pending()

    outcomes = await asyncio.gather(
        lifecycle_engine.resolve_approval(po_id, "approver-1", "approve"),
        lifecycle_engine.resolve_approval(po_id, "approver-2", "approve"),
        lifecycle_engine.resolve_approval(po_id, "approver-3", "approve"),
    )

    approved = [o for o in outcomes if o.events]
    assert len(approved) == 1
    assert approved[0].po.status == POStatus.APPROVED


# ---------------------------------------------------------------------------
# Vendor acceptance
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dispatch_moves_to_vendor_review_and_mails_vendor(lifecycle_engine, driver):
    po_id = await driver.approved()

    outcome = await lifecycle_engine.dispatch_to_vendor(po_id, actor_id="buyer-1")

    assert outcome.po.status == POStatus.VENDOR_REVIEW
    assert outcome.vendor_token.token
    event = outcome.events[0]
    assert event.event_type == EventType.DISPATCHED
    assert event.recipient_emails == ["sales@vendor.example.com"]
    assert outcome.vendor_token.token in event.context["accept_url"]


@pytest.mark.asyncio
async def test_dispatch_before_approval_is_illegal(lifecycle_engine, driver):
    po_id = await driver.pending()

    with pytest.raises(IllegalTransitionError):
        await lifecycle_engine.dispatch_to_vendor(po_id)


@pytest.mark.asyncio
async def test_vendor_accepts(lifecycle_engine, driver):
    po_id, token = await driver.in_vendor_review()

    outcome = await lifecycle_engine.redeem_vendor_token(token, True, notes="Confirmed")

    assert outcome.po.status == POStatus.VENDOR_ACCEPTED
    assert outcome.po.is_vendor_accepted is True
    assert outcome.po.vendor_notes == "Confirmed"


@pytest.mark.asyncio
async def test_vendor_rejects_is_terminal(lifecycle_engine, driver):
    po_id, token = await driver.in_vendor_review()

    outcome = await lifecycle_engine.redeem_vendor_token(token, False, notes="No stock")

    assert outcome.po.status == POStatus.VENDOR_REJECTED
    with pytest.raises(IllegalTransitionError):
        await driver.receive(po_id, 1, 0, warehouse_id="wh-1")


@pytest.mark.asyncio
async def test_token_cannot_be_redeemed_twice(lifecycle_engine, driver):
    po_id, token = await driver.in_vendor_review()
    await lifecycle_engine.redeem_vendor_token(token, True)

    with pytest.raises(TokenInvalidError):
        await lifecycle_engine.redeem_vendor_token(token, False)

    detail = await lifecycle_engine.get_po(po_id)
    assert detail.po.is_vendor_accepted is True
    assert detail.po.status == POStatus.VENDOR_ACCEPTED


@pytest.mark.asyncio
async def test_concurrent_duplicate_redemptions_only_one_wins(lifecycle_engine, driver):
    po_id, token = await driver.in_vendor_review()

    results = await asyncio.gather(
        lifecycle_engine.redeem_vendor_token(token, True),
        lifecycle_engine.redeem_vendor_token(token, True),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], TokenInvalidError)


@pytest.mark.asyncio
async def test_token_scoped_to_its_po(lifecycle_engine, driver):
    po_a, token_a = await driver.in_vendor_review()
    po_b, _ = await driver.in_vendor_review()

    with pytest.raises(TokenInvalidError):
        await lifecycle_engine.redeem_vendor_token(token_a, True, po_id=po_b)

    # The failed attempt must not have consumed the token.
    outcome = await lifecycle_engine.redeem_vendor_token(token_a, True, po_id=po_a)
    assert outcome.po.status == POStatus.VENDOR_ACCEPTED


@pytest.mark.asyncio
async def test_reissued_token_supersedes_old_one(lifecycle_engine, driver):
    po_id, old_token = await driver.in_vendor_review()

    reissued = await lifecycle_engine.reissue_vendor_token(po_id, actor_id="buyer-1")

    assert reissued.po.status == POStatus.VENDOR_REVIEW
    with pytest.raises(TokenInvalidError):
        await lifecycle_engine.redeem_vendor_token(old_token, True)
    outcome = await lifecycle_engine.redeem_vendor_token(reissued.vendor_token.token, True)
    assert outcome.po.status == POStatus.VENDOR_ACCEPTED


@pytest.mark.asyncio
async def test_vendor_view_by_token_does_not_consume_it(lifecycle_engine, driver):
    po_id, token = await driver.in_vendor_review()

    view = await lifecycle_engine.get_po_by_token(token)
    assert view.po.id == po_id

    outcome = await lifecycle_engine.redeem_vendor_token(token, True)
    assert outcome.po.status == POStatus.VENDOR_ACCEPTED


# ---------------------------------------------------------------------------
# Receiving
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_full_receipt_round_trip(lifecycle_engine, driver):
    """2 lines (10 @ $5, 4 @ $10): total $90, one GRN receiving everything."""
    po_id = await driver.accepted()

    outcome = await driver.receive(po_id, 10, 4)

    assert outcome.po.total_cents == 9000
    assert outcome.po.received_cents == 9000
    assert outcome.po.remaining_balance_cents == 0
    assert outcome.po.status == POStatus.FULLY_RECEIVED
    assert outcome.grn.status == GrnStatus.COMPLETED
    assert outcome.grn.warehouse_id == "wh-1"
    assert outcome.grn.grn_number == "GRN-000001"
    assert [e.event_type for e in outcome.events] == [EventType.FULLY_RECEIVED]


@pytest.mark.asyncio
async def test_partial_receipt_then_over_receipt_is_rejected(lifecycle_engine, driver):
    po_id = await driver.accepted(lines=((20, 500),))

    first = await driver.receive(po_id, 12)
    assert first.po.status == POStatus.PARTIALLY_RECEIVED
    assert first.grn.status == GrnStatus.PARTIAL

    with pytest.raises(OverReceiptError):
        await driver.receive(po_id, 9)

    summary = await lifecycle_engine.get_ledger_summary(po_id)
    assert summary.lines[0].remaining_quantity == 8
    assert summary.received_cents == 12 * 500


@pytest.mark.asyncio
async def test_grn_overshooting_one_line_applies_nothing(lifecycle_engine, driver, session_factory):
    po_id = await driver.accepted()

    with pytest.raises(OverReceiptError):
        await driver.receive(po_id, 5, 5)

    detail = await lifecycle_engine.get_po(po_id)
    assert [li.received_quantity for li in detail.lines] == [0, 0]
    assert detail.po.received_cents == 0
    assert detail.po.status == POStatus.VENDOR_ACCEPTED
    async with session_factory() as s:
        assert (await s.execute(select(func.count(GoodsReceivedNote.id)))).scalar() == 0


@pytest.mark.asyncio
async def test_concurrent_grns_on_one_line_cannot_over_receive(lifecycle_engine, driver):
    po_id = await driver.accepted(lines=((10, 500),))

    results = await asyncio.gather(
        driver.receive(po_id, 6),
        driver.receive(po_id, 6),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], OverReceiptError)
    detail = await lifecycle_engine.get_po(po_id)
    assert detail.lines[0].received_quantity == 6
    assert detail.po.received_cents == 3000
    assert detail.po.status == POStatus.PARTIALLY_RECEIVED


@pytest.mark.asyncio
async def test_concurrent_grns_on_different_pos_get_distinct_numbers(lifecycle_engine, driver):
    po_a = await driver.accepted()
    po_b = await driver.accepted()

    outcomes = await asyncio.gather(
        driver.receive(po_a, 1, 0),
        driver.receive(po_b, 1, 0),
    )

    numbers = sorted(o.grn.grn_number for o in outcomes)
    assert numbers == ["GRN-000001", "GRN-000002"]


@pytest.mark.asyncio
async def test_received_value_matches_line_sums_after_each_grn(lifecycle_engine, driver):
    po_id = await driver.accepted(lines=((10, 500), (4, 1000), (3, 333)))

    for quantities in [(3, 0, 1), (0, 2, 0), (7, 2, 2)]:
        outcome = await driver.receive(po_id, *quantities)
        expected = sum(li.received_quantity * li.unit_price_cents for li in outcome.lines)
        assert outcome.po.received_cents == expected
        assert all(0 <= li.received_quantity <= li.ordered_quantity for li in outcome.lines)

    assert outcome.po.status == POStatus.FULLY_RECEIVED


@pytest.mark.asyncio
async def test_post_grn_while_pending_approval_is_illegal(lifecycle_engine, driver):
    po_id = await driver.pending()

    with pytest.raises(IllegalTransitionError) as exc_info:
        await driver.receive(po_id, 1, 1)

    assert exc_info.value.current_state == POStatus.PENDING_APPROVAL
    detail = await lifecycle_engine.get_po(po_id)
    assert [li.received_quantity for li in detail.lines] == [0, 0]


@pytest.mark.asyncio
async def test_fully_received_po_accepts_no_more_receipts(lifecycle_engine, driver):
    po_id = await driver.accepted(lines=((1, 100),))
    await driver.receive(po_id, 1)

    with pytest.raises(IllegalTransitionError):
        await driver.receive(po_id, 1)


@pytest.mark.asyncio
async def test_grn_by_product_id_and_explicit_warehouse(lifecycle_engine, driver):
    po_id = await driver.accepted(warehouse_id=None)

    outcome = await lifecycle_engine.post_grn(
        po_id,
        [GrnLineRequest(quantity=4, product_id="prod-2", condition="DAMAGED")],
        warehouse_id="wh-9",
    )

    assert outcome.grn.warehouse_id == "wh-9"
    assert outcome.grn_lines[0].condition == "DAMAGED"
    assert outcome.po.status == POStatus.PARTIALLY_RECEIVED


@pytest.mark.asyncio
async def test_grn_without_any_warehouse_is_rejected(lifecycle_engine, driver):
    po_id = await driver.accepted(warehouse_id=None)

    with pytest.raises(ValidationError):
        await driver.receive(po_id, 1, 0)


# ---------------------------------------------------------------------------
# Reconciliation, reads, audit
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_payment_status_does_not_change_lifecycle_status(lifecycle_engine, driver):
    po_id = await driver.accepted()

    outcome = await lifecycle_engine.update_payment_status(po_id, "PAID", actor_id="finance-1")

    assert outcome.po.payment_status == "PAID"
    assert outcome.po.status == POStatus.VENDOR_ACCEPTED


@pytest.mark.asyncio
async def test_payment_status_before_acceptance_is_illegal(lifecycle_engine, driver):
    po_id = await driver.approved()

    with pytest.raises(IllegalTransitionError):
        await lifecycle_engine.update_payment_status(po_id, "PAID")


@pytest.mark.asyncio
async def test_status_snapshot_is_cached_and_invalidated(lifecycle_engine, driver, cache_backend):
    po_id = await driver.pending()
    key = f"po_snapshot:{po_id}"

    snapshot = await lifecycle_engine.get_status(po_id)
    assert snapshot["status"] == POStatus.PENDING_APPROVAL
    assert cache_backend.snapshot(key)["status"] == POStatus.PENDING_APPROVAL

    await lifecycle_engine.resolve_approval(po_id, "approver-1", "reject")

    assert key not in cache_backend.store
    assert (await lifecycle_engine.get_status(po_id))["status"] == POStatus.REJECTED


@pytest.mark.asyncio
async def test_status_read_racing_a_transition_does_not_cache_stale_snapshot(
    lifecycle_engine, driver, monkeypatch
):
    po_id, token = await driver.in_vendor_review()
    loaded = asyncio.Event()
    release = asyncio.Event()
    real_get_status = lifecycle_service.get_status

    async def slow_get_status(session, po_id):
        snapshot = await real_get_status(session, po_id)
        loaded.set()
        await release.wait()
        return snapshot

    monkeypatch.setattr(lifecycle_service, "get_status", slow_get_status)
    read = asyncio.create_task(lifecycle_engine.get_status(po_id))
    await loaded.wait()

    redeem = asyncio.create_task(lifecycle_engine.redeem_vendor_token(token, True))
    done, _ = await asyncio.wait({redeem}, timeout=0.2)
    assert not done  # waits for the in-flight read

    release.set()
    assert (await read)["status"] == POStatus.VENDOR_REVIEW
    await redeem

    monkeypatch.setattr(lifecycle_service, "get_status", real_get_status)
    assert (await lifecycle_engine.get_status(po_id))["status"] == POStatus.VENDOR_ACCEPTED


@pytest.mark.asyncio
async def test_failed_transition_keeps_cached_snapshot(lifecycle_engine, driver, cache_backend):
    po_id = await driver.pending()
    await lifecycle_engine.get_status(po_id)
    deleted_before = list(cache_backend.deleted)

    with pytest.raises(IllegalTransitionError):
        await lifecycle_engine.dispatch_to_vendor(po_id)

    assert cache_backend.deleted == deleted_before


@pytest.mark.asyncio
async def test_unknown_po_raises_not_found(lifecycle_engine):
    with pytest.raises(NotFoundError):
        await lifecycle_engine.get_status("00000000-0000-0000-0000-000000000000")
    with pytest.raises(NotFoundError):
        await lifecycle_engine.submit_for_approval("not-a-uuid", ["approver-1"])


@pytest.mark.asyncio
async def test_each_transition_is_audited(lifecycle_engine, driver):
    po_id = await driver.accepted()
    await driver.receive(po_id, 10, 4)

    history = await lifecycle_engine.get_history(po_id)
    actions = [entry.action for entry in history]

    assert actions.count("PO_CREATED") == 1
    assert "PO_SUBMITTED" in actions
    assert actions.count("PO_APPROVAL_APPROVED") == 3
    assert "PO_DISPATCHED" in actions
    assert "PO_VENDOR_ACCEPTED" in actions
    assert "PO_GRN_POSTED" in actions


@pytest.mark.asyncio
async def test_list_approvals_for_approver(lifecycle_engine, driver):
    po_id = await driver.pending()
    await lifecycle_engine.resolve_approval(po_id, "approver-1", "approve")

    mine = await lifecycle_engine.list_approvals(approver_id="approver-2", status="PENDING")
    assert [a.po_id for a in mine] == [po_id]

    for_po = await lifecycle_engine.list_approvals(po_id=po_id)
    assert len(for_po) == 3


@pytest.mark.asyncio
async def test_history_records_changed_fields(lifecycle_engine, driver):
    po_id = await driver.pending()

    history = await lifecycle_engine.get_history(po_id)
    submitted = next(e for e in history if e.action == "PO_SUBMITTED")

    assert submitted.actor_id == "buyer-1"
    assert submitted.before_state["status"] == POStatus.DRAFT
    assert submitted.after_state["status"] == POStatus.PENDING_APPROVAL
    assert submitted.changed_fields == ["status"]
