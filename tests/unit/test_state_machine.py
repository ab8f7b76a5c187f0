"""
Unit tests for po_lifecycle/services/state_machine.py

The state machine is pure: status is derived from facts and checked against
the transition table, so everything here runs without a database.
"""

import pytest

from po_lifecycle.errors import IllegalTransitionError
from po_lifecycle.services.state_machine import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    LifecycleFacts,
    POStatus,
    QuorumResult,
    ReceivingProgress,
    Trigger,
    derive_status,
    ensure_can_apply,
    is_terminal,
    resolve_target,
)


ACCEPTED = dict(submitted=True, quorum=QuorumResult.APPROVED, dispatched=True, vendor_accepted=True)


@pytest.mark.parametrize(
    "facts, expected",
    [
        (LifecycleFacts(), POStatus.DRAFT),
        (LifecycleFacts(submitted=True, quorum=QuorumResult.PENDING), POStatus.PENDING_APPROVAL),
        (LifecycleFacts(submitted=True, quorum=QuorumResult.REJECTED), POStatus.REJECTED),
        (LifecycleFacts(submitted=True, quorum=QuorumResult.APPROVED), POStatus.APPROVED),
        (
            LifecycleFacts(submitted=True, quorum=QuorumResult.APPROVED, dispatched=True),
            POStatus.VENDOR_REVIEW,
        ),
        (
            LifecycleFacts(
                submitted=True, quorum=QuorumResult.APPROVED, dispatched=True, vendor_accepted=False
            ),
            POStatus.VENDOR_REJECTED,
        ),
        (LifecycleFacts(**ACCEPTED), POStatus.VENDOR_ACCEPTED),
        (LifecycleFacts(**ACCEPTED, receiving=ReceivingProgress.PARTIAL), POStatus.PARTIALLY_RECEIVED),
        (LifecycleFacts(**ACCEPTED, receiving=ReceivingProgress.FULL), POStatus.FULLY_RECEIVED),
    ],
)
def test_derive_status(facts, expected):
    assert derive_status(facts) == expected


def test_terminal_statuses_have_no_outgoing_lifecycle_edges():
    for (status, trigger) in TRANSITIONS:
        assert status not in TERMINAL_STATUSES or trigger == Trigger.UPDATE_PAYMENT_STATUS


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
def test_is_terminal(status):
    assert is_terminal(status)


def test_pending_approval_is_not_terminal():
    assert not is_terminal(POStatus.PENDING_APPROVAL)


def test_post_grn_from_pending_approval_is_illegal():
    with pytest.raises(IllegalTransitionError) as exc_info:
        ensure_can_apply(POStatus.PENDING_APPROVAL, Trigger.POST_GRN)

    err = exc_info.value
    assert err.current_state == POStatus.PENDING_APPROVAL
    assert err.trigger == Trigger.POST_GRN
    assert err.http_status == 409
    assert POStatus.PENDING_APPROVAL in err.message


@pytest.mark.parametrize(
    "status, trigger",
    [
        (POStatus.REJECTED, Trigger.APPROVAL_RESOLVED),
        (POStatus.VENDOR_REJECTED, Trigger.POST_GRN),
        (POStatus.FULLY_RECEIVED, Trigger.POST_GRN),
        (POStatus.APPROVED, Trigger.SUBMIT),
        (POStatus.VENDOR_REVIEW, Trigger.DISPATCH_TO_VENDOR),
        (POStatus.PENDING_APPROVAL, Trigger.EDIT_DRAFT),
    ],
)
def test_illegal_edges(status, trigger):
    with pytest.raises(IllegalTransitionError):
        ensure_can_apply(status, trigger)


def test_resolve_target_allows_partial_then_full_receipt():
    partial = LifecycleFacts(**ACCEPTED, receiving=ReceivingProgress.PARTIAL)
    full = LifecycleFacts(**ACCEPTED, receiving=ReceivingProgress.FULL)

    assert resolve_target(POStatus.VENDOR_ACCEPTED, Trigger.POST_GRN, partial) == POStatus.PARTIALLY_RECEIVED
    assert resolve_target(POStatus.PARTIALLY_RECEIVED, Trigger.POST_GRN, full) == POStatus.FULLY_RECEIVED


def test_resolve_target_keeps_pending_approval_while_quorum_open():
    facts = LifecycleFacts(submitted=True, quorum=QuorumResult.PENDING)
    assert (
        resolve_target(POStatus.PENDING_APPROVAL, Trigger.APPROVAL_RESOLVED, facts)
        == POStatus.PENDING_APPROVAL
    )


def test_resolve_target_rejects_facts_outside_the_edge():
    # Dispatching while the facts still say "not dispatched" cannot land anywhere legal.
    facts = LifecycleFacts(submitted=True, quorum=QuorumResult.APPROVED, dispatched=False)

    with pytest.raises(IllegalTransitionError) as exc_info:
        resolve_target(POStatus.APPROVED, Trigger.DISPATCH_TO_VENDOR, facts)

    assert POStatus.APPROVED in exc_info.value.message
