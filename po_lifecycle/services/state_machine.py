"""
Purchase order state machine — status constants, transition table, and the
derivation of a PO's status from its underlying facts.

A PO's status is never assigned by a caller. Each lifecycle operation checks
that its trigger is legal in the current status, updates the facts it owns
(approvals, vendor response, line receipts), and then re-derives the status
with derive_status(). The derived status must be one of the targets the
transition table allows for that trigger.

    DRAFT → PENDING_APPROVAL → {REJECTED | APPROVED} → VENDOR_REVIEW
          → {VENDOR_REJECTED | VENDOR_ACCEPTED} → {PARTIALLY_RECEIVED}*
          → FULLY_RECEIVED
"""

from dataclasses import dataclass
from typing import Optional

from po_lifecycle.errors import IllegalTransitionError


class POStatus:
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    REJECTED = "REJECTED"
    APPROVED = "APPROVED"
    VENDOR_REVIEW = "VENDOR_REVIEW"
    VENDOR_REJECTED = "VENDOR_REJECTED"
    VENDOR_ACCEPTED = "VENDOR_ACCEPTED"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    FULLY_RECEIVED = "FULLY_RECEIVED"


TERMINAL_STATUSES = frozenset(
    {POStatus.REJECTED, POStatus.VENDOR_REJECTED, POStatus.FULLY_RECEIVED}
)


class Trigger:
    SUBMIT = "submit"
    APPROVAL_RESOLVED = "approval_resolved"
    DISPATCH_TO_VENDOR = "dispatch_to_vendor"
    REISSUE_VENDOR_TOKEN = "reissue_vendor_token"
    VENDOR_RESPONSE = "vendor_response"
    POST_GRN = "post_grn"
    EDIT_DRAFT = "edit_draft"
    DELETE_DRAFT = "delete_draft"
    UPDATE_PAYMENT_STATUS = "update_payment_status"


class QuorumResult:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ReceivingProgress:
    PARTIAL = "PARTIAL"
    FULL = "FULL"


# (current status, trigger) -> statuses the PO may hold afterwards
TRANSITIONS: dict[tuple[str, str], frozenset[str]] = {
    (POStatus.DRAFT, Trigger.SUBMIT): frozenset({POStatus.PENDING_APPROVAL}),
    (POStatus.DRAFT, Trigger.EDIT_DRAFT): frozenset({POStatus.DRAFT}),
    (POStatus.DRAFT, Trigger.DELETE_DRAFT): frozenset({POStatus.DRAFT}),
    (POStatus.PENDING_APPROVAL, Trigger.APPROVAL_RESOLVED): frozenset(
        {POStatus.PENDING_APPROVAL, POStatus.APPROVED, POStatus.REJECTED}
    ),
    (POStatus.APPROVED, Trigger.DISPATCH_TO_VENDOR): frozenset(
        {POStatus.VENDOR_REVIEW}
    ),
    (POStatus.VENDOR_REVIEW, Trigger.REISSUE_VENDOR_TOKEN): frozenset(
        {POStatus.VENDOR_REVIEW}
    ),
    (POStatus.VENDOR_REVIEW, Trigger.VENDOR_RESPONSE): frozenset(
        {POStatus.VENDOR_ACCEPTED, POStatus.VENDOR_REJECTED}
    ),
    (POStatus.VENDOR_ACCEPTED, Trigger.POST_GRN): frozenset(
        {POStatus.PARTIALLY_RECEIVED, POStatus.FULLY_RECEIVED}
    ),
    (POStatus.PARTIALLY_RECEIVED, Trigger.POST_GRN): frozenset(
        {POStatus.PARTIALLY_RECEIVED, POStatus.FULLY_RECEIVED}
    ),
    (POStatus.VENDOR_ACCEPTED, Trigger.UPDATE_PAYMENT_STATUS): frozenset(
        {POStatus.VENDOR_ACCEPTED}
    ),
    (POStatus.PARTIALLY_RECEIVED, Trigger.UPDATE_PAYMENT_STATUS): frozenset(
        {POStatus.PARTIALLY_RECEIVED}
    ),
    (POStatus.FULLY_RECEIVED, Trigger.UPDATE_PAYMENT_STATUS): frozenset(
        {POStatus.FULLY_RECEIVED}
    ),
}


@dataclass
class LifecycleFacts:
    """Everything a PO's status is a function of."""

    submitted: bool = False
    quorum: Optional[str] = None
    dispatched: bool = False
    vendor_accepted: Optional[bool] = None
    receiving: Optional[str] = None


def derive_status(facts: LifecycleFacts) -> str:
    if not facts.submitted:
        return POStatus.DRAFT
    if facts.quorum == QuorumResult.REJECTED:
        return POStatus.REJECTED
    if facts.quorum != QuorumResult.APPROVED:
        return POStatus.PENDING_APPROVAL
    if not facts.dispatched:
        return POStatus.APPROVED
    if facts.vendor_accepted is None:
        return POStatus.VENDOR_REVIEW
    if facts.vendor_accepted is False:
        return POStatus.VENDOR_REJECTED
    if facts.receiving == ReceivingProgress.FULL:
        return POStatus.FULLY_RECEIVED
    if facts.receiving == ReceivingProgress.PARTIAL:
        return POStatus.PARTIALLY_RECEIVED
    return POStatus.VENDOR_ACCEPTED


def allowed_targets(status: str, trigger: str) -> frozenset[str]:
    return TRANSITIONS.get((status, trigger), frozenset())


def ensure_can_apply(status: str, trigger: str) -> None:
    """Raise IllegalTransitionError if trigger has no edge out of status."""
    if not allowed_targets(status, trigger):
        raise IllegalTransitionError(status, trigger)


def resolve_target(status: str, trigger: str, facts: LifecycleFacts) -> str:
    """Return the status the facts imply, checked against the transition table."""
    ensure_can_apply(status, trigger)
    target = derive_status(facts)
    if target not in allowed_targets(status, trigger):
        raise IllegalTransitionError(
            status,
            trigger,
            message=(
                f"'{trigger}' from '{status}' would lead to '{target}', "
                "which the lifecycle does not allow"
            ),
        )
    return target


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
