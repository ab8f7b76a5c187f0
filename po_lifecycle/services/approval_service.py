"""
Approval quorum tracker — one approval per assigned approver, unanimous
approval, fail-fast on the first rejection.

Approval rows are never deleted. Once a single approver rejects, the PO is
Rejected and the remaining PENDING rows stay PENDING forever (the PO is
terminal, so they can no longer be resolved).
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from po_lifecycle.database import utcnow
from po_lifecycle.errors import (
    AlreadyResolvedError,
    ConfigurationError,
    NotAuthorizedError,
    ValidationError,
)
from po_lifecycle.models.approval import Approval
from po_lifecycle.models.purchase_order import PurchaseOrder
from po_lifecycle.services.state_machine import QuorumResult

logger = structlog.get_logger()


class ApprovalStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Decision:
    APPROVE = "approve"
    REJECT = "reject"

    ALL = frozenset({APPROVE, REJECT})


@dataclass
class ApprovalResult:
    approval: Approval
    quorum: str

    @property
    def is_final(self) -> bool:
        return self.quorum != QuorumResult.PENDING

    @property
    def is_rejected(self) -> bool:
        return self.quorum == QuorumResult.REJECTED


async def get_approvals(session: AsyncSession, po_id) -> list[Approval]:
    result = await session.execute(
        select(Approval)
        .where(Approval.po_id == po_id)
        .order_by(Approval.created_at, Approval.approver_id)
    )
    return list(result.scalars().all())


async def init_quorum(
    session: AsyncSession, po: PurchaseOrder, approver_ids: Iterable[str]
) -> list[Approval]:
    """Create one PENDING approval per distinct approver."""
    distinct_ids: list[str] = []
    for approver_id in approver_ids or []:
        approver_id = str(approver_id).strip()
        if approver_id and approver_id not in distinct_ids:
            distinct_ids.append(approver_id)

    if not distinct_ids:
        raise ConfigurationError(
            "At least one approver is required to submit a purchase order",
            code="APPROVERS_REQUIRED",
        )

    approvals = []
    for approver_id in distinct_ids:
        approval = Approval(
            po_id=po.id,
            approver_id=approver_id,
            status=ApprovalStatus.PENDING,
        )
        session.add(approval)
        approvals.append(approval)

    await session.flush()

    logger.info(
        "approval_quorum_created",
        po_id=str(po.id),
        approvers=len(approvals),
    )
    return approvals


def find_approval_for(approvals: list[Approval], caller_id: str) -> Approval:
    for a in approvals:
        if str(a.approver_id) == str(caller_id):
            return a
    raise NotAuthorizedError(
        "You are not an assigned approver for this purchase order",
        code="APPROVAL_NOT_ASSIGNED",
    )


def ensure_pending(approval: Approval) -> None:
    if approval.status != ApprovalStatus.PENDING:
        raise AlreadyResolvedError(
            f"Approval was already resolved as {approval.status}",
            approval_id=str(approval.id),
            status=approval.status,
        )


def resolve(
    approval: Approval,
    decision: str,
    caller_id: str,
    comment: Optional[str] = None,
    signature_ref: Optional[str] = None,
) -> Approval:
    """Move a PENDING approval to APPROVED or REJECTED, stamping it once."""
    if decision not in Decision.ALL:
        raise ValidationError(
            f"Decision must be one of {sorted(Decision.ALL)}", field="decision"
        )
    if str(approval.approver_id) != str(caller_id):
        raise NotAuthorizedError(
            "Only the bound approver can resolve this approval",
            code="APPROVAL_NOT_ASSIGNED",
        )
    ensure_pending(approval)

    now = utcnow()
    approval.comment = comment
    approval.signature_ref = signature_ref
    if decision == Decision.APPROVE:
        approval.status = ApprovalStatus.APPROVED
        approval.approved_at = now
    else:
        approval.status = ApprovalStatus.REJECTED
        approval.rejected_at = now
    return approval


def aggregate(approvals: list[Approval]) -> Optional[str]:
    """Unanimous-approval, fail-fast-on-rejection quorum result.

    Returns None when no quorum exists yet (PO never submitted).
    """
    if not approvals:
        return None
    statuses = [a.status for a in approvals]
    if ApprovalStatus.REJECTED in statuses:
        return QuorumResult.REJECTED
    if all(s == ApprovalStatus.APPROVED for s in statuses):
        return QuorumResult.APPROVED
    return QuorumResult.PENDING
