"""
Purchase order lifecycle — the operations that move a PO through its states.

Every function takes the caller's session and never commits; the engine
(services/engine.py) wraps each call in a per-PO unit of work. Each mutating
operation follows the same shape:

  1. load the PO row FOR UPDATE and check the trigger is legal in its status,
  2. validate everything the operation needs before touching any row,
  3. update the underlying facts (approvals, vendor response, receipts),
  4. re-derive the status from those facts and record an audit entry.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from po_lifecycle.config import settings
from po_lifecycle.database import utcnow
from po_lifecycle.errors import (
    IllegalTransitionError,
    NotFoundError,
    TokenInvalidError,
    ValidationError,
)
from po_lifecycle.models.approval import Approval
from po_lifecycle.models.number_sequence import PO_PREFIX
from po_lifecycle.models.purchase_order import PurchaseOrder, PoLineItem
from po_lifecycle.models.receipt import GoodsReceivedNote, GrnLineItem
from po_lifecycle.services import (
    approval_service,
    ledger_service,
    receiving_service,
    vendor_acceptance_service,
)
from po_lifecycle.services import audit_service
from po_lifecycle.services.audit_service import create_audit_log
from po_lifecycle.services.numbering import next_number
from po_lifecycle.services.notification_service import (
    EventType,
    LifecycleEvent,
    internal_recipients,
)
from po_lifecycle.services.receiving_service import GrnLineRequest
from po_lifecycle.services.state_machine import (
    LifecycleFacts,
    POStatus,
    QuorumResult,
    ReceivingProgress,
    Trigger,
    ensure_can_apply,
    is_terminal,
    resolve_target,
)
from po_lifecycle.services.vendor_acceptance_service import IssuedToken

logger = structlog.get_logger()
ENTITY_TYPE = "PO"

PAYMENT_STATUSES = frozenset({"PENDING", "PARTIAL", "PAID"})
DRAFT_EDITABLE_FIELDS = frozenset(
    {"warehouse_id", "expected_delivery_date", "notes", "vendor_email"}
)


@dataclass
class LineItemInput:
    product_id: str
    quantity: int
    unit_price_cents: int
    variant_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class TransitionOutcome:
    po: PurchaseOrder
    lines: list[PoLineItem]
    events: list[LifecycleEvent] = field(default_factory=list)
    approvals: list[Approval] = field(default_factory=list)
    vendor_token: Optional[IssuedToken] = None
    grn: Optional[GoodsReceivedNote] = None
    grn_lines: list[GrnLineItem] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


def parse_id(value: Any, label: str = "Purchase order") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise NotFoundError(f"{label} not found")


async def get_po(session: AsyncSession, po_id, for_update: bool = False) -> PurchaseOrder:
    q = select(PurchaseOrder).where(
        PurchaseOrder.id == parse_id(po_id),
        PurchaseOrder.deleted_at == None,  # noqa: E711
    )
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(q)
    po = result.scalar_one_or_none()
    if not po:
        raise NotFoundError("Purchase order not found", po_id=str(po_id))
    return po


async def get_line_items(session: AsyncSession, po_id) -> list[PoLineItem]:
    result = await session.execute(
        select(PoLineItem)
        .where(PoLineItem.po_id == po_id)
        .order_by(PoLineItem.line_number)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def _facts(
    po: PurchaseOrder, approvals: list[Approval], lines: list[PoLineItem]
) -> LifecycleFacts:
    return LifecycleFacts(
        submitted=po.submitted_at is not None,
        quorum=approval_service.aggregate(approvals),
        dispatched=po.dispatched_at is not None,
        vendor_accepted=po.is_vendor_accepted,
        receiving=receiving_service.recompute_po_status(lines),
    )


def _audit_state(po: PurchaseOrder) -> dict:
    return {
        "status": po.status,
        "total_cents": po.total_cents,
        "received_cents": po.received_cents,
        "is_vendor_accepted": po.is_vendor_accepted,
        "payment_status": po.payment_status,
    }


async def _transition(
    session: AsyncSession,
    po: PurchaseOrder,
    trigger: str,
    facts: LifecycleFacts,
    before: dict,
    actor_id: Optional[str],
    action: str,
) -> str:
    po.status = resolve_target(po.status, trigger, facts)
    po.updated_at = utcnow()
    await session.flush()
    await create_audit_log(
        session,
        actor_id=actor_id,
        action=action,
        entity_type=ENTITY_TYPE,
        entity_id=po.id,
        before_state=before,
        after_state=_audit_state(po),
    )
    return po.status


def _event(po: PurchaseOrder, event_type: str, recipients: list[str], **context) -> LifecycleEvent:
    context.setdefault("currency", po.currency)
    context.setdefault("amount_cents", po.total_cents)
    return LifecycleEvent(
        event_type=event_type,
        po_id=str(po.id),
        po_number=po.po_number,
        context=context,
        recipient_emails=[r for r in recipients if r],
        recipient_user_ids=[po.created_by] if po.created_by else [],
    )


def _validate_lines(lines: list[LineItemInput]) -> None:
    for item in lines:
        ledger_service.validate_line_input(item.quantity, item.unit_price_cents)
        if not item.product_id:
            raise ValidationError("product_id is required", field="product_id")


def _add_lines(session: AsyncSession, po: PurchaseOrder, lines: list[LineItemInput]) -> None:
    for number, item in enumerate(lines, start=1):
        ledger_service.add_line(
            session,
            po,
            line_number=number,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            variant_id=item.variant_id,
            notes=item.notes,
        )


# ---------------------------------------------------------------------------
# Draft stage
# ---------------------------------------------------------------------------


async def create_po(
    session: AsyncSession,
    vendor_id: str,
    lines: list[LineItemInput],
    created_by: Optional[str] = None,
    warehouse_id: Optional[str] = None,
    expected_delivery_date: Optional[date] = None,
    notes: Optional[str] = None,
    vendor_email: Optional[str] = None,
    currency: Optional[str] = None,
) -> TransitionOutcome:
    if not vendor_id:
        raise ValidationError("vendor_id is required", field="vendor_id")
    _validate_lines(lines)

    po = PurchaseOrder(
        po_number=await next_number(session, PO_PREFIX),
        vendor_id=str(vendor_id),
        vendor_email=vendor_email,
        warehouse_id=str(warehouse_id) if warehouse_id else None,
        status=POStatus.DRAFT,
        total_cents=0,
        received_cents=0,
        currency=currency or settings.DEFAULT_CURRENCY,
        payment_status="PENDING",
        expected_delivery_date=expected_delivery_date,
        notes=notes,
        created_by=created_by,
    )
    session.add(po)
    await session.flush()

    _add_lines(session, po, lines)
    await session.flush()

    await create_audit_log(
        session,
        actor_id=created_by,
        action="PO_CREATED",
        entity_type=ENTITY_TYPE,
        entity_id=po.id,
        after_state=_audit_state(po),
    )
    line_items = await get_line_items(session, po.id)
    logger.info(
        "po_created",
        po_id=str(po.id),
        po_number=po.po_number,
        lines=len(line_items),
        total_cents=po.total_cents,
    )
    return TransitionOutcome(po=po, lines=line_items)


async def update_draft(
    session: AsyncSession,
    po_id,
    changes: dict,
    lines: Optional[list[LineItemInput]] = None,
    actor_id: Optional[str] = None,
) -> TransitionOutcome:
    po = await get_po(session, po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.EDIT_DRAFT)

    unknown = set(changes) - DRAFT_EDITABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields cannot be edited: {', '.join(sorted(unknown))}",
            fields=sorted(unknown),
        )
    if lines is not None:
        _validate_lines(lines)

    before = _audit_state(po)
    for key, value in changes.items():
        setattr(po, key, value)

    if lines is not None:
        await session.execute(delete(PoLineItem).where(PoLineItem.po_id == po.id))
        po.total_cents = 0
        _add_lines(session, po, lines)
        await session.flush()

    line_items = await get_line_items(session, po.id)
    ledger_service.recompute_po_values(po, line_items)
    await _transition(
        session, po, Trigger.EDIT_DRAFT, _facts(po, [], line_items),
        before, actor_id, "PO_DRAFT_UPDATED",
    )
    logger.info("po_draft_updated", po_id=str(po.id), fields=sorted(changes))
    return TransitionOutcome(po=po, lines=line_items)


async def delete_draft(
    session: AsyncSession, po_id, actor_id: Optional[str] = None
) -> None:
    po = await get_po(session, po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.DELETE_DRAFT)

    before = _audit_state(po)
    po.deleted_at = utcnow()
    await session.flush()
    await create_audit_log(
        session,
        actor_id=actor_id,
        action="PO_DRAFT_DELETED",
        entity_type=ENTITY_TYPE,
        entity_id=po.id,
        before_state=before,
    )
    logger.info("po_draft_deleted", po_id=str(po.id))


# ---------------------------------------------------------------------------
# Approval stage
# ---------------------------------------------------------------------------


async def submit_for_approval(
    session: AsyncSession,
    po_id,
    approver_ids: list[str],
    actor_id: Optional[str] = None,
) -> TransitionOutcome:
    po = await get_po(session, po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.SUBMIT)

    lines = await get_line_items(session, po.id)
    if not lines:
        raise IllegalTransitionError(
            po.status,
            Trigger.SUBMIT,
            message="A purchase order needs at least one line item before submission",
        )

    before = _audit_state(po)
    approvals = await approval_service.init_quorum(session, po, approver_ids)
    po.submitted_at = utcnow()
    await _transition(
        session, po, Trigger.SUBMIT, _facts(po, approvals, lines),
        before, actor_id, "PO_SUBMITTED",
    )

    logger.info("po_submitted", po_id=str(po.id), approvers=len(approvals))
    event = _event(po, EventType.APPROVAL_REQUESTED, [])
    event.recipient_user_ids = [a.approver_id for a in approvals]
    return TransitionOutcome(po=po, lines=lines, approvals=approvals, events=[event])


async def resolve_approval(
    session: AsyncSession,
    po_id,
    approver_id: str,
    decision: str,
    comment: Optional[str] = None,
    signature_ref: Optional[str] = None,
) -> TransitionOutcome:
    po = await get_po(session, po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.APPROVAL_RESOLVED)
    approvals = await approval_service.get_approvals(session, po.id)

    approval = approval_service.find_approval_for(approvals, approver_id)
    approval_service.ensure_pending(approval)

    before = _audit_state(po)
    approval_service.resolve(approval, decision, approver_id, comment, signature_ref)
    await session.flush()

    lines = await get_line_items(session, po.id)
    facts = _facts(po, approvals, lines)
    if facts.quorum == QuorumResult.APPROVED:
        po.approved_at = utcnow()
    status = await _transition(
        session, po, Trigger.APPROVAL_RESOLVED, facts,
        before, approver_id, f"PO_APPROVAL_{approval.status}",
    )

    logger.info(
        "approval_resolved",
        po_id=str(po.id),
        approver_id=approver_id,
        decision=approval.status,
        quorum=facts.quorum,
        po_status=status,
    )

    events = []
    if status == POStatus.APPROVED:
        events.append(_event(po, EventType.APPROVED, internal_recipients()))
    elif status == POStatus.REJECTED:
        events.append(_event(po, EventType.REJECTED, internal_recipients(), comment=comment))
    return TransitionOutcome(po=po, lines=lines, approvals=approvals, events=events)


# ---------------------------------------------------------------------------
# Vendor stage
# ---------------------------------------------------------------------------


def _dispatch_event(po: PurchaseOrder, token: IssuedToken) -> LifecycleEvent:
    return _event(
        po,
        EventType.DISPATCHED,
        [po.vendor_email] if po.vendor_email else [],
        accept_url=token.accept_url,
        expires_at=token.expires_at.strftime("%Y-%m-%d %H:%M"),
    )


async def dispatch_to_vendor(
    session: AsyncSession, po_id, actor_id: Optional[str] = None
) -> TransitionOutcome:
    po = await get_po(session, po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.DISPATCH_TO_VENDOR)

    before = _audit_state(po)
    token = await vendor_acceptance_service.issue_token(session, po, issued_by=actor_id)
    po.dispatched_at = utcnow()

    lines = await get_line_items(session, po.id)
    approvals = await approval_service.get_approvals(session, po.id)
    await _transition(
        session, po, Trigger.DISPATCH_TO_VENDOR, _facts(po, approvals, lines),
        before, actor_id, "PO_DISPATCHED",
    )

    logger.info("po_dispatched", po_id=str(po.id), vendor_id=po.vendor_id)
    return TransitionOutcome(
        po=po, lines=lines, vendor_token=token, events=[_dispatch_event(po, token)]
    )


async def reissue_vendor_token(
    session: AsyncSession, po_id, actor_id: Optional[str] = None
) -> TransitionOutcome:
    po = await get_po(session, po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.REISSUE_VENDOR_TOKEN)

    before = _audit_state(po)
    token = await vendor_acceptance_service.issue_token(session, po, issued_by=actor_id)

    lines = await get_line_items(session, po.id)
    approvals = await approval_service.get_approvals(session, po.id)
    await _transition(
        session, po, Trigger.REISSUE_VENDOR_TOKEN, _facts(po, approvals, lines),
        before, actor_id, "PO_VENDOR_TOKEN_REISSUED",
    )

    logger.info("vendor_token_reissued", po_id=str(po.id))
    return TransitionOutcome(
        po=po, lines=lines, vendor_token=token, events=[_dispatch_event(po, token)]
    )


async def redeem_vendor_token(
    session: AsyncSession,
    raw_token: str,
    accepted: bool,
    notes: Optional[str] = None,
    expected_po_id=None,
) -> TransitionOutcome:
    row = await vendor_acceptance_service.get_live_token(session, raw_token)
    if expected_po_id is not None and str(row.po_id) != str(parse_id(expected_po_id)):
        raise TokenInvalidError(
            "This acceptance link does not belong to the requested purchase order",
            reason="scope_mismatch",
        )

    po = await get_po(session, row.po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.VENDOR_RESPONSE)

    before = _audit_state(po)
    await vendor_acceptance_service.redeem(session, row, accepted)

    po.is_vendor_accepted = bool(accepted)
    po.vendor_notes = notes
    po.vendor_responded_at = utcnow()

    lines = await get_line_items(session, po.id)
    approvals = await approval_service.get_approvals(session, po.id)
    status = await _transition(
        session, po, Trigger.VENDOR_RESPONSE, _facts(po, approvals, lines),
        before, None, "PO_VENDOR_ACCEPTED" if accepted else "PO_VENDOR_REJECTED",
    )

    logger.info("vendor_token_redeemed", po_id=str(po.id), accepted=bool(accepted), po_status=status)
    event_type = EventType.VENDOR_ACCEPTED if accepted else EventType.VENDOR_REJECTED
    return TransitionOutcome(
        po=po,
        lines=lines,
        events=[_event(po, event_type, internal_recipients(), vendor_notes=notes)],
    )


async def get_po_by_token(session: AsyncSession, raw_token: str) -> TransitionOutcome:
    """Read-only vendor view; validates the token without consuming it."""
    row = await vendor_acceptance_service.get_live_token(session, raw_token)
    po = await get_po(session, row.po_id)
    lines = await get_line_items(session, po.id)
    return TransitionOutcome(po=po, lines=lines)


# ---------------------------------------------------------------------------
# Receiving stage
# ---------------------------------------------------------------------------


async def post_grn(
    session: AsyncSession,
    po_id,
    requests: list[GrnLineRequest],
    warehouse_id: Optional[str] = None,
    received_by: Optional[str] = None,
    received_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> TransitionOutcome:
    po = await get_po(session, po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.POST_GRN)

    before = _audit_state(po)
    lines = await get_line_items(session, po.id)
    grn, grn_lines = await receiving_service.post_grn(
        session,
        po,
        lines,
        requests,
        warehouse_id=warehouse_id,
        received_by=received_by,
        received_date=received_date,
        notes=notes,
    )

    approvals = await approval_service.get_approvals(session, po.id)
    facts = _facts(po, approvals, lines)
    status = await _transition(
        session, po, Trigger.POST_GRN, facts, before, received_by, "PO_GRN_POSTED",
    )

    event_type = (
        EventType.FULLY_RECEIVED
        if facts.receiving == ReceivingProgress.FULL
        else EventType.PARTIALLY_RECEIVED
    )
    event = _event(
        po,
        event_type,
        internal_recipients(),
        grn_number=grn.grn_number,
        amount_cents=po.received_cents,
        remaining_cents=po.remaining_balance_cents,
    )
    logger.info("po_receiving_updated", po_id=str(po.id), po_status=status)
    return TransitionOutcome(
        po=po, lines=lines, grn=grn, grn_lines=grn_lines, events=[event]
    )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


async def update_payment_status(
    session: AsyncSession,
    po_id,
    payment_status: str,
    actor_id: Optional[str] = None,
) -> TransitionOutcome:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(
            f"Payment status must be one of {sorted(PAYMENT_STATUSES)}",
            field="payment_status",
        )
    po = await get_po(session, po_id, for_update=True)
    ensure_can_apply(po.status, Trigger.UPDATE_PAYMENT_STATUS)

    before = _audit_state(po)
    po.payment_status = payment_status
    lines = await get_line_items(session, po.id)
    approvals = await approval_service.get_approvals(session, po.id)
    await _transition(
        session, po, Trigger.UPDATE_PAYMENT_STATUS, _facts(po, approvals, lines),
        before, actor_id, "PO_PAYMENT_STATUS_UPDATED",
    )
    logger.info("po_payment_status_updated", po_id=str(po.id), payment_status=payment_status)
    return TransitionOutcome(po=po, lines=lines)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_status(session: AsyncSession, po_id) -> dict:
    po = await get_po(session, po_id)
    lines = await get_line_items(session, po.id)
    approvals = await approval_service.get_approvals(session, po.id)
    counts = {"PENDING": 0, "APPROVED": 0, "REJECTED": 0}
    for a in approvals:
        counts[a.status] = counts.get(a.status, 0) + 1
    return {
        "po_id": str(po.id),
        "po_number": po.po_number,
        "status": po.status,
        "is_terminal": is_terminal(po.status),
        "approval_status": approval_service.aggregate(approvals),
        "approvals": counts,
        "is_vendor_accepted": po.is_vendor_accepted,
        "receiving": receiving_service.recompute_po_status(lines),
        "payment_status": po.payment_status,
        "total_cents": po.total_cents,
        "received_cents": po.received_cents,
        "remaining_balance_cents": po.remaining_balance_cents,
    }


async def get_ledger_summary(session: AsyncSession, po_id) -> ledger_service.LedgerSummary:
    po = await get_po(session, po_id)
    lines = await get_line_items(session, po.id)
    return ledger_service.ledger_summary(po, lines)


async def get_history(session: AsyncSession, po_id) -> list:
    po = await get_po(session, po_id)
    return await audit_service.list_entries(session, ENTITY_TYPE, po.id)


async def get_po_detail(session: AsyncSession, po_id) -> TransitionOutcome:
    po = await get_po(session, po_id)
    lines = await get_line_items(session, po.id)
    approvals = await approval_service.get_approvals(session, po.id)
    return TransitionOutcome(po=po, lines=lines, approvals=approvals)


async def list_pos(
    session: AsyncSession,
    page: int = 1,
    limit: int = 50,
    status: Optional[str] = None,
    vendor_id: Optional[str] = None,
) -> tuple[list[TransitionOutcome], int]:
    q = select(PurchaseOrder).where(PurchaseOrder.deleted_at == None)  # noqa: E711
    count_q = select(func.count(PurchaseOrder.id)).where(PurchaseOrder.deleted_at == None)  # noqa: E711

    if status:
        q = q.where(PurchaseOrder.status == status)
        count_q = count_q.where(PurchaseOrder.status == status)
    if vendor_id:
        q = q.where(PurchaseOrder.vendor_id == vendor_id)
        count_q = count_q.where(PurchaseOrder.vendor_id == vendor_id)

    total = (await session.execute(count_q)).scalar() or 0
    result = await session.execute(
        q.order_by(PurchaseOrder.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    pos = list(result.scalars().all())

    # Batch-load line items for the page in one query
    lines_by_po: dict = {}
    if pos:
        li_result = await session.execute(
            select(PoLineItem)
            .where(PoLineItem.po_id.in_([po.id for po in pos]))
            .order_by(PoLineItem.line_number)
        )
        for li in li_result.scalars().all():
            lines_by_po.setdefault(li.po_id, []).append(li)

    return [TransitionOutcome(po=po, lines=lines_by_po.get(po.id, [])) for po in pos], total


async def list_approvals(
    session: AsyncSession,
    po_id=None,
    approver_id: Optional[str] = None,
    status: Optional[str] = None,
) -> list[Approval]:
    q = select(Approval)
    if po_id is not None:
        q = q.where(Approval.po_id == parse_id(po_id))
    if approver_id:
        q = q.where(Approval.approver_id == str(approver_id))
    if status:
        q = q.where(Approval.status == status)
    result = await session.execute(q.order_by(Approval.created_at.desc()))
    return list(result.scalars().all())


async def get_grn(session: AsyncSession, grn_id) -> tuple[GoodsReceivedNote, list[GrnLineItem]]:
    result = await session.execute(
        select(GoodsReceivedNote).where(GoodsReceivedNote.id == parse_id(grn_id, "GRN"))
    )
    grn = result.scalar_one_or_none()
    if not grn:
        raise NotFoundError("GRN not found", grn_id=str(grn_id))
    return grn, await receiving_service.get_grn_lines(session, grn.id)


async def list_grns(
    session: AsyncSession,
    page: int = 1,
    limit: int = 20,
    po_id=None,
    warehouse_id: Optional[str] = None,
) -> tuple[list[tuple[GoodsReceivedNote, list[GrnLineItem]]], int]:
    q = select(GoodsReceivedNote)
    count_q = select(func.count(GoodsReceivedNote.id))
    if po_id is not None:
        q = q.where(GoodsReceivedNote.po_id == parse_id(po_id))
        count_q = count_q.where(GoodsReceivedNote.po_id == parse_id(po_id))
    if warehouse_id:
        q = q.where(GoodsReceivedNote.warehouse_id == warehouse_id)
        count_q = count_q.where(GoodsReceivedNote.warehouse_id == warehouse_id)

    total = (await session.execute(count_q)).scalar() or 0
    result = await session.execute(
        q.order_by(GoodsReceivedNote.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    grns = list(result.scalars().all())

    li_map: dict = {}
    if grns:
        li_result = await session.execute(
            select(GrnLineItem).where(GrnLineItem.grn_id.in_([g.id for g in grns]))
        )
        for li in li_result.scalars().all():
            li_map.setdefault(li.grn_id, []).append(li)

    return [(g, li_map.get(g.id, [])) for g in grns], total
