"""
Approvals API routes — list approvals, approve or reject the caller's own
approval on a PO.
"""

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
import structlog

from po_lifecycle.middleware.auth import get_current_user
from po_lifecycle.middleware.authorization import Capability, require_capability
from po_lifecycle.schemas.approval import (
    ApprovalActionRequest,
    ApprovalActionResponse,
    ApprovalResponse,
)
from po_lifecycle.services.approval_service import Decision
from po_lifecycle.services.engine import LifecycleEngine, get_engine
from po_lifecycle.services.notification_service import publish_events

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=List[ApprovalResponse])
async def list_approvals(
    po_id: str = Query(None),
    approval_status: str = Query(None, alias="status"),
    mine: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.APPROVAL_READ)),
    engine: LifecycleEngine = Depends(get_engine),
):
    approvals = await engine.list_approvals(
        po_id=po_id,
        approver_id=current_user["user_id"] if mine else None,
        status=approval_status,
    )
    return [ApprovalResponse.from_model(a) for a in approvals]


async def _resolve(
    po_id: str,
    decision: str,
    body: Optional[ApprovalActionRequest],
    background_tasks: BackgroundTasks,
    current_user: dict,
    engine: LifecycleEngine,
) -> ApprovalActionResponse:
    body = body or ApprovalActionRequest()
    outcome = await engine.resolve_approval(
        po_id,
        approver_id=current_user["user_id"],
        decision=decision,
        comment=body.comment,
        signature_ref=body.signature_ref,
    )
    background_tasks.add_task(publish_events, outcome.events)

    mine = next(a for a in outcome.approvals if a.approver_id == str(current_user["user_id"]))
    return ApprovalActionResponse(
        approval=ApprovalResponse.from_model(mine),
        po_status=outcome.po.status,
    )


@router.post("/{po_id}/approve", response_model=ApprovalActionResponse)
async def approve(
    po_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[ApprovalActionRequest] = None,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.APPROVAL_RESOLVE)),
    engine: LifecycleEngine = Depends(get_engine),
):
    return await _resolve(po_id, Decision.APPROVE, body, background_tasks, current_user, engine)


@router.post("/{po_id}/reject", response_model=ApprovalActionResponse)
async def reject(
    po_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[ApprovalActionRequest] = None,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.APPROVAL_RESOLVE)),
    engine: LifecycleEngine = Depends(get_engine),
):
    return await _resolve(po_id, Decision.REJECT, body, background_tasks, current_user, engine)
