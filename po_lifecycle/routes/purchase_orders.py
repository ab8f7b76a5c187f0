from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
import structlog

from po_lifecycle.middleware.auth import get_current_user
from po_lifecycle.middleware.authorization import Capability, require_capability
from po_lifecycle.schemas.audit_log import AuditEntryResponse
from po_lifecycle.schemas.common import PaginatedResponse, PaginationMeta, iso
from po_lifecycle.schemas.purchase_order import (
    DispatchResponse,
    LedgerSummaryResponse,
    PaymentStatusUpdate,
    PoStatusResponse,
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    PurchaseOrderUpdate,
    SubmitRequest,
)
from po_lifecycle.services.engine import LifecycleEngine, get_engine
from po_lifecycle.services.lifecycle_service import TransitionOutcome
from po_lifecycle.services.notification_service import publish_events

logger = structlog.get_logger()
router = APIRouter()


def _to_response(outcome: TransitionOutcome) -> PurchaseOrderResponse:
    return PurchaseOrderResponse.from_model(outcome.po, outcome.lines)


def _to_dispatch_response(outcome: TransitionOutcome) -> DispatchResponse:
    return DispatchResponse(
        purchase_order=_to_response(outcome),
        accept_url=outcome.vendor_token.accept_url,
        token_expires_at=iso(outcome.vendor_token.expires_at),
    )


@router.get("", response_model=PaginatedResponse[PurchaseOrderResponse])
async def list_purchase_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    po_status: str = Query(None, alias="status"),
    vendor_id: str = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_READ)),
    engine: LifecycleEngine = Depends(get_engine),
):
    outcomes, total = await engine.list_pos(
        page=page, limit=limit, status=po_status, vendor_id=vendor_id
    )
    return PaginatedResponse(
        data=[_to_response(o) for o in outcomes],
        pagination=PaginationMeta.for_page(page, limit, total),
    )


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(
    po_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_READ)),
    engine: LifecycleEngine = Depends(get_engine),
):
    return _to_response(await engine.get_po(po_id))


@router.post("", response_model=PurchaseOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase_order(
    body: PurchaseOrderCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_CREATE)),
    engine: LifecycleEngine = Depends(get_engine),
):
    outcome = await engine.create_po(
        vendor_id=body.vendor_id,
        lines=[li.to_input() for li in body.line_items],
        created_by=current_user["user_id"],
        warehouse_id=body.warehouse_id,
        expected_delivery_date=body.expected_delivery_date,
        notes=body.notes,
        vendor_email=body.vendor_email,
        currency=body.currency,
    )
    return _to_response(outcome)


@router.put("/{po_id}", response_model=PurchaseOrderResponse)
async def update_purchase_order(
    po_id: str,
    body: PurchaseOrderUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_EDIT)),
    engine: LifecycleEngine = Depends(get_engine),
):
    changes = body.model_dump(exclude_unset=True, exclude={"line_items"})
    lines = (
        [li.to_input() for li in body.line_items]
        if body.line_items is not None
        else None
    )
    outcome = await engine.update_draft(
        po_id, changes, lines=lines, actor_id=current_user["user_id"]
    )
    return _to_response(outcome)


@router.delete("/{po_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_purchase_order(
    po_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_EDIT)),
    engine: LifecycleEngine = Depends(get_engine),
):
    await engine.delete_draft(po_id, actor_id=current_user["user_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{po_id}/submit", response_model=PurchaseOrderResponse)
async def submit_purchase_order(
    po_id: str,
    body: SubmitRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_SUBMIT)),
    engine: LifecycleEngine = Depends(get_engine),
):
    outcome = await engine.submit_for_approval(
        po_id, body.approver_ids, actor_id=current_user["user_id"]
    )
    background_tasks.add_task(publish_events, outcome.events)
    return _to_response(outcome)


@router.post("/{po_id}/dispatch", response_model=DispatchResponse)
async def dispatch_purchase_order(
    po_id: str,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_DISPATCH)),
    engine: LifecycleEngine = Depends(get_engine),
):
    outcome = await engine.dispatch_to_vendor(po_id, actor_id=current_user["user_id"])
    background_tasks.add_task(publish_events, outcome.events)
    return _to_dispatch_response(outcome)


@router.post("/{po_id}/reissue-vendor-token", response_model=DispatchResponse)
async def reissue_vendor_token(
    po_id: str,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_DISPATCH)),
    engine: LifecycleEngine = Depends(get_engine),
):
    outcome = await engine.reissue_vendor_token(po_id, actor_id=current_user["user_id"])
    background_tasks.add_task(publish_events, outcome.events)
    return _to_dispatch_response(outcome)


@router.get("/{po_id}/status", response_model=PoStatusResponse)
async def get_purchase_order_status(
    po_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_READ)),
    engine: LifecycleEngine = Depends(get_engine),
):
    return PoStatusResponse(**await engine.get_status(po_id))


@router.get("/{po_id}/history", response_model=List[AuditEntryResponse])
async def get_purchase_order_history(
    po_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_READ)),
    engine: LifecycleEngine = Depends(get_engine),
):
    return [AuditEntryResponse.from_model(e) for e in await engine.get_history(po_id)]


@router.get("/{po_id}/ledger", response_model=LedgerSummaryResponse)
async def get_purchase_order_ledger(
    po_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PO_READ)),
    engine: LifecycleEngine = Depends(get_engine),
):
    summary = await engine.get_ledger_summary(po_id)
    return LedgerSummaryResponse.model_validate(summary)


@router.put("/{po_id}/payment-status", response_model=PurchaseOrderResponse)
async def update_payment_status(
    po_id: str,
    body: PaymentStatusUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.PAYMENT_UPDATE)),
    engine: LifecycleEngine = Depends(get_engine),
):
    outcome = await engine.update_payment_status(
        po_id, body.payment_status, actor_id=current_user["user_id"]
    )
    return _to_response(outcome)
