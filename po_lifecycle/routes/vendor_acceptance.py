"""
Vendor acceptance routes — the only unauthenticated surface. The acceptance
token is the vendor's sole credential and scopes every call to one PO.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query
import structlog

from po_lifecycle.schemas.common import iso
from po_lifecycle.schemas.purchase_order import PoLineItemResponse
from po_lifecycle.schemas.vendor_acceptance import (
    VendorPoView,
    VendorResponseRequest,
    VendorResponseResult,
)
from po_lifecycle.services.engine import LifecycleEngine, get_engine
from po_lifecycle.services.notification_service import publish_events

logger = structlog.get_logger()
router = APIRouter()


@router.get("/po", response_model=VendorPoView)
async def get_po_by_token(
    token: str = Query(..., min_length=1),
    engine: LifecycleEngine = Depends(get_engine),
):
    outcome = await engine.get_po_by_token(token)
    po = outcome.po
    return VendorPoView(
        po_id=str(po.id),
        po_number=po.po_number,
        status=po.status,
        currency=po.currency,
        total_cents=po.total_cents,
        expected_delivery_date=iso(po.expected_delivery_date),
        warehouse_id=po.warehouse_id,
        notes=po.notes,
        line_items=[PoLineItemResponse.from_model(li) for li in outcome.lines],
    )


@router.post("/respond", response_model=VendorResponseResult)
async def respond(
    body: VendorResponseRequest,
    background_tasks: BackgroundTasks,
    engine: LifecycleEngine = Depends(get_engine),
):
    outcome = await engine.redeem_vendor_token(
        body.token, body.is_accepted, notes=body.notes, po_id=body.po_id
    )
    background_tasks.add_task(publish_events, outcome.events)
    return VendorResponseResult(
        po_id=str(outcome.po.id),
        po_number=outcome.po.po_number,
        status=outcome.po.status,
        is_vendor_accepted=bool(outcome.po.is_vendor_accepted),
    )
