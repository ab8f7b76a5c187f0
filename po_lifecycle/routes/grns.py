from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
import structlog

from po_lifecycle.middleware.auth import get_current_user
from po_lifecycle.middleware.authorization import Capability, require_capability
from po_lifecycle.schemas.common import PaginatedResponse, PaginationMeta
from po_lifecycle.schemas.grn import GrnCreate, GrnResponse
from po_lifecycle.services.engine import LifecycleEngine, get_engine
from po_lifecycle.services.notification_service import publish_events

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=PaginatedResponse[GrnResponse])
async def list_grns(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    po_id: str = Query(None),
    warehouse_id: str = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.GRN_READ)),
    engine: LifecycleEngine = Depends(get_engine),
):
    rows, total = await engine.list_grns(
        page=page, limit=limit, po_id=po_id, warehouse_id=warehouse_id
    )
    return PaginatedResponse(
        data=[GrnResponse.from_model(grn, lines) for grn, lines in rows],
        pagination=PaginationMeta.for_page(page, limit, total),
    )


@router.get("/{grn_id}", response_model=GrnResponse)
async def get_grn(
    grn_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.GRN_READ)),
    engine: LifecycleEngine = Depends(get_engine),
):
    grn, lines = await engine.get_grn(grn_id)
    return GrnResponse.from_model(grn, lines)


@router.post("", response_model=GrnResponse, status_code=status.HTTP_201_CREATED)
async def create_grn(
    body: GrnCreate,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_capability(Capability.GRN_POST)),
    engine: LifecycleEngine = Depends(get_engine),
):
    outcome = await engine.post_grn(
        body.po_id,
        [li.to_request() for li in body.line_items],
        warehouse_id=body.warehouse_id,
        received_by=current_user["user_id"],
        received_date=body.received_date,
        notes=body.notes,
    )
    background_tasks.add_task(publish_events, outcome.events)
    return GrnResponse.from_model(outcome.grn, outcome.grn_lines, po_status=outcome.po.status)
