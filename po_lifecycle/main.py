from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from po_lifecycle.config import settings
from po_lifecycle.database import close_db, get_db, init_db
from po_lifecycle.errors import LifecycleError
from po_lifecycle.logging_config import setup_logging
from po_lifecycle.middleware.correlation import CorrelationIdMiddleware
from po_lifecycle.routes.approvals import router as approvals_router
from po_lifecycle.routes.grns import router as grns_router
from po_lifecycle.routes.purchase_orders import router as po_router
from po_lifecycle.routes.vendor_acceptance import router as vendor_acceptance_router
from po_lifecycle.services.cache import cache
from po_lifecycle.services.email_service import close_http_client

import po_lifecycle.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("po_lifecycle_starting", env=settings.ENVIRONMENT, version=settings.APP_VERSION)
    await init_db()
    yield
    await close_http_client()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


def _envelope(code: str, message: str, **extra) -> dict:
    return {"error": {"code": code, "message": message, **extra}}


# ---------------------------------------------------------------------------
# Error envelope: every failure leaves as {"error": {"code", "message", ...}}
# ---------------------------------------------------------------------------

@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=jsonable_encoder({"error": exc.to_dict()}),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        content = detail if "error" in detail else {"error": detail}
    else:
        content = _envelope("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_envelope(
            "VALIDATION_ERROR",
            "Request validation failed",
            details=jsonable_encoder(exc.errors()),
        ),
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    checks = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        checks["db"] = "error"

    # The snapshot cache only speeds up reads, so it never fails the check.
    if settings.snapshot_cache_enabled:
        try:
            checks["redis"] = "ok" if await cache.ping() else "error"
        except Exception as e:
            logger.warning("health_check_redis_failed", error=str(e))
            checks["redis"] = "error"

    healthy = checks["db"] == "ok"
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.APP_VERSION,
        "checks": checks,
    }


app.include_router(po_router, prefix="/api/v1/purchase-orders", tags=["Purchase Orders"])
app.include_router(approvals_router, prefix="/api/v1/approvals", tags=["Approvals"])
app.include_router(grns_router, prefix="/api/v1/grns", tags=["GRNs"])
app.include_router(vendor_acceptance_router, prefix="/vendor-acceptance", tags=["Vendor Acceptance"])
