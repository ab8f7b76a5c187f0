"""
PO audit trail.

One row per lifecycle transition, written inside the same transaction as the
transition itself, so a rolled-back operation leaves no trace here either.
"""

from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from po_lifecycle.database import utcnow
from po_lifecycle.models.audit_log import AuditLog

logger = structlog.get_logger()


def changed_fields(before: Optional[dict], after: Optional[dict]) -> Optional[list[str]]:
    if not before or not after:
        return None
    keys = sorted(set(before) | set(after))
    return [k for k in keys if before.get(k) != after.get(k)] or None


async def create_audit_log(
    session: AsyncSession,
    actor_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    before_state: Optional[dict] = None,
    after_state: Optional[dict] = None,
) -> AuditLog:
    """Add an entry and flush; the caller's unit of work commits it."""
    entry = AuditLog(
        actor_id=str(actor_id) if actor_id is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before_state=before_state,
        after_state=after_state,
        changed_fields=changed_fields(before_state, after_state),
        request_id=structlog.contextvars.get_contextvars().get("request_id"),
        created_at=utcnow(),
    )
    session.add(entry)
    await session.flush()

    logger.debug(
        "audit_log_created",
        action=action,
        entity_id=str(entity_id),
        actor_id=actor_id,
    )
    return entry


async def list_entries(
    session: AsyncSession, entity_type: str, entity_id: uuid.UUID
) -> list[AuditLog]:
    result = await session.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at, AuditLog.id)
    )
    return list(result.scalars().all())
