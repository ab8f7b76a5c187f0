"""
LifecycleEngine — the single entry point for every PO lifecycle operation.

Each status-mutating call runs as one unit of work under the PO's lock:
take the in-process lock, open a session, load the PO FOR UPDATE, run the
lifecycle operation, commit (or roll back on any error), invalidate the
cached status snapshot, release the lock. Notifications are returned to the
caller as events and delivered only after the commit has succeeded.
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

import structlog

from po_lifecycle.database import AsyncSessionLocal
from po_lifecycle.errors import LifecycleError
from po_lifecycle.services import lifecycle_service, vendor_acceptance_service
from po_lifecycle.services.cache import SnapshotCache, default_snapshot_cache
from po_lifecycle.services.ledger_service import LedgerSummary
from po_lifecycle.services.lifecycle_service import (
    LineItemInput,
    TransitionOutcome,
    parse_id,
)
from po_lifecycle.services.locks import PoLockRegistry, po_locks
from po_lifecycle.services.receiving_service import GrnLineRequest

logger = structlog.get_logger()


class LifecycleEngine:
    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        locks: Optional[PoLockRegistry] = None,
        snapshot_cache: Optional[SnapshotCache] = None,
    ):
        self.session_factory = session_factory
        self.locks = locks if locks is not None else po_locks
        self.snapshot_cache = (
            snapshot_cache if snapshot_cache is not None else default_snapshot_cache()
        )

    @asynccontextmanager
    async def _session(self):
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except LifecycleError as e:
                await session.rollback()
                logger.warning("po_operation_rejected", code=e.code, message=e.message)
                raise
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def unit_of_work(self, po_id):
        """Serialize all mutations of one PO; commit before the lock is released."""
        key = str(parse_id(po_id))
        with structlog.contextvars.bound_contextvars(po_id=key):
            async with self.locks.hold(key):
                async with self._session() as session:
                    yield session
                await self.snapshot_cache.invalidate(key)

    # ---- Draft ----

    async def create_po(
        self,
        vendor_id: str,
        lines: list[LineItemInput],
        created_by: Optional[str] = None,
        warehouse_id: Optional[str] = None,
        expected_delivery_date: Optional[date] = None,
        notes: Optional[str] = None,
        vendor_email: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> TransitionOutcome:
        async with self._session() as session:
            return await lifecycle_service.create_po(
                session,
                vendor_id=vendor_id,
                lines=lines,
                created_by=created_by,
                warehouse_id=warehouse_id,
                expected_delivery_date=expected_delivery_date,
                notes=notes,
                vendor_email=vendor_email,
                currency=currency,
            )

    async def update_draft(
        self,
        po_id,
        changes: dict,
        lines: Optional[list[LineItemInput]] = None,
        actor_id: Optional[str] = None,
    ) -> TransitionOutcome:
        async with self.unit_of_work(po_id) as session:
            return await lifecycle_service.update_draft(
                session, po_id, changes, lines=lines, actor_id=actor_id
            )

    async def delete_draft(self, po_id, actor_id: Optional[str] = None) -> None:
        async with self.unit_of_work(po_id) as session:
            await lifecycle_service.delete_draft(session, po_id, actor_id=actor_id)

    # ---- Approval ----

    async def submit_for_approval(
        self, po_id, approver_ids: list[str], actor_id: Optional[str] = None
    ) -> TransitionOutcome:
        async with self.unit_of_work(po_id) as session:
            return await lifecycle_service.submit_for_approval(
                session, po_id, approver_ids, actor_id=actor_id
            )

    async def resolve_approval(
        self,
        po_id,
        approver_id: str,
        decision: str,
        comment: Optional[str] = None,
        signature_ref: Optional[str] = None,
    ) -> TransitionOutcome:
        async with self.unit_of_work(po_id) as session:
            return await lifecycle_service.resolve_approval(
                session, po_id, approver_id, decision, comment, signature_ref
            )

    # ---- Vendor ----

    async def dispatch_to_vendor(self, po_id, actor_id: Optional[str] = None) -> TransitionOutcome:
        async with self.unit_of_work(po_id) as session:
            return await lifecycle_service.dispatch_to_vendor(session, po_id, actor_id=actor_id)

    async def reissue_vendor_token(
        self, po_id, actor_id: Optional[str] = None
    ) -> TransitionOutcome:
        async with self.unit_of_work(po_id) as session:
            return await lifecycle_service.reissue_vendor_token(session, po_id, actor_id=actor_id)

    async def redeem_vendor_token(
        self,
        token: str,
        accepted: bool,
        notes: Optional[str] = None,
        po_id=None,
    ) -> TransitionOutcome:
        # The token itself names its PO; look it up first to know which lock to take.
        async with self.session_factory() as session:
            row = await vendor_acceptance_service.get_live_token(session, token)
            token_po_id = row.po_id

        async with self.unit_of_work(token_po_id) as session:
            return await lifecycle_service.redeem_vendor_token(
                session, token, accepted, notes=notes, expected_po_id=po_id
            )

    async def get_po_by_token(self, token: str) -> TransitionOutcome:
        async with self.session_factory() as session:
            return await lifecycle_service.get_po_by_token(session, token)

    # ---- Receiving ----

    async def post_grn(
        self,
        po_id,
        lines: list[GrnLineRequest],
        warehouse_id: Optional[str] = None,
        received_by: Optional[str] = None,
        received_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> TransitionOutcome:
        async with self.unit_of_work(po_id) as session:
            return await lifecycle_service.post_grn(
                session,
                po_id,
                lines,
                warehouse_id=warehouse_id,
                received_by=received_by,
                received_date=received_date,
                notes=notes,
            )

    async def update_payment_status(
        self, po_id, payment_status: str, actor_id: Optional[str] = None
    ) -> TransitionOutcome:
        async with self.unit_of_work(po_id) as session:
            return await lifecycle_service.update_payment_status(
                session, po_id, payment_status, actor_id=actor_id
            )

    # ---- Reads ----

    async def get_status(self, po_id) -> dict:
        key = str(parse_id(po_id))

        async def load() -> dict:
            async with self.session_factory() as session:
                return await lifecycle_service.get_status(session, key)

        # Load and store under the PO's lock: a commit's invalidation must not
        # land between the read and the cache write.
        async with self.locks.hold(key):
            return await self.snapshot_cache.get_or_load(key, load)

    async def get_ledger_summary(self, po_id) -> LedgerSummary:
        async with self.session_factory() as session:
            return await lifecycle_service.get_ledger_summary(session, po_id)

    async def get_history(self, po_id):
        async with self.session_factory() as session:
            return await lifecycle_service.get_history(session, po_id)

    async def get_po(self, po_id) -> TransitionOutcome:
        async with self.session_factory() as session:
            return await lifecycle_service.get_po_detail(session, po_id)

    async def list_pos(self, **filters) -> tuple[list[TransitionOutcome], int]:
        async with self.session_factory() as session:
            return await lifecycle_service.list_pos(session, **filters)

    async def list_approvals(self, **filters):
        async with self.session_factory() as session:
            return await lifecycle_service.list_approvals(session, **filters)

    async def get_grn(self, grn_id):
        async with self.session_factory() as session:
            return await lifecycle_service.get_grn(session, grn_id)

    async def list_grns(self, **filters):
        async with self.session_factory() as session:
            return await lifecycle_service.list_grns(session, **filters)


_engine: Optional[LifecycleEngine] = None


def get_engine() -> LifecycleEngine:
    """FastAPI dependency; tests override it with an engine bound to their database."""
    global _engine
    if _engine is None:
        _engine = LifecycleEngine()
    return _engine
