import json
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import po_lifecycle.models  # noqa: F401
from po_lifecycle.database import Base
from po_lifecycle.services.cache import SnapshotCache
from po_lifecycle.services.engine import LifecycleEngine
from po_lifecycle.services.lifecycle_service import LineItemInput
from po_lifecycle.services.locks import PoLockRegistry
from po_lifecycle.services.receiving_service import GrnLineRequest


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database per test, schema created from the models."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'po_lifecycle_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class FakeCacheBackend:
    """In-memory stand-in for the Upstash client."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.deleted: list[str] = []

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int = 300):
        self.store[key] = value

    async def delete(self, key: str):
        self.deleted.append(key)
        self.store.pop(key, None)

    def snapshot(self, key: str) -> Optional[dict]:
        raw = self.store.get(key)
        return json.loads(raw) if raw else None


@pytest.fixture
def cache_backend():
    return FakeCacheBackend()


@pytest.fixture
def lifecycle_engine(session_factory, cache_backend):
    return LifecycleEngine(
        session_factory=session_factory,
        locks=PoLockRegistry(),
        snapshot_cache=SnapshotCache(backend=cache_backend, ttl=60),
    )


# ---------------------------------------------------------------------------
# Lifecycle driver: walks a PO to a given stage through the public engine API
# ---------------------------------------------------------------------------


APPROVERS = ["approver-1", "approver-2", "approver-3"]


class LifecycleDriver:
    def __init__(self, engine: LifecycleEngine):
        self.engine = engine

    async def draft(self, lines=((10, 500), (4, 1000)), warehouse_id="wh-1"):
        outcome = await self.engine.create_po(
            vendor_id="vendor-1",
            vendor_email="sales@vendor.example.com",
            warehouse_id=warehouse_id,
            created_by="buyer-1",
            lines=[
                LineItemInput(product_id=f"prod-{i}", quantity=qty, unit_price_cents=price)
                for i, (qty, price) in enumerate(lines, start=1)
            ],
        )
        return outcome.po.id

    async def pending(self, approvers=APPROVERS, **kwargs):
        po_id = await self.draft(**kwargs)
        await self.engine.submit_for_approval(po_id, list(approvers), actor_id="buyer-1")
        return po_id

    async def approved(self, approvers=APPROVERS, **kwargs):
        po_id = await self.pending(approvers=approvers, **kwargs)
        for approver in approvers:
            await self.engine.resolve_approval(po_id, approver, "approve")
        return po_id

    async def in_vendor_review(self, **kwargs):
        po_id = await self.approved(**kwargs)
        outcome = await self.engine.dispatch_to_vendor(po_id, actor_id="buyer-1")
        return po_id, outcome.vendor_token.token

    async def accepted(self, **kwargs):
        po_id, token = await self.in_vendor_review(**kwargs)
        await self.engine.redeem_vendor_token(token, True, notes="Will ship Monday")
        return po_id

    async def receive(self, po_id, *quantities, warehouse_id=None):
        """Post one GRN receiving quantities[i] against line i+1 (0 skips the line)."""
        detail = await self.engine.get_po(po_id)
        requests = [
            GrnLineRequest(quantity=qty, po_line_item_id=str(line.id))
            for line, qty in zip(detail.lines, quantities)
            if qty
        ]
        return await self.engine.post_grn(
            po_id, requests, warehouse_id=warehouse_id, received_by="clerk-1"
        )


@pytest.fixture
def driver(lifecycle_engine):
    return LifecycleDriver(lifecycle_engine)
