from __future__ import annotations
# po_lifecycle/services/cache.py
import json
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from po_lifecycle.config import settings

logger = structlog.get_logger()

# Shared client; one TLS connection pool for every Upstash call.
_http = httpx.AsyncClient(
    limits=httpx.Limits(max_connections=20, max_keepalive_connections=10, keepalive_expiry=30)
)


class UpstashClient:
    def __init__(self):
        self.url = settings.UPSTASH_REDIS_REST_URL
        self.headers = {"Authorization": f"Bearer {settings.UPSTASH_REDIS_REST_TOKEN}"}

    async def get(self, key: str) -> str | None:
        r = await _http.get(f"{self.url}/get/{key}", headers=self.headers)
        return r.json().get("result")

    async def set(self, key: str, value: str, ex: int = 300):
        await self.pipeline([["SET", key, value, "EX", str(ex)]])

    async def pipeline(self, commands: list[list]) -> list:
        r = await _http.post(
            f"{self.url}/pipeline", headers=self.headers, json=commands
        )
        return r.json()

    async def delete(self, key: str):
        await _http.get(f"{self.url}/del/{key}", headers=self.headers)

    async def ping(self) -> bool:
        r = await _http.get(f"{self.url}/ping", headers=self.headers)
        return r.json().get("result") == "PONG"


cache = UpstashClient()


class SnapshotCache:
    """
    Read-through cache of PO status snapshots, keyed by PO id.

    The engine invalidates a PO's entry after every committed transition.
    Cache failures never fail the read: they are logged and the loader is used.
    """

    KEY_PREFIX = "po_snapshot"

    def __init__(self, backend: Optional[Any] = None, ttl: int = 300, enabled: bool = True):
        self.backend = backend
        self.ttl = ttl
        self.enabled = enabled and backend is not None

    def key(self, po_id) -> str:
        return f"{self.KEY_PREFIX}:{po_id}"

    async def get_or_load(
        self, po_id, loader: Callable[[], Awaitable[dict]]
    ) -> dict:
        if self.enabled:
            try:
                cached = await self.backend.get(self.key(po_id))
                if cached:
                    logger.debug("po_snapshot_cache_hit", po_id=str(po_id))
                    return json.loads(cached)
            except Exception as e:
                logger.warning("po_snapshot_cache_get_failed", po_id=str(po_id), error=str(e))

        snapshot = await loader()

        if self.enabled:
            try:
                await self.backend.set(self.key(po_id), json.dumps(snapshot), self.ttl)
            except Exception as e:
                logger.warning("po_snapshot_cache_set_failed", po_id=str(po_id), error=str(e))
        return snapshot

    async def invalidate(self, po_id) -> None:
        if not self.enabled:
            return
        try:
            await self.backend.delete(self.key(po_id))
        except Exception as e:
            logger.warning("po_snapshot_cache_invalidate_failed", po_id=str(po_id), error=str(e))


def default_snapshot_cache() -> SnapshotCache:
    return SnapshotCache(
        backend=cache,
        ttl=settings.PO_SNAPSHOT_CACHE_TTL,
        enabled=settings.snapshot_cache_enabled,
    )
