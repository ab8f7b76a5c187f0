"""
Vendor acceptance gate — single-use, time-boxed capability tokens that let an
unauthenticated vendor accept or reject exactly one dispatched PO.

Issuing a token revokes any earlier live token for the same PO, so a PO never
has more than one. Redemption is a compare-and-swap UPDATE: only the caller
whose UPDATE flips consumed_at from NULL wins; every replay fails.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from po_lifecycle.config import settings
from po_lifecycle.database import utcnow
from po_lifecycle.errors import InvalidStateError, TokenInvalidError
from po_lifecycle.models.purchase_order import PurchaseOrder
from po_lifecycle.models.vendor_token import VendorAcceptanceToken
from po_lifecycle.services.state_machine import POStatus

logger = structlog.get_logger()

TOKEN_BYTES = 32
DISPATCH_STATES = frozenset({POStatus.APPROVED, POStatus.VENDOR_REVIEW})


@dataclass
class IssuedToken:
    token: str
    po_id: str
    expires_at: datetime

    @property
    def accept_url(self) -> str:
        return f"{settings.VENDOR_ACCEPT_URL}?token={self.token}"


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _invalid_reason(row: Optional[VendorAcceptanceToken], now: datetime) -> str:
    if row is None:
        return "unknown"
    if row.consumed_at is not None:
        return "already_used"
    if row.revoked_at is not None:
        return "superseded"
    if row.expires_at <= now:
        return "expired"
    return "unavailable"


async def revoke_live_tokens(session: AsyncSession, po_id) -> int:
    result = await session.execute(
        update(VendorAcceptanceToken)
        .where(
            VendorAcceptanceToken.po_id == po_id,
            VendorAcceptanceToken.consumed_at.is_(None),
            VendorAcceptanceToken.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
        .execution_options(synchronize_session="evaluate")
    )
    return result.rowcount or 0


async def issue_token(
    session: AsyncSession,
    po: PurchaseOrder,
    issued_by: Optional[str] = None,
    ttl_hours: Optional[int] = None,
) -> IssuedToken:
    """Mint a fresh token for po, invalidating any earlier live one."""
    if po.status not in DISPATCH_STATES:
        raise InvalidStateError(po.status, "issue_vendor_token")

    revoked = await revoke_live_tokens(session, po.id)

    raw_token = secrets.token_urlsafe(TOKEN_BYTES)
    expires_at = utcnow() + timedelta(
        hours=ttl_hours if ttl_hours is not None else settings.VENDOR_TOKEN_TTL_HOURS
    )
    session.add(
        VendorAcceptanceToken(
            po_id=po.id,
            token_hash=hash_token(raw_token),
            expires_at=expires_at,
            issued_by=issued_by,
        )
    )
    await session.flush()

    logger.info(
        "vendor_token_issued",
        po_id=str(po.id),
        expires_at=expires_at.isoformat(),
        revoked_previous=revoked,
    )
    return IssuedToken(token=raw_token, po_id=str(po.id), expires_at=expires_at)


async def find_token(session: AsyncSession, raw_token: str) -> Optional[VendorAcceptanceToken]:
    if not raw_token:
        return None
    result = await session.execute(
        select(VendorAcceptanceToken).where(
            VendorAcceptanceToken.token_hash == hash_token(raw_token)
        )
    )
    return result.scalar_one_or_none()


async def get_live_token(session: AsyncSession, raw_token: str) -> VendorAcceptanceToken:
    """Validate raw_token without consuming it."""
    row = await find_token(session, raw_token)
    now = utcnow()
    if row is None or not row.is_live(now):
        reason = _invalid_reason(row, now)
        logger.warning("vendor_token_rejected", reason=reason)
        raise TokenInvalidError(
            "This acceptance link is invalid, expired, or has already been used",
            reason=reason,
        )
    return row


async def redeem(
    session: AsyncSession,
    row: VendorAcceptanceToken,
    accepted: bool,
) -> None:
    """Atomically consume row; raise TokenInvalidError if anyone got there first."""
    now = utcnow()
    result = await session.execute(
        update(VendorAcceptanceToken)
        .where(
            VendorAcceptanceToken.id == row.id,
            VendorAcceptanceToken.consumed_at.is_(None),
            VendorAcceptanceToken.revoked_at.is_(None),
            VendorAcceptanceToken.expires_at > now,
        )
        .values(consumed_at=now, decision=accepted)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        await session.refresh(row)
        reason = _invalid_reason(row, now)
        logger.warning("vendor_token_redeem_lost", po_id=str(row.po_id), reason=reason)
        raise TokenInvalidError(
            "This acceptance link is invalid, expired, or has already been used",
            reason=reason,
        )
