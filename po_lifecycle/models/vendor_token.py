import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    Uuid,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from po_lifecycle.database import Base, utcnow


class VendorAcceptanceToken(Base):
    """Single-use capability letting an unauthenticated vendor answer one PO.

    Only the SHA-256 digest of the token is persisted; the raw value exists
    in the dispatch response and the vendor's link.
    """

    __tablename__ = "vendor_acceptance_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    po_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    decision: Mapped[Optional[bool]] = mapped_column(Boolean)
    issued_by: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow
    )

    __table_args__ = (
        Index("idx_vendor_tokens_po", "po_id"),
    )

    def is_live(self, now: datetime) -> bool:
        return (
            self.consumed_at is None
            and self.revoked_at is None
            and self.expires_at > now
        )
