import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Text,
    Uuid,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from po_lifecycle.database import Base, utcnow


class Approval(Base):
    __tablename__ = "po_approvals"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    po_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id"), nullable=False
    )
    approver_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING")
    comment: Mapped[Optional[str]] = mapped_column(Text)
    signature_ref: Mapped[Optional[str]] = mapped_column(String(500))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("po_id", "approver_id", name="uq_po_approver"),
        CheckConstraint(
            "status IN ('PENDING','APPROVED','REJECTED')",
            name="chk_approval_status",
        ),
        Index("idx_approvals_po", "po_id"),
        Index("idx_approvals_approver", "approver_id", "status"),
    )
