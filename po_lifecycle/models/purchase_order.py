import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Boolean,
    Integer,
    DateTime,
    Date,
    Text,
    Uuid,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from po_lifecycle.database import Base, utcnow


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    po_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    vendor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    vendor_email: Mapped[Optional[str]] = mapped_column(String(255))
    warehouse_id: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(50), default="DRAFT")
    total_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    received_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    payment_status: Mapped[str] = mapped_column(String(20), default="PENDING")
    expected_delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_vendor_accepted: Mapped[Optional[bool]] = mapped_column(Boolean)
    vendor_notes: Mapped[Optional[str]] = mapped_column(Text)
    vendor_responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint("received_cents >= 0", name="chk_po_received_nonneg"),
        CheckConstraint(
            "received_cents <= total_cents", name="chk_po_received_le_total"
        ),
        Index("idx_po_vendor", "vendor_id"),
        Index("idx_po_status", "status"),
    )

    @property
    def remaining_balance_cents(self) -> int:
        return max(0, (self.total_cents or 0) - (self.received_cents or 0))


class PoLineItem(Base):
    __tablename__ = "po_line_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    po_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(String(64))
    ordered_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    received_quantity: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("po_id", "line_number", name="uq_po_line_item"),
        CheckConstraint("ordered_quantity > 0", name="chk_po_line_qty"),
        CheckConstraint("unit_price_cents >= 0", name="chk_po_line_price"),
        CheckConstraint(
            "received_quantity >= 0 AND received_quantity <= ordered_quantity",
            name="chk_po_line_received",
        ),
        Index("idx_po_items_po", "po_id"),
    )

    @property
    def line_total_cents(self) -> int:
        return self.ordered_quantity * self.unit_price_cents

    @property
    def received_value_cents(self) -> int:
        return (self.received_quantity or 0) * self.unit_price_cents
