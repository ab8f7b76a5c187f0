import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Integer,
    DateTime,
    Date,
    Text,
    Uuid,
    ForeignKey,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from po_lifecycle.database import Base, utcnow


class GoodsReceivedNote(Base):
    __tablename__ = "goods_received_notes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    grn_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    po_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id"), nullable=False
    )
    warehouse_id: Mapped[str] = mapped_column(String(64), nullable=False)
    received_by: Mapped[Optional[str]] = mapped_column(String(64))
    received_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING")
    total_received_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','PARTIAL','COMPLETED')",
            name="chk_grn_status",
        ),
        Index("idx_grn_po", "po_id"),
        Index("idx_grn_warehouse", "warehouse_id"),
    )


class GrnLineItem(Base):
    __tablename__ = "grn_line_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    grn_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("goods_received_notes.id", ondelete="CASCADE"),
        nullable=False,
    )
    po_line_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("po_line_items.id"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(String(64))
    quantity_received: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    line_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    condition: Mapped[str] = mapped_column(String(20), default="GOOD")
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "quantity_received > 0", name="chk_grn_line_qty"
        ),
        CheckConstraint(
            "condition IN ('GOOD','DAMAGED','PARTIAL')",
            name="chk_grn_line_condition",
        ),
        Index("idx_grn_line_items_grn", "grn_id"),
    )
