from sqlalchemy import Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from po_lifecycle.database import Base

PO_PREFIX = "PO"
GRN_PREFIX = "GRN"

SEQUENCE_NAMES = (PO_PREFIX, GRN_PREFIX)


class NumberSequence(Base):
    """One counter row per document prefix; incremented in place, never read-then-written."""

    __tablename__ = "number_sequences"

    name: Mapped[str] = mapped_column(String(20), primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


@event.listens_for(NumberSequence.__table__, "after_create")
def _seed_sequences(target, connection, **kw):
    connection.execute(target.insert(), [{"name": n, "current_value": 0} for n in SEQUENCE_NAMES])
