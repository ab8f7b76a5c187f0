"""
Human-readable document numbers (PO-000001, GRN-000001).

The counter row is bumped with a single UPDATE before it is read back, so the
row stays write-locked until the caller's transaction ends. Concurrent units of
work on different POs therefore queue on the counter instead of colliding on
the unique number column.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from po_lifecycle.errors import ConfigurationError
from po_lifecycle.models.number_sequence import NumberSequence


async def next_number(session: AsyncSession, prefix: str) -> str:
    result = await session.execute(
        update(NumberSequence)
        .where(NumberSequence.name == prefix)
        .values(current_value=NumberSequence.current_value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConfigurationError(f"No number sequence configured for '{prefix}'")

    value = await session.scalar(
        select(NumberSequence.current_value).where(NumberSequence.name == prefix)
    )
    return f"{prefix}-{value:06d}"
