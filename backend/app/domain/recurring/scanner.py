"""
Due-Transaction Scanner.

Read-only query for recurring parents whose cursor has arrived. Safe to
call repeatedly and concurrently.
"""

from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.ledger_entry import LedgerEntry


def due_parents_query(
    as_of: date,
    owner_id: Optional[int] = None,
    parent_ids: Optional[Iterable[int]] = None,
) -> Select:
    """
    Active, non-deleted, non-exhausted recurring parents with next_due_date <= as_of.

    Exhaustion is evaluated in SQL from the stored bounds and cursor.
    """
    query = select(LedgerEntry).where(
        LedgerEntry.is_recurring_parent == True,  # noqa: E712
        LedgerEntry.recurrence_is_active == True,  # noqa: E712
        LedgerEntry.is_deleted == False,  # noqa: E712
        LedgerEntry.recurrence_next_due_date <= as_of,
        or_(
            LedgerEntry.recurrence_end_date.is_(None),
            LedgerEntry.recurrence_next_due_date <= LedgerEntry.recurrence_end_date,
        ),
        or_(
            LedgerEntry.recurrence_max_occurrences.is_(None),
            LedgerEntry.recurrence_occurrence_count < LedgerEntry.recurrence_max_occurrences,
        ),
    )

    if owner_id is not None:
        query = query.where(LedgerEntry.owner_id == owner_id)
    if parent_ids is not None:
        query = query.where(LedgerEntry.id.in_(list(parent_ids)))

    return query.order_by(LedgerEntry.recurrence_next_due_date, LedgerEntry.id)


async def find_due(
    db: AsyncSession,
    as_of: date,
    owner_id: Optional[int] = None,
    parent_ids: Optional[Iterable[int]] = None,
    limit: Optional[int] = None,
) -> List[LedgerEntry]:
    """
    Return due recurring parents, oldest cursor first.

    Args:
        db: Database session
        as_of: Reference date
        owner_id: Restrict to one owner's ledger
        parent_ids: Restrict to specific parents
        limit: Maximum number of parents to return
    """
    query = due_parents_query(as_of, owner_id=owner_id, parent_ids=parent_ids)
    if limit:
        query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
