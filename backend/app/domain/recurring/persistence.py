"""
Atomic commit of a generation result.

The cursor advance is the commit point. It is written as a compare-and-swap
on (next_due_date, occurrence_count) in the same transaction as the new
instances, so a concurrent or repeated run can never materialize the same
due date twice.
"""

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import StaleCursorError
from backend.app.domain.recurring.generator import GenerationResult
from backend.app.models.ledger_entry import LedgerEntry


async def commit_generation(
    db: AsyncSession,
    parent_id: int,
    result: GenerationResult,
    processed_at: datetime,
) -> None:
    """
    Advance the parent's cursor and insert the instances.

    Must run inside a transaction owned by the caller; nothing is committed here.
    The parent object already in the session is not refreshed.

    Raises:
        StaleCursorError: the stored cursor no longer matches result.original_rule
    """
    expected = result.original_rule
    updated = result.updated_rule

    stmt = (
        update(LedgerEntry)
        .where(
            LedgerEntry.id == parent_id,
            LedgerEntry.recurrence_next_due_date == expected.next_due_date,
            LedgerEntry.recurrence_occurrence_count == expected.occurrence_count,
        )
        .values(
            recurrence_next_due_date=updated.next_due_date,
            recurrence_occurrence_count=updated.occurrence_count,
            last_processed_at=processed_at,
            last_processing_error=None,
            last_processing_failed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    cas = await db.execute(stmt)
    if cas.rowcount != 1:
        raise StaleCursorError(parent_id)

    db.add_all(result.instances)
    await db.flush()
