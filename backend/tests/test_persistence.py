"""
Atomic generation commit tests: cursor compare-and-swap and storage constraints.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from backend.app.core.exceptions import StaleCursorError
from backend.app.domain.recurring.generator import InstanceGenerator
from backend.app.domain.recurring.persistence import commit_generation
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import TransactionStatus, TransactionType

PROCESSED_AT = datetime(2025, 3, 15, tzinfo=timezone.utc)


async def count_instances(session_factory, parent_id):
    async with session_factory() as session:
        return await session.scalar(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.parent_id == parent_id)
        )


async def snapshot(session_factory, parent_id, horizon):
    async with session_factory() as session:
        parent = await session.get(LedgerEntry, parent_id)
        return InstanceGenerator().generate(parent, horizon=horizon)


async def test_commit_advances_cursor_and_inserts(session_factory, make_parent):
    parent = await make_parent(date(2025, 1, 1), max_occurrences=12)
    result = await snapshot(session_factory, parent.id, date(2025, 3, 15))

    async with session_factory() as session:
        async with session.begin():
            await commit_generation(session, parent.id, result, PROCESSED_AT)

    async with session_factory() as session:
        stored = await session.get(LedgerEntry, parent.id)
        assert stored.recurrence_next_due_date == date(2025, 4, 1)
        assert stored.recurrence_occurrence_count == 3
        assert stored.last_processed_at is not None
    assert await count_instances(session_factory, parent.id) == 3


async def test_stale_snapshot_is_rejected(session_factory, make_parent):
    """Two runs read the same cursor; only the first commit lands."""
    parent = await make_parent(date(2025, 1, 1), max_occurrences=12)
    first = await snapshot(session_factory, parent.id, date(2025, 3, 15))
    second = await snapshot(session_factory, parent.id, date(2025, 3, 15))

    async with session_factory() as session:
        async with session.begin():
            await commit_generation(session, parent.id, first, PROCESSED_AT)

    with pytest.raises(StaleCursorError):
        async with session_factory() as session:
            async with session.begin():
                await commit_generation(session, parent.id, second, PROCESSED_AT)

    assert await count_instances(session_factory, parent.id) == 3
    async with session_factory() as session:
        stored = await session.get(LedgerEntry, parent.id)
        assert stored.recurrence_occurrence_count == 3


async def test_failed_insert_rolls_back_cursor(session_factory, make_parent):
    parent = await make_parent(date(2025, 1, 1))
    result = await snapshot(session_factory, parent.id, date(2025, 2, 15))
    # Duplicate date collides with the unique (parent_id, date) constraint
    result.instances[1].date = result.instances[0].date

    with pytest.raises(IntegrityError):
        async with session_factory() as session:
            async with session.begin():
                await commit_generation(session, parent.id, result, PROCESSED_AT)

    async with session_factory() as session:
        stored = await session.get(LedgerEntry, parent.id)
        assert stored.recurrence_next_due_date == date(2025, 1, 1)
        assert stored.recurrence_occurrence_count == 0
    assert await count_instances(session_factory, parent.id) == 0


async def test_parent_id_only_allowed_on_instances(db_session, make_parent):
    parent = await make_parent(date(2025, 1, 1))
    orphan = LedgerEntry(
        owner_id=1,
        category_id=parent.category_id,
        amount=Decimal("5.00"),
        type=TransactionType.EXPENSE,
        date=date(2025, 1, 2),
        balance_impact=Decimal("-5.00"),
        status=TransactionStatus.COMPLETED,
        description="Not an instance",
        is_recurring_parent=False,
        is_recurring_instance=False,
        parent_id=parent.id,
        is_deleted=False,
    )
    db_session.add(orphan)

    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()
