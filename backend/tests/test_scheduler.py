"""
Processing scheduler tests.

Parents are processed one at a time here (max_concurrency=1) because the
in-memory SQLite engine shares a single connection between sessions.
"""

import asyncio

import pytest
from datetime import date, datetime, timezone
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from backend.app.core.exceptions import PersistenceError, StaleCursorError
from backend.app.core.reliability import CircuitBreaker
from backend.app.domain.recurring.persistence import commit_generation
from backend.app.domain.recurring.scheduler import RecurringScheduler
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import RecurrenceFrequency, TransactionStatus
from backend.app.models.notification import Notification, NotificationType
from backend.app.services.ledger_notifier import InAppLedgerNotifier, LedgerMutationNotifier


@pytest.fixture
def scheduler(session_factory, clock):
    return RecurringScheduler(session_factory, clock=clock, max_concurrency=1)


async def load(session_factory, entry_id):
    async with session_factory() as session:
        return await session.get(LedgerEntry, entry_id)


async def instances_of(session_factory, parent_id):
    async with session_factory() as session:
        result = await session.execute(
            select(LedgerEntry).where(LedgerEntry.parent_id == parent_id).order_by(LedgerEntry.date)
        )
        return list(result.scalars().all())


async def test_catches_up_missed_occurrences(scheduler, session_factory, make_parent):
    parent = await make_parent(date(2025, 1, 1), max_occurrences=12)

    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.to_dict() == {"processed": 1, "created": 3, "failed": []}
    instances = await instances_of(session_factory, parent.id)
    assert [i.date for i in instances] == [date(2025, 1, 1), date(2025, 2, 1), date(2025, 3, 1)]
    assert all(i.status == TransactionStatus.SCHEDULED for i in instances)

    stored = await load(session_factory, parent.id)
    assert stored.recurrence_next_due_date == date(2025, 4, 1)
    assert stored.recurrence_occurrence_count == 3


async def test_repeat_run_is_idempotent(scheduler, session_factory, make_parent):
    parent = await make_parent(date(2025, 1, 1))

    await scheduler.process_due(date(2025, 3, 15))
    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.to_dict() == {"processed": 0, "created": 0, "failed": []}
    assert len(await instances_of(session_factory, parent.id)) == 3


async def test_defaults_to_clock_today(scheduler, session_factory, make_parent, clock):
    parent = await make_parent(date(2025, 3, 1), frequency=RecurrenceFrequency.WEEKLY)

    summary = await scheduler.process_due()

    # Mar 1, Mar 8, Mar 15 (clock is pinned to Mar 15)
    assert summary.created == 3
    stored = await load(session_factory, parent.id)
    assert stored.recurrence_next_due_date == date(2025, 3, 22)
    assert stored.last_processed_at is not None


async def test_empty_scan(scheduler):
    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.to_dict() == {"processed": 0, "created": 0, "failed": []}


async def test_end_date_exhausts_parent(scheduler, session_factory, make_parent):
    parent = await make_parent(date(2025, 1, 1), end_date=date(2025, 2, 1))

    first = await scheduler.process_due(date(2025, 3, 15))
    second = await scheduler.process_due(date(2025, 12, 31))

    assert first.created == 2
    assert second.processed == 0
    stored = await load(session_factory, parent.id)
    assert stored.recurrence_next_due_date == date(2025, 3, 1)


async def test_invalid_rule_is_isolated(scheduler, session_factory, make_parent):
    broken = await make_parent(date(2025, 1, 1), interval=0)
    healthy = await make_parent(date(2025, 2, 1))

    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.processed == 2
    assert summary.created == 2
    assert [f.parent_id for f in summary.failed] == [broken.id]
    assert summary.failed[0].error_code == "ERR_RECURRING_001"

    stored_broken = await load(session_factory, broken.id)
    assert stored_broken.recurrence_next_due_date == date(2025, 1, 1)
    assert stored_broken.recurrence_occurrence_count == 0
    assert stored_broken.last_processing_error == "Interval must be at least 1"
    assert stored_broken.last_processing_failed_at is not None
    assert stored_broken.recurrence_is_active is False
    assert await instances_of(session_factory, broken.id) == []

    assert len(await instances_of(session_factory, healthy.id)) == 2


async def test_invalid_rule_is_not_retried(scheduler, session_factory, make_parent):
    broken = await make_parent(date(2025, 1, 1), interval=0)

    first = await scheduler.process_due(date(2025, 3, 15))
    failed_at = (await load(session_factory, broken.id)).last_processing_failed_at
    second = await scheduler.process_due(date(2025, 4, 15))

    assert len(first.failed) == 1
    assert second.to_dict() == {"processed": 0, "created": 0, "failed": []}
    stored = await load(session_factory, broken.id)
    assert stored.last_processing_failed_at == failed_at
    assert stored.last_processing_error == "Interval must be at least 1"


async def test_failed_parent_stays_due_and_retries(scheduler, session_factory, make_parent, mocker):
    parent = await make_parent(date(2025, 1, 1))
    mocker.patch(
        "backend.app.domain.recurring.scheduler.commit_generation",
        side_effect=OperationalError("UPDATE ledger_entries", {}, Exception("database is locked")),
    )

    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.processed == 1
    assert summary.created == 0
    assert summary.failed[0].error_code == "ERR_PERSISTENCE_001"
    stored = await load(session_factory, parent.id)
    assert stored.recurrence_occurrence_count == 0
    assert stored.last_processing_error is not None

    mocker.stopall()
    retry = await scheduler.process_due(date(2025, 3, 15))

    assert retry.to_dict() == {"processed": 1, "created": 3, "failed": []}
    stored = await load(session_factory, parent.id)
    assert stored.recurrence_occurrence_count == 3
    assert stored.last_processing_error is None
    assert stored.last_processing_failed_at is None


async def test_concurrent_advance_is_not_a_failure(scheduler, session_factory, make_parent, mocker):
    parent = await make_parent(date(2025, 1, 1))
    mocker.patch(
        "backend.app.domain.recurring.scheduler.commit_generation",
        side_effect=StaleCursorError(parent.id),
    )

    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.to_dict() == {"processed": 1, "created": 0, "failed": []}
    stored = await load(session_factory, parent.id)
    assert stored.last_processing_error is None


async def test_overlapping_runs_generate_each_date_once(session_factory, clock, make_parent, mocker):
    parent = await make_parent(date(2025, 1, 1))
    first_run = RecurringScheduler(session_factory, clock=clock, max_concurrency=1)
    second_run = RecurringScheduler(session_factory, clock=clock, max_concurrency=1)

    real_commit = commit_generation
    generated = asyncio.Event()
    release = asyncio.Event()
    calls = []

    async def hold_first_commit(session, parent_id, result, processed_at):
        calls.append(parent_id)
        if len(calls) == 1:
            # First run has generated from the old cursor; let the second run finish first
            generated.set()
            await release.wait()
        await real_commit(session, parent_id, result, processed_at)

    mocker.patch(
        "backend.app.domain.recurring.scheduler.commit_generation",
        side_effect=hold_first_commit,
    )

    slow = asyncio.create_task(first_run.process_due(date(2025, 3, 15)))
    await generated.wait()
    fast = await second_run.process_due(date(2025, 3, 15))
    release.set()
    late = await slow

    assert fast.to_dict() == {"processed": 1, "created": 3, "failed": []}
    assert late.to_dict() == {"processed": 1, "created": 0, "failed": []}
    instances = await instances_of(session_factory, parent.id)
    assert [i.date for i in instances] == [date(2025, 1, 1), date(2025, 2, 1), date(2025, 3, 1)]
    stored = await load(session_factory, parent.id)
    assert stored.recurrence_occurrence_count == 3
    assert stored.recurrence_next_due_date == date(2025, 4, 1)


async def test_scan_failure_raises_persistence_error(scheduler, mocker):
    mocker.patch(
        "backend.app.domain.recurring.scheduler.find_due",
        side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
    )

    with pytest.raises(PersistenceError):
        await scheduler.process_due(date(2025, 3, 15))


async def test_expired_deadline_defers_every_parent(session_factory, clock, make_parent):
    parent = await make_parent(date(2025, 1, 1))
    scheduler = RecurringScheduler(session_factory, clock=clock, max_concurrency=1, tick_deadline_seconds=-1)

    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.processed == 0
    assert summary.deferred == 1
    stored = await load(session_factory, parent.id)
    assert stored.recurrence_occurrence_count == 0


async def test_owner_and_id_scoping(scheduler, session_factory, make_parent):
    mine = await make_parent(date(2025, 3, 1))
    also_mine = await make_parent(date(2025, 3, 1), description="Gym")
    theirs = await make_parent(date(2025, 3, 1), owner_id=2)

    summary = await scheduler.process_due(date(2025, 3, 15), owner_id=1, parent_ids=[mine.id])

    assert summary.processed == 1
    assert len(await instances_of(session_factory, mine.id)) == 1
    assert await instances_of(session_factory, also_mine.id) == []
    assert await instances_of(session_factory, theirs.id) == []


async def test_notifier_receives_committed_instances(session_factory, clock, make_parent, mocker):
    notifier = mocker.AsyncMock()
    scheduler = RecurringScheduler(session_factory, clock=clock, notifier=notifier, max_concurrency=1)
    parent = await make_parent(date(2025, 2, 1))

    await scheduler.process_due(date(2025, 3, 15))

    notifier.notify.assert_awaited_once()
    owner_id, parent_id, instances = notifier.notify.await_args.args
    assert (owner_id, parent_id) == (1, parent.id)
    assert [i.date for i in instances] == [date(2025, 2, 1), date(2025, 3, 1)]
    assert all(i.id is not None for i in instances)


class RecordingNotifier(LedgerMutationNotifier):
    def __init__(self):
        self.batches = []

    async def notify(self, owner_id, parent_id, instances):
        self.batches.append((owner_id, parent_id, [i.date for i in instances]))


async def test_custom_notifier_implementation(session_factory, clock, make_parent):
    notifier = RecordingNotifier()
    scheduler = RecurringScheduler(session_factory, clock=clock, notifier=notifier, max_concurrency=1)
    parent = await make_parent(date(2025, 3, 1))
    await make_parent(date(2025, 4, 1), description="Not yet due")

    await scheduler.process_due(date(2025, 3, 15))

    assert notifier.batches == [(1, parent.id, [date(2025, 3, 1)])]


async def test_notifier_failure_keeps_ledger_commit(session_factory, clock, make_parent, mocker):
    notifier = mocker.AsyncMock()
    notifier.notify.side_effect = RuntimeError("push gateway down")
    scheduler = RecurringScheduler(session_factory, clock=clock, notifier=notifier, max_concurrency=1)
    parent = await make_parent(date(2025, 2, 1))

    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.to_dict() == {"processed": 1, "created": 2, "failed": []}
    assert len(await instances_of(session_factory, parent.id)) == 2


async def test_in_app_notifier_writes_notification(session_factory, clock, make_parent):
    notifier = InAppLedgerNotifier(session_factory, breaker=CircuitBreaker())
    scheduler = RecurringScheduler(session_factory, clock=clock, notifier=notifier, max_concurrency=1)
    parent = await make_parent(date(2025, 2, 1))

    await scheduler.process_due(date(2025, 3, 15))

    async with session_factory() as session:
        notifications = (await session.execute(select(Notification))).scalars().all()
    assert len(notifications) == 1
    note = notifications[0]
    assert note.user_id == 1
    assert note.type == NotificationType.RECURRING_GENERATED
    assert note.metadata_payload["parent_id"] == parent.id
    assert note.metadata_payload["dates"] == ["2025-02-01", "2025-03-01"]


async def test_open_circuit_skips_notifier(session_factory, clock, make_parent):
    breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60)
    breaker.record_failure()
    notifier = InAppLedgerNotifier(session_factory, breaker=breaker)
    scheduler = RecurringScheduler(session_factory, clock=clock, notifier=notifier, max_concurrency=1)
    parent = await make_parent(date(2025, 3, 1))

    summary = await scheduler.process_due(date(2025, 3, 15))

    assert summary.created == 1
    async with session_factory() as session:
        assert await session.scalar(select(func.count(Notification.id))) == 0
    assert len(await instances_of(session_factory, parent.id)) == 1


async def test_processed_at_comes_from_clock(scheduler, session_factory, make_parent, clock):
    clock.advance_to(datetime(2025, 3, 15, 6, 30, tzinfo=timezone.utc))
    parent = await make_parent(date(2025, 3, 1))

    await scheduler.process_due()

    stored = await load(session_factory, parent.id)
    assert stored.last_processed_at.replace(tzinfo=timezone.utc) == datetime(2025, 3, 15, 6, 30, tzinfo=timezone.utc)
