"""
Processing Scheduler.

One tick: scan for due recurring parents, then for each parent run
generate-and-commit in its own session. Per-parent state machine:

    pending -> generating -> advanced | failed

The cursor advance is the only persisted progress, so a failed parent stays
due and is retried on the next tick without double counting. A malformed
rule is the exception: it is deactivated instead. Failures are isolated
per parent and aggregated into the returned summary.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import Clock, system_clock
from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AppException, InvalidRuleError, ParentNotRecurringError, PersistenceError, StaleCursorError
)
from backend.app.core.reliability import CircuitOpenError
from backend.app.domain.recurring.generator import InstanceGenerator
from backend.app.domain.recurring.persistence import commit_generation
from backend.app.domain.recurring.scanner import find_due
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.services.ledger_notifier import LedgerMutationNotifier

logger = logging.getLogger("finance.recurring.scheduler")


class ParentState(str, enum.Enum):
    PENDING = "pending"
    GENERATING = "generating"
    ADVANCED = "advanced"
    FAILED = "failed"


@dataclass
class FailedParent:
    parent_id: int
    error: str
    error_code: str = "ERR_INTERNAL_SERVER"


@dataclass
class ParentOutcome:
    parent_id: int
    state: ParentState
    created: List[LedgerEntry] = field(default_factory=list)
    failure: Optional[FailedParent] = None


@dataclass
class ProcessingSummary:
    processed: int = 0
    created: int = 0
    failed: List[FailedParent] = field(default_factory=list)
    deferred: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "created": self.created,
            "failed": [{"parent_id": f.parent_id, "error": f.error} for f in self.failed],
        }


class RecurringScheduler:
    """
    Usage:
        scheduler = RecurringScheduler(AsyncSessionLocal, notifier=InAppLedgerNotifier(AsyncSessionLocal))
        summary = await scheduler.process_due(date(2025, 3, 15))
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        clock: Clock = None,
        generator: InstanceGenerator = None,
        notifier: Optional[LedgerMutationNotifier] = None,
        max_concurrency: int = None,
        tick_deadline_seconds: float = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or system_clock
        self._generator = generator or InstanceGenerator()
        self._notifier = notifier
        self._max_concurrency = max(1, max_concurrency or settings.scheduler_max_concurrency)
        self._tick_deadline = (
            tick_deadline_seconds if tick_deadline_seconds is not None
            else settings.scheduler_tick_deadline_seconds
        )

    async def process_due(
        self,
        as_of: Optional[date] = None,
        owner_id: Optional[int] = None,
        parent_ids: Optional[Iterable[int]] = None,
    ) -> ProcessingSummary:
        """
        Generate every occurrence due up to ``as_of`` (default: clock's today).

        The horizon is ``as_of`` itself, never the future, which bounds the batch.

        Raises:
            PersistenceError: the scan itself failed (no parent was touched)
        """
        as_of = as_of or self._clock.today()

        try:
            async with self._session_factory() as session:
                due = await find_due(session, as_of, owner_id=owner_id, parent_ids=parent_ids)
                due_ids = [p.id for p in due]
        except SQLAlchemyError as exc:
            logger.error("Recurring scan failed", extra={"as_of": as_of.isoformat()})
            raise PersistenceError(f"Recurring scan failed: {exc}") from exc

        summary = ProcessingSummary()
        if not due_ids:
            logger.debug("No recurring parents due", extra={"as_of": as_of.isoformat()})
            return summary

        deadline = time.monotonic() + self._tick_deadline if self._tick_deadline else None
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(parent_id: int) -> Optional[ParentOutcome]:
            async with semaphore:
                if deadline is not None and time.monotonic() > deadline:
                    return None
                return await self._process_parent(parent_id, as_of)

        outcomes = await asyncio.gather(*(run(pid) for pid in due_ids))

        for outcome in outcomes:
            if outcome is None:
                summary.deferred += 1
                continue
            summary.processed += 1
            summary.created += len(outcome.created)
            if outcome.state == ParentState.FAILED:
                summary.failed.append(outcome.failure)

        log = logger.warning if summary.failed else logger.info
        log(
            "Recurring processing finished",
            extra={
                "as_of": as_of.isoformat(),
                "due": len(due_ids),
                "processed": summary.processed,
                "created_count": summary.created,
                "failed": len(summary.failed),
                "deferred": summary.deferred,
            },
        )
        return summary

    async def _process_parent(self, parent_id: int, as_of: date) -> ParentOutcome:
        self._transition(parent_id, ParentState.PENDING)
        owner_id = None
        try:
            self._transition(parent_id, ParentState.GENERATING)
            async with self._session_factory() as session:
                async with session.begin():
                    parent = await session.get(LedgerEntry, parent_id, populate_existing=True)
                    if parent is None or parent.is_deleted:
                        # Gone between scan and processing
                        self._transition(parent_id, ParentState.ADVANCED, created_count=0)
                        return ParentOutcome(parent_id, ParentState.ADVANCED)

                    owner_id = parent.owner_id
                    result = self._generator.generate(parent, horizon=as_of)
                    if result.instances:
                        await commit_generation(session, parent_id, result, self._clock.now())
                    instances = result.instances

        except StaleCursorError:
            logger.info("Recurring cursor advanced concurrently, skipping", extra={"parent_id": parent_id})
            self._transition(parent_id, ParentState.ADVANCED, created_count=0)
            return ParentOutcome(parent_id, ParentState.ADVANCED)
        except (InvalidRuleError, ParentNotRecurringError) as exc:
            return await self._fail(parent_id, exc)
        except SQLAlchemyError as exc:
            return await self._fail(parent_id, PersistenceError(str(exc)))
        except Exception as exc:
            logger.exception("Unexpected error processing recurring parent", extra={"parent_id": parent_id})
            return await self._fail(parent_id, exc)

        self._transition(parent_id, ParentState.ADVANCED, created_count=len(instances))
        await self._notify(owner_id, parent_id, instances)
        return ParentOutcome(parent_id, ParentState.ADVANCED, created=instances)

    async def _fail(self, parent_id: int, exc: Exception) -> ParentOutcome:
        if isinstance(exc, AppException):
            failure = FailedParent(parent_id, exc.message, exc.error_code)
        else:
            failure = FailedParent(parent_id, f"{type(exc).__name__}: {exc}")

        self._transition(parent_id, ParentState.FAILED, error_code=failure.error_code, error=failure.error)
        await self._record_failure(parent_id, failure.error, deactivate=isinstance(exc, InvalidRuleError))
        return ParentOutcome(parent_id, ParentState.FAILED, failure=failure)

    async def _record_failure(self, parent_id: int, error: str, deactivate: bool = False) -> None:
        """
        Best-effort 'last processing attempt failed' metadata on the parent.

        A malformed rule is never retried: it is deactivated so the scanner
        stops returning it, and the error stays on the parent for its owner.
        """
        values = {
            "last_processing_error": error[:1000],
            "last_processing_failed_at": self._clock.now(),
        }
        if deactivate:
            values["recurrence_is_active"] = False
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(LedgerEntry)
                    .where(LedgerEntry.id == parent_id)
                    .values(**values)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning(
                "Could not record processing failure",
                extra={"parent_id": parent_id, "error": str(exc)},
            )

    async def _notify(self, owner_id: int, parent_id: int, instances: List[LedgerEntry]) -> None:
        if self._notifier is None or not instances:
            return
        try:
            await self._notifier.notify(owner_id, parent_id, instances)
        except CircuitOpenError:
            logger.warning("Notifier circuit open, notification dropped", extra={"parent_id": parent_id})
        except Exception:
            logger.exception("Ledger mutation notifier failed", extra={"parent_id": parent_id})

    @staticmethod
    def _transition(parent_id: int, state: ParentState, **context) -> None:
        level = logging.WARNING if state == ParentState.FAILED else logging.DEBUG
        logger.log(level, "Recurring parent %s -> %s", parent_id, state.value, extra={"parent_id": parent_id, **context})
