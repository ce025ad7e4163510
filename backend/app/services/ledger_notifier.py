"""
Ledger Mutation Notifier.

Told about newly generated recurring instances after their commit.
Delivery is best effort: callers log failures and never roll back the
ledger because of them.
"""

import logging
from typing import Callable, List, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.reliability import CircuitBreaker, notifier_circuit_breaker
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.notification import NotificationType
from backend.app.services.notification_service import NotificationService

logger = logging.getLogger("finance.notifier")


class LedgerMutationNotifier(Protocol):
    async def notify(self, owner_id: int, parent_id: int, instances: List[LedgerEntry]) -> None:
        ...


class InAppLedgerNotifier:
    """
    Writes one in-app notification per processed parent, in its own session.

    Calls go through a circuit breaker so a broken notification store is
    skipped quickly instead of slowing every scheduler tick.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        breaker: CircuitBreaker = None,
    ):
        self._session_factory = session_factory
        self._breaker = breaker or notifier_circuit_breaker

    async def notify(self, owner_id: int, parent_id: int, instances: List[LedgerEntry]) -> None:
        if not instances:
            return
        await self._breaker.call(self._write, owner_id, parent_id, instances)

    async def _write(self, owner_id: int, parent_id: int, instances: List[LedgerEntry]) -> None:
        first, last = instances[0], instances[-1]
        count = len(instances)
        title = "Recurring transaction scheduled" if count == 1 else "Recurring transactions scheduled"
        message = (
            f"{count} scheduled transaction{'s' if count != 1 else ''} created for "
            f"'{first.description}' ({first.date.isoformat()}"
            + (f" to {last.date.isoformat()})" if count > 1 else ")")
        )

        async with self._session_factory() as session:
            await NotificationService.create_notification(
                session,
                user_id=owner_id,
                title=title,
                message=message,
                type=NotificationType.RECURRING_GENERATED,
                metadata={
                    "parent_id": parent_id,
                    "instance_ids": [i.id for i in instances],
                    "dates": [i.date.isoformat() for i in instances],
                },
            )
            await session.commit()

        logger.debug("Recurring notification written", extra={"owner_id": owner_id, "parent_id": parent_id})
