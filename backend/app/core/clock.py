"""
Clock abstraction for the recurring engine.

Services receive a Clock instead of calling ``datetime.utcnow()`` so that
scheduler ticks and tests can pin "now" to a known instant.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone


class Clock(ABC):
    """Supplies the current instant (timezone-aware, UTC)."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Clock frozen at a given instant.

    Accepts a date (midnight UTC) or a datetime. ``advance_to`` moves it.
    """

    def __init__(self, instant):
        self._instant = self._coerce(instant)

    @staticmethod
    def _coerce(instant) -> datetime:
        if isinstance(instant, datetime):
            if instant.tzinfo is None:
                return instant.replace(tzinfo=timezone.utc)
            return instant
        return datetime(instant.year, instant.month, instant.day, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def advance_to(self, instant) -> None:
        self._instant = self._coerce(instant)


system_clock = SystemClock()
