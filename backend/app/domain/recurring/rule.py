"""
Recurrence Rule value object.

Frequency, interval, bounds (end date / max occurrences) and the cursor
state (next due date, occurrence count) of a recurring parent. Immutable:
advancing the cursor returns a new rule.
"""

from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from backend.app.core.config import settings
from backend.app.core.exceptions import InvalidRuleError
from backend.app.models.ledger_enums import RecurrenceFrequency


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: RecurrenceFrequency
    interval: int
    next_due_date: date
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    is_active: bool = True
    occurrence_count: int = 0

    def __post_init__(self):
        # Unknown frequencies are rejected here, not in the calculator
        try:
            frequency = RecurrenceFrequency(self.frequency)
        except ValueError:
            raise InvalidRuleError(
                f"Frequency must be one of: {', '.join(f.value for f in RecurrenceFrequency)}",
                field="frequency"
            )
        object.__setattr__(self, "frequency", frequency)

    @property
    def is_exhausted(self) -> bool:
        """
        True once the rule must no longer generate, regardless of is_active.
        """
        if self.max_occurrences is not None and self.occurrence_count >= self.max_occurrences:
            return True
        if self.end_date is not None and self.next_due_date > self.end_date:
            return True
        return False

    def validate(self, max_interval: int = None, max_occurrences: int = None) -> "RecurrenceRule":
        """
        Check numeric bounds and required cursor state.

        Raises:
            InvalidRuleError: on the first violated bound
        """
        max_interval = max_interval or settings.recurring_max_interval
        max_occurrences = max_occurrences or settings.recurring_max_occurrences

        if not isinstance(self.interval, int) or self.interval <= 0:
            raise InvalidRuleError("Interval must be at least 1", field="interval")
        if self.interval > max_interval:
            raise InvalidRuleError(f"Interval cannot exceed {max_interval}", field="interval")
        if self.next_due_date is None:
            raise InvalidRuleError("Next due date is required for recurring transactions", field="next_due_date")
        if self.max_occurrences is not None:
            if self.max_occurrences < 1:
                raise InvalidRuleError("Max occurrences must be at least 1", field="max_occurrences")
            if self.max_occurrences > max_occurrences:
                raise InvalidRuleError(
                    f"Max occurrences cannot exceed {max_occurrences}", field="max_occurrences"
                )
        if self.occurrence_count is None or self.occurrence_count < 0:
            raise InvalidRuleError("Occurrence count cannot be negative", field="occurrence_count")
        return self

    def advance(self, next_due_date: date) -> "RecurrenceRule":
        """Record one materialized occurrence and move the cursor."""
        return replace(
            self,
            next_due_date=next_due_date,
            occurrence_count=self.occurrence_count + 1,
        )
