"""
Instance Generator.

Expands a recurring parent into scheduled child entries between its cursor
and a horizon. Pure: the parent is never mutated and nothing is persisted
here; ``persistence.commit_generation`` writes the result atomically.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional

from backend.app.core.config import settings
from backend.app.core.exceptions import InvalidRuleError, ParentNotRecurringError
from backend.app.domain.ledger.balance import compute_balance_impact
from backend.app.domain.recurring.due_date import next_due
from backend.app.domain.recurring.rule import RecurrenceRule
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import TransactionStatus


@dataclass(frozen=True)
class GenerationResult:
    """
    Output of one generate() call.

    instances are in ascending date order and updated_rule.next_due_date is
    strictly after every one of them (or the rule is exhausted).
    """
    original_rule: RecurrenceRule
    updated_rule: RecurrenceRule
    instances: List[LedgerEntry] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.instances)


def default_horizon(rule: RecurrenceRule, today: date, horizon_days: int = None) -> date:
    """min(end_date, today + horizon_days)."""
    horizon_days = horizon_days or settings.recurring_default_horizon_days
    horizon = today + timedelta(days=horizon_days)
    if rule.end_date is not None and rule.end_date < horizon:
        return rule.end_date
    return horizon


def materialize_instance(parent: LedgerEntry, occurrence_date: date) -> LedgerEntry:
    """Copy the parent's financial fields into a new scheduled instance."""
    return LedgerEntry(
        owner_id=parent.owner_id,
        category_id=parent.category_id,
        amount=parent.amount,
        type=parent.type,
        date=occurrence_date,
        balance_impact=compute_balance_impact(parent.type, parent.amount),
        status=TransactionStatus.SCHEDULED,
        description=parent.description,
        notes=parent.notes,
        payee=parent.payee,
        tags=list(parent.tags) if parent.tags else [],
        from_account=parent.from_account,
        to_account=parent.to_account,
        is_recurring_parent=False,
        is_recurring_instance=True,
        parent_id=parent.id,
        is_deleted=False,
    )


class InstanceGenerator:
    """
    Usage:
        generator = InstanceGenerator()
        result = generator.generate(parent, horizon=date(2025, 3, 15))
    """

    def __init__(self, max_interval: int = None, max_occurrences: int = None, horizon_days: int = None):
        self.max_interval = max_interval or settings.recurring_max_interval
        self.max_occurrences = max_occurrences or settings.recurring_max_occurrences
        self.horizon_days = horizon_days or settings.recurring_default_horizon_days

    def generate(
        self,
        parent: LedgerEntry,
        horizon: Optional[date] = None,
        today: Optional[date] = None,
    ) -> GenerationResult:
        """
        Materialize every occurrence from the cursor up to ``horizon``.

        Args:
            parent: Recurring parent entry (left untouched)
            horizon: Last date to generate for (inclusive)
            today: Required when horizon is omitted; the horizon then
                defaults to min(end_date, today + horizon_days)

        Raises:
            ParentNotRecurringError: parent is not a recurring parent
            InvalidRuleError: rule missing or out of bounds
        """
        if not parent.is_recurring_parent:
            raise ParentNotRecurringError(parent.id)

        rule = parent.recurrence
        if rule is None:
            raise InvalidRuleError("Recurring configuration is required for recurring transactions")
        rule.validate(self.max_interval, self.max_occurrences)

        if horizon is None:
            if today is None:
                raise ValueError("Either horizon or today must be given")
            horizon = default_horizon(rule, today, self.horizon_days)

        original = rule
        instances = []
        while not rule.is_exhausted and rule.next_due_date <= horizon:
            instances.append(materialize_instance(parent, rule.next_due_date))
            rule = rule.advance(next_due(rule.next_due_date, rule))

        return GenerationResult(original_rule=original, updated_rule=rule, instances=instances)
