"""
Due-date calculator.

Pure date arithmetic, no I/O and no clock access.
"""

import calendar
from datetime import date, timedelta

from backend.app.models.ledger_enums import RecurrenceFrequency

DAY_STEPS = {
    RecurrenceFrequency.DAILY: 1,
    RecurrenceFrequency.WEEKLY: 7,
    RecurrenceFrequency.BIWEEKLY: 14,
}

MONTH_STEPS = {
    RecurrenceFrequency.MONTHLY: 1,
    RecurrenceFrequency.QUARTERLY: 3,
    RecurrenceFrequency.YEARLY: 12,
}


def add_months(anchor: date, months: int) -> date:
    """
    Add calendar months, clamping the day to the target month's length.

    Jan 31 + 1 month is Feb 28 (Feb 29 in leap years), never March.
    """
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor.day, last_day))


def next_due(anchor: date, rule) -> date:
    """
    Next occurrence after ``anchor`` for the rule's frequency and interval.

    The result depends only on the anchor, so a clamped date carries forward
    (Jan 31 -> Feb 28 -> Mar 28).
    """
    if rule.frequency in DAY_STEPS:
        return anchor + timedelta(days=DAY_STEPS[rule.frequency] * rule.interval)
    return add_months(anchor, MONTH_STEPS[rule.frequency] * rule.interval)
