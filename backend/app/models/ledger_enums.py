"""
Ledger enumerations.
"""

import enum


class TransactionType(str, enum.Enum):
    """Transaction type enumeration."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"  # Moves money between accounts, no balance impact


class TransactionStatus(str, enum.Enum):
    """Transaction status enumeration."""
    COMPLETED = "completed"
    PENDING = "pending"
    SCHEDULED = "scheduled"  # Generated by the recurring engine, not yet reconciled
    CANCELLED = "cancelled"


class RecurrenceFrequency(str, enum.Enum):
    """Recurrence frequency enumeration."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class CategoryType(str, enum.Enum):
    """Category type enumeration. Transfers may use either kind."""
    INCOME = "income"
    EXPENSE = "expense"
