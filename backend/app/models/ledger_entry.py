"""
Ledger Entry database model.

A single financial transaction. Recurring parents carry their recurrence
rule inline as ``recurrence_*`` columns, so advancing the rule's cursor and
inserting the generated instances commit in one transaction.
"""

from sqlalchemy import (
    Column, Integer, Numeric, ForeignKey, DateTime, Date, Enum, String, Text,
    Boolean, JSON, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.ledger_enums import TransactionType, TransactionStatus, RecurrenceFrequency
from backend.app.domain.recurring.rule import RecurrenceRule


class LedgerEntry(Base):
    """
    Ledger Entry model.

    - balance_impact is +amount for income, -amount for expense, 0 for transfer,
      and is written explicitly by whoever persists the row.
    - parent_id is set only on recurring instances and points at a recurring parent.
    - Rows are soft-deleted; hard deletion happens only in the retention sweep.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint(
            "parent_id IS NULL OR is_recurring_instance",
            name="ck_ledger_parent_only_on_instances"
        ),
        CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
        UniqueConstraint("parent_id", "date", name="uq_ledger_instance_parent_date"),
        Index(
            "ix_ledger_recurring_due",
            "is_recurring_parent", "recurrence_is_active", "recurrence_next_due_date"
        ),
        Index("ix_ledger_owner_date", "owner_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership
    owner_id = Column(Integer, nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)

    # Financials
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(Enum(TransactionType), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    balance_impact = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False, index=True)

    # Details
    description = Column(String(200), nullable=False)
    notes = Column(Text, nullable=True)
    payee = Column(String(100), nullable=True)
    tags = Column(JSON, nullable=True)
    from_account = Column(String(100), nullable=True)  # transfers only
    to_account = Column(String(100), nullable=True)  # transfers only
    reference_number = Column(String(50), nullable=True)
    external_id = Column(String(100), nullable=True, index=True)

    # Recurrence linkage
    is_recurring_parent = Column(Boolean, default=False, nullable=False)
    is_recurring_instance = Column(Boolean, default=False, nullable=False)
    parent_id = Column(Integer, ForeignKey("ledger_entries.id"), nullable=True, index=True)

    # Recurrence rule (parents only)
    recurrence_frequency = Column(Enum(RecurrenceFrequency), nullable=True)
    recurrence_interval = Column(Integer, nullable=True)
    recurrence_end_date = Column(Date, nullable=True)
    recurrence_max_occurrences = Column(Integer, nullable=True)
    recurrence_next_due_date = Column(Date, nullable=True)
    recurrence_is_active = Column(Boolean, nullable=True)
    recurrence_occurrence_count = Column(Integer, nullable=True)

    # Processing metadata (parents only)
    last_processed_at = Column(DateTime(timezone=True), nullable=True)
    last_processing_error = Column(Text, nullable=True)
    last_processing_failed_at = Column(DateTime(timezone=True), nullable=True)

    # Soft deletion
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def recurrence(self):
        """The embedded RecurrenceRule, or None when this is not a recurring parent."""
        if not self.is_recurring_parent or self.recurrence_frequency is None:
            return None
        return RecurrenceRule(
            frequency=self.recurrence_frequency,
            interval=self.recurrence_interval,
            next_due_date=self.recurrence_next_due_date,
            end_date=self.recurrence_end_date,
            max_occurrences=self.recurrence_max_occurrences,
            is_active=bool(self.recurrence_is_active),
            occurrence_count=self.recurrence_occurrence_count or 0,
        )

    def apply_recurrence(self, rule: RecurrenceRule) -> None:
        """Write a rule's fields back onto the row."""
        self.recurrence_frequency = rule.frequency
        self.recurrence_interval = rule.interval
        self.recurrence_next_due_date = rule.next_due_date
        self.recurrence_end_date = rule.end_date
        self.recurrence_max_occurrences = rule.max_occurrences
        self.recurrence_is_active = rule.is_active
        self.recurrence_occurrence_count = rule.occurrence_count

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.type}', amount={self.amount}, date={self.date})>"
