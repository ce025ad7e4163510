"""
Ledger Service (Domain Logic).

Creation, lookup, status changes and soft deletion of ledger entries.
Methods flush; the caller commits.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import and_, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InvalidRuleError, LedgerValidationError, ResourceNotFoundError
from backend.app.domain.ledger.balance import TWO_PLACES, compute_balance_impact
from backend.app.domain.recurring.due_date import next_due
from backend.app.domain.recurring.rule import RecurrenceRule
from backend.app.models.category import Category
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.ledger_enums import TransactionStatus, TransactionType
from backend.app.schemas.ledger import LedgerEntryCreate, RecurrenceConfig


class LedgerService:

    @staticmethod
    def build_recurrence(anchor: date, config: RecurrenceConfig) -> RecurrenceRule:
        """
        Build and validate the rule for a new recurring parent.

        Without an explicit next_due_date the parent itself is the first
        occurrence and the cursor starts one step after the anchor.
        """
        rule = RecurrenceRule(
            frequency=config.frequency,
            interval=config.interval,
            next_due_date=config.next_due_date or anchor,
            end_date=config.end_date,
            max_occurrences=config.max_occurrences,
            is_active=config.is_active,
            occurrence_count=0,
        )
        rule.validate()

        if config.next_due_date is None:
            rule = RecurrenceRule(
                frequency=rule.frequency,
                interval=rule.interval,
                next_due_date=next_due(anchor, rule),
                end_date=rule.end_date,
                max_occurrences=rule.max_occurrences,
                is_active=rule.is_active,
            )

        if rule.end_date is not None and rule.end_date <= anchor:
            raise InvalidRuleError("End date must be after transaction date", field="end_date")
        return rule

    @staticmethod
    async def _validate_category(db: AsyncSession, owner_id: int, data: LedgerEntryCreate) -> Category:
        category = await db.get(Category, data.category_id)
        if category is None:
            raise LedgerValidationError("Category does not exist", field="category_id")
        if category.owner_id != owner_id:
            raise LedgerValidationError("Category must belong to the same user", field="category_id")
        if data.type != TransactionType.TRANSFER and category.type.value != data.type.value:
            raise LedgerValidationError("Category type must match transaction type", field="category_id")
        return category

    @staticmethod
    def _validate_fields(data: LedgerEntryCreate, today: date) -> None:
        if data.date > today and not data.is_recurring and data.status != TransactionStatus.SCHEDULED:
            raise LedgerValidationError(
                "Transaction date cannot be in the future for completed transactions", field="date"
            )
        if data.type == TransactionType.TRANSFER:
            if not data.from_account:
                raise LedgerValidationError("From account is required for transfer transactions", field="from_account")
            if not data.to_account:
                raise LedgerValidationError("To account is required for transfer transactions", field="to_account")
        if data.is_recurring and data.recurrence is None:
            raise InvalidRuleError("Recurring configuration is required for recurring transactions")
        if not data.is_recurring and data.recurrence is not None:
            raise LedgerValidationError(
                "Recurring configuration given for a non-recurring transaction", field="recurrence"
            )

    @staticmethod
    async def create_entry(
        db: AsyncSession,
        owner_id: int,
        data: LedgerEntryCreate,
        today: date,
    ) -> LedgerEntry:
        """
        Create a manual entry or a recurring parent.

        Raises:
            LedgerValidationError: field or category rule violated
            InvalidRuleError: recurrence configuration invalid
        """
        LedgerService._validate_fields(data, today)
        await LedgerService._validate_category(db, owner_id, data)

        amount = Decimal(data.amount).quantize(TWO_PLACES)
        entry = LedgerEntry(
            owner_id=owner_id,
            category_id=data.category_id,
            amount=amount,
            type=data.type,
            date=data.date,
            balance_impact=compute_balance_impact(data.type, amount),
            status=data.status,
            description=data.description,
            notes=data.notes,
            payee=data.payee,
            tags=list(data.tags),
            from_account=data.from_account,
            to_account=data.to_account,
            reference_number=data.reference_number,
            external_id=data.external_id,
            is_recurring_parent=data.is_recurring,
            is_recurring_instance=False,
            is_deleted=False,
        )
        if data.is_recurring:
            entry.apply_recurrence(LedgerService.build_recurrence(data.date, data.recurrence))

        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def get_entry(db: AsyncSession, entry_id: int, include_deleted: bool = False) -> LedgerEntry:
        entry = await db.get(LedgerEntry, entry_id)
        if entry is None or (entry.is_deleted and not include_deleted):
            raise ResourceNotFoundError("Transaction", entry_id)
        return entry

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        owner_id: int,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        recurring_parents_only: bool = False,
        include_deleted: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[LedgerEntry], int]:
        """Owner's entries, most recent first, plus the unpaginated total."""
        filters = [LedgerEntry.owner_id == owner_id]
        if not include_deleted:
            filters.append(LedgerEntry.is_deleted == False)  # noqa: E712
        if type is not None:
            filters.append(LedgerEntry.type == type)
        if status is not None:
            filters.append(LedgerEntry.status == status)
        if date_from is not None:
            filters.append(LedgerEntry.date >= date_from)
        if date_to is not None:
            filters.append(LedgerEntry.date <= date_to)
        if recurring_parents_only:
            filters.append(LedgerEntry.is_recurring_parent == True)  # noqa: E712

        total = await db.scalar(select(func.count(LedgerEntry.id)).where(and_(*filters)))
        result = await db.execute(
            select(LedgerEntry)
            .where(and_(*filters))
            .order_by(LedgerEntry.date.desc(), LedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    @staticmethod
    async def list_instances(db: AsyncSession, parent_id: int, include_deleted: bool = False) -> List[LedgerEntry]:
        query = select(LedgerEntry).where(LedgerEntry.parent_id == parent_id)
        if not include_deleted:
            query = query.where(LedgerEntry.is_deleted == False)  # noqa: E712
        result = await db.execute(query.order_by(LedgerEntry.date))
        return list(result.scalars().all())

    @staticmethod
    async def update_status(db: AsyncSession, entry: LedgerEntry, status: TransactionStatus) -> LedgerEntry:
        """Move an entry between statuses, e.g. reconcile a scheduled instance."""
        entry.status = status
        entry.balance_impact = compute_balance_impact(entry.type, entry.amount)
        await db.flush()
        return entry

    @staticmethod
    async def soft_delete(db: AsyncSession, entry: LedgerEntry, now: datetime) -> LedgerEntry:
        entry.is_deleted = True
        if entry.deleted_at is None:
            entry.deleted_at = now
        await db.flush()
        return entry

    @staticmethod
    async def restore(db: AsyncSession, entry: LedgerEntry) -> LedgerEntry:
        entry.is_deleted = False
        entry.deleted_at = None
        await db.flush()
        return entry

    @staticmethod
    async def purge_deleted(db: AsyncSession, older_than_days: int, now: datetime) -> int:
        """
        Retention sweep: hard-delete entries soft-deleted before the cutoff.

        Parents still referenced by a surviving instance are kept so that
        every instance's parent_id stays resolvable.
        """
        cutoff = now - timedelta(days=older_than_days)
        candidates = set((await db.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.is_deleted == True,  # noqa: E712
                LedgerEntry.deleted_at < cutoff,
            )
        )).scalars().all())
        if not candidates:
            return 0

        referenced = set((await db.execute(
            select(LedgerEntry.parent_id).where(
                LedgerEntry.parent_id.in_(candidates),
                LedgerEntry.id.not_in(candidates),
            )
        )).scalars().all())

        purgeable = candidates - referenced
        if not purgeable:
            return 0

        # Children first so the self-referencing foreign key never dangles
        child_ids = set((await db.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.id.in_(purgeable),
                LedgerEntry.parent_id.is_not(None),
            )
        )).scalars().all())
        if child_ids:
            await db.execute(delete(LedgerEntry).where(LedgerEntry.id.in_(child_ids)))
        remaining = purgeable - child_ids
        if remaining:
            await db.execute(delete(LedgerEntry).where(LedgerEntry.id.in_(remaining)))
        await db.flush()
        return len(purgeable)
