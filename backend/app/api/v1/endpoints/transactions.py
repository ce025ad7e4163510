"""
Transaction API Endpoints.

Per-user ledger entries, recurring parents and their generated instances.
Every query is scoped to the caller's own ledger.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.clock import Clock
from backend.app.core.dependencies import get_current_user, get_clock, get_recurring_scheduler
from backend.app.core.guards import OwnershipGuard
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.domain.recurring.scanner import find_due
from backend.app.domain.recurring.scheduler import RecurringScheduler
from backend.app.models.ledger_enums import TransactionStatus, TransactionType
from backend.app.schemas.ledger import (
    LedgerEntryCreate, LedgerEntryResponse, LedgerEntryListResponse, StatusUpdate
)
from backend.app.schemas.recurring import ProcessRequest, ProcessingSummaryResponse, DueParentsResponse
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/transactions", tags=["Transactions"])
ownership_guard = OwnershipGuard()


@router.post("", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: LedgerEntryCreate,
    current_user: dict = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a transaction, or a recurring parent when ``is_recurring`` is set.

    Validates:
    - Category exists, belongs to the caller and matches the type
    - Transfers name both accounts
    - Recurrence rule bounds
    """
    entry = await LedgerService.create_entry(db, current_user["user_id"], data, clock.today())
    await db.commit()
    await db.refresh(entry)

    await log_event(
        db=db,
        action=AuditAction.TRANSACTION_CREATED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        entry_id=entry.id,
        metadata={
            "type": entry.type.value,
            "amount": str(entry.amount),
            "is_recurring_parent": entry.is_recurring_parent,
        }
    )

    return LedgerEntryResponse.model_validate(entry)


@router.get("", response_model=LedgerEntryListResponse)
async def list_transactions(
    type: Optional[TransactionType] = Query(None),
    status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    recurring_only: bool = Query(False, description="Only recurring parents"),
    include_deleted: bool = Query(False),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's transactions, most recent first."""
    items, total = await LedgerService.list_entries(
        db,
        ownership_guard.owner_filter(current_user),
        type=type,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        recurring_parents_only=recurring_only,
        include_deleted=include_deleted,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return LedgerEntryListResponse(
        transactions=[LedgerEntryResponse.model_validate(e) for e in items],
        total=total,
        page=page,
        page_size=page_size
    )


# Static recurring paths are registered before /{entry_id}

@router.get("/recurring/due", response_model=DueParentsResponse)
async def list_due_recurring(
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    current_user: dict = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """Recurring parents of the caller that have occurrences due on or before ``as_of``."""
    as_of = as_of or clock.today()
    parents = await find_due(db, as_of, owner_id=ownership_guard.owner_filter(current_user))
    return DueParentsResponse(
        as_of=as_of,
        count=len(parents),
        transactions=[LedgerEntryResponse.model_validate(p) for p in parents]
    )


@router.post("/recurring/process", response_model=ProcessingSummaryResponse)
async def process_recurring(
    request: Optional[ProcessRequest] = Body(None),
    current_user: dict = Depends(get_current_user),
    scheduler: RecurringScheduler = Depends(get_recurring_scheduler),
    db: AsyncSession = Depends(get_db)
):
    """
    Generate the caller's due occurrences now.

    Returns {processed, created, failed[]}. Safe to repeat: a second call
    for the same date creates nothing.
    """
    request = request or ProcessRequest()
    summary = await scheduler.process_due(
        as_of=request.process_up_to,
        owner_id=ownership_guard.owner_filter(current_user),
        parent_ids=request.transaction_ids,
    )

    await log_event(
        db=db,
        action=AuditAction.RECURRING_PROCESSED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        metadata={**summary.to_dict(), "trigger": "user"}
    )

    return summary.to_dict()


@router.get("/{entry_id}", response_model=LedgerEntryResponse)
async def get_transaction(
    entry_id: int = Path(..., description="Transaction ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    entry = await LedgerService.get_entry(db, entry_id)
    ownership_guard.enforce(entry.owner_id, current_user)
    return LedgerEntryResponse.model_validate(entry)


@router.get("/{entry_id}/instances", response_model=List[LedgerEntryResponse])
async def list_transaction_instances(
    entry_id: int = Path(..., description="Recurring parent ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Instances generated from a recurring parent, in date order."""
    parent = await LedgerService.get_entry(db, entry_id, include_deleted=True)
    ownership_guard.enforce(parent.owner_id, current_user)
    instances = await LedgerService.list_instances(db, parent.id)
    return [LedgerEntryResponse.model_validate(i) for i in instances]


@router.patch("/{entry_id}/status", response_model=LedgerEntryResponse)
async def update_transaction_status(
    update: StatusUpdate,
    entry_id: int = Path(..., description="Transaction ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Change status, e.g. reconcile a scheduled instance to completed."""
    entry = await LedgerService.get_entry(db, entry_id)
    ownership_guard.enforce(entry.owner_id, current_user)

    old_status = entry.status
    await LedgerService.update_status(db, entry, update.status)
    await db.commit()
    await db.refresh(entry)

    await log_event(
        db=db,
        action=AuditAction.TRANSACTION_STATUS_CHANGED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        entry_id=entry.id,
        metadata={"from": old_status.value, "to": entry.status.value}
    )

    return LedgerEntryResponse.model_validate(entry)


@router.delete("/{entry_id}", response_model=LedgerEntryResponse)
async def delete_transaction(
    entry_id: int = Path(..., description="Transaction ID"),
    current_user: dict = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """
    Soft-delete a transaction.

    A deleted recurring parent stops generating; its instances stay.
    """
    entry = await LedgerService.get_entry(db, entry_id)
    ownership_guard.enforce(entry.owner_id, current_user)

    await LedgerService.soft_delete(db, entry, clock.now())
    await db.commit()
    await db.refresh(entry)

    await log_event(
        db=db,
        action=AuditAction.TRANSACTION_DELETED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        entry_id=entry.id
    )

    return LedgerEntryResponse.model_validate(entry)


@router.post("/{entry_id}/restore", response_model=LedgerEntryResponse)
async def restore_transaction(
    entry_id: int = Path(..., description="Transaction ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    entry = await LedgerService.get_entry(db, entry_id, include_deleted=True)
    ownership_guard.enforce(entry.owner_id, current_user)

    await LedgerService.restore(db, entry)
    await db.commit()
    await db.refresh(entry)

    await log_event(
        db=db,
        action=AuditAction.TRANSACTION_RESTORED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        entry_id=entry.id
    )

    return LedgerEntryResponse.model_validate(entry)
