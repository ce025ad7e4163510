"""
Admin Operations API Endpoints.

Operator triggers for recurring processing and the retention sweep.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.clock import Clock
from backend.app.core.config import settings
from backend.app.core.dependencies import get_clock, get_recurring_scheduler
from backend.app.core.guards import require_role
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.domain.recurring.scheduler import RecurringScheduler
from backend.app.models.enums import UserRole
from backend.app.schemas.recurring import ProcessingSummaryResponse
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.post("/recurring/process-now", response_model=ProcessingSummaryResponse)
async def process_recurring_now(
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    scheduler: RecurringScheduler = Depends(get_recurring_scheduler),
    db: AsyncSession = Depends(get_db)
):
    """
    Run recurring processing for every user as of today.

    Same work as one scheduler tick, without the tick lock.
    """
    summary = await scheduler.process_due()

    await log_event(
        db=db,
        action=AuditAction.RECURRING_PROCESSED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        metadata={**summary.to_dict(), "trigger": "operator"}
    )

    return summary.to_dict()


@router.post("/purge-deleted")
async def purge_deleted_transactions(
    days_to_keep: int = Query(settings.deleted_retention_days, ge=0),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    clock: Clock = Depends(get_clock),
    db: AsyncSession = Depends(get_db)
):
    """
    Hard-delete transactions soft-deleted more than N days ago.
    """
    count = await LedgerService.purge_deleted(db, days_to_keep, clock.now())
    await db.commit()

    await log_event(
        db=db,
        action=AuditAction.DELETED_PURGED,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        metadata={"days_to_keep": days_to_keep, "rows_purged": count}
    )

    return {"message": "Purge completed", "rows_purged": count}
