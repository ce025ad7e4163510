"""
Audit logging service for ledger mutations and operator actions.

Provides centralized logging for compliance and support investigations.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_DELETED = "TRANSACTION_DELETED"
    TRANSACTION_RESTORED = "TRANSACTION_RESTORED"
    TRANSACTION_STATUS_CHANGED = "TRANSACTION_STATUS_CHANGED"

    # Recurring processing
    RECURRING_PROCESSED = "RECURRING_PROCESSED"

    # Retention
    DELETED_PURGED = "DELETED_PURGED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    entry_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Log a ledger or operator event to the audit log.

    Commits the session, so call it after the audited change is staged.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for the scheduler)
        actor_username: Username of actor
        entry_id: Ledger entry the action touched (if applicable)
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        entry_id=entry_id,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log
