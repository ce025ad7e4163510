"""
Authentication dependencies for FastAPI.

User management lives outside this service; callers present a JWT minted
by the identity provider and we trust its claims.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from backend.app.core.clock import Clock, system_clock
from backend.app.core.jwt import decode_access_token
from backend.app.db.session import get_session_factory
from backend.app.domain.recurring.scheduler import RecurringScheduler
from backend.app.services.ledger_notifier import InAppLedgerNotifier

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Args:
        credentials: HTTP Bearer token from request header

    Returns:
        Decoded token payload containing user information

    Raises:
        HTTPException: 401 if the token is invalid or lacks a user id
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("user_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


def get_clock() -> Clock:
    """Clock dependency; tests override it with a FixedClock."""
    return system_clock


def get_recurring_scheduler(
    session_factory=Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
):
    """Scheduler wired to the request's session factory and clock."""
    return RecurringScheduler(
        session_factory,
        clock=clock,
        notifier=InAppLedgerNotifier(session_factory),
    )
