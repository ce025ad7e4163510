"""
Security guards for role-based and ownership-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from backend.app.models.enums import UserRole
from backend.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/admin/ops/recurring/process-now")
        async def process_now(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        # Convert string role to UserRole enum
        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        # Check if user role is in allowed roles
        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


class OwnershipGuard:
    """
    Ownership guard for per-user ledger data.

    Usage:
        ownership_guard = OwnershipGuard()

        entry = await LedgerService.get_entry(db, entry_id)
        ownership_guard.enforce(entry.owner_id, current_user)
    """

    def enforce(self, resource_owner_id: int, current_user: dict) -> None:
        """
        Raise 404 when the caller does not own the resource.

        404 rather than 403 so entry ids of other users are not disclosed.
        """
        if current_user.get("role") == UserRole.ADMIN.value:
            return
        if current_user.get("user_id") != resource_owner_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Transaction not found"
            )

    def owner_filter(self, current_user: dict) -> int:
        """Owner id to scope queries by. Every caller, admins included, sees only their own ledger."""
        return current_user["user_id"]
