"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    categories, transactions, notifications, admin_ops
)

router = APIRouter()

# Ledger endpoints
router.include_router(categories.router)
router.include_router(transactions.router)

# In-app notifications
router.include_router(notifications.router)

# Operator endpoints
router.include_router(admin_ops.router)
