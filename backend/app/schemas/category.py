"""
Category schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from backend.app.models.ledger_enums import CategoryType


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    type: CategoryType


class CategoryResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    type: CategoryType
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
