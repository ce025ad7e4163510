"""
Ledger Pydantic schemas.

Request and response models for transactions and their recurrence rules.
"""

import re
from pydantic import BaseModel, Field, field_validator
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from backend.app.models.ledger_enums import TransactionType, TransactionStatus, RecurrenceFrequency

TAG_PATTERN = re.compile(r"^[a-z0-9_-]+$")


class RecurrenceConfig(BaseModel):
    """Recurrence rule supplied when creating a recurring parent."""
    frequency: RecurrenceFrequency
    interval: int = Field(default=1, description="Repeat every N periods")
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    next_due_date: Optional[date] = Field(
        None, description="First occurrence to generate; defaults to one step after the transaction date"
    )
    is_active: bool = True


class LedgerEntryCreate(BaseModel):
    """Schema for creating a transaction or a recurring parent."""
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    type: TransactionType
    category_id: int
    date: date
    description: str = Field(..., min_length=2, max_length=200)
    status: TransactionStatus = TransactionStatus.COMPLETED
    notes: Optional[str] = Field(None, max_length=1000)
    payee: Optional[str] = Field(None, max_length=100)
    tags: List[str] = Field(default_factory=list)
    from_account: Optional[str] = Field(None, max_length=100)
    to_account: Optional[str] = Field(None, max_length=100)
    reference_number: Optional[str] = Field(None, max_length=50)
    external_id: Optional[str] = Field(None, max_length=100)
    is_recurring: bool = False
    recurrence: Optional[RecurrenceConfig] = None

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Description must be at least 2 characters")
        return value

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, value: List[str]) -> List[str]:
        tags = []
        for tag in value:
            tag = tag.strip().lower()
            if not tag:
                continue
            if len(tag) > 50:
                raise ValueError("Tags cannot exceed 50 characters")
            if not TAG_PATTERN.match(tag):
                raise ValueError("Tags may only contain letters, numbers, hyphens and underscores")
            if tag not in tags:
                tags.append(tag)
        return tags


class StatusUpdate(BaseModel):
    status: TransactionStatus


class RecurrenceResponse(BaseModel):
    frequency: RecurrenceFrequency
    interval: int
    next_due_date: date
    end_date: Optional[date]
    max_occurrences: Optional[int]
    is_active: bool
    occurrence_count: int
    is_exhausted: bool

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    """Schema for transaction response."""
    id: int
    owner_id: int
    category_id: int
    amount: Decimal
    type: TransactionType
    date: date
    balance_impact: Decimal
    status: TransactionStatus
    description: str
    notes: Optional[str]
    payee: Optional[str]
    tags: Optional[List[str]]
    from_account: Optional[str]
    to_account: Optional[str]
    reference_number: Optional[str]
    external_id: Optional[str]
    is_recurring_parent: bool
    is_recurring_instance: bool
    parent_id: Optional[int]
    recurrence: Optional[RecurrenceResponse]
    last_processed_at: Optional[datetime]
    last_processing_error: Optional[str]
    last_processing_failed_at: Optional[datetime]
    is_deleted: bool
    deleted_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LedgerEntryListResponse(BaseModel):
    """Schema for paginated transaction list."""
    transactions: List[LedgerEntryResponse]
    total: int
    page: int
    page_size: int
