"""
Recurring processing schemas.
"""

from pydantic import BaseModel, Field
from datetime import date
from typing import Optional, List
from backend.app.schemas.ledger import LedgerEntryResponse


class ProcessRequest(BaseModel):
    """Manual run for the caller's own recurring parents."""
    process_up_to: Optional[date] = Field(None, description="Generate occurrences due on or before this date")
    transaction_ids: Optional[List[int]] = Field(None, description="Restrict the run to these parents")


class FailedParentResponse(BaseModel):
    parent_id: int
    error: str


class ProcessingSummaryResponse(BaseModel):
    processed: int
    created: int
    failed: List[FailedParentResponse]


class DueParentsResponse(BaseModel):
    as_of: date
    count: int
    transactions: List[LedgerEntryResponse]
