"""Usage and enforcement queue response schemas."""

from datetime import datetime
from typing import List

from pydantic import BaseModel


class UsageSummary(BaseModel):
    """Rolling usage for the user's current billing cycle."""
    user_id: str
    total_minutes_used: int
    call_count: int
    cycle_start: datetime
    limit_minutes: int
    remaining_minutes: int
    limit_reached: bool


class QueueStatus(BaseModel):
    """Enforcement queue counters."""
    pending: int
    processed: int
    failed: int


class ProcessingReportResponse(BaseModel):
    """Outcome of one queue processing pass."""
    skipped: bool
    fetched: int
    succeeded: int
    failed: int
    failed_item_ids: List[int] = []


class RolloverResponse(BaseModel):
    """Outcome of a cycle rollover run."""
    restore_items_enqueued: int
    user_ids: List[str]
