"""Call record schemas for responses."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from voicematrix.utils.utils import ensure_utc


class CallRecordResponse(BaseModel):
    """Call record as exposed to dashboard layers."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_call_id: str
    assistant_id: int
    user_id: str
    status: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: int
    cost_cents: int
    ended_reason: Optional[str] = None
    customer_number: Optional[str] = None

    @field_validator("started_at", "ended_at", mode="after")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)
