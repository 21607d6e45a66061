"""Call record model for provider call tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from voicematrix.database import Base


class CallStatus(str, Enum):
    """Call lifecycle status."""
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    ENDED = "ended"
    FAILED = "failed"


class CallRecord(Base):
    """Durable record of one voice session, keyed by the provider call id."""

    __tablename__ = "call_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Vapi identifiers
    external_call_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    assistant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("assistants.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )

    # Status and timing
    status: Mapped[str] = mapped_column(String(20), default=CallStatus.INITIATED.value)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ended_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Call details
    customer_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    recording_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<CallRecord {self.external_call_id} ({self.status})>"
