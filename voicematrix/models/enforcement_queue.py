"""Durable queue of enforce/restore decisions."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from voicematrix.database import Base


class EnforcementAction(str, Enum):
    """Queue item action."""
    ENFORCE = "enforce"
    RESTORE = "restore"


class EnforcementQueueItem(Base):
    """One enforce/restore decision for one user."""

    __tablename__ = "enforcement_queue"
    __table_args__ = (
        Index("ix_enforcement_queue_pending", "processed", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Per-assistant failures joined with "; ". Null means full success.
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        state = "processed" if self.processed else "pending"
        return f"<EnforcementQueueItem {self.id} {self.action} user={self.user_id} ({state})>"
