"""Assistant model mirroring the provider-side voice assistant."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from voicematrix.database import Base


class Assistant(Base):
    """Voice assistant owned by a user, with usage-limit bookkeeping."""

    __tablename__ = "assistants"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Vapi identifier
    external_assistant_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Conversational settings pushed back on restore
    model_provider: Mapped[str] = mapped_column(String(50), default="openai", nullable=False)
    model_name: Mapped[str] = mapped_column(String(100), default="gpt-4o-mini", nullable=False)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Duration limits
    current_max_duration_seconds: Mapped[int] = mapped_column(Integer, default=300, nullable=False)
    # Captured before the first enforce mutation; untouched while limited.
    original_max_duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_usage_limited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    usage_limited_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        state = "limited" if self.is_usage_limited else "active"
        return f"<Assistant {self.external_assistant_id} ({state})>"
