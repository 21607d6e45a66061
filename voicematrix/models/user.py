"""User usage state used for billing cycles and enforcement."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from voicematrix.database import Base


class User(Base):
    """Dashboard user as seen by the usage pipeline."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Billing cycle anchor
    signup_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Set when an enforce action is queued; cleared by the cycle rollover.
    limit_enforced_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    max_minutes_per_cycle: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<User {self.id}>"
