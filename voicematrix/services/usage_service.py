"""Rolling usage per user over the current billing cycle.

A billing cycle starts on the user's signup day-of-month. Minutes are
aggregated by summing seconds across every call in the cycle and rounding
up once, so adding a call can never lower the total and the result does
not depend on the order calls arrive in.
"""

import calendar
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voicematrix.config import settings
from voicematrix.errors import NotFoundError
from voicematrix.models.call import CallRecord
from voicematrix.models.user import User
from voicematrix.schemas.usage import UsageSummary
from voicematrix.utils.logging import get_logger
from voicematrix.utils.utils import ensure_utc, utcnow

logger = get_logger("pipeline.usage")


@dataclass(frozen=True)
class UsageResult:
    user_id: str
    total_minutes_used: int
    call_count: int
    cycle_start: datetime
    total_seconds: int


def _project_onto_month(anchor: datetime, year: int, month: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return anchor.replace(year=year, month=month, day=min(anchor.day, last_day))


def calculate_cycle_start(signup_at: datetime, now: Optional[datetime] = None) -> datetime:
    """Most recent monthly anniversary of ``signup_at`` that is not after ``now``.

    Signup days past the end of a short month clamp to its last day, so a
    signup on the 31st starts April's cycle on the 30th.
    """
    now = ensure_utc(now) if now is not None else utcnow()
    anchor = ensure_utc(signup_at)

    cycle_start = _project_onto_month(anchor, now.year, now.month)
    if cycle_start > now:
        if now.month == 1:
            cycle_start = _project_onto_month(anchor, now.year - 1, 12)
        else:
            cycle_start = _project_onto_month(anchor, now.year, now.month - 1)
    return cycle_start


def seconds_to_minutes(total_seconds: int) -> int:
    return math.ceil(total_seconds / 60) if total_seconds > 0 else 0


async def get_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"Unknown user {user_id}")
    return user


def usage_limit_for(user: User) -> int:
    return user.max_minutes_per_cycle or settings.usage_limit_minutes


async def calculate_user_usage(
    db: AsyncSession, user_id: str, now: Optional[datetime] = None
) -> UsageResult:
    user = await get_user(db, user_id)
    cycle_start = calculate_cycle_start(user.signup_at, now)

    result = await db.execute(
        select(
            func.coalesce(func.sum(CallRecord.duration_seconds), 0),
            func.count(CallRecord.id),
        ).where(
            CallRecord.user_id == user_id,
            CallRecord.started_at >= cycle_start,
        )
    )
    total_seconds, call_count = result.one()
    total_seconds = int(total_seconds or 0)

    usage = UsageResult(
        user_id=user_id,
        total_minutes_used=seconds_to_minutes(total_seconds),
        call_count=int(call_count or 0),
        cycle_start=cycle_start,
        total_seconds=total_seconds,
    )
    logger.info(
        "usage_calculated",
        user_id=user_id,
        total_minutes=usage.total_minutes_used,
        total_seconds=total_seconds,
        call_count=usage.call_count,
        cycle_start=cycle_start.isoformat(),
    )
    return usage


async def get_usage_summary(
    db: AsyncSession, user_id: str, now: Optional[datetime] = None
) -> UsageSummary:
    usage = await calculate_user_usage(db, user_id, now)
    limit = usage_limit_for(await get_user(db, user_id))
    return UsageSummary(
        user_id=user_id,
        total_minutes_used=usage.total_minutes_used,
        call_count=usage.call_count,
        cycle_start=usage.cycle_start,
        limit_minutes=limit,
        remaining_minutes=max(0, limit - usage.total_minutes_used),
        limit_reached=usage.total_minutes_used >= limit,
    )
