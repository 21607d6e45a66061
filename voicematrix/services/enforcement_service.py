"""Enforcement decisions and the cycle rollover job.

``users.limit_enforced_at`` is the once-per-cycle guard. It is flipped with a
conditional UPDATE so that when several call-end webhooks for the same user
race past the threshold, exactly one of them wins and enqueues ``enforce``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from voicematrix.models.enforcement_queue import EnforcementAction, EnforcementQueueItem
from voicematrix.models.user import User
from voicematrix.schemas.usage import QueueStatus
from voicematrix.services.usage_service import (
    UsageResult,
    calculate_cycle_start,
    calculate_user_usage,
    get_user,
    usage_limit_for,
)
from voicematrix.utils.logging import get_logger
from voicematrix.utils.utils import ensure_utc, utcnow

logger = get_logger("pipeline.enforcement")


@dataclass
class EnforcementDecision:
    user_id: str
    usage: UsageResult
    limit_minutes: int
    enqueued: bool
    reason: str
    queue_item_id: Optional[int] = None


@dataclass
class RolloverResult:
    user_ids: List[str] = field(default_factory=list)

    @property
    def enqueued(self) -> int:
        return len(self.user_ids)


async def evaluate_usage(
    db: AsyncSession, user_id: str, now: Optional[datetime] = None
) -> EnforcementDecision:
    """Recompute usage and queue ``enforce`` if the cap is newly reached."""
    now = ensure_utc(now) if now is not None else utcnow()
    usage = await calculate_user_usage(db, user_id, now)
    limit = usage_limit_for(await get_user(db, user_id))

    if usage.total_minutes_used < limit:
        return EnforcementDecision(user_id, usage, limit, enqueued=False, reason="under_limit")

    claimed = await db.execute(
        update(User)
        .where(
            User.id == user_id,
            or_(
                User.limit_enforced_at.is_(None),
                User.limit_enforced_at < usage.cycle_start,
            ),
        )
        .values(limit_enforced_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.commit()
        logger.info(
            "usage_limit_already_enforced",
            user_id=user_id,
            total_minutes=usage.total_minutes_used,
            cycle_start=usage.cycle_start.isoformat(),
        )
        return EnforcementDecision(
            user_id, usage, limit, enqueued=False, reason="already_enforced_this_cycle"
        )

    item = EnforcementQueueItem(
        user_id=user_id,
        action=EnforcementAction.ENFORCE.value,
        created_at=now,
        processed=False,
    )
    db.add(item)
    await db.flush()
    await db.commit()

    logger.warning(
        "usage_limit_exceeded",
        user_id=user_id,
        total_minutes=usage.total_minutes_used,
        limit_minutes=limit,
        queue_item_id=item.id,
    )
    return EnforcementDecision(
        user_id, usage, limit, enqueued=True, reason="limit_reached", queue_item_id=item.id
    )


async def run_cycle_rollover(db: AsyncSession, now: Optional[datetime] = None) -> RolloverResult:
    """Queue ``restore`` for every user whose enforcement predates their cycle."""
    now = ensure_utc(now) if now is not None else utcnow()
    result = await db.execute(select(User).where(User.limit_enforced_at.is_not(None)))
    users = result.scalars().all()

    rollover = RolloverResult()
    for user in users:
        enforced_at = ensure_utc(user.limit_enforced_at)
        cycle_start = calculate_cycle_start(user.signup_at, now)
        if enforced_at >= cycle_start:
            continue

        cleared = await db.execute(
            update(User)
            .where(User.id == user.id, User.limit_enforced_at == user.limit_enforced_at)
            .values(limit_enforced_at=None)
            .execution_options(synchronize_session=False)
        )
        if cleared.rowcount != 1:
            # Another rollover run got here first.
            continue

        db.add(
            EnforcementQueueItem(
                user_id=user.id,
                action=EnforcementAction.RESTORE.value,
                created_at=now,
                processed=False,
            )
        )
        rollover.user_ids.append(user.id)
        logger.info(
            "usage_cycle_rolled_over",
            user_id=user.id,
            limit_enforced_at=enforced_at.isoformat(),
            cycle_start=cycle_start.isoformat(),
        )

    await db.commit()
    logger.info("usage_rollover_completed", restore_items=rollover.enqueued)
    return rollover


async def get_queue_status(db: AsyncSession) -> QueueStatus:
    result = await db.execute(
        select(
            EnforcementQueueItem.processed,
            EnforcementQueueItem.error_message.is_not(None),
            func.count(EnforcementQueueItem.id),
        ).group_by(
            EnforcementQueueItem.processed,
            EnforcementQueueItem.error_message.is_not(None),
        )
    )
    pending = processed = failed = 0
    for is_processed, has_error, count in result.all():
        if not is_processed:
            pending += count
        elif has_error:
            failed += count
        else:
            processed += count
    return QueueStatus(pending=pending, processed=processed, failed=failed)
