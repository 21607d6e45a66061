"""Enforcement queue processor.

Drains pending enforce/restore items and pushes the matching assistant
configuration to Vapi. Every assistant is handled in its own session, so a
failure on one never unwinds the local state of another. Items are marked
processed whether or not every assistant succeeded; failures are recorded in
``error_message`` for an operator to look at.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Protocol, TypeVar

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voicematrix.config import settings
from voicematrix.database import async_session_maker
from voicematrix.errors import ExternalServiceError
from voicematrix.models.assistant import Assistant
from voicematrix.models.enforcement_queue import EnforcementAction, EnforcementQueueItem
from voicematrix.services.vapi_client import ConversationOverrides, VapiClient
from voicematrix.utils.logging import get_logger
from voicematrix.utils.utils import ensure_utc, utcnow

logger = get_logger("pipeline.enforcement_processor")

T = TypeVar("T")

LIMITED_FIRST_MESSAGE = (
    "You have reached your monthly call limit. Please upgrade your plan to continue. Goodbye."
)
LIMITED_SYSTEM_PROMPT = (
    "The account for this assistant has used all of its call minutes for the current "
    "billing cycle. Tell the caller the limit has been reached, keep the reply to one "
    "short sentence, and end the call."
)
LIMITED_MAX_TOKENS = 50


class ProcessingLock(Protocol):
    def try_acquire(self) -> bool:
        ...

    def release(self) -> None:
        ...


class InMemoryProcessingLock:
    """Non-reentrant flag guarding one process against overlapping passes."""

    def __init__(self):
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False


@dataclass
class RetryPolicy:
    max_attempts: int = 1
    base_delay_seconds: float = 0.5

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.mutation_retry_attempts),
            base_delay_seconds=settings.mutation_retry_base_delay_seconds,
        )

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except ExternalServiceError as exc:
                if attempt >= self.max_attempts:
                    raise
                delay = self.base_delay_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "vapi_mutation_retry",
                    assistant_id=exc.assistant_id,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=delay,
                )
                await asyncio.sleep(delay)


@dataclass
class ProcessingReport:
    skipped: bool = False
    fetched: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_item_ids: List[int] = field(default_factory=list)


def limited_overrides(assistant: Assistant) -> ConversationOverrides:
    return ConversationOverrides(
        model_provider=assistant.model_provider,
        model_name=assistant.model_name,
        system_prompt=LIMITED_SYSTEM_PROMPT,
        first_message=LIMITED_FIRST_MESSAGE,
        max_tokens=LIMITED_MAX_TOKENS,
    )


def restored_overrides(assistant: Assistant) -> ConversationOverrides:
    return ConversationOverrides(
        model_provider=assistant.model_provider,
        model_name=assistant.model_name,
        system_prompt=assistant.system_prompt,
        first_message=assistant.first_message,
    )


class EnforcementProcessor:
    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        client: Optional[VapiClient] = None,
        lock: Optional[ProcessingLock] = None,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: Optional[int] = None,
        grace_duration_seconds: Optional[int] = None,
    ):
        self.session_maker = session_maker or async_session_maker
        self.client = client or VapiClient()
        self.lock = lock or InMemoryProcessingLock()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.batch_size = batch_size or settings.enforcement_batch_size
        self.grace_duration_seconds = (
            grace_duration_seconds
            if grace_duration_seconds is not None
            else settings.grace_duration_seconds
        )

    async def process_queue(self, now: Optional[datetime] = None) -> ProcessingReport:
        """Run one pass over the oldest pending items."""
        if not self.lock.try_acquire():
            logger.info("enforcement_processing_skipped", reason="already_running")
            return ProcessingReport(skipped=True)

        now = ensure_utc(now) if now is not None else utcnow()
        report = ProcessingReport()
        try:
            async with self.session_maker() as db:
                items = await self._claim_batch(db, now)
            report.fetched = len(items)

            for item in items:
                errors = await self._process_item(item, now)
                if errors:
                    report.failed += 1
                    report.failed_item_ids.append(item.id)
                else:
                    report.succeeded += 1
        finally:
            self.lock.release()

        logger.info(
            "enforcement_processing_completed",
            fetched=report.fetched,
            succeeded=report.succeeded,
            failed=report.failed,
        )
        return report

    async def _claim_batch(self, db: AsyncSession, now: datetime) -> List[EnforcementQueueItem]:
        # FOR UPDATE SKIP LOCKED renders on PostgreSQL; SQLite ignores it.
        reclaim_before = now - timedelta(seconds=settings.enforcement_claim_ttl_seconds)
        result = await db.execute(
            select(EnforcementQueueItem)
            .where(
                EnforcementQueueItem.processed.is_(False),
                or_(
                    EnforcementQueueItem.claimed_at.is_(None),
                    EnforcementQueueItem.claimed_at < reclaim_before,
                ),
            )
            .order_by(EnforcementQueueItem.created_at, EnforcementQueueItem.id)
            .limit(self.batch_size)
            .with_for_update(skip_locked=True)
        )
        items = list(result.scalars().all())
        for item in items:
            item.claimed_at = now
        await db.commit()
        return items

    async def _process_item(self, item: EnforcementQueueItem, now: datetime) -> List[str]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(Assistant.id)
                .where(Assistant.user_id == item.user_id)
                .order_by(Assistant.id)
            )
            assistant_ids = list(result.scalars().all())

        errors: List[str] = []
        if item.action not in (EnforcementAction.ENFORCE.value, EnforcementAction.RESTORE.value):
            errors.append(f"unknown action {item.action!r}")
            assistant_ids = []

        for assistant_id in assistant_ids:
            async with self.session_maker() as db:
                assistant = await db.get(Assistant, assistant_id)
                if assistant is None:
                    continue
                external_id = assistant.external_assistant_id
                try:
                    if item.action == EnforcementAction.ENFORCE.value:
                        await self._enforce(db, assistant, now)
                    else:
                        await self._restore(db, assistant)
                except ExternalServiceError as exc:
                    errors.append(str(exc))
                except SQLAlchemyError as exc:
                    await db.rollback()
                    logger.error(
                        "assistant_state_write_failed",
                        assistant_id=external_id,
                        queue_item_id=item.id,
                        error=str(exc),
                    )
                    errors.append(f"assistant {external_id}: {type(exc).__name__}: {exc}")

        error_message = "; ".join(errors) if errors else None
        async with self.session_maker() as db:
            await db.execute(
                update(EnforcementQueueItem)
                .where(EnforcementQueueItem.id == item.id)
                .values(processed=True, processed_at=now, error_message=error_message)
            )
            await db.commit()

        if errors:
            logger.error(
                "enforcement_item_failed",
                queue_item_id=item.id,
                user_id=item.user_id,
                action=item.action,
                error_message=error_message,
            )
        else:
            logger.info(
                "enforcement_item_processed",
                queue_item_id=item.id,
                user_id=item.user_id,
                action=item.action,
                assistants=len(assistant_ids),
            )
        return errors

    async def _enforce(self, db: AsyncSession, assistant: Assistant, now: datetime) -> None:
        if assistant.is_usage_limited:
            logger.info("assistant_already_limited", assistant_id=assistant.external_assistant_id)
            return

        # Taken from current state on every unlimited enforce; restore reads it back.
        assistant.original_max_duration_seconds = assistant.current_max_duration_seconds
        await db.commit()

        overrides = limited_overrides(assistant)
        await self.retry_policy.run(
            lambda: self.client.update_assistant(
                assistant.external_assistant_id, self.grace_duration_seconds, overrides
            )
        )

        assistant.current_max_duration_seconds = self.grace_duration_seconds
        assistant.is_usage_limited = True
        assistant.usage_limited_at = now
        await db.commit()
        logger.warning(
            "assistant_usage_limited",
            assistant_id=assistant.external_assistant_id,
            user_id=assistant.user_id,
            original_max_duration_seconds=assistant.original_max_duration_seconds,
            max_duration_seconds=self.grace_duration_seconds,
        )

    async def _restore(self, db: AsyncSession, assistant: Assistant) -> None:
        if not assistant.is_usage_limited:
            logger.info("assistant_not_limited", assistant_id=assistant.external_assistant_id)
            return

        target = assistant.original_max_duration_seconds
        if target is None:
            target = settings.default_max_duration_seconds
            logger.error(
                "assistant_original_duration_missing",
                assistant_id=assistant.external_assistant_id,
                fallback_seconds=target,
            )

        overrides = restored_overrides(assistant)
        await self.retry_policy.run(
            lambda: self.client.update_assistant(assistant.external_assistant_id, target, overrides)
        )

        assistant.current_max_duration_seconds = target
        assistant.is_usage_limited = False
        assistant.usage_limited_at = None
        assistant.original_max_duration_seconds = None
        await db.commit()
        logger.info(
            "assistant_usage_restored",
            assistant_id=assistant.external_assistant_id,
            user_id=assistant.user_id,
            max_duration_seconds=target,
        )


_processor: Optional[EnforcementProcessor] = None


def get_enforcement_processor() -> EnforcementProcessor:
    global _processor
    if _processor is None:
        _processor = EnforcementProcessor()
    return _processor
