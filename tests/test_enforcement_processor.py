import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import select

from voicematrix.database import async_session_maker
from voicematrix.errors import ExternalServiceError
from voicematrix.models.assistant import Assistant
from voicematrix.models.enforcement_queue import EnforcementQueueItem
from voicematrix.services.enforcement_processor import (
    LIMITED_FIRST_MESSAGE,
    LIMITED_MAX_TOKENS,
    EnforcementProcessor,
    InMemoryProcessingLock,
    RetryPolicy,
)
from voicematrix.services.vapi_client import VapiClient


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeVapi:
    """Records PATCH bodies per assistant and fails for chosen ids."""

    def __init__(self, failing=(), delay: float = 0.0):
        self.failing = set(failing)
        self.delay = delay
        self.requests = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        assistant_id = request.url.path.rsplit("/", 1)[-1]
        self.requests.append((assistant_id, json.loads(request.content)))
        if assistant_id in self.failing:
            return httpx.Response(500, json={"message": "internal error"})
        return httpx.Response(200, json={"id": assistant_id})

    def processor(self, lock=None, retry_policy=None) -> EnforcementProcessor:
        client = VapiClient(
            api_key="test-api-key",
            base_url="https://vapi.test",
            transport=httpx.MockTransport(self.handler),
        )
        return EnforcementProcessor(
            client=client,
            lock=lock or InMemoryProcessingLock(),
            retry_policy=retry_policy or RetryPolicy(max_attempts=1),
        )


async def _enqueue(action: str, created_at: datetime, user_id: str = "user-1") -> int:
    async with async_session_maker() as db:
        item = EnforcementQueueItem(user_id=user_id, action=action, created_at=created_at)
        db.add(item)
        await db.commit()
        return item.id


async def _assistant(external_id: str) -> Assistant:
    async with async_session_maker() as db:
        result = await db.execute(
            select(Assistant).where(Assistant.external_assistant_id == external_id)
        )
        return result.scalar_one()


async def _item(item_id: int) -> EnforcementQueueItem:
    async with async_session_maker() as db:
        return await db.get(EnforcementQueueItem, item_id)


@pytest.mark.asyncio
async def test_enforce_limits_every_assistant(seed_account):
    await seed_account(assistant_ids=("asst-1", "asst-2"), max_duration_seconds=300)
    item_id = await _enqueue("enforce", utc(2026, 1, 20))
    vapi = FakeVapi()

    report = await vapi.processor().process_queue(now=utc(2026, 1, 20, 0, 1))

    assert (report.fetched, report.succeeded, report.failed) == (1, 1, 0)
    for external_id in ("asst-1", "asst-2"):
        assistant = await _assistant(external_id)
        assert assistant.is_usage_limited is True
        assert assistant.current_max_duration_seconds == 10
        assert assistant.original_max_duration_seconds == 300
        assert assistant.usage_limited_at is not None

    body = dict(vapi.requests)["asst-1"]
    assert body["maxDurationSeconds"] == 10
    assert body["firstMessage"] == LIMITED_FIRST_MESSAGE
    assert body["model"]["maxTokens"] == LIMITED_MAX_TOKENS

    item = await _item(item_id)
    assert item.processed is True
    assert item.processed_at is not None
    assert item.error_message is None


@pytest.mark.asyncio
async def test_partial_failure_is_recorded_and_does_not_stop_others(seed_account):
    await seed_account(assistant_ids=("asst-ok-1", "asst-bad", "asst-ok-2"))
    failing_item = await _enqueue("enforce", utc(2026, 1, 20))
    await seed_account(user_id="user-2", assistant_ids=("asst-other",))
    other_item = await _enqueue("enforce", utc(2026, 1, 21), user_id="user-2")

    report = await FakeVapi(failing={"asst-bad"}).processor().process_queue()

    assert report.fetched == 2
    assert report.succeeded == 1
    assert report.failed == 1
    assert report.failed_item_ids == [failing_item]

    item = await _item(failing_item)
    assert item.processed is True
    assert "asst-bad" in item.error_message
    assert (await _item(other_item)).error_message is None

    assert (await _assistant("asst-ok-1")).is_usage_limited is True
    assert (await _assistant("asst-ok-2")).is_usage_limited is True
    assert (await _assistant("asst-other")).is_usage_limited is True
    bad = await _assistant("asst-bad")
    assert bad.is_usage_limited is False
    assert bad.current_max_duration_seconds == 300
    assert bad.original_max_duration_seconds == 300


@pytest.mark.asyncio
async def test_enforce_after_failed_attempt_captures_current_duration(seed_account):
    await seed_account(max_duration_seconds=300)
    await _enqueue("enforce", utc(2026, 1, 20))
    await FakeVapi(failing={"asst-1"}).processor().process_queue()

    # Dashboard edit between the failed and the successful enforce.
    async with async_session_maker() as db:
        assistant = (
            await db.execute(select(Assistant).where(Assistant.external_assistant_id == "asst-1"))
        ).scalar_one()
        assistant.current_max_duration_seconds = 600
        await db.commit()

    vapi = FakeVapi()
    processor = vapi.processor()
    await _enqueue("enforce", utc(2026, 1, 21))
    await processor.process_queue()

    limited = await _assistant("asst-1")
    assert limited.is_usage_limited is True
    assert limited.original_max_duration_seconds == 600

    await _enqueue("restore", utc(2026, 2, 15))
    await processor.process_queue()

    restored = await _assistant("asst-1")
    assert restored.current_max_duration_seconds == 600
    assert vapi.requests[-1][1]["maxDurationSeconds"] == 600


@pytest.mark.asyncio
async def test_items_are_processed_oldest_first_in_batches(seed_account):
    await seed_account()
    newest = await _enqueue("enforce", utc(2026, 1, 22))
    oldest = await _enqueue("enforce", utc(2026, 1, 20))

    vapi = FakeVapi()
    processor = vapi.processor()
    processor.batch_size = 1

    first = await processor.process_queue()
    assert first.fetched == 1
    assert (await _item(oldest)).processed is True
    assert (await _item(newest)).processed is False

    second = await processor.process_queue()
    assert second.fetched == 1
    assert (await _item(newest)).processed is True
    # The second enforce is a no-op because the assistant is already limited.
    assert len(vapi.requests) == 1


@pytest.mark.asyncio
async def test_restore_returns_captured_duration(seed_account):
    await seed_account(max_duration_seconds=420)
    vapi = FakeVapi()
    processor = vapi.processor()

    await _enqueue("enforce", utc(2026, 1, 20))
    await processor.process_queue()
    assert (await _assistant("asst-1")).current_max_duration_seconds == 10

    await _enqueue("restore", utc(2026, 2, 15))
    report = await processor.process_queue()

    assert report.succeeded == 1
    assistant = await _assistant("asst-1")
    assert assistant.current_max_duration_seconds == 420
    assert assistant.is_usage_limited is False
    assert assistant.usage_limited_at is None
    assert assistant.original_max_duration_seconds is None

    restore_body = vapi.requests[-1][1]
    assert restore_body["maxDurationSeconds"] == 420
    assert restore_body["firstMessage"] == "Hi, how can I help you today?"
    assert restore_body["model"]["messages"][0]["content"] == "You are a helpful real estate assistant."
    assert "maxTokens" not in restore_body["model"]


@pytest.mark.asyncio
async def test_restore_without_captured_duration_uses_default(seed_account):
    await seed_account(max_duration_seconds=10)
    async with async_session_maker() as db:
        assistant = (
            await db.execute(select(Assistant).where(Assistant.external_assistant_id == "asst-1"))
        ).scalar_one()
        assistant.is_usage_limited = True
        await db.commit()

    await _enqueue("restore", utc(2026, 2, 15))
    await FakeVapi().processor().process_queue()

    assistant = await _assistant("asst-1")
    assert assistant.current_max_duration_seconds == 300
    assert assistant.is_usage_limited is False


@pytest.mark.asyncio
async def test_restore_skips_assistant_that_is_not_limited(seed_account):
    await seed_account()
    item_id = await _enqueue("restore", utc(2026, 2, 15))
    vapi = FakeVapi()

    report = await vapi.processor().process_queue()

    assert report.succeeded == 1
    assert vapi.requests == []
    assert (await _item(item_id)).processed is True


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(seed_account):
    await seed_account()
    item_id = await _enqueue("enforce", utc(2026, 1, 20))

    lock = InMemoryProcessingLock()
    assert lock.try_acquire()
    report = await FakeVapi().processor(lock=lock).process_queue()

    assert report.skipped is True
    assert report.fetched == 0
    assert (await _item(item_id)).processed is False


@pytest.mark.asyncio
async def test_concurrent_passes_do_not_overlap(seed_account):
    await seed_account()
    await _enqueue("enforce", utc(2026, 1, 20))
    vapi = FakeVapi(delay=0.05)
    processor = vapi.processor()

    first, second = await asyncio.gather(processor.process_queue(), processor.process_queue())

    assert sorted([first.skipped, second.skipped]) == [False, True]
    assert len(vapi.requests) == 1
    assert processor.lock.held is False


@pytest.mark.asyncio
async def test_retry_policy_retries_external_failures(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ExternalServiceError("boom", assistant_id="asst-1", max_duration_seconds=10)
        return "ok"

    result = await RetryPolicy(max_attempts=3, base_delay_seconds=0.5).run(flaky)

    assert result == "ok"
    assert len(attempts) == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_policy_gives_up_after_max_attempts(monkeypatch):
    async def fake_sleep(seconds):
        return None

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)

    async def always_fails():
        raise ExternalServiceError("boom", assistant_id="asst-1")

    with pytest.raises(ExternalServiceError):
        await RetryPolicy(max_attempts=2, base_delay_seconds=0.1).run(always_fails)
