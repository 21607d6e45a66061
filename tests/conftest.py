import os
import tempfile
from datetime import datetime, timezone

# Settings are read at import time, so the environment must be in place first.
_db_dir = tempfile.mkdtemp(prefix="voicematrix-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["ENFORCEMENT_AUTO_PROCESS"] = "false"
os.environ["VAPI_API_KEY"] = "test-api-key"
os.environ["VAPI_BASE_URL"] = "https://vapi.test"
os.environ["INTERNAL_API_TOKEN"] = "test-internal-token"
os.environ.pop("VAPI_WEBHOOK_SECRET", None)

import httpx
import pytest_asyncio

import voicematrix.models  # noqa: F401
from voicematrix.database import Base, async_session_maker, engine
from voicematrix.main import app
from voicematrix.models.assistant import Assistant
from voicematrix.models.user import User
from voicematrix.services.rate_limit import (
    InMemoryCounterStore,
    SlidingWindowRateLimiter,
    get_webhook_rate_limiter,
)


@pytest_asyncio.fixture
async def reset_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def client(reset_database):
    limiter = SlidingWindowRateLimiter(InMemoryCounterStore(), limit=1000, window_seconds=60)
    app.dependency_overrides[get_webhook_rate_limiter] = lambda: limiter
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def seed_account(reset_database):
    """Create a user and its assistants. Returns the assistants' row ids."""

    async def _seed(
        user_id: str = "user-1",
        assistant_ids=("asst-1",),
        signup_at: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc),
        max_duration_seconds: int = 300,
    ):
        async with async_session_maker() as db:
            db.add(User(id=user_id, email=f"{user_id}@example.com", signup_at=signup_at))
            assistants = [
                Assistant(
                    external_assistant_id=external_id,
                    user_id=user_id,
                    name=f"Assistant {external_id}",
                    system_prompt="You are a helpful real estate assistant.",
                    first_message="Hi, how can I help you today?",
                    current_max_duration_seconds=max_duration_seconds,
                )
                for external_id in assistant_ids
            ]
            db.add_all(assistants)
            await db.commit()
            return [assistant.id for assistant in assistants]

    return _seed
