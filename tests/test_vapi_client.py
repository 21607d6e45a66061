import json

import httpx
import pytest

from voicematrix.errors import ExternalServiceError
from voicematrix.services.vapi_client import ConversationOverrides, VapiClient


def _client(handler) -> VapiClient:
    return VapiClient(
        api_key="secret-key",
        base_url="https://vapi.test/",
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_update_assistant_sends_patch_with_bearer_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "asst-1", "maxDurationSeconds": 10})

    data = await _client(handler).update_assistant("asst-1", 10)

    assert seen["method"] == "PATCH"
    assert seen["url"] == "https://vapi.test/assistant/asst-1"
    assert seen["auth"] == "Bearer secret-key"
    assert seen["body"] == {"maxDurationSeconds": 10}
    assert data["maxDurationSeconds"] == 10


@pytest.mark.asyncio
async def test_update_assistant_includes_overrides():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={})

    overrides = ConversationOverrides(
        model_provider="openai",
        model_name="gpt-4o-mini",
        system_prompt="Keep it short.",
        first_message="Limit reached.",
        max_tokens=50,
    )
    await _client(handler).update_assistant("asst-1", 10, overrides)

    body = seen["body"]
    assert body["maxDurationSeconds"] == 10
    assert body["firstMessage"] == "Limit reached."
    assert body["model"]["provider"] == "openai"
    assert body["model"]["model"] == "gpt-4o-mini"
    assert body["model"]["maxTokens"] == 50
    assert body["model"]["messages"] == [{"role": "system", "content": "Keep it short."}]


@pytest.mark.asyncio
async def test_non_success_status_raises_external_service_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Assistant not found"})

    with pytest.raises(ExternalServiceError) as exc_info:
        await _client(handler).update_assistant("asst-missing", 10)

    error = exc_info.value
    assert error.assistant_id == "asst-missing"
    assert error.max_duration_seconds == 10
    assert error.upstream_status == 404
    assert "asst-missing" in str(error)


@pytest.mark.asyncio
async def test_network_failure_raises_external_service_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalServiceError) as exc_info:
        await _client(handler).update_assistant("asst-1", 300)

    assert exc_info.value.upstream_status is None
    assert exc_info.value.max_duration_seconds == 300


@pytest.mark.asyncio
async def test_single_attempt_per_call():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ExternalServiceError):
        await _client(handler).update_assistant("asst-1", 10)

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_redirect_status_raises_external_service_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(307, headers={"location": "https://vapi.test/elsewhere"})

    with pytest.raises(ExternalServiceError) as exc_info:
        await _client(handler).update_assistant("asst-1", 10)

    assert exc_info.value.upstream_status == 307
