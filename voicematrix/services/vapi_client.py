"""Vapi assistant configuration client.

Thin adapter over ``PATCH /assistant/{id}``. It performs exactly one HTTP
attempt per call; retrying is left to the caller.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from voicematrix.config import settings
from voicematrix.errors import ExternalServiceError
from voicematrix.utils.logging import get_logger

logger = get_logger("vapi.client")


@dataclass(frozen=True)
class ConversationOverrides:
    """Model and prompt settings sent alongside a duration change."""
    model_provider: str = "openai"
    model_name: str = "gpt-4o-mini"
    system_prompt: Optional[str] = None
    first_message: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: float = 0.7

    def to_payload(self) -> Dict[str, Any]:
        model: Dict[str, Any] = {
            "provider": self.model_provider,
            "model": self.model_name,
            "temperature": self.temperature,
        }
        if self.system_prompt:
            model["messages"] = [{"role": "system", "content": self.system_prompt}]
        if self.max_tokens is not None:
            model["maxTokens"] = self.max_tokens

        payload: Dict[str, Any] = {"model": model}
        if self.first_message:
            payload["firstMessage"] = self.first_message
        return payload


class VapiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.vapi_api_key
        self.base_url = (base_url or settings.vapi_base_url).rstrip("/")
        seconds = timeout if timeout is not None else settings.vapi_timeout_seconds
        self.timeout = httpx.Timeout(seconds, connect=min(seconds, 5.0))
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def update_assistant(
        self,
        external_assistant_id: str,
        max_duration_seconds: int,
        overrides: Optional[ConversationOverrides] = None,
    ) -> Dict[str, Any]:
        """Set the assistant's max call duration and optional overrides.

        Raises ExternalServiceError on a network failure or non-2xx status.
        """
        url = f"{self.base_url}/assistant/{external_assistant_id}"
        payload: Dict[str, Any] = {"maxDurationSeconds": max_duration_seconds}
        if overrides is not None:
            payload.update(overrides.to_payload())

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.patch(url, json=payload, headers=self._headers())
        except httpx.RequestError as exc:
            logger.error(
                "vapi_assistant_update_request_failed",
                assistant_id=external_assistant_id,
                max_duration_seconds=max_duration_seconds,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ExternalServiceError(
                f"Failed to reach Vapi: {exc}",
                assistant_id=external_assistant_id,
                max_duration_seconds=max_duration_seconds,
            ) from exc

        if not response.is_success:
            detail = response.text[:500]
            logger.error(
                "vapi_assistant_update_error",
                assistant_id=external_assistant_id,
                max_duration_seconds=max_duration_seconds,
                status_code=response.status_code,
                response=detail,
            )
            raise ExternalServiceError(
                f"Vapi API error ({response.status_code}): {detail}",
                assistant_id=external_assistant_id,
                max_duration_seconds=max_duration_seconds,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        logger.info(
            "vapi_assistant_updated",
            assistant_id=external_assistant_id,
            max_duration_seconds=max_duration_seconds,
            with_overrides=overrides is not None,
        )
        return data if isinstance(data, dict) else {}
