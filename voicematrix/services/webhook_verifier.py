"""Webhook signature verification and event normalization.

Both functions are pure: they never touch the datastore, so a rejected
request leaves no trace beyond a log line.
"""

import hashlib
import hmac
import json
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from voicematrix.errors import AuthenticationError, ValidationError
from voicematrix.schemas.webhook import WebhookEvent, webhook_event_adapter
from voicematrix.utils.logging import get_logger

logger = get_logger("webhook.verifier")

SIGNATURE_HEADER = "x-vapi-signature"
SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature_header: Optional[str], secret: Optional[str]) -> None:
    """Check ``sha256=<hex>`` (or a bare hex digest) against the raw body.

    With no secret configured verification is skipped.
    """
    if not secret:
        logger.warning("webhook_signature_check_skipped", reason="secret_not_configured")
        return

    provided = (signature_header or "").strip()
    if not provided:
        raise AuthenticationError("Missing webhook signature")
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_signature(body, secret)
    if not hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8")):
        raise AuthenticationError("Invalid webhook signature")


def parse_event(body: bytes) -> WebhookEvent:
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Webhook body is not valid JSON: {exc}") from exc

    try:
        return webhook_event_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid webhook event format ({exc.error_count()} errors)"
        ) from exc


def authenticate_and_parse(
    body: bytes, signature_header: Optional[str], secret: Optional[str]
) -> WebhookEvent:
    verify_signature(body, signature_header, secret)
    return parse_event(body)
