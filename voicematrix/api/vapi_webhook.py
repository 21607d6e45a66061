"""Vapi webhook endpoint.

Only the call-record write can fail the request. Lead extraction, transcript
storage and usage evaluation run afterwards, each in its own session, and a
failure there is logged without touching the committed call record or the
response sent back to Vapi.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from voicematrix.config import settings
from voicematrix.database import async_session_maker
from voicematrix.errors import (
    AuthenticationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from voicematrix.models.call import CallRecord
from voicematrix.schemas.webhook import CallEndEvent, EndedCall
from voicematrix.services.call_reconciler import reconcile_call_end, save_transcript
from voicematrix.services.enforcement_processor import (
    EnforcementProcessor,
    get_enforcement_processor,
)
from voicematrix.services.enforcement_service import EnforcementDecision, evaluate_usage
from voicematrix.services.lead_extractor import extract_lead, save_lead
from voicematrix.services.rate_limit import SlidingWindowRateLimiter, get_webhook_rate_limiter
from voicematrix.services.webhook_verifier import SIGNATURE_HEADER, authenticate_and_parse
from voicematrix.utils.logging import CallLogger, get_logger
from voicematrix.utils.utils import utcnow

router = APIRouter()
logger = get_logger("webhook.vapi")


async def _store_lead(record: CallRecord, call: EndedCall, call_logger: CallLogger) -> None:
    structured = call.analysis.structured_data if call.analysis else None
    extracted = extract_lead(structured, fallback_phone=record.customer_number)
    if extracted is None:
        call_logger.log("lead_extraction_skipped", reason="no_structured_data")
        return

    async with async_session_maker() as db:
        try:
            await save_lead(db, record, extracted)
            await db.commit()
        except Exception as exc:
            await db.rollback()
            call_logger.step_failed("lead_extraction", exc)


async def _store_transcript(record: CallRecord, call: EndedCall, call_logger: CallLogger) -> None:
    if not call.transcript:
        return

    async with async_session_maker() as db:
        try:
            await save_transcript(db, record, call.transcript)
            await db.commit()
            call_logger.log("transcript_saved", length=len(call.transcript))
        except Exception as exc:
            await db.rollback()
            call_logger.step_failed("transcript_storage", exc)


async def _evaluate_usage(
    record: CallRecord, call_logger: CallLogger
) -> Optional[EnforcementDecision]:
    async with async_session_maker() as db:
        try:
            return await evaluate_usage(db, record.user_id)
        except Exception as exc:
            await db.rollback()
            call_logger.step_failed("usage_evaluation", exc)
            return None


@router.post("/webhooks/vapi")
async def vapi_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    rate_limiter: SlidingWindowRateLimiter = Depends(get_webhook_rate_limiter),
    processor: EnforcementProcessor = Depends(get_enforcement_processor),
) -> dict:
    client_host = request.client.host if request.client and request.client.host else "unknown"
    if not rate_limiter.hit(client_host):
        logger.warning(
            "vapi_webhook_rate_limited",
            client_host=client_host,
            limit=rate_limiter.limit,
            window_seconds=rate_limiter.window_seconds,
        )
        raise HTTPException(status_code=429, detail="Too many webhook requests")

    body = await request.body()
    logger.info(
        "vapi_webhook_request_received",
        content_length=len(body),
        content_type=request.headers.get("content-type"),
    )

    try:
        event = authenticate_and_parse(
            body, request.headers.get(SIGNATURE_HEADER), settings.vapi_webhook_secret
        )
    except AuthenticationError as exc:
        logger.warning("vapi_webhook_invalid_signature", client_host=client_host, error=exc.message)
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    except ValidationError as exc:
        logger.warning("vapi_webhook_invalid_payload", error=exc.message)
        raise HTTPException(status_code=exc.status_code, detail=exc.message)

    if not isinstance(event, CallEndEvent):
        logger.info("vapi_webhook_ignored_event", event_type=event.type)
        return {"success": True, "message": f"Event {event.type} acknowledged"}

    call = event.call
    call_logger = CallLogger(call.id)
    call_logger.log("vapi_call_end_received", assistant_id=call.assistant_id)

    async with async_session_maker() as db:
        try:
            record = await reconcile_call_end(db, event)
        except NotFoundError as exc:
            call_logger.warning("vapi_webhook_unknown_reference", error=exc.message)
            return {"success": True, "message": "Call end ignored: unknown assistant"}
        except PersistenceError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.message)

    await _store_lead(record, call, call_logger)
    await _store_transcript(record, call, call_logger)
    decision = await _evaluate_usage(record, call_logger)

    if decision is not None and decision.enqueued and settings.enforcement_auto_process:
        background_tasks.add_task(processor.process_queue)
        call_logger.log("enforcement_processing_scheduled", user_id=record.user_id)

    return {"success": True, "message": "Call end processed"}


@router.get("/webhooks/vapi")
async def vapi_webhook_liveness(challenge: Optional[str] = None) -> dict:
    if challenge:
        return {"challenge": challenge}
    return {
        "status": "Vapi webhook endpoint active",
        "timestamp": utcnow().isoformat(),
    }
