"""Call record reconciliation for call-end events.

Vapi delivers webhooks at least once, so the same call-end event may arrive
several times. The write is a single upsert keyed on ``external_call_id``:
every delivery leaves the row holding the latest payload's values and no
delivery ever creates a second row.
"""

import math
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voicematrix.database import upsert_insert
from voicematrix.errors import NotFoundError, PersistenceError
from voicematrix.models.assistant import Assistant
from voicematrix.models.call import CallRecord, CallStatus
from voicematrix.models.transcript import CallTranscript
from voicematrix.schemas.webhook import CallEndEvent, EndedCall
from voicematrix.utils.logging import get_logger
from voicematrix.utils.utils import ensure_utc

logger = get_logger("pipeline.call_reconciler")

_PROVIDER_STATUS_MAP = {
    "queued": CallStatus.INITIATED.value,
    "ringing": CallStatus.RINGING.value,
    "in-progress": CallStatus.ANSWERED.value,
    "forwarding": CallStatus.ANSWERED.value,
    "ended": CallStatus.ENDED.value,
}

# Columns overwritten when a redelivered event hits an existing row.
_UPDATABLE_FIELDS = (
    "assistant_id",
    "user_id",
    "status",
    "started_at",
    "ended_at",
    "duration_seconds",
    "cost_cents",
    "ended_reason",
    "customer_number",
    "recording_url",
    "summary",
)


def map_provider_status(status: Optional[str], ended_reason: Optional[str] = None) -> str:
    reason = (ended_reason or "").lower()
    if "error" in reason or "failed" in reason:
        return CallStatus.FAILED.value
    return _PROVIDER_STATUS_MAP.get((status or "").lower(), CallStatus.ENDED.value)


def compute_duration_seconds(
    started_at: Optional[datetime], ended_at: Optional[datetime]
) -> int:
    if started_at is None or ended_at is None:
        return 0
    elapsed = ensure_utc(ended_at) - ensure_utc(started_at)
    return max(0, math.floor(elapsed.total_seconds()))


def cost_to_cents(cost: Optional[float]) -> int:
    if not cost:
        return 0
    return int(round(cost * 100))


async def resolve_assistant(db: AsyncSession, external_assistant_id: str) -> Assistant:
    result = await db.execute(
        select(Assistant).where(Assistant.external_assistant_id == external_assistant_id)
    )
    assistant = result.scalar_one_or_none()
    if assistant is None:
        raise NotFoundError(f"Unknown assistant {external_assistant_id}")
    return assistant


def build_call_values(call: EndedCall, assistant: Assistant) -> dict:
    summary = call.summary or (call.analysis.summary if call.analysis else None)
    return {
        "external_call_id": call.id,
        "assistant_id": assistant.id,
        "user_id": assistant.user_id,
        "status": map_provider_status(call.status, call.ended_reason),
        "started_at": ensure_utc(call.started_at),
        "ended_at": ensure_utc(call.ended_at),
        "duration_seconds": compute_duration_seconds(call.started_at, call.ended_at),
        "cost_cents": cost_to_cents(call.cost),
        "ended_reason": call.ended_reason,
        "customer_number": call.customer.number if call.customer else None,
        "recording_url": call.recording_url,
        "summary": summary,
    }


async def upsert_call_record(db: AsyncSession, values: dict) -> CallRecord:
    external_call_id = values["external_call_id"]
    insert_fn = upsert_insert(db)

    if insert_fn is not None:
        stmt = insert_fn(CallRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[CallRecord.external_call_id],
            set_={
                **{field: getattr(stmt.excluded, field) for field in _UPDATABLE_FIELDS},
                "updated_at": func.now(),
            },
        )
        await db.execute(stmt)
    else:
        result = await db.execute(
            select(CallRecord).where(CallRecord.external_call_id == external_call_id)
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            db.add(CallRecord(**values))
        else:
            for field in _UPDATABLE_FIELDS:
                setattr(existing, field, values[field])
        await db.flush()

    result = await db.execute(
        select(CallRecord)
        .where(CallRecord.external_call_id == external_call_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def reconcile_call_end(db: AsyncSession, event: CallEndEvent) -> CallRecord:
    """Upsert and commit the call record for a call-end event.

    Raises NotFoundError for an unknown assistant and PersistenceError when
    the datastore rejects the write. Nothing is committed in either case.
    """
    call = event.call
    try:
        assistant = await resolve_assistant(db, call.assistant_id)
        record = await upsert_call_record(db, build_call_values(call, assistant))
        await db.commit()
    except SQLAlchemyError as exc:
        logger.error(
            "call_record_write_failed",
            call_id=call.id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        await db.rollback()
        raise PersistenceError(f"Failed to persist call record {call.id}") from exc

    logger.info(
        "call_record_reconciled",
        call_id=record.external_call_id,
        user_id=record.user_id,
        assistant_id=assistant.external_assistant_id,
        status=record.status,
        duration_seconds=record.duration_seconds,
        cost_cents=record.cost_cents,
    )
    return record


async def save_transcript(
    db: AsyncSession, record: CallRecord, transcript_text: str
) -> CallTranscript:
    insert_fn = upsert_insert(db)
    if insert_fn is not None:
        stmt = insert_fn(CallTranscript).values(
            call_record_id=record.id, transcript_text=transcript_text
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CallTranscript.call_record_id],
            set_={"transcript_text": stmt.excluded.transcript_text, "updated_at": func.now()},
        )
        await db.execute(stmt)
    else:
        result = await db.execute(
            select(CallTranscript).where(CallTranscript.call_record_id == record.id)
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            db.add(CallTranscript(call_record_id=record.id, transcript_text=transcript_text))
        else:
            existing.transcript_text = transcript_text
        await db.flush()

    result = await db.execute(
        select(CallTranscript)
        .where(CallTranscript.call_record_id == record.id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()
