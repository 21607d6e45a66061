"""Internal usage and enforcement operations API.

Used by the dashboard backend and by the scheduler that triggers the cycle
rollover. Every route requires the internal bearer token.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voicematrix.database import get_db
from voicematrix.errors import NotFoundError
from voicematrix.middleware.auth import require_internal_token
from voicematrix.models.call import CallRecord
from voicematrix.schemas.call import CallRecordResponse
from voicematrix.schemas.usage import (
    ProcessingReportResponse,
    QueueStatus,
    RolloverResponse,
    UsageSummary,
)
from voicematrix.services.enforcement_processor import (
    EnforcementProcessor,
    get_enforcement_processor,
)
from voicematrix.services.enforcement_service import get_queue_status, run_cycle_rollover
from voicematrix.services.usage_service import get_usage_summary

router = APIRouter(dependencies=[Depends(require_internal_token)])


@router.get("/enforcement/status", response_model=QueueStatus)
async def enforcement_status(db: AsyncSession = Depends(get_db)):
    """Pending, processed and failed queue item counts."""
    return await get_queue_status(db)


@router.post("/enforcement/process", response_model=ProcessingReportResponse)
async def process_enforcement_queue(
    processor: EnforcementProcessor = Depends(get_enforcement_processor),
):
    """Run one processing pass now."""
    report = await processor.process_queue()
    return ProcessingReportResponse(
        skipped=report.skipped,
        fetched=report.fetched,
        succeeded=report.succeeded,
        failed=report.failed,
        failed_item_ids=report.failed_item_ids,
    )


@router.post("/enforcement/rollover", response_model=RolloverResponse)
async def rollover_cycles(db: AsyncSession = Depends(get_db)):
    """Queue restore actions for users whose billing cycle has turned over."""
    result = await run_cycle_rollover(db)
    return RolloverResponse(restore_items_enqueued=result.enqueued, user_ids=result.user_ids)


@router.get("/calls/{external_call_id}", response_model=CallRecordResponse)
async def get_call_record(external_call_id: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(CallRecord).where(CallRecord.external_call_id == external_call_id)
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Call record not found",
        )
    return record


@router.get("/{user_id}", response_model=UsageSummary)
async def usage_for_user(user_id: str, db: AsyncSession = Depends(get_db)):
    """Current cycle usage for one user."""
    try:
        return await get_usage_summary(db, user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
