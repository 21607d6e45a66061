"""Schemas package initialization."""

from voicematrix.schemas.call import CallRecordResponse
from voicematrix.schemas.usage import (
    ProcessingReportResponse,
    QueueStatus,
    RolloverResponse,
    UsageSummary,
)
from voicematrix.schemas.webhook import (
    CallAnalysis,
    CallEndEvent,
    CallStartEvent,
    EndedCall,
    FunctionCallEvent,
    HangEvent,
    SpeechUpdateEvent,
    StatusUpdateEvent,
    TranscriptEvent,
    VoiceInputEvent,
    WebhookEvent,
    webhook_event_adapter,
)

__all__ = [
    # Webhook events
    "WebhookEvent",
    "webhook_event_adapter",
    "CallStartEvent",
    "CallEndEvent",
    "EndedCall",
    "CallAnalysis",
    "FunctionCallEvent",
    "TranscriptEvent",
    "HangEvent",
    "SpeechUpdateEvent",
    "StatusUpdateEvent",
    "VoiceInputEvent",
    # Calls
    "CallRecordResponse",
    # Usage
    "UsageSummary",
    "QueueStatus",
    "ProcessingReportResponse",
    "RolloverResponse",
]
