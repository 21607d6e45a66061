"""Vapi webhook event schemas.

Every inbound webhook body is validated into exactly one of the variants
below, discriminated on ``type``. Only ``call-end`` drives the usage
pipeline; the others are accepted so the provider gets a 200, then ignored.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


ProviderCallStatus = Literal["queued", "ringing", "in-progress", "forwarding", "ended"]
ProviderCallType = Literal["inboundPhoneCall", "outboundPhoneCall", "webCall"]


class VapiModel(BaseModel):
    """Base for provider payloads: camelCase on the wire, unknown keys kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class Customer(VapiModel):
    number: Optional[str] = None
    name: Optional[str] = None


class CostBreakdown(VapiModel):
    transport: Optional[float] = None
    stt: Optional[float] = None
    llm: Optional[float] = None
    tts: Optional[float] = None
    vapi: Optional[float] = None
    total: Optional[float] = None


class CallAnalysis(VapiModel):
    summary: Optional[str] = None
    # Free-form; coerced field by field by the lead extractor.
    structured_data: Optional[Dict[str, Any]] = None
    success_evaluation: Optional[Any] = None


class EndedCall(VapiModel):
    id: str
    org_id: Optional[str] = None
    type: Optional[ProviderCallType] = None
    assistant_id: str
    status: ProviderCallStatus = "ended"
    phone_number_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer: Optional[Customer] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    ended_reason: Optional[str] = None
    cost: float = 0.0
    cost_breakdown: Optional[CostBreakdown] = None
    messages: Optional[List[Any]] = None
    recording_url: Optional[str] = None
    stereo_recording_url: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    analysis: Optional[CallAnalysis] = None


class StartedCall(VapiModel):
    id: str
    org_id: Optional[str] = None
    type: Optional[ProviderCallType] = None
    assistant_id: str
    status: ProviderCallStatus
    phone_number_id: Optional[str] = None
    started_at: Optional[datetime] = None
    cost: Optional[float] = None


class BaseWebhookEvent(VapiModel):
    timestamp: Optional[str] = None
    call_id: Optional[str] = None
    org_id: Optional[str] = None
    assistant_id: Optional[str] = None
    phone_number_id: Optional[str] = None
    customer_id: Optional[str] = None


class CallStartEvent(BaseWebhookEvent):
    type: Literal["call-start"]
    call: StartedCall
    customer: Optional[Customer] = None


class CallEndEvent(BaseWebhookEvent):
    type: Literal["call-end"]
    call: EndedCall


class FunctionCall(VapiModel):
    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None


class FunctionCallEvent(BaseWebhookEvent):
    type: Literal["function-call"]
    function_call: FunctionCall


class TranscriptChunk(VapiModel):
    type: Literal["partial", "final"]
    text: str
    user: Literal["assistant", "user"]
    timestamp: Optional[str] = None


class TranscriptEvent(BaseWebhookEvent):
    type: Literal["transcript"]
    transcript: TranscriptChunk


class HangEvent(BaseWebhookEvent):
    type: Literal["hang"]
    reason: Optional[str] = None


class SpeechUpdateEvent(BaseWebhookEvent):
    type: Literal["speech-update"]
    status: Literal["started", "stopped"]
    role: Literal["assistant", "user"]


class StatusUpdateEvent(BaseWebhookEvent):
    type: Literal["status-update"]
    status: ProviderCallStatus
    messages: Optional[List[Any]] = None


class VoiceInput(VapiModel):
    type: Literal["voice"] = "voice"
    text: str
    is_final: bool = False


class VoiceInputEvent(BaseWebhookEvent):
    type: Literal["voice-input"]
    input: VoiceInput


WebhookEvent = Annotated[
    Union[
        CallStartEvent,
        CallEndEvent,
        FunctionCallEvent,
        TranscriptEvent,
        HangEvent,
        SpeechUpdateEvent,
        StatusUpdateEvent,
        VoiceInputEvent,
    ],
    Field(discriminator="type"),
]

webhook_event_adapter: TypeAdapter[WebhookEvent] = TypeAdapter(WebhookEvent)
