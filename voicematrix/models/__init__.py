"""Models package initialization."""

from voicematrix.models.assistant import Assistant
from voicematrix.models.call import CallRecord, CallStatus
from voicematrix.models.enforcement_queue import EnforcementAction, EnforcementQueueItem
from voicematrix.models.lead import Lead, LeadStatus, LeadType
from voicematrix.models.transcript import CallTranscript
from voicematrix.models.user import User

__all__ = [
    # User
    "User",
    # Assistant
    "Assistant",
    # Call
    "CallRecord",
    "CallStatus",
    "CallTranscript",
    # Lead
    "Lead",
    "LeadType",
    "LeadStatus",
    # Enforcement
    "EnforcementQueueItem",
    "EnforcementAction",
]
