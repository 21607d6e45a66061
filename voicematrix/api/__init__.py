"""API package initialization."""

from voicematrix.api.usage import router as usage_router
from voicematrix.api.vapi_webhook import router as vapi_webhook_router

__all__ = [
    "usage_router",
    "vapi_webhook_router",
]
