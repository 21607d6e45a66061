"""Middleware package."""

from voicematrix.middleware.auth import require_internal_token

__all__ = [
    "require_internal_token",
]
