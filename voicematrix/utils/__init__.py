"""Utils package initialization."""

from voicematrix.utils.logging import CallLogger, get_logger, setup_logging
from voicematrix.utils.utils import ensure_utc, utcnow

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    "CallLogger",
    # Time
    "utcnow",
    "ensure_utc",
]
