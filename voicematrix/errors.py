"""Error taxonomy for the usage enforcement pipeline."""

from typing import Optional


class PipelineError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class AuthenticationError(PipelineError):
    """Webhook signature missing or invalid."""

    status_code = 401


class ValidationError(PipelineError):
    """Payload is not JSON or matches no known event shape."""

    status_code = 400


class NotFoundError(PipelineError):
    """A valid event references an assistant or user we do not know."""

    status_code = 404


class PersistenceError(PipelineError):
    """The core call record could not be written."""

    status_code = 500


class ExternalServiceError(PipelineError):
    """The voice provider rejected or never answered an assistant update."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        assistant_id: str,
        max_duration_seconds: Optional[int] = None,
        status_code: Optional[int] = None,
    ):
        self.assistant_id = assistant_id
        self.max_duration_seconds = max_duration_seconds
        self.upstream_status = status_code
        super().__init__(message)

    def __str__(self) -> str:
        status = f" status={self.upstream_status}" if self.upstream_status else ""
        return (
            f"assistant {self.assistant_id} "
            f"(max_duration={self.max_duration_seconds}s){status}: {self.message}"
        )
