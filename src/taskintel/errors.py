"""Error taxonomy for the task-intelligence pipeline."""

from typing import Optional


class TaskIntelError(Exception):
    """Base class for all pipeline errors."""


class InferenceError(TaskIntelError):
    """An external inference call failed.

    Inference errors are always retried by the retry controller and, once the
    attempts are exhausted, replaced by a heuristic fallback.
    """

    kind = "inference"


class ExternalTimeout(InferenceError):
    """The inference call did not finish within its per-call timeout."""

    kind = "timeout"


class RateLimited(InferenceError):
    """The inference boundary rejected the call because of rate limits."""

    kind = "rate-limited"

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None) -> None:
        """Initialize the error.

        Args:
            message: Human readable description
            retry_after: Server-advised delay in seconds, if any
        """
        super().__init__(message)
        self.retry_after = retry_after


class MalformedResponse(InferenceError):
    """The inference result could not be parsed into the requested schema."""

    kind = "malformed-response"


class ProviderUnavailable(InferenceError):
    """The inference service failed the call (server error or rejected request)."""

    kind = "provider-error"

    def __init__(self, message: str = "provider error", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InputValidationError(TaskIntelError, ValueError):
    """Input has the wrong shape; rejected before any external call."""


class StaleResult(TaskIntelError):
    """A recalculation result was superseded by a newer edit."""

    def __init__(self, request_id: int, latest_request_id: int) -> None:
        super().__init__(
            f"result of request {request_id} superseded by request {latest_request_id}"
        )
        self.request_id = request_id
        self.latest_request_id = latest_request_id


class PersistenceUnavailable(TaskIntelError):
    """The persistence boundary could not be reached.

    This is the only failure surfaced to callers, always with a retry
    affordance.
    """
