"""Error taxonomy for the messaging core.

Every failure that crosses a component boundary is one of these. The
message text is what the user sees, so it is kept verbatim from the source
(for example, a row-level-security denial from the backend).
"""


class ChatError(Exception):
    """Base class for messaging core errors."""

    code = "chat_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotAuthenticated(ChatError):
    """No signed-in user, or the session credential was rejected."""

    code = "not_authenticated"


class Unauthorized(ChatError):
    """The backend's authorization policy denied the operation."""

    code = "unauthorized"


class NetworkFailure(ChatError):
    """Transport-level failure talking to the backend."""

    code = "network_failure"
    retryable = True


class ValidationFailure(ChatError):
    """Input rejected before or by the backend. Never retried."""

    code = "validation_failure"


class ResourceTooLarge(ChatError):
    """A download exceeded the preview size cap."""

    code = "resource_too_large"

    def __init__(self, message: str, size: int | None = None, limit: int | None = None):
        super().__init__(message)
        self.size = size
        self.limit = limit


class PreviewUnavailable(ChatError):
    """No renderer for the attachment kind, or the renderer failed."""

    code = "preview_unavailable"


class RetryExhausted(ChatError):
    """A retried operation failed on every attempt."""

    code = "retry_exhausted"

    def __init__(self, message: str, attempts: int, last_status: int | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_status = last_status
