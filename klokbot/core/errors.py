"""Error taxonomy for the access layer."""

from __future__ import annotations


class KlokError(Exception):
    """Base class for every error raised by klokbot."""


class ApiError(KlokError):
    """Remote call failure with error classification for retry logic.

    error_class values:
      "connection"    -- network unreachable, DNS failure, connect/read timeout
      "server"        -- 5xx (server alive but struggling)
      "auth"          -- 401/403, invalid or expired session credential
      "stream_abort"  -- response stream cut off after the request was accepted
      "validation"    -- response body does not have the expected shape
      "exhausted"     -- retry budget or credential pool used up
      "permanent"     -- other 4xx, malformed request (no retry)
    """

    default_error_class = "permanent"
    default_retryable = False

    def __init__(
        self,
        message: str,
        retryable: bool | None = None,
        error_class: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.retryable = self.default_retryable if retryable is None else retryable
        self.error_class = error_class or self.default_error_class
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        """True when the failure is infrastructure-related and worth retrying."""
        return self.error_class in ("connection", "server")

    @property
    def is_auth_error(self) -> bool:
        return self.error_class == "auth"


class TransientNetworkError(ApiError):
    default_error_class = "connection"
    default_retryable = True


class TransientServerError(ApiError):
    default_error_class = "server"
    default_retryable = True


class AuthorizationError(ApiError):
    default_error_class = "auth"


class StreamAbortError(ApiError):
    default_error_class = "stream_abort"


class ValidationError(ApiError):
    default_error_class = "validation"


class ExhaustionError(ApiError):
    """Retry budget or credential pool exhausted.

    ``last_error`` is the failure that used up the budget; it is also chained
    as ``__cause__`` by the executor.
    """

    default_error_class = "exhausted"

    def __init__(self, message: str, last_error: ApiError | None = None):
        super().__init__(
            message,
            retryable=False,
            status_code=last_error.status_code if last_error is not None else None,
        )
        self.last_error = last_error


class ConfigurationError(KlokError):
    """Local misconfiguration. Always fatal, never retried."""


class EmptyPoolError(ConfigurationError):
    pass


class NoCredentialError(EmptyPoolError):
    pass


class NotAuthenticatedError(ConfigurationError):
    pass


class NoModelSelectedError(ConfigurationError):
    pass


class ChatDeliveryFailedError(KlokError):
    """A chat message could not be delivered, or delivery could not be proven."""
