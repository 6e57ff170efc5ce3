from typing import Optional


class ChatServiceError(Exception):
    """Base class for every error the chat service raises on purpose."""

    classification = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(ChatServiceError):
    """Bad caller input, rejected before any state is touched."""

    classification = "validation_error"


class NotFound(ChatServiceError):
    """No conversation with this id is owned by the caller."""

    classification = "not_found"


class Unauthorized(ChatServiceError):
    classification = "unauthorized"


class UpstreamError(ChatServiceError):
    classification = "upstream_error"


class UpstreamUnavailable(UpstreamError):
    """
    The completion provider answered with a non-success status, or the
    connection (or a read on the response stream) failed.

    `body` keeps the provider's error payload for operators; it must never be
    shown to end users.
    """

    classification = "upstream_unavailable"

    def __init__(self, message: str = "", status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamMalformed(UpstreamError):
    """A success status whose body does not have the expected shape."""

    classification = "upstream_malformed"


class PersistenceFailure(ChatServiceError):
    """The conversation document could not be written."""

    classification = "persistence_failure"


class ExchangeInFlight(ChatServiceError):
    """A client session tried to start a second exchange before the first ended."""

    classification = "exchange_in_flight"
