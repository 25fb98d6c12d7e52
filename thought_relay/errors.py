"""Exceptions raised by the thought relay."""


class ThoughtRelayError(Exception):
    """Base class for relay failures."""


class UpstreamError(ThoughtRelayError):
    """The inference backend was unreachable or answered with an error status.

    Attributes:
        status_code: HTTP status from the backend, None for transport failures
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
