"""
Errors Module

Exception types shared by the store, the persistence layer and the ingestor.
"""


class MonitorError(Exception):
    """Base class for errors raised by the monitor."""


class FetchError(MonitorError):
    """Raised when a page or listing could not be fetched from upstream."""


class TransientFetchError(FetchError):
    """Upstream request failed; the caller may try again later."""

    def __init__(self, message, status_code=None, retry_after=None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class AccessDeniedError(FetchError):
    """The channel (or guild) is not readable with the current credentials."""


class SerializationError(MonitorError):
    """The store snapshot could not be serialized or written to disk."""
