from __future__ import annotations


class FeedError(Exception):
    """Base class for every error raised by the feed."""


class TransportError(FeedError):
    """Network or HTTP failure talking to the exchange."""


class ParseError(FeedError):
    """Malformed JSON or numeric field in a payload or stored row."""


class ValidationError(FeedError):
    """Configuration rejected by the schema or by the config model."""


class StorageError(FeedError):
    """The store could not be opened or written."""


class ClockAnomalyError(FeedError):
    """A date difference that should be positive was zero or negative."""

    def __init__(self, message: str, diff: int):
        super().__init__(message)
        self.diff = diff
