"""
Exception taxonomy for the ingestion pipeline.

Expected outcomes (rejections, idempotent conflicts) are reported through
these types at the level that can decide what to do with them; only
StoreUnavailableError is meant to escape a batch.
"""


class IngestionError(Exception):
    """Base class for all ingestion errors."""


class EventRejectedError(IngestionError, ValueError):
    """Raised when a raw event cannot be mapped to a valid NormalizedEvent."""

    def __init__(self, reason: str, raw_event: object = None):
        super().__init__(reason)
        self.reason = reason
        self.raw_event = raw_event


class StorageError(IngestionError):
    """A single write or read against the primary store failed."""


class StoreUnavailableError(StorageError):
    """The primary store cannot be reached at all; the whole batch should be retried."""


class IndexingError(IngestionError):
    """Writing a document into the search index failed."""


class InvalidPayloadError(IngestionError, ValueError):
    """A trigger payload could not be decoded into a batch request."""
