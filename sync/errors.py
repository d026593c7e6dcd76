"""Exception hierarchy for the reference-data synchronization pipeline."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for synchronization errors."""


class InvalidArgument(SyncError):
    """Raised when run input (for example the ``since`` filter) is invalid."""


class SourceUnavailable(SyncError):
    """Raised when the external source cannot be queried."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimited(SourceUnavailable):
    """Raised when the source keeps answering HTTP 429 after all retries."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message, status=429)
        self.retry_after = retry_after


class InvalidRecord(SyncError):
    """Raised when a single source record cannot be transformed."""

    def __init__(self, message: str, *, record: object | None = None) -> None:
        super().__init__(message)
        self.record = record


class PersistenceError(SyncError):
    """Raised when a batch cannot be written; the batch is rolled back."""


class SyncFailed(SyncError):
    """Raised when a run aborts; ``stage`` names the failing step."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause


__all__ = [
    "InvalidArgument",
    "InvalidRecord",
    "PersistenceError",
    "RateLimited",
    "SourceUnavailable",
    "SyncError",
    "SyncFailed",
]
