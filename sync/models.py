"""Value types shared by the synchronization pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

SourceRecord = Mapping[str, Any]
"""Raw record as returned by the external source."""


def freeze_record(payload: Mapping[str, Any]) -> SourceRecord:
    """Return a read-only view over a copy of ``payload``."""

    return MappingProxyType(dict(payload))


@dataclass(frozen=True)
class PersistedEntity:
    """Target row keyed by the external identifier."""

    api_id: int
    name: str

    def to_row(self) -> dict[str, Any]:
        return {"api_id": self.api_id, "name": self.name}


@dataclass(frozen=True)
class SyncCursor:
    offset: int = 0
    page_size: int = 500
    since: int | None = None

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError("offset must be >= 0")
        if self.page_size <= 0:
            raise ValueError("page_size must be positive")

    def advance(self) -> "SyncCursor":
        return replace(self, offset=self.offset + self.page_size)


@dataclass
class ProgressState:
    """Cumulative progress of one run; ``processed`` never decreases."""

    total: int = 0
    processed: int = 0

    def advance(self, by: int) -> int:
        if by < 0:
            raise ValueError("progress cannot move backwards")
        self.processed += by
        return self.processed


SYNC_STATUS_SUCCESS = "success"
SYNC_STATUS_STOPPED = "stopped"


@dataclass
class SyncResult:
    total: int = 0
    processed: int = 0
    written: int = 0
    skipped: int = 0
    batches: int = 0
    status: str = SYNC_STATUS_SUCCESS
    skipped_records: list[str] = field(default_factory=list)

    @property
    def stopped(self) -> bool:
        return self.status == SYNC_STATUS_STOPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "written": self.written,
            "skipped": self.skipped,
            "batches": self.batches,
            "status": self.status,
            "skipped_records": list(self.skipped_records),
        }


__all__ = [
    "PersistedEntity",
    "ProgressState",
    "SYNC_STATUS_STOPPED",
    "SYNC_STATUS_SUCCESS",
    "SourceRecord",
    "SyncCursor",
    "SyncResult",
    "freeze_record",
]
