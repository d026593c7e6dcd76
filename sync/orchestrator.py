"""Batched fetch → transform → upsert loop over a paginated source."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence

from helpers import parse_unix_timestamp
from sync.errors import InvalidArgument, InvalidRecord, SyncFailed
from sync.models import (
    SYNC_STATUS_STOPPED,
    PersistedEntity,
    ProgressState,
    SourceRecord,
    SyncCursor,
    SyncResult,
    freeze_record,
)
from sync.progress import NullProgressReporter, ProgressReporter
from sync.transform import transform_reference_record

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


class SourceClient(Protocol):
    def count(self, since: int | None = None) -> int: ...

    def fetch_page(
        self, page_size: int, offset: int, since: int | None = None
    ) -> Sequence[SourceRecord]: ...


class UpsertSink(Protocol):
    def upsert_batch(self, entities: Sequence[PersistedEntity]) -> int: ...


Transformer = Callable[[SourceRecord], PersistedEntity]


class SyncState(str, Enum):
    IDLE = "idle"
    COUNTING_TOTAL = "counting_total"
    FETCHING_BATCH = "fetching_batch"
    TRANSFORMING_BATCH = "transforming_batch"
    PERSISTING_BATCH = "persisting_batch"
    DONE = "done"
    STOPPED = "stopped"
    FAILED = "failed"


def validate_since(value: Any) -> int | None:
    """Return ``value`` as UNIX seconds or raise :class:`InvalidArgument`."""

    try:
        return parse_unix_timestamp(value)
    except ValueError as exc:
        raise InvalidArgument(
            f"since must be a valid UNIX timestamp, got {value!r}"
        ) from exc


class SyncOrchestrator:
    """Drive one synchronization run from count to completion.

    Pages are requested at offsets ``0, page_size, 2 * page_size, …`` until
    the offset reaches the total read at run start. Each page is transformed
    record by record (invalid records are skipped and logged) and the valid
    entities are handed to the sink as one atomic batch. A failure while
    counting, fetching or persisting aborts the run with :class:`SyncFailed`;
    batches committed before the failure are kept.

    With ``prefetch`` enabled the next page is downloaded on a worker thread
    while the current page is persisted. Sink calls still happen one at a time
    and in page order.
    """

    def __init__(
        self,
        source: SourceClient,
        sink: UpsertSink,
        *,
        transform: Transformer = transform_reference_record,
        progress: ProgressReporter | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        stop_event: threading.Event | None = None,
        prefetch: bool = False,
    ) -> None:
        if page_size <= 0:
            raise InvalidArgument("page_size must be positive")
        self._source = source
        self._sink = sink
        self._transform = transform
        self._progress = progress or NullProgressReporter()
        self._page_size = int(page_size)
        self._stop_event = stop_event
        self._prefetch = prefetch
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def page_size(self) -> int:
        return self._page_size

    def run(self, since: Any = None) -> SyncResult:
        since_value = validate_since(since)
        result = SyncResult()
        try:
            total = self._count(since_value)
            result.total = total
            progress_state = ProgressState(total=total)
            self._report("total", total)

            pages = self._iter_pages(total, since_value)
            with closing(pages):
                for cursor, page in pages:
                    entities = self._transform_page(cursor, page, result)
                    if entities:
                        result.written += self._persist(entities)
                    result.batches += 1
                    result.processed += len(page)
                    self._advance_progress(progress_state, len(page))
        except SyncFailed as exc:
            self._state = SyncState.FAILED
            logger.error(
                "Sync aborted during %s after %s/%s records: %s",
                exc.stage,
                result.processed,
                result.total,
                exc.cause,
            )
            raise

        if self._state is SyncState.STOPPED:
            result.status = SYNC_STATUS_STOPPED
            logger.warning(
                "Sync stopped after %s/%s records", result.processed, result.total
            )
        else:
            self._state = SyncState.DONE
            logger.info(
                "Sync finished: %s processed, %s written, %s skipped in %s batches",
                result.processed,
                result.written,
                result.skipped,
                result.batches,
            )
        return result

    def _count(self, since: int | None) -> int:
        self._state = SyncState.COUNTING_TOTAL
        try:
            total = int(self._source.count(since))
        except Exception as exc:
            raise SyncFailed("count", exc) from exc
        return max(total, 0)

    def _fetch(self, cursor: SyncCursor) -> list[SourceRecord]:
        try:
            page = self._source.fetch_page(cursor.page_size, cursor.offset, cursor.since)
        except Exception as exc:
            raise SyncFailed("fetch", exc) from exc
        return [
            freeze_record(record) if isinstance(record, Mapping) else record
            for record in page or []
        ]

    def _stop_requested(self) -> bool:
        if self._stop_event is not None and self._stop_event.is_set():
            self._state = SyncState.STOPPED
            return True
        return False

    def _iter_pages(
        self, total: int, since: int | None
    ) -> Iterator[tuple[SyncCursor, list[SourceRecord]]]:
        cursor = SyncCursor(offset=0, page_size=self._page_size, since=since)
        if cursor.offset >= total or self._stop_requested():
            return

        if not self._prefetch:
            while cursor.offset < total:
                if self._stop_requested():
                    return
                self._state = SyncState.FETCHING_BATCH
                page = self._fetch(cursor)
                if not page:
                    logger.warning(
                        "Source returned no records at offset %s of %s; stopping early",
                        cursor.offset,
                        total,
                    )
                    return
                yield cursor, page
                cursor = cursor.advance()
            return

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-prefetch") as executor:
            pending = executor.submit(self._fetch, cursor)
            while pending is not None:
                self._state = SyncState.FETCHING_BATCH
                page = pending.result()
                following = cursor.advance()
                pending = None
                if page and following.offset < total:
                    pending = executor.submit(self._fetch, following)
                if not page:
                    logger.warning(
                        "Source returned no records at offset %s of %s; stopping early",
                        cursor.offset,
                        total,
                    )
                    return
                yield cursor, page
                if pending is not None and self._stop_requested():
                    pending.cancel()
                    return
                cursor = following

    def _transform_page(
        self,
        cursor: SyncCursor,
        page: Sequence[SourceRecord],
        result: SyncResult,
    ) -> list[PersistedEntity]:
        self._state = SyncState.TRANSFORMING_BATCH
        entities: list[PersistedEntity] = []
        for position, record in enumerate(page):
            try:
                entities.append(self._transform(record))
            except InvalidRecord as exc:
                result.skipped += 1
                result.skipped_records.append(str(exc))
                logger.warning(
                    "Skipping invalid record at offset %s: %s",
                    cursor.offset + position,
                    exc,
                )
        return entities

    def _persist(self, entities: Sequence[PersistedEntity]) -> int:
        self._state = SyncState.PERSISTING_BATCH
        try:
            written = self._sink.upsert_batch(entities)
        except Exception as exc:
            raise SyncFailed("persist", exc) from exc
        logger.debug("Committed batch of %s entities", written)
        return int(written)

    def _advance_progress(self, progress_state: ProgressState, fetched: int) -> None:
        remaining = max(progress_state.total - progress_state.processed, 0)
        step = min(fetched, remaining)
        if step <= 0:
            return
        progress_state.advance(step)
        self._report("advance", step)

    def _report(self, method: str, value: int) -> None:
        try:
            getattr(self._progress, method)(value)
        except Exception:
            logger.warning("Progress reporter %s(%s) failed", method, value, exc_info=True)


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "SourceClient",
    "SyncOrchestrator",
    "SyncState",
    "Transformer",
    "UpsertSink",
    "validate_since",
]
