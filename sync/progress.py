"""Progress reporting for synchronization runs.

Reporters are purely observational: the orchestrator guards every call, so
an implementation raising an exception never fails a run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType
from typing import Callable

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.progress import TaskID as RichTaskID

ProgressCallback = Callable[..., None]


class ProgressReporter(ABC):
    """Observer receiving the run total and per-batch advances."""

    @abstractmethod
    def total(self, n: int) -> None:
        """Set the denominator; called once at run start."""
        ...  # pragma: no cover

    @abstractmethod
    def advance(self, by: int) -> None:
        """Add ``by`` processed records."""
        ...  # pragma: no cover


class NullProgressReporter(ProgressReporter):
    def total(self, n: int) -> None:
        pass

    def advance(self, by: int) -> None:
        pass


class CallbackProgressReporter(ProgressReporter):
    """Adapter for ``update_progress(current=, total=, message=)`` callbacks."""

    def __init__(self, update_progress: ProgressCallback, *, label: str = "records") -> None:
        self._update_progress = update_progress
        self._label = label
        self._total = 0
        self._current = 0

    def total(self, n: int) -> None:
        self._total = n
        self._current = 0
        self._update_progress(
            current=0, total=n, message=f"0 / {n} {self._label}"
        )

    def advance(self, by: int) -> None:
        self._current += by
        self._update_progress(
            current=self._current,
            total=self._total,
            message=f"{self._current} / {self._total} {self._label}",
        )


class RichProgressReporter(ProgressReporter):
    """Terminal progress bar powered by Rich.

    Use as a context manager so the live display is started and stopped::

        with RichProgressReporter("Genres") as progress:
            SyncOrchestrator(source, sink, progress=progress).run(since)
    """

    def __init__(self, description: str = "Syncing", *, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)
        self._description = description
        self._progress = Progress(
            SpinnerColumn(finished_text="[green]✓[/green]"),
            TextColumn("{task.description:>10}"),
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=self._console,
            transient=False,
        )
        self._task_id: RichTaskID | None = None

    def __enter__(self) -> RichProgressReporter:
        self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None and self._task_id is not None:
            self._progress.update(
                self._task_id, description=f"[red]✗[/red] {self._description}"
            )
        self._progress.stop()

    def total(self, n: int) -> None:
        if self._task_id is None:
            self._task_id = self._progress.add_task(self._description, total=n)
        else:
            self._progress.update(self._task_id, total=n, completed=0)

    def advance(self, by: int) -> None:
        if self._task_id is not None:
            self._progress.advance(self._task_id, by)

    @property
    def completed(self) -> float:
        if self._task_id is None:
            return 0
        return self._progress.tasks[self._task_id].completed


__all__ = [
    "CallbackProgressReporter",
    "NullProgressReporter",
    "ProgressCallback",
    "ProgressReporter",
    "RichProgressReporter",
]
