"""Maintenance command replicating IGDB genres into the database."""

from __future__ import annotations

import logging
import signal
import threading
import time
from contextlib import contextmanager, nullcontext
from typing import Any, ContextManager, Iterator

import click
from flask import Flask, current_app
from flask.cli import with_appcontext
from rich.console import Console

import config as app_config
from db import utils as db_utils
from genres.store import ReferenceUpsertSink, SyncStateStore, ensure_schema, genre_table
from helpers import _format_timestamp
from igdb.client import IGDBClient, resolve_igdb_page_size
from igdb.sources import GENRES, IGDBReferenceSource
from sync.errors import InvalidArgument, PersistenceError, SyncFailed
from sync.models import SyncResult
from sync.orchestrator import SyncOrchestrator, validate_since
from sync.progress import CallbackProgressReporter, ProgressReporter, RichProgressReporter

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Genres successfully replicated in database."


def build_igdb_client(app: Flask) -> IGDBClient:
    """Return an :class:`IGDBClient` configured from ``app.config``."""

    return IGDBClient(
        client_id=app.config.get("IGDB_CLIENT_ID"),
        client_secret=app.config.get("IGDB_CLIENT_SECRET"),
        user_agent=app.config.get("IGDB_USER_AGENT"),
        max_retries=app.config.get("IGDB_MAX_RETRIES", 3),
        rate_limit_wait=app.config.get("IGDB_RATE_LIMIT_WAIT", 1.0),
    )


def _app_database() -> db_utils.DatabaseHandle:
    return db_utils.get_db(lambda: current_app.extensions["db_engine"])


@contextmanager
def _stop_on_interrupt(stop_event: threading.Event) -> Iterator[None]:
    """Turn the first Ctrl-C into a stop request honoured between batches."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum: int, frame: Any) -> None:
        if stop_event.is_set():
            raise KeyboardInterrupt
        stop_event.set()
        click.secho(
            "Stop requested; finishing the current batch (Ctrl-C again to abort).",
            fg="yellow",
            err=True,
        )

    signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _echo_progress(*, current: int, total: int, message: str) -> None:
    click.echo(message, err=True)


def _progress_reporter() -> ContextManager[ProgressReporter]:
    """Rich bar on a terminal, one ``processed / total`` line per batch otherwise."""

    console = Console(stderr=True)
    if console.is_terminal:
        return RichProgressReporter("Genres", console=console)
    return nullcontext(CallbackProgressReporter(_echo_progress, label="genres"))


def run_genre_sync(
    since: Any = None,
    *,
    incremental: bool = False,
    batch_size: int | None = None,
    prefetch: bool = False,
) -> SyncResult:
    """Synchronise the ``genre`` table with IGDB inside the app context."""

    since_value = validate_since(since)

    app = current_app._get_current_object()
    missing = app_config.missing_igdb_credentials(app.config)
    if missing:
        raise InvalidArgument(f"IGDB credentials are missing; set {' and '.join(missing)}.")

    handle = _app_database()
    ensure_schema(handle)
    state_store = SyncStateStore(handle)

    if incremental and since_value is None:
        since_value = state_store.last_synced_at(GENRES.name)
        if since_value is not None:
            click.echo(
                f"Resuming from last sync at {_format_timestamp(since_value)}."
            )

    page_size = resolve_igdb_page_size(
        batch_size if batch_size is not None else app.config.get("IGDB_BATCH_SIZE", 500)
    )
    source = IGDBReferenceSource(build_igdb_client(app), GENRES)
    sink = ReferenceUpsertSink(handle, table=genre_table)

    stop_event = threading.Event()
    started_at = int(time.time())
    click.echo("Fetching genres from IGDB...")
    with _stop_on_interrupt(stop_event), _progress_reporter() as progress:
        orchestrator = SyncOrchestrator(
            source,
            sink,
            progress=progress,
            page_size=page_size,
            stop_event=stop_event,
            prefetch=prefetch,
        )
        result = orchestrator.run(since_value)

    if not result.stopped:
        state_store.record(GENRES.name, total=result.total, synced_at=started_at)
        logger.info(
            "Recorded %s sync at %s (%s records)",
            GENRES.name,
            _format_timestamp(started_at),
            result.total,
        )
    logger.debug("Genre sync result: %s", result.to_dict())
    return result


@click.command(
    "get-genres-from-igdb",
    help="Fetches the genres from IGDB and stores them in the database.",
)
@click.option(
    "--since",
    "--from",
    "since",
    default=None,
    metavar="TIMESTAMP",
    help="Only fetch genres updated at or after this UNIX timestamp.",
)
@click.option(
    "--incremental",
    is_flag=True,
    help="Use the start of the last successful run when --since is omitted.",
)
@click.option(
    "--batch-size",
    type=int,
    default=None,
    help="Records per IGDB request (at most 500).",
)
@click.option(
    "--prefetch/--no-prefetch",
    default=False,
    help="Download the next page while the current one is written.",
)
@with_appcontext
def get_genres_from_igdb_command(
    since: str | None,
    incremental: bool,
    batch_size: int | None,
    prefetch: bool,
) -> None:
    try:
        result = run_genre_sync(
            since,
            incremental=incremental,
            batch_size=batch_size,
            prefetch=prefetch,
        )
    except InvalidArgument as exc:
        click.secho(f"Invalid input: {exc}", fg="red", err=True)
        raise SystemExit(1)
    except SyncFailed as exc:
        click.secho(
            f"Genre sync failed during {exc.stage}: {exc.cause}", fg="red", err=True
        )
        raise SystemExit(1)
    except PersistenceError as exc:
        click.secho(f"Genre sync failed: {exc}", fg="red", err=True)
        raise SystemExit(1)

    click.echo(
        f"Processed {result.processed} / {result.total} genres "
        f"({result.written} written, {result.skipped} skipped)."
    )
    if result.stopped:
        click.secho("Genre sync stopped before completion.", fg="yellow", err=True)
        raise SystemExit(1)
    click.secho(SUCCESS_MESSAGE, fg="green")


def register_commands(app: Flask) -> None:
    app.cli.add_command(get_genres_from_igdb_command)
    app.cli.add_command(get_genres_from_igdb_command, name="fetch-genres")


__all__ = [
    "SUCCESS_MESSAGE",
    "build_igdb_client",
    "get_genres_from_igdb_command",
    "register_commands",
    "run_genre_sync",
]
