"""SQLAlchemy engine construction and per-context database handles."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from threading import Lock
from typing import Any, Callable

from flask import g, has_app_context
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url

db_lock = Lock()
"""Serialises writes to the reference-data tables across threads."""


class DatabaseEngine:
    """Owner of a SQLAlchemy engine shared by the whole process."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def dispose(self) -> None:
        self._engine.dispose()


class DatabaseHandle(DatabaseEngine):
    """View of a :class:`DatabaseEngine` cached on one application context."""

    def __init__(self, engine: DatabaseEngine):
        super().__init__(engine.engine)
        self._owner = engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    def dispose(self) -> None:
        self._owner.dispose()


_fallback_connection: DatabaseEngine | None = None


def set_fallback_connection(conn: DatabaseEngine | None) -> None:
    """Set the engine :func:`get_db` returns outside an app context."""

    global _fallback_connection
    _fallback_connection = conn


def _coerce_handle(value: DatabaseEngine) -> DatabaseHandle:
    if isinstance(value, DatabaseHandle):
        return value
    if isinstance(value, DatabaseEngine):
        return DatabaseHandle(value)
    raise TypeError("connection_factory must return DatabaseHandle or DatabaseEngine")


_SQLITE_PRAGMAS: tuple[tuple[str, str], ...] = (
    ("journal_mode", "WAL"),
    ("foreign_keys", "ON"),
)


def _configure_sqlite_connection(conn: Any, *, busy_timeout: float | None = None) -> Any:
    if not isinstance(conn, sqlite3.Connection):
        return conn

    pragmas = list(_SQLITE_PRAGMAS)
    if busy_timeout and busy_timeout > 0:
        pragmas.insert(0, ("busy_timeout", str(int(busy_timeout * 1000))))

    for name, value in pragmas:
        try:
            conn.execute(f"PRAGMA {name}={value}").fetchall()
        except sqlite3.OperationalError:  # pragma: no cover - read-only or in-memory files
            continue
    return conn


def _configure_mariadb_connection(conn: Any, *, lock_timeout: float | None = None) -> Any:
    """Bound how long MariaDB sessions wait on row and metadata locks."""

    if lock_timeout is None:
        return conn

    seconds = max(int(lock_timeout), 1)
    cursor = conn.cursor()
    try:
        cursor.execute(f"SET SESSION innodb_lock_wait_timeout = {seconds}")
        cursor.execute(f"SET SESSION lock_wait_timeout = {seconds}")
    finally:
        cursor.close()
    return conn


def _resolve_sqlite_path_from_dsn(dsn: str) -> str:
    """Return the absolute database file path of a ``sqlite:///`` DSN."""

    url = make_url(dsn)
    if url.get_backend_name() != "sqlite":
        raise ValueError(f"Not a SQLite DSN: {url.get_backend_name()}")
    if not url.database or url.database == ":memory:":
        raise ValueError("SQLite DSN must include a filesystem path")
    return os.fspath(Path(url.database).expanduser().resolve())


def build_engine_from_dsn(
    dsn: str,
    *,
    timeout: float | None = None,
    pool_size: int = 5,
    pool_recycle: int = 1_800,
    pool_pre_ping: bool = True,
) -> DatabaseEngine:
    """Return a :class:`DatabaseEngine` for ``dsn`` with per-dialect tuning.

    SQLite files get their parent directory created and WAL journaling;
    MariaDB/MySQL sessions get lock wait timeouts matching ``timeout``.
    """

    backend = make_url(dsn).get_backend_name()
    effective_timeout = timeout if timeout is not None else 5.0
    engine_options: dict[str, Any] = {
        "pool_size": pool_size,
        "pool_recycle": pool_recycle,
        "pool_pre_ping": pool_pre_ping,
    }

    if backend == "sqlite":
        sqlite_path = Path(_resolve_sqlite_path_from_dsn(dsn))
        sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        dsn = f"sqlite:///{sqlite_path.as_posix()}"
        engine_options["connect_args"] = {"check_same_thread": False}

    engine = create_engine(dsn, **engine_options)

    if backend == "sqlite":

        @event.listens_for(engine, "connect")
        def _on_sqlite_connect(dbapi_conn, connection_record):
            _configure_sqlite_connection(dbapi_conn, busy_timeout=effective_timeout)

    elif backend in {"mysql", "mariadb"}:

        @event.listens_for(engine, "connect")
        def _on_mariadb_connect(dbapi_conn, connection_record):
            _configure_mariadb_connection(dbapi_conn, lock_timeout=effective_timeout)

    return DatabaseEngine(engine)


def get_db(
    connection_factory: Callable[[], DatabaseEngine] | None = None,
    *,
    context_key: str = "db",
) -> DatabaseHandle:
    """Return the active :class:`DatabaseHandle`, creating one if necessary.

    Inside a Flask application context the handle is cached on
    :data:`flask.g`; otherwise the module-level fallback is used.
    """

    global _fallback_connection

    if has_app_context():
        if not hasattr(g, context_key):
            source = connection_factory() if connection_factory else _fallback_connection
            if source is None:
                raise RuntimeError("Database connection is not configured")
            setattr(g, context_key, _coerce_handle(source))
        return getattr(g, context_key)

    if _fallback_connection is None:
        if connection_factory is None:
            raise RuntimeError("Database connection is not configured")
        _fallback_connection = connection_factory()
    return _coerce_handle(_fallback_connection)
