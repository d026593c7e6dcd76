"""Persistence of IGDB reference entities (genres) and sync bookkeeping."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Sequence

from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from db import utils as db_utils
from sync.errors import PersistenceError
from sync.models import PersistedEntity

logger = logging.getLogger(__name__)

GENRE_TABLE = "genre"
SYNC_STATE_TABLE = "igdb_sync_state"

metadata = MetaData()


def build_reference_table(table_name: str, meta: MetaData = metadata) -> Table:
    """Return the ``(id, api_id UNIQUE, name)`` table named ``table_name``."""

    if table_name in meta.tables:
        return meta.tables[table_name]
    return Table(
        table_name,
        meta,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("api_id", BigInteger, nullable=False),
        Column("name", String(255), nullable=False),
        UniqueConstraint("api_id", name=f"uq_{table_name}_api_id"),
    )


genre_table = build_reference_table(GENRE_TABLE)

sync_state_table = Table(
    SYNC_STATE_TABLE,
    metadata,
    Column("collection", String(64), primary_key=True),
    Column("total_count", BigInteger),
    Column("last_synced_at", BigInteger),
    Column("updated_at", String(64)),
)


StoreConnection = db_utils.DatabaseHandle | db_utils.DatabaseEngine | Engine


def _resolve_engine(conn: StoreConnection) -> Engine:
    if isinstance(conn, (db_utils.DatabaseHandle, db_utils.DatabaseEngine)):
        return conn.engine
    if isinstance(conn, Engine):
        return conn
    raise TypeError(f"Unsupported connection type: {type(conn)!r}")


def _upsert_statement(
    table: Table,
    dialect_name: str,
    *,
    key_columns: Sequence[str],
    update_columns: Sequence[str],
):
    """Return an insert-or-update statement for the active SQL dialect."""

    if dialect_name in {"mysql", "mariadb"}:
        statement = mysql_insert(table)
        return statement.on_duplicate_key_update(
            {column: statement.inserted[column] for column in update_columns}
        )
    if dialect_name == "postgresql":
        statement = postgresql_insert(table)
        return statement.on_conflict_do_update(
            index_elements=[table.c[column] for column in key_columns],
            set_={column: statement.excluded[column] for column in update_columns},
        )
    if dialect_name == "sqlite":
        statement = sqlite_insert(table)
        return statement.on_conflict_do_update(
            index_elements=[table.c[column] for column in key_columns],
            set_={column: statement.excluded[column] for column in update_columns},
        )
    raise PersistenceError(f"upsert is not supported for dialect {dialect_name!r}")


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReferenceUpsertSink:
    """Idempotent writer for a reference table keyed by ``api_id``.

    Every :meth:`upsert_batch` call runs in its own transaction: either all
    rows of the batch are visible afterwards or none are.
    """

    def __init__(
        self,
        conn: StoreConnection,
        *,
        table: Table = genre_table,
        lock: Lock | None = None,
    ) -> None:
        self._engine = _resolve_engine(conn)
        self._table = table
        self._lock = lock or db_utils.db_lock
        self._statement = None

    @property
    def table(self) -> Table:
        return self._table

    def ensure_table(self) -> None:
        try:
            self._table.create(self._engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"could not create table {self._table.name}: {exc}") from exc

    def _upsert(self):
        if self._statement is None:
            self._statement = _upsert_statement(
                self._table,
                self._engine.dialect.name,
                key_columns=("api_id",),
                update_columns=("name",),
            )
        return self._statement

    def upsert_batch(self, entities: Sequence[PersistedEntity]) -> int:
        """Insert or update ``entities`` atomically and return the row count."""

        rows: dict[int, dict[str, Any]] = {}
        for entity in entities:
            rows[entity.api_id] = entity.to_row()
        if not rows:
            return 0

        statement = self._upsert()
        with self._lock:
            try:
                with self._engine.begin() as conn:
                    conn.execute(statement, list(rows.values()))
            except (SQLAlchemyError, OverflowError, ValueError, TypeError) as exc:
                # DBAPI drivers reject unbindable values before SQLAlchemy wraps them.
                raise PersistenceError(
                    f"failed to upsert {len(rows)} rows into {self._table.name}: {exc}"
                ) from exc
        logger.debug("Upserted %s rows into %s", len(rows), self._table.name)
        return len(rows)

    def count(self) -> int:
        with self._engine.connect() as conn:
            return int(conn.execute(select(func.count()).select_from(self._table)).scalar_one())

    def list_entities(self) -> list[PersistedEntity]:
        query = select(self._table.c.api_id, self._table.c.name).order_by(self._table.c.api_id)
        with self._engine.connect() as conn:
            return [
                PersistedEntity(api_id=int(row.api_id), name=str(row.name))
                for row in conn.execute(query)
            ]


class SyncStateStore:
    """Per-collection record of the last successful synchronization."""

    def __init__(self, conn: StoreConnection, *, lock: Lock | None = None) -> None:
        self._engine = _resolve_engine(conn)
        self._lock = lock or db_utils.db_lock

    def ensure_table(self) -> None:
        try:
            sync_state_table.create(self._engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"could not create table {SYNC_STATE_TABLE}: {exc}") from exc

    def get(self, collection: str) -> dict[str, Any] | None:
        query = select(
            sync_state_table.c.total_count,
            sync_state_table.c.last_synced_at,
            sync_state_table.c.updated_at,
        ).where(sync_state_table.c.collection == collection)
        try:
            with self._engine.connect() as conn:
                row = conn.execute(query).mappings().first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to read sync state for {collection}: {exc}") from exc
        if row is None:
            return None
        return {
            "collection": collection,
            "total_count": row["total_count"],
            "last_synced_at": row["last_synced_at"],
            "updated_at": row["updated_at"],
        }

    def last_synced_at(self, collection: str) -> int | None:
        state = self.get(collection)
        if state is None or state["last_synced_at"] is None:
            return None
        return int(state["last_synced_at"])

    def record(self, collection: str, *, total: int, synced_at: int) -> None:
        statement = _upsert_statement(
            sync_state_table,
            self._engine.dialect.name,
            key_columns=("collection",),
            update_columns=("total_count", "last_synced_at", "updated_at"),
        )
        parameters = {
            "collection": collection,
            "total_count": total,
            "last_synced_at": synced_at,
            "updated_at": _now_utc_iso(),
        }
        with self._lock:
            try:
                with self._engine.begin() as conn:
                    conn.execute(statement, parameters)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"failed to record sync state: {exc}") from exc


def ensure_schema(conn: StoreConnection) -> None:
    """Create every table this module manages when missing."""

    engine = _resolve_engine(conn)
    try:
        metadata.create_all(engine, checkfirst=True)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"could not create schema: {exc}") from exc


__all__ = [
    "GENRE_TABLE",
    "ReferenceUpsertSink",
    "SYNC_STATE_TABLE",
    "SyncStateStore",
    "build_reference_table",
    "ensure_schema",
    "genre_table",
    "metadata",
    "sync_state_table",
]
