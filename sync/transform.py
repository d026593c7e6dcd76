"""Mapping of raw IGDB reference records onto persisted entities."""

from __future__ import annotations

from typing import Any, Mapping

from helpers import _normalize_lookup_name, coerce_igdb_id
from sync.errors import InvalidRecord
from sync.models import PersistedEntity

MAX_NAME_LENGTH = 255
# Upper bound of the BIGINT api_id column.
MAX_API_ID = 2**63 - 1


def transform_reference_record(record: Mapping[str, Any]) -> PersistedEntity:
    """Return the :class:`PersistedEntity` for an IGDB ``{id, name}`` record."""

    if not isinstance(record, Mapping):
        raise InvalidRecord(f"record is not a mapping: {record!r}", record=record)

    raw_id = record.get("id")
    text_id = coerce_igdb_id(raw_id)
    if not text_id:
        raise InvalidRecord("record has no identifier", record=record)
    try:
        api_id = int(text_id)
    except ValueError:
        raise InvalidRecord(f"invalid identifier {raw_id!r}", record=record) from None
    if not 0 < api_id <= MAX_API_ID:
        raise InvalidRecord(f"invalid identifier {raw_id!r}", record=record)

    name = _normalize_lookup_name(record.get("name"))
    if not name:
        raise InvalidRecord(f"record {api_id} has no name", record=record)

    return PersistedEntity(api_id=api_id, name=name[:MAX_NAME_LENGTH])


transform_genre = transform_reference_record


__all__ = ["MAX_API_ID", "MAX_NAME_LENGTH", "transform_genre", "transform_reference_record"]
