"""Paginated IGDB reference collections exposed as sync sources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from igdb.client import IGDBClient
from sync.models import SourceRecord


@dataclass(frozen=True)
class ReferenceCollection:
    """An IGDB endpoint holding ``{id, name}`` reference records."""

    name: str
    endpoint: str
    fields: tuple[str, ...] = ("id", "name", "slug", "updated_at")
    since_field: str = "updated_at"


GENRES = ReferenceCollection(name="genres", endpoint="genres")

REFERENCE_COLLECTIONS: dict[str, ReferenceCollection] = {
    GENRES.name: GENRES,
}


class IGDBReferenceSource:
    """Source client reading one :class:`ReferenceCollection` page by page."""

    def __init__(self, client: IGDBClient, collection: ReferenceCollection = GENRES) -> None:
        self._client = client
        self._collection = collection

    @property
    def collection(self) -> ReferenceCollection:
        return self._collection

    def _where(self, since: int | None) -> str | None:
        if since is None:
            return None
        return f"{self._collection.since_field} >= {int(since)}"

    def count(self, since: int | None = None) -> int:
        return self._client.count(self._collection.endpoint, where=self._where(since))

    def fetch_page(
        self, page_size: int, offset: int, since: int | None = None
    ) -> list[SourceRecord]:
        records: list[dict[str, Any]] = self._client.fetch(
            self._collection.endpoint,
            fields=self._collection.fields,
            limit=page_size,
            offset=offset,
            where=self._where(since),
        )
        return records


__all__ = [
    "GENRES",
    "IGDBReferenceSource",
    "REFERENCE_COLLECTIONS",
    "ReferenceCollection",
]
