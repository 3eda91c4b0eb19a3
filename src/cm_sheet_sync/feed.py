"""Deduplicating row view over one entity table.

One remote entity can appear on several rows of a table (for example an ad
repeated once per placement it runs on).  :class:`TabularFeed` shows one
representative row per key, remembers the rest as duplicates, and when saved
copies every edit made to the representative onto its duplicates.
"""

import copy
import logging
from collections.abc import Iterator, Sequence
from typing import Any

from pydantic import BaseModel, Field

from .tabular.store import DATA_RANGE, TabularStore, is_blank

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"
UNKEYED = "unkeyed"


def _escape_key(value: str) -> str:
    return value.replace("\\", "\\\\").replace(KEY_SEPARATOR, "\\" + KEY_SEPARATOR)


class FeedRow(BaseModel):
    """A representative row plus the sibling rows sharing its key."""

    data: dict[str, Any] = Field(default_factory=dict)
    original: dict[str, Any] | None = None
    duplicates: list[dict[str, Any]] = Field(default_factory=list)
    keyed: bool = True

    model_config = {"populate_by_name": True}

    @classmethod
    def from_row(cls, row: dict[str, Any], keyed: bool = True) -> "FeedRow":
        """Wrap a raw row, snapshotting it for change tracking."""
        return cls(data=dict(row), original=copy.deepcopy(row), keyed=keyed)

    @property
    def unkeyed(self) -> bool:
        return not self.keyed

    def get(self, field: str, default: Any = None) -> Any:
        return self.data.get(field, default)

    def __getitem__(self, field: str) -> Any:
        return self.data[field]

    def __setitem__(self, field: str, value: Any) -> None:
        self.data[field] = value

    def __contains__(self, field: object) -> bool:
        return field in self.data

    def changed_fields(self) -> dict[str, Any]:
        """
        Fields whose value differs from the snapshot.

        Bookkeeping fields (leading ``_``) and nested child lists are never
        reported.
        """
        original = self.original or {}
        changes: dict[str, Any] = {}
        for field, value in self.data.items():
            if field.startswith("_") or isinstance(value, (list, dict)):
                continue
            if field not in original or original[field] != value:
                changes[field] = value
        return changes

    def flatten(self) -> list[dict[str, Any]]:
        """The representative followed by its duplicates."""
        return [self.data, *self.duplicates]


class TabularFeed:
    """
    Cursor over the deduplicated rows of the first existing candidate table.

    Args:
        store: Table storage
        tables: Table name, or candidate names in priority order
        keys: Fields forming the dedup key; no keys means no deduplication
    """

    def __init__(
        self,
        store: TabularStore,
        tables: str | Sequence[str],
        keys: Sequence[str] | None = None,
    ):
        self.store = store
        candidates = [tables] if isinstance(tables, str) else list(tables)
        self.table: str | None = next((t for t in candidates if store.table_exists(t)), None)
        self.keys = list(keys or [])
        self._rows: list[FeedRow] = []
        self._index = -1

    def __iter__(self) -> Iterator[FeedRow]:
        return iter(list(self._rows))

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> list[FeedRow]:
        return list(self._rows)

    def generate_key(self, row: dict[str, Any]) -> str:
        """Join the key fields with ``|``; rows with no key value get ``unkeyed``.

        Backslashes and separators inside a value are escaped so distinct
        composite keys never join to the same string.
        """
        values = [row.get(k) for k in self.keys]
        if all(is_blank(v) for v in values):
            return UNKEYED
        parts = ("" if is_blank(v) else _escape_key(str(v).strip()) for v in values)
        return KEY_SEPARATOR.join(parts)

    def load(self) -> "TabularFeed":
        """Read the table and build the deduplicated view."""
        if self.table is None:
            return self.set_feed([])
        return self.set_feed(self.store.read_rows(self.table))

    def set_feed(self, rows: Sequence[dict[str, Any]]) -> "TabularFeed":
        """Build the view from raw rows; the first row per key represents the rest."""
        self._index = -1
        self._rows = []

        if not self.keys:
            self._rows = [FeedRow.from_row(row) for row in rows]
            return self

        by_key: dict[str, FeedRow] = {}
        for row in rows:
            key = self.generate_key(row)
            representative = by_key.get(key)
            if representative is None:
                representative = FeedRow.from_row(row, keyed=key != UNKEYED)
                by_key[key] = representative
                self._rows.append(representative)
            else:
                representative.duplicates.append(dict(row))

        duplicates = len(rows) - len(self._rows)
        if duplicates:
            logger.debug(f"{self.table}: {len(self._rows)} rows, {duplicates} duplicates")
        return self

    def set_rows(self, rows: Sequence[FeedRow]) -> "TabularFeed":
        """Adopt already-built rows, keeping their snapshots and duplicates."""
        self._index = -1
        self._rows = list(rows)
        return self

    def next(self) -> FeedRow | None:
        """Return the next representative row, or ``None`` when exhausted."""
        self._index += 1
        if self._index < len(self._rows):
            return self._rows[self._index]
        return None

    def reset(self) -> None:
        self._index = -1

    def is_empty(self) -> bool:
        return not self._rows

    def save(self) -> "TabularFeed":
        """
        Propagate representative edits to duplicates, overwrite the table and
        reload from what was written.
        """
        if self.table is None:
            logger.warning("No table to save feed to (keys: %s)", ", ".join(self.keys) or "none")
            return self

        flat: list[dict[str, Any]] = []
        for row in self._rows:
            changes = row.changed_fields()
            if changes:
                for duplicate in row.duplicates:
                    duplicate.update(changes)
            flat.extend(row.flatten())

        self.store.clear_range(self.table, DATA_RANGE)
        self.store.write_rows(self.table, flat)
        logger.debug(f"Saved {len(flat)} rows to {self.table}")
        return self.load()
