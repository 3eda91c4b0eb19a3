"""Durable mapping between temporary row ids and the ids Campaign Manager assigns.

Rows for entities that do not exist yet carry a placeholder id starting with
``ext`` (``extCampaign1``).  Once a row is inserted the store records
``temporary <-> concrete`` for the row's table, so other rows, in this batch or
in a later session, that still reference the placeholder can be resolved.

The whole mapping is persisted as JSON across one row of the ``Store`` table,
split into one segment per cell.
"""

import json
import logging
from typing import Any

from .errors import IdentifierStoreError
from .tabular.store import TabularStore, column_letter, is_blank

logger = logging.getLogger(__name__)

STORE_TABLE = "Store"
CELL_CHAR_LIMIT = 50000
MAX_SEGMENTS = 26  # columns A..Z
EMPTY_STORE = "{}"

TEMPORARY_ID_PREFIX = "ext"


def is_temporary_id(value: Any) -> bool:
    """True for client-minted placeholder ids (``ext...``, case-insensitive)."""
    if is_blank(value):
        return False
    return str(value).strip().lower().startswith(TEMPORARY_ID_PREFIX)


def normalize_id(value: Any) -> str:
    return str(value).strip()


class IdentifierStore:
    """Per-table bidirectional temporary/concrete id mapping."""

    def __init__(
        self,
        store: TabularStore,
        table: str = STORE_TABLE,
        row: int = 1,
        segment_size: int = CELL_CHAR_LIMIT,
    ):
        """
        Initialize the identifier store.

        Args:
            store: Table storage the mapping is persisted to
            table: Table holding the mapping
            row: Row whose cells hold the JSON segments
            segment_size: Characters written per cell
        """
        self.tables = store
        self.table = table
        self.row = row
        self.segment_size = segment_size
        self._data: dict[str, dict[str, str]] = {}

    @property
    def _range(self) -> str:
        return f"A{self.row}:{column_letter(MAX_SEGMENTS - 1)}{self.row}"

    def translate(self, table: str, entity_id: Any) -> str | None:
        """Return the counterpart of *entity_id* in *table*'s namespace, or ``None``."""
        if is_blank(entity_id):
            return None
        return self._data.get(table, {}).get(normalize_id(entity_id))

    def add_id(self, table: str, concrete_id: Any, temporary_id: Any) -> None:
        """
        Register ``concrete_id <-> temporary_id`` for *table*.

        Re-registering either id replaces its previous pairing, and the stale
        counterpart's reverse entry is dropped with it.
        """
        concrete = normalize_id(concrete_id)
        temporary = normalize_id(temporary_id)
        mapping = self._data.setdefault(table, {})

        for key in (concrete, temporary):
            stale = mapping.pop(key, None)
            if stale is not None and stale not in (concrete, temporary):
                mapping.pop(stale, None)

        mapping[concrete] = temporary
        mapping[temporary] = concrete
        logger.debug("Mapped %s %s <-> %s", table, temporary, concrete)

    def initialize(self, data: dict[str, dict[str, str]] | None) -> None:
        """Adopt *data* as the live mapping (by reference) without reading storage."""
        self._data = data if data is not None else {}

    def get_data(self) -> dict[str, dict[str, str]]:
        """The live mapping; edits made through :meth:`add_id` show up in it."""
        return self._data

    def load(self) -> dict[str, dict[str, str]]:
        """Read the mapping from storage, concatenating segments up to the first blank cell."""
        if not self.tables.table_exists(self.table):
            logger.warning(f"Table {self.table} not found, starting with an empty id map")
            self._data = {}
            return self._data

        raw = ""
        for col in range(MAX_SEGMENTS):
            value = self.tables.read_cell(self.table, f"{column_letter(col)}{self.row}")
            if is_blank(value):
                break
            raw += str(value)

        try:
            data = json.loads(raw or EMPTY_STORE)
        except json.JSONDecodeError as e:
            raise IdentifierStoreError(f"Id map in {self.table} is not valid JSON: {e}") from e

        if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
            raise IdentifierStoreError(f"Id map in {self.table} has an unexpected shape")

        self._data = {
            table: {normalize_id(k): normalize_id(v) for k, v in mapping.items()}
            for table, mapping in data.items()
        }
        return self._data

    def store(self) -> None:
        """Write the mapping to storage, one segment per cell from column A."""
        raw = json.dumps(self._data, separators=(",", ":"))
        segments = [raw[i : i + self.segment_size] for i in range(0, len(raw), self.segment_size)]
        if len(segments) > MAX_SEGMENTS:
            raise IdentifierStoreError(
                f"Id map needs {len(segments)} cells of {self.segment_size} characters, "
                f"only {MAX_SEGMENTS} are available"
            )

        if self.tables.table_exists(self.table):
            self.tables.clear_range(self.table, self._range)
        self.tables.write_cells(self.table, f"A{self.row}", segments or [EMPTY_STORE])
        logger.debug(f"Stored id map ({len(raw)} characters, {len(segments)} cells)")

    def clear(self) -> None:
        """Forget every mapping and persist the empty store."""
        self._data = {}
        self.store()
