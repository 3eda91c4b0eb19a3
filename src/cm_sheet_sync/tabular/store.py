"""Tabular storage contract and an in-memory implementation.

Tables have a header row (row 1) naming each column; data rows start at row
2.  Addresses and ranges use A1 notation.
"""

import logging
import re
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Widest table handled, in columns (A..AZ)
MAX_TABLE_WIDTH = 52

# Every data row of a table
DATA_RANGE = "A2:AZ"

_CELL_RE = re.compile(r"^([A-Z]+)(\d*)$")


def column_letter(index: int) -> str:
    """0-based column index to its letter (0 -> ``A``, 26 -> ``AA``)."""
    if index < 0:
        raise ValueError(f"Invalid column index: {index}")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def column_index(letters: str) -> int:
    """Column letters to a 0-based index (``A`` -> 0, ``AZ`` -> 51)."""
    result = 0
    for char in letters.upper():
        result = result * 26 + (ord(char) - ord("A") + 1)
    return result - 1


def parse_cell(address: str) -> tuple[int | None, int]:
    """
    Parse an A1 cell reference.

    Returns:
        ``(row, column)`` with a 1-based row (``None`` when the reference
        names a whole column) and a 0-based column.
    """
    match = _CELL_RE.match(address.strip().upper())
    if not match:
        raise ValueError(f"Invalid cell reference: {address}")
    letters, digits = match.groups()
    return (int(digits) if digits else None), column_index(letters)


def parse_range(range_spec: str) -> tuple[int, int, int | None, int]:
    """
    Parse an A1 range such as ``A2:AZ`` or ``A1:Z1``.

    Returns:
        ``(first_row, first_col, last_row, last_col)``; ``last_row`` is
        ``None`` for open-ended ranges.
    """
    start, _, end = range_spec.partition(":")
    first_row, first_col = parse_cell(start)
    if not end:
        return first_row or 1, first_col, first_row, first_col
    last_row, last_col = parse_cell(end)
    return first_row or 1, first_col, last_row, last_col


def is_blank(value: Any) -> bool:
    return value is None or value == ""


class TabularStore(Protocol):
    """Row/cell access to named tables of a workbook.

    ``cell_char_limit`` is the longest text one cell holds and
    ``first_cell_row`` the first row usable by cell-level tables.
    """

    cell_char_limit: int
    first_cell_row: int

    def table_exists(self, name: str) -> bool: ...

    def read_rows(self, name: str) -> list[dict[str, Any]]: ...

    def write_rows(self, name: str, rows: list[dict[str, Any]]) -> None: ...

    def clear_range(self, name: str, range_spec: str) -> None: ...

    def read_cell(self, name: str, address: str) -> Any: ...

    def write_cells(self, name: str, address: str, values: list[Any]) -> None: ...


def writable_fields(row: dict[str, Any]) -> dict[str, Any]:
    """Drop bookkeeping fields (``_row_id``...) and nested child lists."""
    return {
        k: v for k, v in row.items() if not k.startswith("_") and not isinstance(v, (list, dict))
    }


class InMemoryTabularStore:
    """Workbook held in memory, one grid of cells per table."""

    cell_char_limit = 50000
    first_cell_row = 1

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None):
        self._grids: dict[str, list[list[Any]]] = {}
        for name, rows in (tables or {}).items():
            self.create_table(name, rows=rows)

    def create_table(
        self,
        name: str,
        header: list[str] | None = None,
        rows: list[dict[str, Any]] | None = None,
    ) -> None:
        """Create (or replace) a table with an optional header and data rows."""
        columns = list(header or [])
        for row in rows or []:
            for key in writable_fields(row):
                if key not in columns:
                    columns.append(key)
        self._grids[name] = [columns]
        if rows:
            self.write_rows(name, rows)

    def table_names(self) -> list[str]:
        return list(self._grids)

    def _grid(self, name: str) -> list[list[Any]]:
        if name not in self._grids:
            raise KeyError(f"Table not found: {name}")
        return self._grids[name]

    def _header(self, name: str) -> list[str]:
        grid = self._grid(name)
        return [str(h) for h in grid[0] if not is_blank(h)] if grid else []

    def _set(self, grid: list[list[Any]], row: int, col: int, value: Any) -> None:
        while len(grid) <= row:
            grid.append([])
        line = grid[row]
        while len(line) <= col:
            line.append(None)
        line[col] = value

    def table_exists(self, name: str) -> bool:
        return name in self._grids

    def read_rows(self, name: str) -> list[dict[str, Any]]:
        """Data rows as dicts, stopping at the first blank row."""
        grid = self._grid(name)
        header = self._header(name)
        rows: list[dict[str, Any]] = []
        for line in grid[1:]:
            values = [line[i] if i < len(line) else None for i in range(len(header))]
            if all(is_blank(v) for v in values):
                break
            rows.append(dict(zip(header, values)))
        return rows

    def write_rows(self, name: str, rows: list[dict[str, Any]]) -> None:
        """Write *rows* from row 2 down, adding header columns as needed."""
        grid = self._grid(name)
        if not grid:
            grid.append([])
        header = grid[0]
        for offset, row in enumerate(rows):
            for key, value in writable_fields(row).items():
                if key not in header:
                    if len(header) >= MAX_TABLE_WIDTH:
                        logger.warning("Table %s is full, dropping column %s", name, key)
                        continue
                    header.append(key)
                self._set(grid, offset + 1, header.index(key), value)

    def clear_range(self, name: str, range_spec: str) -> None:
        grid = self._grid(name)
        first_row, first_col, last_row, last_col = parse_range(range_spec)
        end = len(grid) if last_row is None else min(last_row, len(grid))
        for row in range(first_row - 1, end):
            line = grid[row]
            for col in range(first_col, min(last_col + 1, len(line))):
                line[col] = None

    def read_cell(self, name: str, address: str) -> Any:
        grid = self._grid(name)
        row, col = parse_cell(address)
        row_index = (row or 1) - 1
        if row_index >= len(grid) or col >= len(grid[row_index]):
            return None
        return grid[row_index][col]

    def write_cells(self, name: str, address: str, values: list[Any]) -> None:
        """Write *values* left to right starting at *address*."""
        if name not in self._grids:
            self._grids[name] = [[]]
        grid = self._grids[name]
        row, col = parse_cell(address)
        for offset, value in enumerate(values):
            self._set(grid, (row or 1) - 1, col + offset, value)
