"""Smartsheet-backed tabular store.

Each table is a sheet, looked up by name inside the configured workspace.
In A1 terms the column titles are row 1, so data rows start at row 2 exactly
as in the in-memory store.  Cell-level tables such as ``Store`` therefore
start at row 2 (:attr:`SmartsheetTabularStore.first_cell_row`).
"""

import logging
import warnings
from typing import Any

import smartsheet
from smartsheet.exceptions import ApiError
from smartsheet.models import Cell, Folder, Row, Sheet

from ..errors import ConfigurationError
from .store import is_blank, parse_cell, parse_range, writable_fields

# Suppress DeprecationWarnings from the Smartsheet SDK only (not all libraries)
warnings.filterwarnings("ignore", category=DeprecationWarning, module=r"smartsheet\b")

logger = logging.getLogger(__name__)

# Smartsheet API limits
MAX_ROWS_PER_CALL = 500
MAX_DELETE_PER_CALL = 400
CELL_CHAR_LIMIT = 4000


def normalize_cell_value(value: Any) -> Any:
    """Undo Smartsheet's float coercion of numeric text (``12345.0`` -> ``12345``)."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class SmartsheetTabularStore:
    """:class:`~cm_sheet_sync.tabular.store.TabularStore` over the Smartsheet SDK."""

    cell_char_limit = CELL_CHAR_LIMIT
    first_cell_row = 2

    def __init__(
        self,
        access_token: str,
        workspace_id: int | None = None,
        workspace_name: str | None = None,
        client: Any = None,
    ):
        """
        Initialize the store.

        Args:
            access_token: Smartsheet API access token
            workspace_id: Workspace holding the entity sheets
            workspace_name: Workspace to look up by name when no ID is given
            client: Pre-built SDK client (used by tests)
        """
        if client is None:
            client = smartsheet.Smartsheet(access_token)
            client.errors_as_exceptions(True)
        self.client = client
        # Suppress noisy SDK "ImportError! Could not load api or model class" messages
        logging.getLogger("smartsheet").setLevel(logging.WARNING)
        self._workspace_id = workspace_id
        self._workspace_name = workspace_name
        self._sheet_ids: dict[str, int] | None = None

    # ==================== Sheet lookup ====================

    @property
    def workspace_id(self) -> int | None:
        """Resolve the workspace ID, looking it up by name if needed."""
        if self._workspace_id or not self._workspace_name:
            return self._workspace_id

        response = self.client.Workspaces.list_workspaces(include_all=True)
        for ws in response.data or []:
            if ws.name == self._workspace_name:
                self._workspace_id = ws.id
                return ws.id
        raise ConfigurationError(f"Smartsheet workspace not found: {self._workspace_name}")

    def _index_sheets(self) -> dict[str, int]:
        """Map sheet names to IDs for the workspace (or every visible sheet)."""
        if self._sheet_ids is not None:
            return self._sheet_ids

        index: dict[str, int] = {}
        ws_id = self.workspace_id
        if ws_id:
            pending = [
                self.client.Workspaces.get_workspace_children(
                    ws_id, children_resource_types=["folders", "sheets"]
                )
            ]
            while pending:
                children = pending.pop()
                for item in children.data or []:
                    if isinstance(item, Folder):
                        pending.append(
                            self.client.Folders.get_folder_children(
                                item.id, children_resource_types=["folders", "sheets"]
                            )
                        )
                    else:
                        index.setdefault(item.name, item.id)
        else:
            response = self.client.Sheets.list_sheets(include_all=True)
            for sheet in response.data or []:
                index.setdefault(sheet.name, sheet.id)

        self._sheet_ids = index
        return index

    def _sheet(self, name: str) -> Sheet:
        sheet_id = self._index_sheets().get(name)
        if sheet_id is None:
            raise ConfigurationError(f"Sheet not found: {name}")
        return self.client.Sheets.get_sheet(sheet_id)

    @staticmethod
    def _column_ids(sheet: Sheet) -> list[int]:
        return [col.id for col in sheet.columns]

    @staticmethod
    def _titles(sheet: Sheet) -> dict[int, str]:
        return {col.id: col.title for col in sheet.columns}

    def _row_for_address(self, row: int | None) -> int:
        """A1 row number to a 0-based index into the sheet's rows."""
        if row is None or row < 2:
            raise ConfigurationError("Row 1 holds the column titles and cannot store values")
        return row - 2

    # ==================== TabularStore ====================

    def table_exists(self, name: str) -> bool:
        return name in self._index_sheets()

    def read_rows(self, name: str) -> list[dict[str, Any]]:
        """
        Read every data row as a dict of column title to value.

        Each row also carries its Smartsheet ID under ``_row_id``.
        """
        sheet = self._sheet(name)
        titles = self._titles(sheet)

        rows: list[dict[str, Any]] = []
        for row in sheet.rows or []:
            data: dict[str, Any] = {"_row_id": row.id}
            for cell in row.cells:
                title = titles.get(cell.column_id)
                if title:
                    data[title] = normalize_cell_value(cell.value)
            if all(is_blank(v) for k, v in data.items() if k != "_row_id"):
                break
            rows.append(data)
        return rows

    def write_rows(self, name: str, rows: list[dict[str, Any]]) -> None:
        """Append *rows* to the bottom of the sheet, in batches of 500."""
        sheet = self._sheet(name)
        column_map = {col.title: col.id for col in sheet.columns}

        new_rows = []
        for row_data in rows:
            cells = []
            for title, value in writable_fields(row_data).items():
                col_id = column_map.get(title)
                if col_id is None:
                    logger.debug("Sheet %s has no column %s, skipping", name, title)
                    continue
                if value is None:
                    continue
                cells.append(Cell({"column_id": col_id, "value": value, "strict": False}))
            if cells:
                new_rows.append(Row({"to_bottom": True, "cells": cells}))

        for i in range(0, len(new_rows), MAX_ROWS_PER_CALL):
            self.client.Sheets.add_rows(sheet.id, new_rows[i : i + MAX_ROWS_PER_CALL])
        logger.info(f"Wrote {len(new_rows)} rows to {name}")

    def clear_range(self, name: str, range_spec: str) -> None:
        """
        Clear a range.  Clearing every data row deletes the rows outright;
        narrower ranges blank the affected cells.
        """
        sheet = self._sheet(name)
        first_row, first_col, last_row, last_col = parse_range(range_spec)
        sheet_rows = list(sheet.rows or [])
        column_ids = self._column_ids(sheet)

        whole_rows = first_col == 0 and last_col >= len(column_ids) - 1
        if whole_rows and last_row is None and first_row <= 2:
            row_ids = [row.id for row in sheet_rows]
            for i in range(0, len(row_ids), MAX_DELETE_PER_CALL):
                self.client.Sheets.delete_rows(sheet.id, row_ids[i : i + MAX_DELETE_PER_CALL])
            return

        start = max(first_row, 2) - 2
        end = len(sheet_rows) if last_row is None else min(last_row - 1, len(sheet_rows))
        targets = column_ids[first_col : last_col + 1]
        updates = [
            Row({"id": row.id, "cells": [Cell({"column_id": c, "value": ""}) for c in targets]})
            for row in sheet_rows[start:end]
        ]
        for i in range(0, len(updates), MAX_ROWS_PER_CALL):
            self.client.Sheets.update_rows(sheet.id, updates[i : i + MAX_ROWS_PER_CALL])

    def read_cell(self, name: str, address: str) -> Any:
        sheet = self._sheet(name)
        row, col = parse_cell(address)
        column_ids = self._column_ids(sheet)
        if col >= len(column_ids):
            return None
        if row == 1:
            return sheet.columns[col].title

        index = self._row_for_address(row)
        sheet_rows = list(sheet.rows or [])
        if index >= len(sheet_rows):
            return None
        for cell in sheet_rows[index].cells:
            if cell.column_id == column_ids[col]:
                return normalize_cell_value(cell.value)
        return None

    def write_cells(self, name: str, address: str, values: list[Any]) -> None:
        """Write *values* left to right from *address*, adding rows if needed."""
        sheet = self._sheet(name)
        row, col = parse_cell(address)
        index = self._row_for_address(row)
        column_ids = self._column_ids(sheet)
        if col + len(values) > len(column_ids):
            raise ConfigurationError(
                f"Sheet {name} has {len(column_ids)} columns, cannot write {len(values)} "
                f"values from {address}"
            )

        sheet_rows = list(sheet.rows or [])
        missing = index + 1 - len(sheet_rows)
        if missing > 0:
            blank = [Row({"to_bottom": True, "cells": []}) for _ in range(missing)]
            try:
                response = self.client.Sheets.add_rows(sheet.id, blank)
            except ApiError as exc:
                raise ConfigurationError(f"Cannot add rows to sheet {name}: {exc}") from exc
            sheet_rows.extend(response.result)

        cells = [
            Cell({"column_id": column_ids[col + offset], "value": "" if v is None else v})
            for offset, v in enumerate(values)
        ]
        update = Row({"id": sheet_rows[index].id, "cells": cells})
        self.client.Sheets.update_rows(sheet.id, [update])
