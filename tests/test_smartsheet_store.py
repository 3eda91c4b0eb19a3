"""Tests for the Smartsheet-backed tabular store."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from cm_sheet_sync.errors import ConfigurationError
from cm_sheet_sync.tabular import DATA_RANGE, SmartsheetTabularStore
from cm_sheet_sync.tabular.smartsheet_store import normalize_cell_value


def make_sheet(rows):
    """Create an SDK-shaped sheet with Ad ID and Ad Name columns."""
    return SimpleNamespace(
        id=1,
        columns=[SimpleNamespace(id=11, title="Ad ID"), SimpleNamespace(id=12, title="Ad Name")],
        rows=[
            SimpleNamespace(
                id=row_id,
                cells=[
                    SimpleNamespace(column_id=11, value=ad_id),
                    SimpleNamespace(column_id=12, value=name),
                ],
            )
            for row_id, ad_id, name in rows
        ],
    )


@pytest.fixture
def client():
    """Create a mock SDK client exposing one sheet named Ad."""
    client = MagicMock()
    client.Sheets.list_sheets.return_value = SimpleNamespace(
        data=[SimpleNamespace(name="Ad", id=1)]
    )
    client.Sheets.get_sheet.return_value = make_sheet(
        [(101, 500.0, "Ad one"), (102, "501", "Ad two"), (103, None, None), (104, "9", "late")]
    )
    return client


@pytest.fixture
def sheets(client):
    """Create a store over every sheet visible to the mock client."""
    return SmartsheetTabularStore("token", client=client)


def test_normalize_cell_value():
    """Test that whole floats come back as integers."""
    assert normalize_cell_value(12345.0) == 12345
    assert normalize_cell_value(1.5) == 1.5
    assert normalize_cell_value("x") == "x"


def test_read_rows_stops_at_first_blank_row(sheets):
    """Test that rows are read up to the first empty one, with their row ids."""
    rows = sheets.read_rows("Ad")

    assert rows == [
        {"_row_id": 101, "Ad ID": 500, "Ad Name": "Ad one"},
        {"_row_id": 102, "Ad ID": "501", "Ad Name": "Ad two"},
    ]


def test_table_exists(sheets):
    """Test that tables are looked up by sheet name."""
    assert sheets.table_exists("Ad")
    assert not sheets.table_exists("Placement")


def test_missing_sheet_is_a_configuration_error(sheets):
    """Test that reading a missing table names it."""
    with pytest.raises(ConfigurationError, match="Sheet not found: Placement"):
        sheets.read_rows("Placement")


def test_workspace_is_resolved_by_name(client):
    """Test that sheets are indexed from the named workspace."""
    client.Workspaces.list_workspaces.return_value = SimpleNamespace(
        data=[SimpleNamespace(name="Other", id=6), SimpleNamespace(name="Campaign Manager", id=7)]
    )
    client.Workspaces.get_workspace_children.return_value = SimpleNamespace(
        data=[SimpleNamespace(name="Campaign", id=2)]
    )
    store = SmartsheetTabularStore("token", workspace_name="Campaign Manager", client=client)

    assert store.table_exists("Campaign")
    assert store.workspace_id == 7
    assert client.Workspaces.get_workspace_children.call_args[0][0] == 7
    client.Sheets.list_sheets.assert_not_called()


def test_unknown_workspace_raises(client):
    """Test that a workspace name that matches nothing is reported."""
    client.Workspaces.list_workspaces.return_value = SimpleNamespace(data=[])
    store = SmartsheetTabularStore("token", workspace_name="Missing", client=client)

    with pytest.raises(ConfigurationError, match="workspace not found: Missing"):
        store.table_exists("Ad")


def test_write_rows_skips_unknown_columns_and_empty_values(sheets, client):
    """Test that only known, non-empty fields are sent."""
    sheets.write_rows(
        "Ad",
        [
            {"Ad ID": "600", "Ad Name": None, "Unknown": "x", "_row_id": 5},
            {"Ad Name": None},
        ],
    )

    sheet_id, new_rows = client.Sheets.add_rows.call_args[0]
    assert sheet_id == 1
    assert len(new_rows) == 1
    assert [(c.column_id, c.value) for c in new_rows[0].cells] == [(11, "600")]


def test_clearing_all_data_rows_deletes_them(sheets, client):
    """Test that clearing the data range removes the rows."""
    sheets.clear_range("Ad", DATA_RANGE)

    client.Sheets.delete_rows.assert_called_once_with(1, [101, 102, 103, 104])


def test_clearing_a_narrow_range_blanks_cells(sheets, client):
    """Test that a partial range blanks only its cells."""
    sheets.clear_range("Ad", "B2:B3")

    sheet_id, updates = client.Sheets.update_rows.call_args[0]
    assert [row.id for row in updates] == [101, 102]
    assert [(c.column_id, c.value) for c in updates[0].cells] == [(12, "")]
    client.Sheets.delete_rows.assert_not_called()


def test_read_cell(sheets):
    """Test that row 1 is the column title and later rows are data."""
    assert sheets.read_cell("Ad", "A1") == "Ad ID"
    assert sheets.read_cell("Ad", "B2") == "Ad one"
    assert sheets.read_cell("Ad", "A2") == 500
    assert sheets.read_cell("Ad", "A9") is None
    assert sheets.read_cell("Ad", "Z2") is None


def test_write_cells_updates_existing_row(sheets, client):
    """Test that values are written left to right into an existing row."""
    sheets.write_cells("Ad", "A3", ["x", None])

    sheet_id, (update,) = client.Sheets.update_rows.call_args[0]
    assert update.id == 102
    assert [(c.column_id, c.value) for c in update.cells] == [(11, "x"), (12, "")]


def test_write_cells_adds_missing_rows(client):
    """Test that writing below the last row first adds blank rows."""
    client.Sheets.get_sheet.return_value = make_sheet([])
    client.Sheets.add_rows.return_value = SimpleNamespace(result=[SimpleNamespace(id=555)])
    store = SmartsheetTabularStore("token", client=client)

    store.write_cells("Ad", "A2", ["{}"])

    assert len(client.Sheets.add_rows.call_args[0][1]) == 1
    _, (update,) = client.Sheets.update_rows.call_args[0]
    assert update.id == 555


def test_write_cells_refuses_title_row_and_overflow(sheets):
    """Test that the title row and writes past the last column are rejected."""
    with pytest.raises(ConfigurationError, match="column titles"):
        sheets.write_cells("Ad", "A1", ["x"])
    with pytest.raises(ConfigurationError, match="has 2 columns"):
        sheets.write_cells("Ad", "B2", ["x", "y"])


def test_cell_level_tables_start_below_titles(sheets):
    """Test that the store reports where cell-level tables may begin."""
    assert sheets.first_cell_row == 2
    assert sheets.cell_char_limit == 4000
