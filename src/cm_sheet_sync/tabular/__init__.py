"""Table storage backends."""

from .smartsheet_store import SmartsheetTabularStore
from .store import DATA_RANGE, InMemoryTabularStore, TabularStore, column_letter

__all__ = [
    "DATA_RANGE",
    "InMemoryTabularStore",
    "SmartsheetTabularStore",
    "TabularStore",
    "column_letter",
]
