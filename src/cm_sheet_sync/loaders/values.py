"""Value conversions shared by the entity strategies."""

from datetime import date, datetime, timezone
from typing import Any

from ..errors import RowValidationError

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d")

# (rotation type, weight strategy) <-> the label shown in the Ad table
ROTATION_LABELS = {
    ("CREATIVE_ROTATION_TYPE_SEQUENTIAL", None): "SEQUENTIAL",
    ("CREATIVE_ROTATION_TYPE_RANDOM", "WEIGHT_STRATEGY_EQUAL"): "EVEN",
    ("CREATIVE_ROTATION_TYPE_RANDOM", "WEIGHT_STRATEGY_CUSTOM"): "CUSTOM",
    ("CREATIVE_ROTATION_TYPE_RANDOM", "WEIGHT_STRATEGY_HIGHEST_CTR"): "CLICK-THROUGH RATE",
    ("CREATIVE_ROTATION_TYPE_RANDOM", "WEIGHT_STRATEGY_OPTIMIZED"): "OPTIMIZED",
}
ROTATION_SETTINGS = {label: key for key, label in ROTATION_LABELS.items()}


def assign(
    remote_obj: dict[str, Any],
    remote_field: str,
    row: Any,
    row_field: str,
    required: bool = False,
    default: Any = None,
) -> None:
    """
    Copy a row value onto a remote object field.

    Required fields are always written, falling back to *default* when the row
    value is falsy.  Optional fields are removed first and only written back
    when the row (or *default*) supplies a truthy value, so an empty cell
    never overwrites the remote value with an empty one.
    """
    value = row.get(row_field)
    if required:
        remote_obj[remote_field] = value or default
        return

    remote_obj.pop(remote_field, None)
    if value or default:
        remote_obj[remote_field] = value or default


def is_true(value: Any) -> bool:
    """True for ``True`` and for the string ``'true'`` in any case."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def parse_timestamp(value: str) -> datetime:
    """Parse an API timestamp such as ``2024-01-31T05:00:00.000Z``."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def format_date(value: Any) -> str:
    """Format a cell value as the ``yyyy-MM-dd`` date the API expects ('' when empty)."""
    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    try:
        return parse_timestamp(text).strftime("%Y-%m-%d")
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    raise RowValidationError(f"{value!r} is not a valid date", value=value)


def format_datetime(value: Any) -> str | None:
    """
    Format a cell value as an RFC 3339 timestamp.

    Text is passed through untouched; naive datetimes are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat(timespec="seconds").replace("+00:00", "Z")
    if isinstance(value, date):
        return f"{value.isoformat()}T00:00:00Z"
    return str(value)


def display_timestamp(value: str | None) -> str | None:
    """Re-format an API timestamp for display in a table (seconds precision)."""
    if not value:
        return None
    try:
        return format_datetime(parse_timestamp(value))
    except ValueError:
        return value


def rotation_label(creative_rotation: dict[str, Any] | None) -> str | None:
    """Name of an ad's creative rotation, as shown in the Ad table."""
    if not creative_rotation:
        return None
    key = (creative_rotation.get("type"), creative_rotation.get("weightCalculationStrategy"))
    return ROTATION_LABELS.get(key)


def is_concrete_number(value: Any) -> bool:
    """True for numeric ids (``123``, ``'123'``), false for placeholders and blanks."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and value.strip().isdigit()
