"""Job records passed through load and push operations."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..feed import FeedRow


@dataclass
class CascadeFilters:
    """
    Parent ids that narrow list calls to the children of what was loaded.

    Filled in as a cascading load walks down the hierarchy: loading campaigns
    fills ``campaign_ids``, which scopes the placement group load, and so on.
    """

    campaign_ids: list[Any] = field(default_factory=list)
    placement_group_ids: list[Any] = field(default_factory=list)
    placement_ids: list[Any] = field(default_factory=list)
    ad_ids: list[Any] = field(default_factory=list)
    active_only: bool = False

    def is_empty(self) -> bool:
        """Check if no parent ids are set."""
        return not (
            self.campaign_ids or self.placement_group_ids or self.placement_ids or self.ad_ids
        )

    def get_description(self) -> str:
        """Get a human-readable description of active filters."""
        parts = []
        for label, ids in (
            ("campaigns", self.campaign_ids),
            ("placement groups", self.placement_group_ids),
            ("placements", self.placement_ids),
            ("ads", self.ad_ids),
        ):
            if ids:
                parts.append(f"{label}: {', '.join(str(i) for i in ids[:3])}")
                if len(ids) > 3:
                    parts[-1] += f" (+{len(ids) - 3} more)"

        if self.active_only:
            parts.append("active only")

        if not parts:
            return "no cascade filters"
        return "; ".join(parts)


@dataclass
class PreFetchConfig:
    """A list call issued only to warm the cache ahead of per-item ``get`` calls.

    ``field_name`` is read from each source item (remote entity or row) and
    the distinct values are passed as the ``filter_name`` list filter.
    """

    entity: str
    list_field: str
    filter_name: str
    field_name: str


class PushState(str, Enum):
    """Where a row is in its push."""

    NEW = "new"
    FETCHING_BASE = "fetching_base"
    RESOLVING_CHILDREN = "resolving_children"
    RESOLVING_REFERENCES = "resolving_references"
    MAPPING_FIELDS = "mapping_fields"
    COMMITTING = "committing"
    RECORDING_ID = "recording_id"
    POST_PROCESSING = "post_processing"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class PushJob:
    """Push of a single row."""

    entity: str
    row: FeedRow
    remote_object: dict[str, Any] = field(default_factory=dict)
    id_map: dict[str, dict[str, str]] = field(default_factory=dict)
    active_only: bool = False
    generation: int = 0
    state: PushState = PushState.NEW
    error: str | None = None
    logs: list[tuple[datetime, str]] = field(default_factory=list)

    def log(self, message: str) -> None:
        self.logs.append((datetime.now(), message))


@dataclass
class Job:
    """Context of one load or push operation for one entity kind."""

    entity: str
    filters: CascadeFilters = field(default_factory=CascadeFilters)
    ids_to_load: list[Any] = field(default_factory=list)
    items_to_load: list[dict[str, Any]] = field(default_factory=list)
    loaded_ids: list[Any] = field(default_factory=list)
    jobs: list[PushJob] = field(default_factory=list)
    feed: list[FeedRow] = field(default_factory=list)
    id_map: dict[str, dict[str, str]] = field(default_factory=dict)
    pre_fetch_configs: list[PreFetchConfig] = field(default_factory=list)
    generation: int = 0
    logs: list[tuple[datetime, str]] = field(default_factory=list)

    def log(self, message: str) -> None:
        self.logs.append((datetime.now(), message))
