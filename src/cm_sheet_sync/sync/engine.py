"""Sync engine: load cascades, push batches and hierarchy builds."""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from .. import fields as f
from ..cache import Cache, InMemoryCache, SQLiteCache, parse_ttl
from ..cm_client import CampaignManagerService, RemoteClient, RemoteService
from ..errors import (
    ConfigurationError,
    EntityNotFoundError,
    FatalRemoteError,
    RowValidationError,
    SyncError,
)
from ..hierarchy import HierarchyResult, build_hierarchy
from ..id_store import IdentifierStore, is_temporary_id, normalize_id
from ..loaders import (
    LOAD_ORDER,
    PUSH_ORDER,
    CascadeFilters,
    Job,
    LoaderContext,
    LoaderRegistry,
    PushJob,
    PushState,
    build_registry,
)
from ..tabular import DATA_RANGE, SmartsheetTabularStore, TabularStore
from .session import SessionState

# Progress callback: (phase, current_count, total_or_none, detail)
# Phases:
#   "start" - new entity kind starting (detail=label)
#   "row"   - row pushed (current=done, total=rows)
#   "done"  - entity kind complete (current=rows, total=None)
ProgressCallback = Callable[[str, int, int | None, str], None]

logger = logging.getLogger(__name__)

LOG_TIMESTAMP = "Timestamp"
LOG_MESSAGE = "Message"

# Row errors recorded as failed outcomes; anything else aborts the push
ROW_ERRORS = (RowValidationError, EntityNotFoundError, FatalRemoteError)

# Cascade filters that, once filled, scope a kind's load instead of its own table ids
PARENT_SCOPE: dict[str, tuple[str, ...]] = {
    "AdvertiserLandingPages": ("campaign_ids",),
    "EventTags": ("campaign_ids", "ad_ids"),
    "PlacementGroups": ("campaign_ids",),
    "Placements": ("campaign_ids", "placement_group_ids"),
    "PlacementPricingSchedule": ("placement_ids",),
    "Creatives": ("campaign_ids",),
    "Ads": ("campaign_ids", "placement_ids"),
    "AdCreativeAssignment": ("ad_ids",),
    "AdPlacementAssignment": ("ad_ids",),
    "AdEventTagAssignment": ("ad_ids",),
}

# Cascade filter filled with the ids a kind loaded
LOADED_IDS_FILTER = {
    "Campaigns": "campaign_ids",
    "PlacementGroups": "placement_group_ids",
    "Placements": "placement_ids",
    "Ads": "ad_ids",
}


@dataclass
class RowOutcome:
    """Result of pushing one row."""

    entity: str
    row_id: Any
    status: str
    new_id: Any = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != PushState.FAILED.value


@dataclass
class LoadResult:
    """Result of loading one entity kind."""

    entity: str
    items: int = 0
    rows: int = 0
    loaded_ids: list[Any] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    filters_applied: str = ""

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


@dataclass
class PushResult:
    """Result of pushing one entity kind."""

    entity: str
    outcomes: list[RowOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stopped: bool = False
    duration_seconds: float = 0.0

    def _count(self, status: PushState) -> int:
        return sum(1 for o in self.outcomes if o.status == status.value)

    @property
    def pushed(self) -> int:
        return self._count(PushState.DONE)

    @property
    def skipped(self) -> int:
        return self._count(PushState.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(PushState.FAILED)

    @property
    def created(self) -> int:
        done = PushState.DONE.value
        return sum(1 for o in self.outcomes if o.status == done and is_temporary_id(o.row_id))

    @property
    def success(self) -> bool:
        return self.failed == 0 and len(self.errors) == 0


class SyncEngine:
    """
    Orchestrates loads and pushes between Campaign Manager and the workbook.

    Supports:
    - Cascading load (campaigns down to ad assignments)
    - Push in dependency order with temporary id resolution
    - Hierarchy build for a set of campaigns
    """

    def __init__(
        self,
        config: Any,
        state_path: Path | None = None,
        store: TabularStore | None = None,
        service: RemoteService | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the sync engine.

        Args:
            config: Application configuration
            state_path: Path to the session state file (defaults to config value)
            store: Table storage (defaults to the configured Smartsheet workspace)
            service: Remote API adapter (defaults to the Campaign Manager REST API)
            sleep: Sleep used between retries
        """
        self.config = config
        self.state_path = state_path or config.sync.state_file
        self.state = SessionState.load(self.state_path)
        self._sleep = sleep

        self._store = store
        self._service = service
        self._shared_cache: Cache | None = None
        self._client: RemoteClient | None = None
        self._id_store: IdentifierStore | None = None
        self._registry: LoaderRegistry | None = None
        self._logs: list[tuple[datetime, str]] = []

    # ==================== Collaborators ====================

    @property
    def service(self) -> RemoteService:
        """Get or create the Campaign Manager API adapter."""
        if self._service is None:
            cm = self.config.campaign_manager
            if not cm.profile_id or not cm.access_token:
                raise ConfigurationError(
                    "Campaign Manager profile ID and access token are required "
                    "(CM_PROFILE_ID, CM_ACCESS_TOKEN)"
                )
            self._service = CampaignManagerService(
                base_url=cm.base_url,
                access_token=cm.access_token,
                timeout=cm.timeout,
            )
        return self._service

    @property
    def store(self) -> TabularStore:
        """Get or create the table storage."""
        if self._store is None:
            ss = self.config.smartsheet
            if not ss.access_token:
                raise ConfigurationError(
                    "Smartsheet access token is required (SMARTSHEET_ACCESS_TOKEN)"
                )
            self._store = SmartsheetTabularStore(
                access_token=ss.access_token,
                workspace_id=ss.workspace_id,
                workspace_name=ss.workspace_name,
            )
        return self._store

    @property
    def shared_cache(self) -> Cache:
        """Cache shared by push batches: on disk in ``shared`` mode, else in memory."""
        if self._shared_cache is None:
            sync = self.config.sync
            if sync.cache_mode == "shared":
                self._shared_cache = SQLiteCache(
                    cache_dir=sync.cache_dir,
                    default_ttl=parse_ttl(sync.cache_ttl),
                )
            else:
                self._shared_cache = InMemoryCache()
        return self._shared_cache

    @property
    def client(self) -> RemoteClient:
        """Get or create the remote client."""
        if self._client is None:
            sync = self.config.sync
            self._client = RemoteClient(
                self.service,
                generation=self.state.generation,
                max_retries=sync.max_retries,
                base_delay=sync.retry_base_delay,
                sleep=self._sleep,
                cache_ttl=parse_ttl(sync.cache_ttl),
            )
        return self._client

    @property
    def id_store(self) -> IdentifierStore:
        if self._id_store is None:
            store = self.store
            self._id_store = IdentifierStore(
                store,
                row=store.first_cell_row,
                segment_size=store.cell_char_limit,
            )
        return self._id_store

    @property
    def registry(self) -> LoaderRegistry:
        if self._registry is None:
            ctx = LoaderContext(
                self.client,
                self.store,
                self.id_store,
                qa_table=self.config.sync.qa_table,
                push_cache=self.shared_cache,
            )
            self._registry = build_registry(ctx)
        return self._registry

    def close(self) -> None:
        """Clean up resources."""
        close = getattr(self._service, "close", None)
        if callable(close):
            close()

    def save_state(self) -> None:
        """Save current session state."""
        self.state.save(self.state_path)

    def _begin_operation(self) -> int:
        """Draw a new session generation so no earlier cache entry is reused."""
        generation = self.state.next_generation()
        self.client.begin_session(generation)
        self.registry.ctx.new_load_cache()
        self._logs = []
        self.save_state()
        logger.debug(f"Operation generation {generation}")
        return generation

    def _resolve_entities(
        self, entities: Iterable[str] | None, order: tuple[str, ...]
    ) -> list[str]:
        if entities is None:
            return list(order)
        wanted = list(entities)
        unknown = [e for e in wanted if e not in order]
        if unknown:
            raise ConfigurationError(
                f"Unknown entity: {', '.join(unknown)} (expected one of: {', '.join(order)})"
            )
        return [e for e in order if e in wanted]

    # ==================== Id map ====================

    def load_id_map(self) -> dict[str, dict[str, str]]:
        """Read the identifier map from the Store table."""
        return self.id_store.load()

    def save_id_map(self, id_map: dict[str, dict[str, str]]) -> None:
        """Persist *id_map* to the Store table."""
        self.id_store.initialize(id_map)
        self.id_store.store()

    def clear_id_map(self) -> None:
        self.id_store.clear()

    # ==================== Logs ====================

    def _collect_logs(self, *sources: Job | PushJob) -> None:
        for source in sources:
            self._logs.extend(source.logs)
            source.logs = []

    def write_logs(self) -> int:
        """Overwrite the Log table with this operation's log lines."""
        if not self._logs:
            return 0
        if not self.store.table_exists(f.LOG_TABLE):
            logger.debug(f"No {f.LOG_TABLE} table, {len(self._logs)} log lines not written")
            return 0

        rows = [
            {LOG_TIMESTAMP: ts.isoformat(timespec="seconds"), LOG_MESSAGE: message}
            for ts, message in sorted(self._logs, key=lambda entry: entry[0])
        ]
        self.store.clear_range(f.LOG_TABLE, DATA_RANGE)
        self.store.write_rows(f.LOG_TABLE, rows)
        return len(rows)

    # ==================== Load ====================

    def _job_filters(self, entity: str, filters: CascadeFilters) -> CascadeFilters:
        """
        Filters for one kind's list call.

        The API combines filters with AND, so a narrower parent filter is
        dropped when a campaign filter already scopes the kind.
        """
        job_filters = replace(
            filters,
            campaign_ids=list(filters.campaign_ids),
            placement_group_ids=list(filters.placement_group_ids),
            placement_ids=list(filters.placement_ids),
            ad_ids=list(filters.ad_ids),
        )
        if job_filters.campaign_ids:
            if entity == "Placements":
                job_filters.placement_group_ids = []
            elif entity == "Ads":
                job_filters.placement_ids = []
        return job_filters

    def load(
        self,
        entities: Iterable[str] | None = None,
        campaign_ids: list[Any] | None = None,
        active_only: bool | None = None,
        progress: ProgressCallback | None = None,
    ) -> list[LoadResult]:
        """
        Load entity kinds from Campaign Manager into their tables.

        Kinds are walked in dependency order and the ids each kind loads scope
        the kinds below it.  A kind with no parent ids in scope loads the ids
        already in its own table.

        Args:
            entities: Kinds to load (default: all)
            campaign_ids: Campaigns to load instead of those in the Campaign table
            active_only: Only load active ads (default: config value)
            progress: Optional callback for progress updates

        Returns:
            LoadResult for each kind
        """
        kinds = self._resolve_entities(entities, LOAD_ORDER)
        generation = self._begin_operation()
        if active_only is None:
            active_only = self.config.sync.active_only

        filters = CascadeFilters(active_only=active_only)
        explicit_campaigns = list(campaign_ids or [])
        if explicit_campaigns:
            filters.campaign_ids = list(explicit_campaigns)

        results = []
        for entity in kinds:
            loader = self.registry.get(entity)
            start = time.monotonic()
            job_filters = self._job_filters(entity, filters)
            result = LoadResult(entity=entity, filters_applied=job_filters.get_description())
            if progress:
                progress("start", 0, None, loader.label)

            if loader.table is None:
                message = f"No table for {loader.label}, skipped"
                logger.warning(message)
                result.warnings.append(message)
                results.append(result)
                continue

            job = Job(entity=entity, filters=job_filters, generation=generation)
            try:
                if entity == "Campaigns":
                    if explicit_campaigns:
                        job.ids_to_load = list(explicit_campaigns)
                    else:
                        loader.identify_items_to_load(job)
                elif not any(getattr(job_filters, name) for name in PARENT_SCOPE[entity]):
                    loader.identify_items_to_load(job)

                loader.load(job)
                result.items = len(job.items_to_load)
                result.loaded_ids = list(job.loaded_ids)
                result.rows = len(loader.feed().load())
            except SyncError as e:
                logger.error(f"Error loading {loader.label}: {e}")
                job.log(f"Error loading {loader.label}: {e}")
                result.errors.append(str(e))
            finally:
                self._collect_logs(job)

            if not result.success:
                # Kinds below a failed kind would load with the wrong scope
                result.duration_seconds = time.monotonic() - start
                results.append(result)
                break

            if entity in LOADED_IDS_FILTER and result.loaded_ids:
                setattr(filters, LOADED_IDS_FILTER[entity], list(result.loaded_ids))

            self.state.mark_load(entity, result.rows)
            result.duration_seconds = time.monotonic() - start
            if progress:
                progress("done", result.rows, None, loader.label)
            results.append(result)

        self.save_state()
        self.write_logs()
        return results

    # ==================== Push ====================

    def push(
        self,
        entities: Iterable[str] | None = None,
        continue_on_error: bool | None = None,
        progress: ProgressCallback | None = None,
    ) -> list[PushResult]:
        """
        Push table rows to Campaign Manager, referenced kinds first.

        Rows are pushed one at a time sharing one id map, so a row can
        reference a temporary id assigned earlier in the same run.  The id map
        and the table are written back after every kind, even when a kind is
        aborted.

        Args:
            entities: Kinds to push (default: all)
            continue_on_error: Keep going after a row fails (default: config value)
            progress: Optional callback for progress updates

        Returns:
            PushResult for each kind
        """
        kinds = self._resolve_entities(entities, PUSH_ORDER)
        generation = self._begin_operation()
        if continue_on_error is None:
            continue_on_error = self.config.sync.continue_on_error

        id_map = self.load_id_map()
        results = []
        for entity in kinds:
            loader = self.registry.get(entity)
            result = PushResult(entity=entity)
            results.append(result)
            start = time.monotonic()
            if progress:
                progress("start", 0, None, loader.label)

            if loader.table is None:
                message = f"No table for {loader.label}, skipped"
                logger.warning(message)
                result.warnings.append(message)
                continue

            job = Job(
                entity=entity,
                id_map=id_map,
                generation=generation,
                filters=CascadeFilters(active_only=self.config.sync.active_only),
            )
            loader.create_push_jobs(job)
            try:
                self._push_rows(loader, job, result, continue_on_error, progress)
            finally:
                loader.update_feed(job)
                self.save_id_map(id_map)
                self._collect_logs(job, *job.jobs)
                self.state.mark_push(entity, result.pushed, result.failed)
                self.save_state()
                self.write_logs()
                result.duration_seconds = time.monotonic() - start

            if progress:
                progress("done", len(result.outcomes), None, loader.label)
            if result.stopped:
                break

        return results

    def _push_rows(
        self,
        loader: Any,
        job: Job,
        result: PushResult,
        continue_on_error: bool,
        progress: ProgressCallback | None,
    ) -> None:
        total = len(job.jobs)
        for index, push_job in enumerate(job.jobs, start=1):
            row_id = push_job.row.get(loader.id_field)
            try:
                loader.push(push_job)
            except ROW_ERRORS as e:
                result.outcomes.append(
                    RowOutcome(job.entity, row_id, PushState.FAILED.value, error=str(e))
                )
                result.errors.append(f"{loader.label} {row_id}: {e}")
                if not continue_on_error:
                    result.stopped = True
                    logger.warning(f"Stopping {loader.label} push after failed row {row_id}")
                    return
                continue

            result.outcomes.append(
                RowOutcome(
                    job.entity,
                    row_id,
                    push_job.state.value,
                    new_id=push_job.row.get(loader.id_field),
                )
            )
            if progress:
                progress("row", index, total, loader.label)

    # ==================== Hierarchy ====================

    def build_hierarchy(self, campaign_ids: list[Any] | None = None) -> HierarchyResult:
        """
        Fetch the campaigns and everything below them and nest it.

        Args:
            campaign_ids: Campaigns to include (default: those in the Campaign table)
        """
        generation = self._begin_operation()
        job = Job(entity="Campaigns", generation=generation)
        campaigns_loader = self.registry.get("Campaigns")

        if campaign_ids:
            job.ids_to_load = list(campaign_ids)
        else:
            campaigns_loader.identify_items_to_load(job)
        if not job.ids_to_load:
            job.log("No campaigns to build a hierarchy for")
            self._collect_logs(job)
            self.write_logs()
            return HierarchyResult()

        remote = self.client
        remote.set_cache(self.registry.ctx.load_cache)
        ids = list(job.ids_to_load)
        scope = {"campaignIds": ids}

        campaigns = remote.chunk_fetch("Campaigns", "campaigns", ids)
        groups = remote.list("PlacementGroups", "placementGroups", scope)
        placements = remote.list("Placements", "placements", scope)
        ad_scope = dict(scope, active=True) if self.config.sync.active_only else scope
        ads = remote.list("Ads", "ads", ad_scope)

        creative_ids: list[Any] = []
        landing_page_ids: list[Any] = [c.get("defaultLandingPageId") for c in campaigns]
        for ad in ads:
            for assignment in (ad.get("creativeRotation") or {}).get("creativeAssignments") or []:
                creative_ids.append(assignment.get("creativeId"))
                click_through = assignment.get("clickThroughUrl") or {}
                landing_page_ids.append(click_through.get("landingPageId"))

        creatives = remote.chunk_fetch("Creatives", "creatives", _distinct(creative_ids))
        landing_pages = remote.chunk_fetch(
            "AdvertiserLandingPages", "landingPages", _distinct(landing_page_ids)
        )

        result = build_hierarchy(
            campaigns,
            placement_groups=groups,
            placements=placements,
            ads=ads,
            creatives=creatives,
            landing_pages=landing_pages,
            job=job,
        )
        self._collect_logs(job)
        self.write_logs()
        return result

    # ==================== Status ====================

    def get_status(self) -> dict[str, Any]:
        """Tables, row counts, id map sizes and the session state."""
        store = self.store
        tables = {}
        for entity in LOAD_ORDER:
            loader = self.registry.get(entity)
            table = loader.table
            tables[entity] = {
                "label": loader.label,
                "table": table,
                "rows": len(store.read_rows(table)) if table else None,
            }

        id_map = self.id_store.load() if store.table_exists(self.id_store.table) else {}
        return {
            "generation": self.state.generation,
            "tables": tables,
            "id_map": {table: len(mapping) // 2 for table, mapping in id_map.items()},
            "entities": {k: v.model_dump(mode="json") for k, v in self.state.entities.items()},
        }


def _distinct(values: Iterable[Any]) -> list[Any]:
    seen: set[str] = set()
    result = []
    for value in values:
        if value is None or value == "":
            continue
        key = normalize_id(value)
        if key not in seen:
            seen.add(key)
            result.append(value)
    return result
