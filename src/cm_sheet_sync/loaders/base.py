"""Generic load/push algorithm and the strategy interface entity kinds plug into.

:class:`EntityLoader` owns the flow shared by every entity kind: finding the
ids a table references, fetching and mapping remote entities into rows,
splitting a table into push jobs and pushing each row.  An
:class:`EntityStrategy` supplies what differs per kind: table names, key
columns, references, child tables and the field mapping in each direction.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..cm_client import CHUNK_SIZE
from ..errors import ConfigurationError, EntityNotFoundError
from ..feed import FeedRow, TabularFeed
from ..id_store import is_temporary_id, normalize_id
from ..tabular.store import is_blank
from .context import LoaderContext
from .jobs import Job, PreFetchConfig, PushJob, PushState
from .values import assign, format_date, format_datetime, is_concrete_number, is_true

logger = logging.getLogger(__name__)

# Ids per warm-up list call
PRE_FETCH_CHUNK_SIZE = 200


def add_parent_ids(options: dict[str, Any], parent_ids: list[Any]) -> bool:
    """Add *parent_ids* to the ``ids`` filter of a load driven by its parents."""
    if not parent_ids:
        return False
    ids = list(options.get("ids") or [])
    known = {normalize_id(i) for i in ids}
    ids.extend(i for i in parent_ids if normalize_id(i) not in known)
    options["ids"] = ids
    return True


@dataclass(frozen=True)
class EntityReference:
    """A row field holding the id of an entity in another table."""

    table: str
    field: str


@dataclass(frozen=True)
class ChildRelationship:
    """
    Rows of a child table attached to their parent row while pushing.

    ``join_field`` holds the parent id on each child row; the matching
    children are set on the parent row under ``list_field``.
    """

    tables: tuple[str, ...]
    list_field: str
    join_field: str
    qa_fallback: bool = True


class EntityStrategy(ABC):
    """Per-kind behavior plugged into :class:`EntityLoader`."""

    #: Display name used in logs
    label: str = ""
    #: Registry key
    entity: str = ""
    #: API collection name
    remote_type: str = ""
    #: Name of the item list in list responses
    list_field: str | None = None
    #: Candidate table names, in priority order
    tables: tuple[str, ...] = ()
    #: Whether the QA table is tried after ``tables``
    qa_fallback: bool = True
    #: Dedup key columns
    keys: tuple[str, ...] = ()
    #: Column holding the entity id
    id_field: str = ""
    references: tuple[EntityReference, ...] = ()
    children: tuple[ChildRelationship, ...] = ()
    #: Cache warm-ups over remote entities before mapping them into rows
    load_pre_fetch: tuple[PreFetchConfig, ...] = ()
    #: Cache warm-ups over table rows before pushing them
    push_pre_fetch: tuple[PreFetchConfig, ...] = ()

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        """Add cascade filters to a list call; True if any narrowing filter was added."""
        return False

    def fetch_items(self, job: Job, ctx: LoaderContext) -> list[dict[str, Any]] | None:
        """Custom retrieval; ``None`` falls back to the generic list call."""
        return None

    def map_row(self, item: dict[str, Any], ctx: LoaderContext) -> Any:
        """Remote entity to one row, a list of rows, or ``None`` to skip."""
        return None

    def prepare_push_job(self, job: Job, push_job: PushJob) -> None:
        """Hook run on each push job as it is created."""

    def pre_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        """Normalize row values before they are mapped."""

    @abstractmethod
    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        """Apply row fields onto ``job.remote_object``."""

    def post_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        """Write derived values back onto the row after the remote write."""


class EntityLoader:
    """
    Load and push one entity kind.

    Args:
        strategy: Per-kind behavior
        ctx: Remote client, table storage and identifier store
    """

    assign = staticmethod(assign)
    is_true = staticmethod(is_true)
    format_date = staticmethod(format_date)
    format_datetime = staticmethod(format_datetime)

    def __init__(self, strategy: EntityStrategy, ctx: LoaderContext):
        self.strategy = strategy
        self.ctx = ctx

    @property
    def label(self) -> str:
        return self.strategy.label

    @property
    def id_field(self) -> str:
        return self.strategy.id_field

    @property
    def candidate_tables(self) -> list[str]:
        return self.ctx.candidate_tables(self.strategy.tables, self.strategy.qa_fallback)

    @property
    def table(self) -> str | None:
        """The table this loader reads and writes: the first existing candidate."""
        return self.ctx.which_table(self.candidate_tables)

    def feed(self) -> TabularFeed:
        return TabularFeed(self.ctx.store, self.candidate_tables, self.strategy.keys)

    def translate_id(self, table: str, value: Any, job: Job | PushJob | None = None) -> Any:
        return self.ctx.translate_id(table, value, job)

    # ==================== Load ====================

    def identify_items_to_load(self, job: Job) -> Job:
        """Collect the distinct concrete ids already present in the table."""
        ids: list[Any] = []
        seen: set[str] = set()
        for row in self.feed().load():
            value = row.get(self.id_field)
            if is_blank(value) or is_temporary_id(value):
                continue
            key = normalize_id(value)
            if not key or key.lower() == "null" or key in seen:
                continue
            seen.add(key)
            ids.append(value)

        job.ids_to_load = ids
        logger.debug(f"{self.label}: {len(ids)} ids in table")
        return job

    def fetch_items_to_load(self, job: Job) -> list[dict[str, Any]]:
        """
        Fetch the entities the job asks for.

        Nothing is fetched when the job has no ids and the strategy adds no
        narrowing filter, so an unscoped load never pulls a whole account.
        """
        custom = self.strategy.fetch_items(job, self.ctx)
        if custom is not None:
            return custom

        options: dict[str, Any] = {}
        has_filter = False
        if job.ids_to_load:
            options["ids"] = list(job.ids_to_load)
            has_filter = True
        if self.strategy.process_search_options(job, options):
            has_filter = True

        if not has_filter:
            job.log(f"No {self.label} ids or filters, nothing to fetch")
            return []

        job.log(f"Fetching {self.label} from Campaign Manager")
        remote = self.ctx.remote
        list_field = self.strategy.list_field or ""
        ids = options.get("ids") or []
        if len(ids) > CHUNK_SIZE:
            rest = {k: v for k, v in options.items() if k != "ids"}
            return remote.chunk_fetch(self.strategy.remote_type, list_field, ids, rest)
        return remote.list(self.strategy.remote_type, list_field, options)

    def load(self, job: Job) -> Job:
        """Fetch, map and write the job's entities into the table."""
        table = self.table
        if table is None:
            raise ConfigurationError(
                f"No table for {self.label}, expected one of: {', '.join(self.candidate_tables)}"
            )

        logger.info(f"Loading {self.label}")
        self.ctx.remote.set_cache(self.ctx.load_cache)

        items = self.fetch_items_to_load(job)
        job.items_to_load = items

        for config in job.pre_fetch_configs or self.strategy.load_pre_fetch:
            self.pre_fetch_from_objects(config, items)

        job.log(f"Mapping {len(items)} {self.label} to {table}")
        rows: list[dict[str, Any]] = []
        loaded_ids: list[Any] = []
        for item in items:
            mapped = self.strategy.map_row(item, self.ctx)
            if isinstance(mapped, list):
                rows.extend(mapped)
            elif mapped:
                rows.append(mapped)
            loaded_ids.append(item.get("id"))

        job.loaded_ids = loaded_ids
        self.feed().set_feed(rows).save()
        logger.info(f"Loaded {len(items)} {self.label} into {table} ({len(rows)} rows)")
        return job

    # ==================== Cache warm-up ====================

    def pre_fetch(
        self,
        entity: str,
        list_field: str,
        filter_name: str,
        values: list[Any],
    ) -> None:
        """List *values* in chunks so later ``get`` calls are served from cache."""
        for i in range(0, len(values), PRE_FETCH_CHUNK_SIZE):
            chunk = values[i : i + PRE_FETCH_CHUNK_SIZE]
            self.ctx.remote.list(entity, list_field, {filter_name: chunk})

    def _distinct(self, values: list[Any]) -> list[Any]:
        seen: set[str] = set()
        result: list[Any] = []
        for value in values:
            if not is_concrete_number(value):
                continue
            key = normalize_id(value)
            if key not in seen:
                seen.add(key)
                result.append(value)
        return result

    def pre_fetch_from_feed(self, config: PreFetchConfig, feed: TabularFeed) -> None:
        values = self._distinct([row.get(config.field_name) for row in feed])
        if values:
            self.pre_fetch(config.entity, config.list_field, config.filter_name, values)

    def pre_fetch_from_objects(self, config: PreFetchConfig, items: list[dict[str, Any]]) -> None:
        values = self._distinct([item.get(config.field_name) for item in items])
        if values:
            self.pre_fetch(config.entity, config.list_field, config.filter_name, values)

    # ==================== Push ====================

    def create_push_jobs(self, job: Job) -> Job:
        """Split the table into one push job per representative row."""
        self.ctx.remote.set_cache(self.ctx.push_cache)
        feed = self.feed().load()

        if not feed.is_empty():
            for config in job.pre_fetch_configs or self.strategy.push_pre_fetch:
                self.pre_fetch_from_feed(config, feed)
        feed.reset()

        job.feed = feed.rows
        job.jobs = []
        for row in feed:
            push_job = PushJob(
                entity=job.entity,
                row=row,
                id_map=job.id_map,
                active_only=job.filters.active_only,
                generation=job.generation,
            )
            self.strategy.prepare_push_job(job, push_job)
            job.jobs.append(push_job)

        job.log(f"{len(job.jobs)} {self.label} rows to push")
        return job

    def _attach_children(self, job: PushJob, table: str) -> None:
        row = job.row
        for rel in self.strategy.children:
            candidates = self.ctx.candidate_tables(rel.tables, rel.qa_fallback)
            groups: dict[str, list[dict[str, Any]]] = {}
            for child in TabularFeed(self.ctx.store, candidates).load():
                # Children reference their parent in the parent's id namespace
                child[rel.join_field] = self.ctx.translate_id(table, child.get(rel.join_field))
                if is_blank(child.get(rel.join_field)):
                    continue
                groups.setdefault(normalize_id(child.get(rel.join_field)), []).append(child.data)

            key = row.get(rel.join_field)
            if not is_blank(key) and normalize_id(key) in groups:
                row[rel.list_field] = groups[normalize_id(key)]

    def push(self, job: PushJob) -> PushJob:
        """
        Push one row: fetch its entity, resolve children and references, map
        fields, commit, record the new id and post-process.

        Raises:
            Any error from the steps above, after logging it on the job.
        """
        row = job.row
        if row.unkeyed:
            job.log(f"{self.id_field} is empty for {self.label}. Skipping")
            job.state = PushState.SKIPPED
            return job

        table = self.table or self.strategy.tables[0]
        self.ctx.remote.set_cache(self.ctx.push_cache)
        self.ctx.id_store.initialize(job.id_map)

        original_id = row.get(self.id_field)
        job.log(f"Processing {self.label}: {original_id}")
        try:
            job.state = PushState.FETCHING_BASE
            job.remote_object = {}
            if not is_blank(original_id) and not is_temporary_id(original_id):
                base = self.ctx.remote.get(self.strategy.remote_type, original_id)
                if base is None:
                    raise EntityNotFoundError(self.strategy.remote_type, original_id)
                job.remote_object = base

            job.state = PushState.RESOLVING_CHILDREN
            self._attach_children(job, table)

            job.state = PushState.RESOLVING_REFERENCES
            for ref in self.strategy.references:
                if ref.field in row:
                    row[ref.field] = self.ctx.translate_id(ref.table, row.get(ref.field), job)

            job.state = PushState.MAPPING_FIELDS
            self.strategy.pre_process_push(job, self.ctx)
            self.strategy.process_push(job, self.ctx)

            job.state = PushState.COMMITTING
            job.remote_object = self.ctx.remote.update(
                self.strategy.remote_type, job.remote_object
            )
            new_id = job.remote_object.get("id")
            row[self.id_field] = new_id

            if is_temporary_id(original_id):
                job.state = PushState.RECORDING_ID
                self.ctx.id_store.add_id(table, new_id, original_id)

            job.state = PushState.POST_PROCESSING
            self.strategy.post_process_push(job, self.ctx)
        except Exception as e:
            job.state = PushState.FAILED
            job.error = str(e)
            job.log(f"Error processing {self.label}: {original_id}")
            job.log(f"Error Message: {e}")
            logger.error(f"Error processing {self.label} {original_id}: {e}")
            raise

        job.state = PushState.DONE
        return job

    def _claimed_parent_ids(self, rows: list[FeedRow], rel: ChildRelationship) -> set[str]:
        table = self.table or self.strategy.tables[0]
        claimed: set[str] = set()
        for row in rows:
            if rel.list_field not in row:
                continue
            value = row.get(rel.join_field)
            for candidate in (value, row.original.get(rel.join_field) if row.original else None):
                if is_blank(candidate):
                    continue
                claimed.add(normalize_id(candidate))
                claimed.add(normalize_id(self.ctx.translate_id(table, candidate)))
        return claimed

    def update_feed(self, job: Job) -> Job:
        """
        Write pushed rows back to the table and their child lists back to the
        child tables.

        Child rows whose parent was not part of this push are kept as they are.
        """
        self.feed().set_rows(job.feed).save()

        table = self.table or self.strategy.tables[0]
        for rel in self.strategy.children:
            candidates = self.ctx.candidate_tables(rel.tables, rel.qa_fallback)
            child_feed = TabularFeed(self.ctx.store, candidates)
            if child_feed.table is None:
                continue

            claimed = self._claimed_parent_ids(job.feed, rel)
            kept: list[dict[str, Any]] = []
            for child in child_feed.load():
                parent = child.get(rel.join_field)
                translated = self.ctx.translate_id(table, parent)
                if is_blank(parent) or (
                    normalize_id(parent) not in claimed and normalize_id(translated) not in claimed
                ):
                    kept.append(child.data)

            pushed: list[dict[str, Any]] = []
            for row in job.feed:
                pushed.extend(row.get(rel.list_field) or [])

            child_feed.set_feed(pushed + kept).save()
        return job
