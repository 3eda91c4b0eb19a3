"""Shared collaborators handed to every loader and strategy."""

import logging
from collections.abc import Sequence
from typing import Any

from ..cache import Cache, InMemoryCache
from ..cm_client import RemoteClient
from ..id_store import IdentifierStore, is_temporary_id
from ..tabular import TabularStore
from .jobs import Job, PushJob

logger = logging.getLogger(__name__)

DEFAULT_QA_TABLE = "QA"


class LoaderContext:
    """
    Remote client, table storage and identifier store for one operation.

    ``load_cache`` is private to the current load operation and
    ``push_cache`` is shared across push batches of the same session.
    """

    def __init__(
        self,
        remote: RemoteClient,
        store: TabularStore,
        id_store: IdentifierStore,
        qa_table: str = DEFAULT_QA_TABLE,
        push_cache: Cache | None = None,
    ):
        self.remote = remote
        self.store = store
        self.id_store = id_store
        self.qa_table = qa_table
        self.push_cache: Cache = push_cache if push_cache is not None else InMemoryCache()
        self.load_cache: Cache = InMemoryCache()

    def new_load_cache(self) -> Cache:
        """Start a fresh private cache for a load operation."""
        self.load_cache = InMemoryCache()
        return self.load_cache

    def candidate_tables(self, tables: Sequence[str], qa_fallback: bool = True) -> list[str]:
        candidates = list(tables)
        if qa_fallback and self.qa_table not in candidates:
            candidates.append(self.qa_table)
        return candidates

    def which_table(self, candidates: Sequence[str]) -> str | None:
        """First of *candidates* that exists in the workbook."""
        return next((t for t in candidates if self.store.table_exists(t)), None)

    def translate_id(
        self,
        table: str,
        value: Any,
        job: Job | PushJob | None = None,
    ) -> Any:
        """
        Resolve a temporary id through the identifier store.

        Ids are namespaced by the table that created them; the QA table stands
        in when *table* does not exist.  Concrete ids and blanks come back
        unchanged.  An unresolved temporary id also comes back unchanged, with
        a warning logged (and recorded on *job* when given).
        """
        if not is_temporary_id(value):
            return value

        resolved = self.which_table([table, self.qa_table]) or table
        translated = self.id_store.translate(resolved, value)
        if translated is not None:
            return translated

        if job is not None:
            message = f"Unresolved reference {value} in {resolved}"
            logger.warning(message)
            job.log(message)
        return value
