"""Cached, paginated and retried access to Campaign Manager entities."""

from __future__ import annotations

import copy
import json
import logging
import re
import time
from collections.abc import Callable
from typing import Any

from ..cache import DEFAULT_TTL, Cache, InMemoryCache
from ..errors import (
    FatalRemoteError,
    RemoteServiceError,
    RetriesExhaustedError,
    TransientRemoteError,
)
from .service import RemoteService

logger = logging.getLogger(__name__)

# Retry configuration. 8s doubling over 4 retries waits at most 120s in total.
DEFAULT_RETRIES = 4
DEFAULT_BASE_DELAY = 8.0

# The list endpoints reject more than 500 ids per request
CHUNK_SIZE = 500

# Items whose JSON is this long or longer are returned but never cached
MAX_CACHEABLE_CHARS = 100_000

TRANSIENT_MARKERS = (
    "rate limit",
    "quota",
    "try again",
    "failed while accessing document",
    "empty response",
    "backend error",
    "internal error",
    "service unavailable",
)
_HTTP_5XX = re.compile(r"\bhttp 5\d\d\b")


def is_transient_error(error: Exception) -> bool:
    """Return True if *error* has a chance of succeeding when retried."""
    if isinstance(error, FatalRemoteError):
        return False
    if isinstance(error, TransientRemoteError):
        return True

    status_code = getattr(error, "status_code", None)
    if status_code == 429 or (status_code is not None and status_code >= 500):
        return True

    message = str(error).lower()
    if _HTTP_5XX.search(message):
        return True
    return any(marker in message for marker in TRANSIENT_MARKERS)


class RemoteClient:
    """
    Entity-level client over a :class:`RemoteService`.

    Every call goes through the retry policy.  ``get`` results and every item
    returned by ``list`` are written through to the current cache under
    ``<entity>|<id>|<generation>``, so a list call warms later ``get`` calls.
    """

    def __init__(
        self,
        service: RemoteService,
        cache: Cache | None = None,
        generation: int = 0,
        max_retries: int = DEFAULT_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        cache_ttl: int = DEFAULT_TTL,
    ):
        """
        Initialize the client.

        Args:
            service: Raw API adapter
            cache: Item cache, defaults to a private in-memory one
            generation: Session counter embedded in every cache key
            max_retries: Retries for transient errors
            base_delay: First backoff delay in seconds, doubled each retry
            sleep: Sleep function, injectable for tests
            cache_ttl: TTL passed to the cache for listed items
        """
        self.service = service
        self.cache: Cache = cache if cache is not None else InMemoryCache()
        self.generation = generation
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.cache_ttl = cache_ttl
        self._sleep = sleep
        self._list_memo: dict[str, list[dict[str, Any]]] = {}

    # ==================== Session / cache ====================

    def set_cache(self, cache: Cache) -> None:
        """Swap the item cache (private while loading, shared while pushing)."""
        self.cache = cache

    def begin_session(self, generation: int) -> None:
        """Start a new operation: new cache generation, empty list memo."""
        self.generation = generation
        self._list_memo.clear()
        logger.debug("Remote client session generation %d", generation)

    def _cache_key(self, entity: str, entity_id: Any) -> str:
        return f"{entity}|{entity_id}|{self.generation}"

    def _list_key(self, entity: str, options: dict[str, Any]) -> str:
        return f"{entity}|{self.generation}|{json.dumps(options, sort_keys=True, default=str)}"

    def _cache_item(self, entity: str, item: dict[str, Any], ttl: int | None = None) -> None:
        if not item or not item.get("id"):
            return
        if len(json.dumps(item, default=str)) >= MAX_CACHEABLE_CHARS:
            logger.debug("%s %s too large to cache", entity, item.get("id"))
            return
        self.cache.put(self._cache_key(entity, item["id"]), copy.deepcopy(item), ttl)

    # ==================== Retry ====================

    def _call(self, description: str, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Invoke *fn* with exponential backoff on transient errors.

        Raises:
            FatalRemoteError: The error is not worth retrying
            RetriesExhaustedError: Still failing after ``max_retries`` retries
        """
        delay = self.base_delay
        for attempt in range(self.max_retries + 1):
            try:
                return fn(*args)
            except RemoteServiceError as e:
                if not is_transient_error(e):
                    if isinstance(e, FatalRemoteError):
                        raise
                    raise FatalRemoteError(str(e), e.status_code) from e

                if attempt >= self.max_retries:
                    raise RetriesExhaustedError(
                        f"{description} failed after {attempt + 1} attempts: {e}",
                        attempts=attempt + 1,
                        last_error=e,
                    ) from e

                logger.warning(
                    f"{description} failed ({e}), retry {attempt + 1}/{self.max_retries} "
                    f"in {delay:.1f}s"
                )
                self._sleep(delay)
                delay *= 2

        # Unreachable: the loop either returns or raises
        raise RetriesExhaustedError(f"{description} failed", attempts=self.max_retries + 1)

    # ==================== Entity operations ====================

    def list(
        self,
        entity: str,
        list_field: str,
        options: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch every page of a list call.

        When ``options`` filters by ``ids`` the follow-up page requests carry
        only the page token; the API rejects a page token combined with a
        large id set.  Any other filter is repeated on every page.

        Args:
            entity: API collection name, e.g. ``'Placements'``
            list_field: Name of the list in the response, e.g. ``'placements'``
            options: Query parameters

        Returns:
            All items, in page order
        """
        options = dict(options or {})
        memo_key = self._list_key(entity, options)
        if memo_key in self._list_memo:
            return copy.deepcopy(self._list_memo[memo_key])

        logger.debug("Invoking API to list %s with %s", entity, sorted(options))
        items: list[dict[str, Any]] = []
        description = f"list {entity}"

        response = self._call(description, self.service.list, entity, options)
        while response and response.get(list_field):
            items.extend(response[list_field])

            token = response.get("nextPageToken")
            if not token:
                break
            if "ids" in options:
                page_options: dict[str, Any] = {"pageToken": token}
            else:
                page_options = {**options, "pageToken": token}
            response = self._call(description, self.service.list, entity, page_options)

        self._list_memo[memo_key] = items
        for item in items:
            self._cache_item(entity, item, self.cache_ttl)

        return copy.deepcopy(items)

    def get(self, entity: str, entity_id: Any) -> dict[str, Any] | None:
        """Fetch one entity by id, serving from the cache when possible."""
        if not entity_id:
            return None

        cached = self.cache.get(self._cache_key(entity, entity_id))
        if cached is not None:
            return copy.deepcopy(cached)

        logger.debug("Invoking API to fetch %s %s", entity, entity_id)
        result = self._call(f"get {entity} {entity_id}", self.service.get, entity, entity_id)
        if result:
            self._cache_item(entity, result)
        return result

    def update(self, entity: str, obj: dict[str, Any]) -> dict[str, Any]:
        """Insert *obj* when it has no id, update it otherwise."""
        if obj.get("id"):
            logger.debug("Updating %s %s", entity, obj["id"])
            result = self._call(f"update {entity}", self.service.update, entity, obj)
        else:
            logger.debug("Inserting new %s", entity)
            result = self._call(f"insert {entity}", self.service.insert, entity, obj)

        if result:
            self._cache_item(entity, result)
        return result

    def chunk_fetch(
        self,
        entity: str,
        list_field: str,
        ids: list[Any],
        options: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """List entities by id in batches of at most :data:`CHUNK_SIZE`."""
        result: list[dict[str, Any]] = []
        for i in range(0, len(ids), CHUNK_SIZE):
            batch = list(ids[i : i + CHUNK_SIZE])
            result.extend(self.list(entity, list_field, {**(options or {}), "ids": batch}))
        return result

    def associate_creative_to_campaign(self, campaign_id: Any, creative_id: Any) -> None:
        """Associate a creative with a campaign so ads in it can rotate the creative."""
        self._call(
            f"associate creative {creative_id}",
            self.service.insert_child,
            "Campaigns",
            campaign_id,
            "CampaignCreativeAssociations",
            {"creativeId": creative_id},
        )

    def get_sizes(self, width: int, height: int) -> list[dict[str, Any]]:
        """Return the Campaign Manager sizes matching *width* x *height*."""
        return self.list("Sizes", "sizes", {"width": width, "height": height})
