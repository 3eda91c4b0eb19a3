"""Shared fixtures: a fake Campaign Manager service and in-memory tables."""

import copy
from typing import Any

import pytest

from cm_sheet_sync.cm_client import RemoteClient
from cm_sheet_sync.config import AppConfig, SyncConfig
from cm_sheet_sync.id_store import IdentifierStore
from cm_sheet_sync.loaders import LoaderContext, build_registry
from cm_sheet_sync.tabular import InMemoryTabularStore

# Filters the fake list endpoint understands: query parameter -> entity field
LIST_FILTERS = {
    "ids": "id",
    "campaignIds": "campaignId",
    "campaignId": "campaignId",
    "advertiserId": "advertiserId",
    "groupIds": "placementGroupId",
    "width": "width",
    "height": "height",
}


class FakeRemoteService:
    """In-memory stand-in for the Campaign Manager REST API.

    Entities are stored per collection and keyed by id.  ``failures`` are
    raised, in order, by the next calls; ``page_size`` splits list results
    into pages linked by ``nextPageToken``.
    """

    def __init__(self, page_size: int | None = None):
        self.entities: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.failures: list[Exception] = []
        self.associations: list[tuple[Any, Any]] = []
        self.page_size = page_size
        self.next_id = 9000
        self._pages: dict[str, list[dict[str, Any]]] = {}
        self._page_count = 0

    def add(self, entity: str, *items: dict[str, Any]) -> None:
        bucket = self.entities.setdefault(entity, {})
        for item in items:
            bucket[str(item["id"])] = copy.deepcopy(item)

    def item(self, entity: str, entity_id: Any) -> dict[str, Any] | None:
        return self.entities.get(entity, {}).get(str(entity_id))

    def calls_to(self, method: str, entity: str | None = None) -> list[tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] == method and (entity is None or c[1] == entity)]

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    @staticmethod
    def _matches(item: dict[str, Any], params: dict[str, Any]) -> bool:
        for name, value in params.items():
            if name == "active":
                if item.get("active") != value:
                    return False
            elif name == "placementIds":
                wanted = {str(v) for v in value}
                placed = {str(a.get("placementId")) for a in item.get("placementAssignments") or []}
                if not wanted & placed:
                    return False
            elif name in LIST_FILTERS:
                wanted = {str(v) for v in value} if isinstance(value, list) else {str(value)}
                if str(item.get(LIST_FILTERS[name])) not in wanted:
                    return False
        return True

    def _page(self, items: list[dict[str, Any]]) -> dict[str, Any]:
        if not self.page_size or len(items) <= self.page_size:
            return {"items": items}
        self._page_count += 1
        token = f"page-{self._page_count}"
        self._pages[token] = items[self.page_size :]
        return {"items": items[: self.page_size], "nextPageToken": token}

    def list(self, entity: str, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("list", entity, copy.deepcopy(params)))
        self._maybe_fail()

        if "pageToken" in params:
            page = self._page(self._pages.pop(params["pageToken"]))
        else:
            matched = [
                copy.deepcopy(item)
                for item in self.entities.get(entity, {}).values()
                if self._matches(item, params)
            ]
            page = self._page(matched)

        field = entity[:1].lower() + entity[1:]
        if entity == "AdvertiserLandingPages":
            field = "landingPages"
        response: dict[str, Any] = {field: page["items"]}
        if "nextPageToken" in page:
            response["nextPageToken"] = page["nextPageToken"]
        return response

    def get(self, entity: str, entity_id: Any) -> dict[str, Any] | None:
        self.calls.append(("get", entity, entity_id))
        self._maybe_fail()
        item = self.item(entity, entity_id)
        return copy.deepcopy(item) if item else None

    def insert(self, entity: str, item: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("insert", entity, copy.deepcopy(item)))
        self._maybe_fail()
        self.next_id += 1
        created = dict(copy.deepcopy(item), id=str(self.next_id))
        self.add(entity, created)
        return copy.deepcopy(created)

    def update(self, entity: str, item: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update", entity, copy.deepcopy(item)))
        self._maybe_fail()
        self.add(entity, item)
        return copy.deepcopy(item)

    def insert_child(
        self, parent: str, parent_id: Any, entity: str, item: dict[str, Any]
    ) -> dict[str, Any]:
        self.calls.append(("insert_child", entity, (parent_id, copy.deepcopy(item))))
        self._maybe_fail()
        self.associations.append((parent_id, item.get("creativeId")))
        return dict(item)


@pytest.fixture
def service():
    """Create an empty fake Campaign Manager service."""
    return FakeRemoteService()


@pytest.fixture
def sleeps():
    """Collect the delays the client sleeps for instead of sleeping."""
    return []


@pytest.fixture
def remote(service, sleeps):
    """Create a remote client over the fake service that never sleeps."""
    return RemoteClient(service, sleep=sleeps.append)


@pytest.fixture
def store():
    """Create an empty in-memory workbook."""
    return InMemoryTabularStore()


@pytest.fixture
def id_store(store):
    """Create an identifier store over the in-memory workbook."""
    return IdentifierStore(store)


@pytest.fixture
def ctx(remote, store, id_store):
    """Create a loader context over the fake service and in-memory workbook."""
    return LoaderContext(remote, store, id_store)


@pytest.fixture
def registry(ctx):
    """Create a registry with every entity loader."""
    return build_registry(ctx)


@pytest.fixture
def config(tmp_path):
    """Create a configuration that keeps all local state under tmp_path."""
    return AppConfig(
        sync=SyncConfig(
            cache_mode="memory",
            cache_dir=str(tmp_path / "cache"),
            state_file=tmp_path / "state.json",
        )
    )
