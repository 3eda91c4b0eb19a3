"""HTTP adapter for the Campaign Manager 360 REST API."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ..errors import RemoteServiceError, TransientRemoteError

logger = logging.getLogger(__name__)


class RemoteService(Protocol):
    """Raw CRUD surface the :class:`RemoteClient` is built on.

    ``entity`` is the API collection name (``'Campaigns'``, ``'Placements'``
    ...).  Implementations raise :class:`RemoteServiceError` with the server's
    message on failure.
    """

    def list(self, entity: str, params: dict[str, Any]) -> dict[str, Any]: ...

    def get(self, entity: str, entity_id: Any) -> dict[str, Any] | None: ...

    def insert(self, entity: str, item: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, entity: str, item: dict[str, Any]) -> dict[str, Any]: ...

    def insert_child(
        self, parent: str, parent_id: Any, entity: str, item: dict[str, Any]
    ) -> dict[str, Any]: ...


def resource_path(entity: str) -> str:
    """Turn a collection name into its URL segment (``AdvertiserLandingPages`` ->
    ``advertiserLandingPages``)."""
    return entity[:1].lower() + entity[1:]


class CampaignManagerService:
    """Synchronous client for one Campaign Manager user profile."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize the service.

        Args:
            base_url: Profile URL, e.g.
                ``https://dfareporting.googleapis.com/dfareporting/v4/userprofiles/123``
            access_token: OAuth2 bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> CampaignManagerService:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Pull the API's own error text out of an error response."""
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return response.text

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Make an HTTP request to the API."""
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = self.client.request(method, path, params=params, json=json)
        except httpx.TransportError as e:
            raise TransientRemoteError(f"Transport error on {method} {path}: {e}") from e

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.debug("%s %s failed with %d: %s", method, path, response.status_code, message)
            raise RemoteServiceError(
                f"HTTP {response.status_code}: {message}",
                response.status_code,
            )

        if not response.content:
            raise RemoteServiceError(f"Empty response from {method} {path}")

        return response.json()

    def list(self, entity: str, params: dict[str, Any]) -> dict[str, Any]:
        return self._request("GET", f"/{resource_path(entity)}", params=params)

    def get(self, entity: str, entity_id: Any) -> dict[str, Any] | None:
        return self._request("GET", f"/{resource_path(entity)}/{entity_id}")

    def insert(self, entity: str, item: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", f"/{resource_path(entity)}", json=item)

    def update(self, entity: str, item: dict[str, Any]) -> dict[str, Any]:
        return self._request("PUT", f"/{resource_path(entity)}", json=item)

    def insert_child(
        self, parent: str, parent_id: Any, entity: str, item: dict[str, Any]
    ) -> dict[str, Any]:
        path = f"/{resource_path(parent)}/{parent_id}/{resource_path(entity)}"
        return self._request("POST", path, json=item)
