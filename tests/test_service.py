"""Tests for the Campaign Manager HTTP adapter."""

import json

import httpx
import pytest

from cm_sheet_sync.cm_client import CampaignManagerService
from cm_sheet_sync.cm_client.service import resource_path
from cm_sheet_sync.errors import RemoteServiceError, TransientRemoteError

BASE_URL = "https://dfareporting.googleapis.com/dfareporting/v4/userprofiles/123"


def make_service(handler):
    """Create a service whose requests are answered by *handler*."""
    return CampaignManagerService(
        base_url=BASE_URL,
        access_token="token-abc",
        transport=httpx.MockTransport(handler),
    )


def test_resource_path():
    """Test that collection names become camel-case URL segments."""
    assert resource_path("AdvertiserLandingPages") == "advertiserLandingPages"
    assert resource_path("Ads") == "ads"


def test_list_sends_filters_as_query_parameters():
    """Test that list calls GET the collection with repeated id parameters."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["ids"] = request.url.params.get_list("ids")
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"campaigns": [{"id": "1"}]})

    with make_service(handler) as service:
        response = service.list("Campaigns", {"ids": ["1", "2"], "pageToken": None})

    assert response == {"campaigns": [{"id": "1"}]}
    assert seen["method"] == "GET"
    assert seen["path"].endswith("/userprofiles/123/campaigns")
    assert seen["ids"] == ["1", "2"]
    assert seen["auth"] == "Bearer token-abc"


def test_insert_posts_and_update_puts_json():
    """Test that inserts POST and updates PUT the entity body."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append((request.method, request.url.path, body))
        return httpx.Response(200, json=dict(body, id=body.get("id") or "55"))

    service = make_service(handler)
    created = service.insert("Placements", {"name": "P"})
    updated = service.update("Placements", {"id": "55", "name": "Q"})
    service.close()

    assert created["id"] == "55"
    assert updated["name"] == "Q"
    assert [(m, p.rsplit("/", 1)[-1]) for m, p, _ in requests] == [
        ("POST", "placements"),
        ("PUT", "placements"),
    ]


def test_insert_child_posts_under_parent():
    """Test that child resources are created under their parent path."""
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"creativeId": "7"})

    service = make_service(handler)
    service.insert_child("Campaigns", "9", "CampaignCreativeAssociations", {"creativeId": "7"})

    assert paths[0].endswith("/campaigns/9/campaignCreativeAssociations")


def test_error_response_carries_server_message_and_status():
    """Test that API errors surface the server's own message."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403, json={"error": {"code": 403, "message": "Rate Limit Exceeded"}}
        )

    service = make_service(handler)
    with pytest.raises(RemoteServiceError) as exc_info:
        service.get("Ads", "1")

    assert exc_info.value.status_code == 403
    assert "Rate Limit Exceeded" in str(exc_info.value)


def test_non_json_error_body_is_used_as_message():
    """Test that a plain-text error body becomes the error message."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad Gateway")

    service = make_service(handler)
    with pytest.raises(RemoteServiceError, match="HTTP 502: Bad Gateway"):
        service.get("Ads", "1")


def test_empty_response_is_an_error():
    """Test that an empty successful response is reported as an error."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    service = make_service(handler)
    with pytest.raises(RemoteServiceError, match="Empty response"):
        service.list("Ads", {})


def test_transport_errors_are_transient():
    """Test that connection failures are raised as transient errors."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = make_service(handler)
    with pytest.raises(TransientRemoteError, match="connection refused"):
        service.list("Ads", {})
