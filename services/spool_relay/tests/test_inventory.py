"""Tests for the Spoolman inventory client."""

from __future__ import annotations

import json

import httpx
import pytest

from app.errors import (
    AbortReason,
    InventoryMalformed,
    InventoryUnavailable,
    SpoolNotFound,
    UpdateRejected,
)
from app.inventory import InventoryClient, parse_locations, parse_spool

BASE_URL = "http://spoolman.local/api/v1"


def _client(handler, **kwargs) -> InventoryClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return InventoryClient(BASE_URL, client=http, **kwargs)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def test_parse_locations_accepts_bare_array():
    assert parse_locations(["shelf-3", "shelf-4"]) == frozenset({"shelf-3", "shelf-4"})


def test_parse_locations_accepts_settings_wrapper_with_encoded_value():
    payload = {"key": "locations", "value": json.dumps(["shelf-3"]), "is_set": True}
    assert parse_locations(payload) == frozenset({"shelf-3"})


def test_parse_locations_accepts_settings_wrapper_with_decoded_value():
    assert parse_locations({"value": ["dryer"]}) == frozenset({"dryer"})


@pytest.mark.parametrize(
    "payload",
    [
        {"key": "locations"},
        {"value": "not json"},
        {"value": "{\"a\": 1}"},
        [1, 2],
        "shelf-3",
    ],
)
def test_parse_locations_rejects_other_shapes(payload):
    with pytest.raises(InventoryMalformed):
        parse_locations(payload)


def test_parse_spool_reads_current_location():
    record = parse_spool("42", {"id": 42, "location": "shelf-1", "remaining_weight": 800})
    assert record.spool_id == "42"
    assert record.current_location_id == "shelf-1"
    assert record.raw["remaining_weight"] == 800


def test_parse_spool_without_location_maps_to_empty_string():
    assert parse_spool("42", {"id": 42, "location": None}).current_location_id == ""
    assert parse_spool("42", {"id": 42}).current_location_id == ""


# ---------------------------------------------------------------------------
# HTTP calls
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_locations_uses_location_endpoint_by_default():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json=["shelf-3", "shelf-4"])

    client = _client(handler)
    assert await client.list_locations() == frozenset({"shelf-3", "shelf-4"})
    assert seen == ["/api/v1/location"]


@pytest.mark.asyncio
async def test_list_locations_from_settings_endpoint():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/setting/locations"
        return httpx.Response(200, json={"value": "[\"shelf-4\"]"})

    client = _client(handler, locations_endpoint="setting/locations")
    assert await client.list_locations() == frozenset({"shelf-4"})


@pytest.mark.asyncio
async def test_list_locations_server_error_is_transient():
    client = _client(lambda request: httpx.Response(503))
    with pytest.raises(InventoryUnavailable) as exc_info:
        await client.list_locations()
    assert exc_info.value.reason is AbortReason.TRANSIENT


@pytest.mark.asyncio
async def test_connection_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(InventoryUnavailable):
        await client.get_spool("42")


@pytest.mark.asyncio
async def test_invalid_json_is_malformed():
    client = _client(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(InventoryMalformed) as exc_info:
        await client.list_locations()
    assert exc_info.value.reason is AbortReason.MALFORMED


@pytest.mark.asyncio
async def test_get_spool_returns_record():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/api/v1/spool/42"
        return httpx.Response(200, json={"id": 42, "location": "shelf-1"})

    record = await _client(handler).get_spool("42")
    assert record.current_location_id == "shelf-1"


@pytest.mark.asyncio
async def test_get_spool_not_found():
    client = _client(lambda request: httpx.Response(404, json={"message": "not found"}))
    with pytest.raises(SpoolNotFound) as exc_info:
        await client.get_spool("999")
    assert exc_info.value.reason is AbortReason.NOT_FOUND


@pytest.mark.asyncio
async def test_update_spool_location_sends_patch():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": 42, "location": "shelf-3"})

    await _client(handler).update_spool_location("42", "shelf-3")

    assert len(requests) == 1
    assert requests[0].method == "PATCH"
    assert requests[0].url.path == "/api/v1/spool/42"
    assert json.loads(requests[0].content) == {"location": "shelf-3"}


@pytest.mark.asyncio
async def test_update_client_error_is_rejected():
    client = _client(lambda request: httpx.Response(422, json={"detail": "bad location"}))
    with pytest.raises(UpdateRejected) as exc_info:
        await client.update_spool_location("42", "shelf-3")
    assert exc_info.value.reason is AbortReason.REJECTED


@pytest.mark.asyncio
async def test_update_server_error_is_transient():
    client = _client(lambda request: httpx.Response(500))
    with pytest.raises(InventoryUnavailable):
        await client.update_spool_location("42", "shelf-3")


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    client = InventoryClient(BASE_URL, client=http)
    await client.aclose()
    assert not http.is_closed
    await http.aclose()


# ---------------------------------------------------------------------------
# Spool ids in request paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_spool_id_is_escaped_into_a_single_path_segment():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.raw_path.decode())
        return httpx.Response(200, json={"id": 1, "location": "shelf-1"})

    client = _client(handler)
    await client.get_spool("../setting/locations")
    await client.update_spool_location("a/b?c", "shelf-2")

    assert paths == [
        "/api/v1/spool/..%2Fsetting%2Flocations",
        "/api/v1/spool/a%2Fb%3Fc",
    ]


@pytest.mark.parametrize("spool_id", ["", ".", "..", "4\n2", "42\x00"])
@pytest.mark.asyncio
async def test_unusable_spool_id_is_malformed_without_request(spool_id):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected request to {request.url}")

    client = _client(handler)
    with pytest.raises(InventoryMalformed) as exc_info:
        await client.get_spool(spool_id)
    assert exc_info.value.reason is AbortReason.MALFORMED
    with pytest.raises(InventoryMalformed):
        await client.update_spool_location(spool_id, "shelf-1")


@pytest.mark.asyncio
async def test_invalid_url_is_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

    client = _client(handler)
    with pytest.raises(InventoryMalformed) as exc_info:
        await client.get_spool("42")
    assert exc_info.value.reason is AbortReason.MALFORMED
