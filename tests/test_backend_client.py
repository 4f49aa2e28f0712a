import asyncio
import json

import httpx
import pytest

from dispatch_console.services.backend_client import BackendClientError, CallCenterBackendClient
from dispatch_console.services.geocoder import Geocoder, GeocoderError


def make_client(handler) -> CallCenterBackendClient:
    return CallCenterBackendClient("https://backend.test/", transport=httpx.MockTransport(handler))


def test_lookup_member_returns_none_on_404():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/call/memberid/lookup"
        assert json.loads(request.content) == {"phoneNumber": "0000"}
        return httpx.Response(404, json={"message": "Member not found"})

    client = make_client(handler)
    assert asyncio.run(client.lookup_member("0000")) is None


def test_get_admin_id_normalizes_to_string():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/agent/adminid/uid-1"
        return httpx.Response(200, json={"admin_id": 42})

    assert asyncio.run(make_client(handler).get_admin_id("uid-1")) == "42"


def test_errors_carry_backend_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "dispatch insert failed"})

    with pytest.raises(BackendClientError) as excinfo:
        asyncio.run(make_client(handler).dispatch({"orderId": "ORD-1"}))

    assert excinfo.value.status_code == 500
    assert str(excinfo.value) == "dispatch insert failed"


def test_network_failure_maps_to_bad_gateway():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendClientError) as excinfo:
        asyncio.run(make_client(handler).set_agent_status("42", "online"))

    assert excinfo.value.status_code == 502


def test_save_call_log_treats_empty_body_as_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201)

    result = asyncio.run(
        make_client(handler).save_call_log(phone="999", category="support", notes="hello", agent_name="Agent")
    )

    assert result == {"success": True}
    assert seen["path"] == "/api/logs/save"
    assert seen["body"] == {"phone": "999", "category": "support", "notes": "hello", "agentName": "Agent"}


def test_available_servicemen_accepts_list_or_wrapped_payload():
    def list_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"user_id": "SM-1"}])

    def wrapped_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"servicemen": [{"user_id": "SM-2"}]})

    assert asyncio.run(make_client(list_handler).available_servicemen("Plumbing")) == [{"user_id": "SM-1"}]
    assert asyncio.run(make_client(wrapped_handler).available_servicemen("Plumbing")) == [{"user_id": "SM-2"}]


def test_dispatch_details_unwraps_dispatch_data():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/call/dispatch/details/ORD-1"
        return httpx.Response(200, json={"dispatchData": {"order_id": "ORD-1", "order_request": "Fix tap"}})

    assert asyncio.run(make_client(handler).dispatch_details("ORD-1")) == {"order_id": "ORD-1", "order_request": "Fix tap"}


def test_active_order_query_params():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["user_id"] == "SM-1"
        return httpx.Response(200, json={"dispatchData": {"order_id": "ORD-5"}})

    assert asyncio.run(make_client(handler).active_order("SM-1")) == {"order_id": "ORD-5"}


def test_geocoder_returns_best_match_and_caches():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.params["q"])
        assert request.url.params["limit"] == "1"
        return httpx.Response(200, json=[{"lat": "12.97", "lon": "77.59"}])

    geocoder = Geocoder("https://geo.test", user_agent="tests", transport=httpx.MockTransport(handler))

    first = asyncio.run(geocoder.geocode("12 MG Road"))
    second = asyncio.run(geocoder.geocode("12 MG Road"))

    assert (first.lat, first.lng) == (12.97, 77.59)
    assert second == first
    assert calls == ["12 MG Road"]


def test_geocoder_no_match_and_errors():
    def empty(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="busy")

    assert asyncio.run(Geocoder("https://geo.test", user_agent="t", transport=httpx.MockTransport(empty)).geocode("x")) is None
    with pytest.raises(GeocoderError):
        asyncio.run(Geocoder("https://geo.test", user_agent="t", transport=httpx.MockTransport(broken)).geocode("x"))


def test_geocoder_cache_is_bounded_and_skips_unusable_matches():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        query = request.url.params["q"]
        calls.append(query)
        if query == "bad":
            return httpx.Response(200, json=[{"lat": "n/a"}])
        return httpx.Response(200, json=[{"lat": "12.97", "lon": "77.59"}])

    geocoder = Geocoder(
        "https://geo.test", user_agent="tests", transport=httpx.MockTransport(handler), max_cache_entries=2
    )

    async def run():
        assert await geocoder.geocode("bad") is None
        assert await geocoder.geocode("bad") is None
        await geocoder.geocode("a")
        await geocoder.geocode("b")
        await geocoder.geocode("a")
        await geocoder.geocode("c")
        await geocoder.geocode("a")
        await geocoder.geocode("b")

    asyncio.run(run())

    assert calls == ["bad", "bad", "a", "b", "c", "b"]
