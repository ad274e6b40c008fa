import asyncio

import httpx
import pytest

from conftest import INTERFACES, RESOURCE, SESSIONS, make_config
from rosmon.services.adapters import (
    AuthError,
    ConnectivityError,
    ProtocolError,
    RestAdapter,
    parse_shape,
)
from rosmon.services.normalizer import normalize_snapshot


def routeros(responses: dict, seen: list = None) -> httpx.MockTransport:
    """Mock RouterOS REST API; values are JSON payloads, status codes or exceptions"""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        endpoint = request.url.path.removeprefix("/rest/")
        result = responses.get(endpoint, 404)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, int):
            return httpx.Response(result, json={"error": result})
        if isinstance(result, bytes):
            return httpx.Response(200, content=result)
        return httpx.Response(200, json=result)

    return httpx.MockTransport(handler)


FULL = {
    "interface": INTERFACES,
    "system/resource": RESOURCE,
    "ppp/active": SESSIONS,
}


class TestParseShape:

    def test_shapes(self):
        assert parse_shape(None).kind == "empty"
        assert parse_shape([{"a": 1}]).kind == "array"
        assert parse_shape({"data": [{"a": 1}]}).records() == [{"a": 1}]
        assert parse_shape({"items": []}).kind == "wrapped"
        assert parse_shape({"cpu-load": "3"}).first() == {"cpu-load": "3"}
        assert parse_shape(None).first() == {}

    def test_unexpected_payloads(self):
        with pytest.raises(ProtocolError):
            parse_shape("ok")
        with pytest.raises(ProtocolError):
            parse_shape([{"a": 1}, 2])


def test_full_snapshot():
    seen = []
    adapter = RestAdapter(transport=routeros(FULL, seen))
    config = make_config(method="rest", username="monitor", password="secret")

    raw = asyncio.run(adapter.fetch_snapshot(config))

    assert [i["name"] for i in raw.interfaces] == ["ether1", "<pppoe-alice>"]
    assert raw.resource["board-name"] == "RB4011"
    assert raw.sessions[0]["name"] == "alice"
    assert raw.failed == {}
    assert {r.url.path for r in seen} == {"/rest/interface", "/rest/system/resource", "/rest/ppp/active"}
    assert all(r.url.scheme == "http" and r.url.host == "10.0.0.1" for r in seen)
    assert all(r.headers["authorization"].startswith("Basic ") for r in seen)


def test_wrapped_and_array_shapes():
    adapter = RestAdapter(transport=routeros({
        "interface": {"items": INTERFACES},
        "system/resource": [RESOURCE],
        "ppp/active": {"data": SESSIONS},
    }))
    raw = asyncio.run(adapter.fetch_snapshot(make_config()))
    assert len(raw.interfaces) == 2
    assert raw.resource["version"] == "7.14"
    assert len(raw.sessions) == 1


def test_partial_failure_uses_defaults():
    adapter = RestAdapter(transport=routeros({**FULL, "system/resource": 500}))
    raw = asyncio.run(adapter.fetch_snapshot(make_config()))

    assert "system/resource" in raw.failed
    snapshot = normalize_snapshot("r1", raw)
    assert snapshot.system.cpu_load_percent == 0
    assert snapshot.system.memory_usage_percent == 0
    assert snapshot.system.board_name == "MikroTik"
    assert snapshot.system.version == "ROS"
    assert len(snapshot.interfaces) == 2


def test_all_endpoints_rejected():
    adapter = RestAdapter(transport=routeros({"interface": 401, "system/resource": 401, "ppp/active": 401}))
    with pytest.raises(AuthError):
        asyncio.run(adapter.fetch_snapshot(make_config()))


def test_unreachable():
    refused = httpx.ConnectError("[Errno 111] Connection refused")
    adapter = RestAdapter(transport=routeros({"interface": refused, "system/resource": refused, "ppp/active": refused}))
    with pytest.raises(ConnectivityError) as exc_info:
        asyncio.run(adapter.fetch_snapshot(make_config()))
    assert "Connection refused" in exc_info.value.message
    assert exc_info.value.kind == "connectivity"


def test_timeout():
    adapter = RestAdapter(transport=routeros({"system/resource": httpx.ReadTimeout("timed out")}))
    with pytest.raises(ConnectivityError):
        asyncio.run(adapter.fetch_system_resource(make_config()))


def test_invalid_json():
    adapter = RestAdapter(transport=routeros({"system/resource": b"<html>login</html>"}))
    with pytest.raises(ProtocolError):
        asyncio.run(adapter.fetch_system_resource(make_config()))


def test_single_fetches():
    adapter = RestAdapter(transport=routeros(FULL))
    config = make_config()
    assert asyncio.run(adapter.fetch_system_resource(config))["cpu-load"] == "12"
    assert len(asyncio.run(adapter.fetch_interfaces(config))) == 2
    assert asyncio.run(adapter.fetch_active_sessions(config))[0]["address"] == "10.0.0.2"


def test_https_on_443():
    seen = []
    adapter = RestAdapter(transport=routeros(FULL, seen))
    asyncio.run(adapter.fetch_system_resource(make_config(port=443)))
    assert seen[0].url.scheme == "https"
