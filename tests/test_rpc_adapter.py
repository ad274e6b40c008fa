import asyncio

import pytest
from librouteros.exceptions import ConnectionClosed, TrapError

from conftest import INTERFACES, RESOURCE, SESSIONS, make_config
from rosmon.services.adapters import AuthError, ConnectivityError, ProtocolError, RpcAdapter
from rosmon.services.adapters.rpc import build_command, merge_traffic, monitor_traffic_command

MONITOR = [
    {"name": "ether1", "tx-bits-per-second": 8_000_000, "rx-bits-per-second": 4_000_000},
    {"name": "<pppoe-alice>", "tx-bits-per-second": 1_000_000, "rx-bits-per-second": 0},
]

DEVICE = {
    "/interface/print": INTERFACES,
    "/system/resource/print": [RESOURCE],
    "/ppp/active/print": SESSIONS,
    "/interface/monitor-traffic": MONITOR,
}


class FakeApi:

    def __init__(self, device, log):
        self.device = device
        self.log = log
        self.closed = False

    def rawCmd(self, *words):
        self.log["commands"].append(words)
        result = self.device[words[0]]
        if isinstance(result, Exception):
            raise result
        return iter(result)

    def close(self):
        self.closed = True


class FakeConnector:
    """Stands in for librouteros.connect"""

    def __init__(self, device=None, login_error=None):
        self.device = device or DEVICE
        self.login_error = login_error
        self.log = {"commands": [], "logins": []}
        self.sessions: list[FakeApi] = []

    def __call__(self, **kwargs):
        self.log["logins"].append(kwargs)
        if self.login_error:
            raise self.login_error
        api = FakeApi(self.device, self.log)
        self.sessions.append(api)
        return api


def test_build_command():
    assert build_command("/interface/print") == ("/interface/print",)
    assert monitor_traffic_command(["ether1", "ether2"]) == (
        "/interface/monitor-traffic",
        "=interface=ether1,ether2",
        "=once=",
    )


def test_snapshot_with_traffic_monitor():
    connector = FakeConnector()
    adapter = RpcAdapter(connector=connector)

    raw = asyncio.run(adapter.fetch_snapshot(make_config(method="rpc")))

    assert raw.failed == {}
    assert raw.interfaces[0]["tx-bits-per-second"] == 8_000_000
    assert raw.interfaces[0]["mac-address"] == "4C:5E:0C:11:22:33"
    assert raw.resource["board-name"] == "RB4011"
    assert raw.sessions[0]["name"] == "alice"

    # One full session per query, each closed afterwards
    assert [c[0] for c in connector.log["commands"]] == [
        "/interface/print",
        "/system/resource/print",
        "/ppp/active/print",
        "/interface/monitor-traffic",
    ]
    assert len(connector.sessions) == 4
    assert all(api.closed for api in connector.sessions)
    assert connector.log["commands"][-1][1] == "=interface=ether1,<pppoe-alice>"


def test_login_arguments():
    connector = FakeConnector()
    adapter = RpcAdapter(timeout=3.0, connector=connector)
    config = make_config(method="rpc", username="monitor", password="secret")

    asyncio.run(adapter.fetch_system_resource(config))

    login = connector.log["logins"][0]
    assert login["host"] == "10.0.0.1"
    assert login["port"] == 8728
    assert login["username"] == "monitor"
    assert login["password"] == "secret"
    assert login["timeout"] == 3.0
    assert "ssl_wrapper" not in login


def test_tls_port_uses_ssl():
    connector = FakeConnector()
    asyncio.run(RpcAdapter(connector=connector).fetch_interfaces(make_config(method="rpc", port=8729)))
    assert callable(connector.log["logins"][0]["ssl_wrapper"])


def test_monitor_failure_falls_back_to_counters():
    connector = FakeConnector({**DEVICE, "/interface/monitor-traffic": TrapError("no such command")})
    raw = asyncio.run(RpcAdapter(connector=connector).fetch_snapshot(make_config(method="rpc")))

    assert "monitor-traffic" in raw.failed
    assert raw.interfaces == INTERFACES
    assert all(api.closed for api in connector.sessions)


def test_primary_query_failure_fails_tick():
    connector = FakeConnector({**DEVICE, "/ppp/active/print": ConnectionClosed("socket closed")})
    with pytest.raises(ConnectivityError):
        asyncio.run(RpcAdapter(connector=connector).fetch_snapshot(make_config(method="rpc")))


def test_login_rejected():
    connector = FakeConnector(login_error=TrapError("invalid user name or password (6)"))
    with pytest.raises(AuthError) as exc_info:
        asyncio.run(RpcAdapter(connector=connector).fetch_system_resource(make_config(method="rpc")))
    assert exc_info.value.kind == "auth"


def test_connection_refused():
    connector = FakeConnector(login_error=ConnectionRefusedError(111, "Connection refused"))
    with pytest.raises(ConnectivityError):
        asyncio.run(RpcAdapter(connector=connector).fetch_interfaces(make_config(method="rpc")))


def test_command_trap():
    connector = FakeConnector({**DEVICE, "/interface/print": TrapError("bad command")})
    with pytest.raises(ProtocolError):
        asyncio.run(RpcAdapter(connector=connector).fetch_interfaces(make_config(method="rpc")))
    assert connector.sessions[0].closed


def test_empty_resource():
    connector = FakeConnector({**DEVICE, "/system/resource/print": []})
    assert asyncio.run(RpcAdapter(connector=connector).fetch_system_resource(make_config(method="rpc"))) == {}


def test_merge_traffic():
    merged = merge_traffic(
        [{"name": "ether1", "tx-byte": 10}, {"name": "ether2"}],
        [{"name": "ether1", "tx-bits-per-second": 5}],
    )
    assert merged == [{"name": "ether1", "tx-byte": 10, "tx-bits-per-second": 5}, {"name": "ether2"}]


def test_rpc_tick_bound():
    assert RpcAdapter(timeout=5.0).tick_timeout == 20.0
