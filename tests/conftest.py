import asyncio

import pytest

from rosmon.services.adapters import RawSnapshot, RouterAdapter
from rosmon.services.metrics_store import MetricsStore
from rosmon.services.poller import PollerManager
from rosmon.services.registry import RouterConfig, RouterRegistry


INTERFACES = [
    {
        "name": "ether1",
        "type": "ether",
        "mac-address": "4C:5E:0C:11:22:33",
        "running": "true",
        "disabled": "false",
        "tx-byte": "1000",
        "rx-byte": "2000",
        "tx-bits-per-second": "2500000",
        "rx-bits-per-second": "1000000",
    },
    {
        "name": "<pppoe-alice>",
        "type": "pppoe-in",
        "running": "true",
        "tx-bits-per-second": "500000",
        "rx-bits-per-second": "250000",
    },
]

RESOURCE = {
    "cpu-load": "12",
    "total-memory": "1000",
    "free-memory": "250",
    "uptime": "3d4h",
    "board-name": "RB4011",
    "version": "7.14",
}

SESSIONS = [
    {"name": "alice", "address": "10.0.0.2", "uptime": "1h", "caller-id": "AA:BB:CC:DD:EE:FF", "service": "pppoe"},
]


def raw_snapshot(**overrides) -> RawSnapshot:
    data = {"interfaces": INTERFACES, "resource": RESOURCE, "sessions": SESSIONS}
    data.update(overrides)
    return RawSnapshot(**data)


class FakeAdapter(RouterAdapter):
    """Adapter replaying queued snapshots or errors"""

    method = "rest"

    def __init__(self, results=None, timeout: float = 5.0, delay: float = 0.0):
        super().__init__(timeout)
        self.results = list(results or [raw_snapshot()])
        self.delay = delay
        self.calls = 0
        self.configs: list[RouterConfig] = []

    def _next(self):
        # The last queued result repeats
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_snapshot(self, config):
        self.calls += 1
        self.configs.append(config)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self._next()

    async def fetch_interfaces(self, config):
        return (await self.fetch_snapshot(config)).interfaces

    async def fetch_system_resource(self, config):
        return (await self.fetch_snapshot(config)).resource

    async def fetch_active_sessions(self, config):
        return (await self.fetch_snapshot(config)).sessions


def make_config(router_id: str = "r1", tenant_id: str = "t1", method: str = "rest", **kwargs) -> RouterConfig:
    return RouterConfig.build(
        id=router_id,
        tenant_id=tenant_id,
        name=kwargs.pop("name", f"Router {router_id}"),
        host=kwargs.pop("host", "10.0.0.1"),
        method=method,
        **kwargs,
    )


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def registry():
    return RouterRegistry()


@pytest.fixture
def store():
    return MetricsStore()


@pytest.fixture
def manager(registry, store, adapter):
    return PollerManager(
        registry,
        store,
        adapter_factory=lambda method, timeout: adapter,
        timeout=1.0,
        rpc_interval=0.01,
        rest_interval=0.01,
    )
