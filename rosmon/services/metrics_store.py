"""
In-memory metrics store.

One slice per router holding the latest system snapshot and the live
interfaces/clients with their rolling traffic history. A merge builds a new
RouterMetrics object and publishes it with a single assignment, so readers
always see one complete tick. Merges are serialized per router; different
routers never wait on each other.
"""

import asyncio
import logging
from datetime import datetime
from typing import Iterable, Optional

from rosmon.config import get_settings
from rosmon.schemas.metrics import (
    AggregatePoint,
    ClientSession,
    InterfaceMetric,
    NormalizedSnapshot,
    RouterMetrics,
    RouterOverview,
    SystemSnapshot,
    TrafficSample,
)
from rosmon.services.normalizer import attach_client_rates, resolve_rates
from rosmon.services.registry import RouterConfig

logger = logging.getLogger(__name__)

INTERFACE_HISTORY_SIZE = 30
CLIENT_HISTORY_SIZE = 20


def append_sample(history: tuple, sample: TrafficSample, cap: int) -> tuple:
    """New history with the sample appended and the oldest evicted past cap"""
    return (history + (sample,))[-cap:]


class MetricsStore:
    """Latest state and bounded history per router"""

    def __init__(
        self,
        interface_history_size: int = INTERFACE_HISTORY_SIZE,
        client_history_size: int = CLIENT_HISTORY_SIZE,
    ):
        self.interface_history_size = interface_history_size
        self.client_history_size = client_history_size
        self._state: dict[str, RouterMetrics] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._open: set[str] = set()

    def _lock_for(self, router_id: str) -> asyncio.Lock:
        lock = self._locks.get(router_id)
        if lock is None:
            lock = self._locks[router_id] = asyncio.Lock()
        return lock

    def open(self, router_id: str):
        """Start accepting merges for a router"""
        self._open.add(router_id)

    def is_open(self, router_id: str) -> bool:
        return router_id in self._open

    async def close(self, router_id: str):
        """Drop a router's slice; later merges for it are ignored"""
        async with self._lock_for(router_id):
            self._open.discard(router_id)
            self._state.pop(router_id, None)
        self._locks.pop(router_id, None)

    async def merge(self, snapshot: NormalizedSnapshot, at: datetime) -> Optional[RouterMetrics]:
        """Merge one normalized tick into the router's slice.

        Existing entities (matched by name / username) get the new sample
        appended to their history; new ones start with a single sample;
        entities missing from the snapshot are dropped.
        Returns the published state, or None if the router is closed.
        """
        router_id = snapshot.router_id
        async with self._lock_for(router_id):
            if router_id not in self._open:
                logger.debug(f"Discarding merge for closed router {router_id}")
                return None

            previous = self._state.get(router_id)
            state = self._build(snapshot, previous, at)
            self._state[router_id] = state
            return state

    def _build(self, snapshot: NormalizedSnapshot, previous: Optional[RouterMetrics], at: datetime) -> RouterMetrics:
        prev_interfaces = {i.name: i for i in previous.interfaces} if previous else {}
        prev_clients = {c.username: c for c in previous.clients} if previous else {}

        seconds = 0.0
        if previous is not None and previous.updated_at is not None:
            seconds = (at - previous.updated_at).total_seconds()

        interfaces = []
        for iface in snapshot.interfaces:
            before = prev_interfaces.get(iface.name)
            iface = resolve_rates(iface, before, seconds)
            interfaces.append(self._with_sample(iface, before, at, self.interface_history_size))

        clients = []
        for client in attach_client_rates(snapshot.clients, interfaces):
            before = prev_clients.get(client.username)
            clients.append(self._with_sample(client, before, at, self.client_history_size))

        return RouterMetrics(
            router_id=snapshot.router_id,
            system=snapshot.system,
            interfaces=tuple(interfaces),
            clients=tuple(clients),
            updated_at=at,
            ticks=(previous.ticks if previous else 0) + 1,
        )

    @staticmethod
    def _with_sample(entity, before, at: datetime, cap: int):
        sample = TrafficSample(timestamp=at, tx_mbps=entity.current_tx, rx_mbps=entity.current_rx)
        history = before.history if before is not None else ()
        return entity.model_copy(update={"history": append_sample(history, sample, cap)})

    # Reads

    def get(self, router_id: str) -> Optional[RouterMetrics]:
        return self._state.get(router_id)

    def interfaces(self, router_id: str) -> tuple[InterfaceMetric, ...]:
        state = self._state.get(router_id)
        return state.interfaces if state else ()

    def clients(self, router_id: str) -> tuple[ClientSession, ...]:
        state = self._state.get(router_id)
        return state.clients if state else ()

    def system(self, router_id: str) -> Optional[SystemSnapshot]:
        state = self._state.get(router_id)
        return state.system if state else None

    def aggregate_history(self, router_id: str) -> list[AggregatePoint]:
        """Total traffic of all live interfaces, one point per tick"""
        state = self._state.get(router_id)
        if state is None:
            return []

        totals: dict[datetime, list[float]] = {}
        for iface in state.interfaces:
            for sample in iface.history:
                point = totals.setdefault(sample.timestamp, [0.0, 0.0])
                point[0] += sample.tx_mbps
                point[1] += sample.rx_mbps

        return [
            AggregatePoint(timestamp=ts, tx_mbps=round(tx, 2), rx_mbps=round(rx, 2))
            for ts, (tx, rx) in sorted(totals.items())
        ]

    def tenant_overview(self, configs: Iterable[RouterConfig], states: dict[str, str]) -> list[RouterOverview]:
        """Current totals of each given router; routers never polled show zeros"""
        overview = []
        for config in configs:
            state = self._state.get(config.id)
            interfaces = state.interfaces if state else ()
            system = state.system if state else None
            overview.append(RouterOverview(
                router_id=config.id,
                name=config.name,
                method=config.method,
                state=states.get(config.id, "idle"),
                cpu_load_percent=system.cpu_load_percent if system else None,
                memory_usage_percent=system.memory_usage_percent if system else None,
                interfaces_running=sum(1 for i in interfaces if i.link_status == "running"),
                interfaces_total=len(interfaces),
                clients_active=len(state.clients) if state else 0,
                total_tx_mbps=round(sum(i.current_tx for i in interfaces), 2),
                total_rx_mbps=round(sum(i.current_rx for i in interfaces), 2),
                updated_at=state.updated_at if state else None,
            ))
        return overview


# Singleton instance
_store: Optional[MetricsStore] = None


def get_metrics_store() -> MetricsStore:
    global _store
    if _store is None:
        settings = get_settings()
        _store = MetricsStore(settings.interface_history_size, settings.client_history_size)
    return _store
