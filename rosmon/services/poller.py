"""
Per-router polling.

Every registered router gets its own RouterPoller running in its own asyncio
task, so a slow or unreachable device never delays the others. A tick reads
the router config once, fetches a raw snapshot through the adapter for the
router's method, normalizes it and merges it into the metrics store.
A failed tick leaves the store untouched.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from rosmon.config import get_settings
from rosmon.schemas.metrics import RouterMetrics, SystemSnapshot
from rosmon.services.adapters import AdapterError, ConnectivityError, RouterAdapter, get_adapter
from rosmon.services.metrics_store import MetricsStore, get_metrics_store
from rosmon.services.normalizer import normalize_snapshot, normalize_system
from rosmon.services.registry import ConfigError, RouterConfig, RouterRegistry, get_registry

logger = logging.getLogger(__name__)

# Default intervals (seconds). An RPC tick is four full login cycles.
DEFAULT_RPC_INTERVAL = 10.0
DEFAULT_REST_INTERVAL = 5.0
DEFAULT_TIMEOUT = 5.0

AdapterFactory = Callable[[str, float], RouterAdapter]


class PollState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    FAILED = "failed"


@dataclass
class PollStatus:
    """Outcome of the latest ticks of one router (informational only)"""
    state: PollState = PollState.IDLE
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0


class RouterPoller:
    """Scheduling unit for a single router"""

    def __init__(
        self,
        router_id: str,
        registry: RouterRegistry,
        store: MetricsStore,
        adapter_factory: AdapterFactory = get_adapter,
        timeout: float = DEFAULT_TIMEOUT,
        intervals: Optional[dict[str, float]] = None,
    ):
        self.router_id = router_id
        self.registry = registry
        self.store = store
        self.adapter_factory = adapter_factory
        self.timeout = timeout
        self.intervals = intervals or {"rpc": DEFAULT_RPC_INTERVAL, "rest": DEFAULT_REST_INTERVAL}
        self.status = PollStatus()
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> float:
        config = self.registry.find(self.router_id)
        method = config.method if config else "rpc"
        return self.intervals.get(method, DEFAULT_RPC_INTERVAL)

    async def poll_once(self) -> RouterMetrics:
        """Run one tick, or join the tick already in flight for this router.

        Raises AdapterError / ConfigError to the caller; the store is only
        written when the whole fetch succeeded. A tick cut short by stop()
        surfaces as ConfigError.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._tick())
        try:
            return await asyncio.shield(self._inflight)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise ConfigError("Polling stopped", self.router_id)

    async def _tick(self) -> RouterMetrics:
        # Read once: config updates apply from the next tick
        config = self.registry.get(self.router_id)
        adapter = self.adapter_factory(config.method, self.timeout)

        self.status.state = PollState.FETCHING
        try:
            raw = await asyncio.wait_for(adapter.fetch_snapshot(config), timeout=adapter.tick_timeout)
        except asyncio.TimeoutError as e:
            error = ConnectivityError(f"Timed out after {adapter.tick_timeout:.0f}s polling {config.host}", e)
            self._record_failure(config, error)
            raise error from e
        except AdapterError as e:
            self._record_failure(config, e)
            raise
        except asyncio.CancelledError:
            self.status.state = PollState.IDLE
            raise
        except Exception as e:
            self._record_failure(config, e)
            raise

        self.status.state = PollState.MERGING
        try:
            snapshot = normalize_snapshot(config.id, raw)
            state = await self.store.merge(snapshot, datetime.now(timezone.utc))
        finally:
            self.status.state = PollState.IDLE

        if state is None:
            # Deregistered while fetching
            raise ConfigError("Router not found", self.router_id)

        if self.status.consecutive_failures:
            logger.info(f"Router {config.name} ({config.id}) recovered after {self.status.consecutive_failures} failed polls")
        self.status.last_success_at = state.updated_at
        self.status.last_error = None
        self.status.consecutive_failures = 0
        if raw.failed:
            logger.debug(f"Partial poll of {config.name}: {raw.failed}")
        return state

    def _record_failure(self, config: RouterConfig, error: Exception):
        self.status.state = PollState.FAILED
        message = error.message if isinstance(error, AdapterError) else str(error)
        self.status.last_error = message
        self.status.consecutive_failures += 1
        if self.status.consecutive_failures == 1:
            logger.warning(f"Poll failed for {config.name} ({config.id}): {message}")
        else:
            logger.debug(f"Poll failed for {config.name} ({config.id}), {self.status.consecutive_failures} in a row: {message}")
        self.status.state = PollState.IDLE

    async def _run(self):
        """Periodic loop; failures only skip the current tick"""
        while True:
            try:
                await self.poll_once()
            except AdapterError:
                pass
            except ConfigError:
                logger.info(f"Router {self.router_id} is no longer registered, poller exiting")
                return
            except Exception as e:
                logger.error(f"Poll error for {self.router_id}: {e}")

            await asyncio.sleep(self.interval)

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"poller-{self.router_id}")

    async def stop(self):
        for task in [self._task, self._inflight]:
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.debug(f"Poller {self.router_id} stopped with error: {e}")
        self._task = None
        self._inflight = None
        self.status.state = PollState.IDLE


class PollerManager:
    """Owns one RouterPoller per registered router"""

    def __init__(
        self,
        registry: RouterRegistry,
        store: MetricsStore,
        adapter_factory: AdapterFactory = get_adapter,
        timeout: float = DEFAULT_TIMEOUT,
        rpc_interval: float = DEFAULT_RPC_INTERVAL,
        rest_interval: float = DEFAULT_REST_INTERVAL,
    ):
        self.registry = registry
        self.store = store
        self.adapter_factory = adapter_factory
        self.timeout = timeout
        self.intervals = {"rpc": rpc_interval, "rest": rest_interval}
        self._pollers: dict[str, RouterPoller] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start a periodic task for every registered router"""
        if self._running:
            return
        self._running = True
        for config in self.registry.list():
            self.ensure(config.id)
        logger.info(f"Pollers started for {len(self._pollers)} routers "
                    f"(rpc: {self.intervals['rpc']}s, rest: {self.intervals['rest']}s)")

    async def stop(self):
        self._running = False
        for poller in list(self._pollers.values()):
            await poller.stop()
        logger.info("Pollers stopped")

    def ensure(self, router_id: str) -> RouterPoller:
        """Get the poller of a registered router, creating it if needed.

        Periodic polling only starts while the manager is running; on-demand
        polls work either way.
        """
        if router_id not in self.registry:
            raise ConfigError("Router not found", router_id)

        poller = self._pollers.get(router_id)
        if poller is None:
            poller = RouterPoller(
                router_id,
                self.registry,
                self.store,
                adapter_factory=self.adapter_factory,
                timeout=self.timeout,
                intervals=self.intervals,
            )
            self._pollers[router_id] = poller
            self.store.open(router_id)

        if self._running and not poller.running:
            poller.start()
        return poller

    async def remove(self, router_id: str):
        """Stop polling a router and drop its metrics"""
        poller = self._pollers.pop(router_id, None)
        if poller is not None:
            await poller.stop()
        await self.store.close(router_id)

    async def poll(self, router_id: str) -> RouterMetrics:
        """On-demand poll through the router's own poller"""
        return await self.ensure(router_id).poll_once()

    def status(self, router_id: str) -> PollStatus:
        poller = self._pollers.get(router_id)
        return poller.status if poller else PollStatus()

    async def probe(self, config: RouterConfig) -> SystemSnapshot:
        """Single resource fetch to validate reachability and credentials"""
        adapter = self.adapter_factory(config.method, self.timeout)
        try:
            raw = await asyncio.wait_for(adapter.fetch_system_resource(config), timeout=adapter.timeout)
        except asyncio.TimeoutError as e:
            raise ConnectivityError(f"Timed out connecting to {config.host}:{config.port}", e) from e
        return normalize_system(config.id, raw)


# Singleton instance
_manager: Optional[PollerManager] = None


def get_poller_manager() -> PollerManager:
    """Get or create the poller manager"""
    global _manager
    if _manager is None:
        settings = get_settings()
        _manager = PollerManager(
            get_registry(),
            get_metrics_store(),
            timeout=settings.adapter_timeout,
            rpc_interval=settings.rpc_poll_interval,
            rest_interval=settings.rest_poll_interval,
        )
    return _manager


async def start_pollers():
    manager = get_poller_manager()
    await manager.start()


async def stop_pollers():
    manager = get_poller_manager()
    await manager.stop()
