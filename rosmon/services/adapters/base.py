"""
Common contract for RouterOS protocol adapters.

An adapter knows how to fetch three things from one device: the interface
list, the system resource record and the active PPP sessions. Raw records are
returned as plain dicts with RouterOS field names ('mac-address', 'cpu-load',
...); turning them into the unified schema is the normalizer's job.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from rosmon.services.registry import RouterConfig


class AdapterError(Exception):
    """Base exception for adapter failures. Carries the underlying cause."""

    kind = "adapter"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class ConnectivityError(AdapterError):
    """Host unreachable, connection refused or timed out"""
    kind = "connectivity"


class AuthError(AdapterError):
    """Credentials rejected by the device"""
    kind = "auth"


class ProtocolError(AdapterError):
    """Malformed or unexpected response"""
    kind = "protocol"


@dataclass(frozen=True)
class RawShape:
    """A response payload with its shape resolved.

    kind:
        'array'   - bare JSON array / list of records
        'wrapped' - object carrying the records under 'items' or 'data'
        'record'  - a single bare object
        'empty'   - null / no content
    """
    kind: Literal["array", "wrapped", "record", "empty"]
    items: tuple[dict, ...] = ()

    def records(self) -> list[dict]:
        return list(self.items)

    def first(self) -> dict:
        return dict(self.items[0]) if self.items else {}


WRAPPER_KEYS = ("items", "data")


def parse_shape(payload: Any) -> RawShape:
    """Resolve the shape of a raw response payload once, at the boundary."""
    if payload is None:
        return RawShape("empty")

    if isinstance(payload, (list, tuple)):
        return RawShape("array", _records(payload))

    if isinstance(payload, dict):
        for key in WRAPPER_KEYS:
            if isinstance(payload.get(key), list):
                return RawShape("wrapped", _records(payload[key]))
        return RawShape("record", (payload,))

    raise ProtocolError(f"Unexpected response type: {type(payload).__name__}")


def _records(values) -> tuple[dict, ...]:
    bad = [v for v in values if not isinstance(v, dict)]
    if bad:
        raise ProtocolError(f"Unexpected record type in response: {type(bad[0]).__name__}")
    return tuple(values)


@dataclass
class RawSnapshot:
    """Raw data of one poll tick for one router"""
    interfaces: list[dict] = field(default_factory=list)
    resource: dict = field(default_factory=dict)
    sessions: list[dict] = field(default_factory=list)
    # Sub-fetches that failed and were replaced by defaults
    failed: dict[str, str] = field(default_factory=dict)


class RouterAdapter(ABC):
    """Protocol adapter for one family of RouterOS management APIs"""

    method: str = ""
    # Network round trips in one fetch_snapshot, used to bound a whole tick
    queries_per_tick: int = 1

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    @property
    def tick_timeout(self) -> float:
        return self.timeout * self.queries_per_tick

    @abstractmethod
    async def fetch_interfaces(self, config: RouterConfig) -> list[dict]:
        ...

    @abstractmethod
    async def fetch_system_resource(self, config: RouterConfig) -> dict:
        ...

    @abstractmethod
    async def fetch_active_sessions(self, config: RouterConfig) -> list[dict]:
        ...

    @abstractmethod
    async def fetch_snapshot(self, config: RouterConfig) -> RawSnapshot:
        """Fetch everything needed for one poll tick"""
        ...
