"""
Raw RouterOS records -> unified metrics schema.

The two protocols disagree on value types: the binary API (through
librouteros) hands out ints and bools, the REST API hands out strings for
everything. All helpers here accept both.

Ids are positional ({router}-if-{index}, {router}-ppp-{index}) and only meant
for display. History is merged by natural key (interface name, PPP username)
so a reordered device list never moves history between entities.
"""

import logging
import math
from typing import Any, Iterable, Optional

from rosmon.schemas.metrics import (
    ClientSession,
    InterfaceMetric,
    NormalizedSnapshot,
    SystemSnapshot,
)
from rosmon.services.adapters.base import RawSnapshot

logger = logging.getLogger(__name__)

ZERO_MAC = "00:00:00:00:00:00"
BITS_PER_MBIT = 1_000_000
MIN_RATE_INTERVAL = 0.5  # seconds

TRUE_VALUES = ("true", "yes")


def is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUE_VALUES
    return False


def to_number(value: Any) -> float:
    """Parse a counter/gauge value; anything unparseable counts as zero"""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def to_int(value: Any) -> int:
    """Parse a counter; integers stay exact past 2**53"""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    return int(to_number(value))


def to_mbps(bits_per_second: Any) -> float:
    return round(to_number(bits_per_second) / BITS_PER_MBIT, 2)


def first_of(raw: dict, *keys: str, default: Any = None) -> Any:
    """First present, non-empty value among alternative field spellings"""
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return default


def link_status(raw: dict) -> str:
    if is_truthy(raw.get("running")):
        return "running"
    if is_truthy(raw.get("disabled")):
        return "disabled"
    return "link-down"


def normalize_interface(router_id: str, raw: dict, index: int) -> InterfaceMetric:
    has_rates = "tx-bits-per-second" in raw or "rx-bits-per-second" in raw
    return InterfaceMetric(
        id=f"{router_id}-if-{index}",
        router_id=router_id,
        name=str(first_of(raw, "name", default=f"if-{index}")),
        type=str(first_of(raw, "type", default="ether")),
        mac_address=str(first_of(raw, "mac-address", "mac_address", default=ZERO_MAC)),
        link_status=link_status(raw),
        current_tx=to_mbps(raw.get("tx-bits-per-second")),
        current_rx=to_mbps(raw.get("rx-bits-per-second")),
        tx_bytes=to_int(first_of(raw, "tx-byte", "tx_byte")),
        rx_bytes=to_int(first_of(raw, "rx-byte", "rx_byte")),
        rate_source="monitor" if has_rates else "counters",
    )


def normalize_session(router_id: str, raw: dict, index: int) -> ClientSession:
    return ClientSession(
        id=f"{router_id}-ppp-{index}",
        router_id=router_id,
        username=str(first_of(raw, "name", "user", default=f"ppp-{index}")),
        ip_address=str(first_of(raw, "address", default="unknown")),
        uptime=str(first_of(raw, "uptime", default="unknown")),
        caller_id=str(first_of(raw, "caller-id", "caller_id", default="N/A")),
        service=str(first_of(raw, "service", default="unknown")),
    )


def normalize_system(router_id: str, raw: dict) -> SystemSnapshot:
    total = to_number(first_of(raw, "total-memory", "total_memory"))
    free = to_number(first_of(raw, "free-memory", "free_memory"))
    memory_usage = math.floor((total - free) / total * 100) if total and free else 0

    return SystemSnapshot(
        router_id=router_id,
        cpu_load_percent=to_int(first_of(raw, "cpu-load", "cpu_load")),
        memory_usage_percent=max(0, min(100, memory_usage)),
        uptime=str(first_of(raw, "uptime", default="unknown")),
        board_name=str(first_of(raw, "board-name", "board_name", "boardName", default="MikroTik")),
        version=str(first_of(raw, "version", default="ROS")),
    )


def _unique(entities: Iterable, key: str, router_id: str, kind: str) -> tuple:
    """Keep the first entity per natural key"""
    seen: set[str] = set()
    result = []
    for entity in entities:
        value = getattr(entity, key)
        if value in seen:
            logger.debug(f"Duplicate {kind} '{value}' on router {router_id} ignored")
            continue
        seen.add(value)
        result.append(entity)
    return tuple(result)


def normalize_snapshot(router_id: str, raw: RawSnapshot) -> NormalizedSnapshot:
    interfaces = [normalize_interface(router_id, r, i) for i, r in enumerate(raw.interfaces)]
    clients = [normalize_session(router_id, r, i) for i, r in enumerate(raw.sessions)]
    return NormalizedSnapshot(
        router_id=router_id,
        system=normalize_system(router_id, raw.resource),
        interfaces=_unique(interfaces, "name", router_id, "interface"),
        clients=_unique(clients, "username", router_id, "client"),
    )


def derive_rate(current_bytes: int, previous_bytes: int, seconds: float) -> float:
    """Mbps from two cumulative byte counters"""
    if seconds < MIN_RATE_INTERVAL:
        return 0.0
    delta = current_bytes - previous_bytes
    if delta < 0:  # counter reset
        return 0.0
    return round(delta * 8 / seconds / BITS_PER_MBIT, 2)


def resolve_rates(
    current: InterfaceMetric,
    previous: Optional[InterfaceMetric],
    seconds: float,
) -> InterfaceMetric:
    """Fill in counter-derived rates for interfaces without a monitor reading"""
    if current.rate_source == "monitor":
        return current
    if previous is None:
        return current.model_copy(update={"current_tx": 0.0, "current_rx": 0.0})
    return current.model_copy(update={
        "current_tx": derive_rate(current.tx_bytes, previous.tx_bytes, seconds),
        "current_rx": derive_rate(current.rx_bytes, previous.rx_bytes, seconds),
    })


def session_interface_names(client: ClientSession) -> list[str]:
    """Names RouterOS gives the dynamic interface of a PPP session"""
    names = []
    if client.service not in ("", "unknown"):
        names.append(f"<{client.service}-{client.username}>")
    names.append(f"<pppoe-{client.username}>")
    return names


def attach_client_rates(
    clients: Iterable[ClientSession],
    interfaces: Iterable[InterfaceMetric],
) -> tuple[ClientSession, ...]:
    """Take each session's rate from its dynamic PPP interface, if listed"""
    by_name = {i.name: i for i in interfaces}
    result = []
    for client in clients:
        iface = next((by_name[n] for n in session_interface_names(client) if n in by_name), None)
        if iface is not None:
            client = client.model_copy(update={
                "current_tx": iface.current_tx,
                "current_rx": iface.current_rx,
            })
        result.append(client)
    return tuple(result)
