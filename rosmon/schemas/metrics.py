"""Unified metrics schema shared by the poller, the store and the API.

All models are frozen: a merge builds new objects instead of editing the
ones a reader may currently hold. JSON field names are camelCase.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


LinkStatus = Literal["running", "link-down", "disabled"]
RateSource = Literal["monitor", "counters"]


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class TrafficSample(FrozenModel):
    timestamp: datetime
    tx_mbps: float
    rx_mbps: float


class InterfaceMetric(FrozenModel):
    id: str
    router_id: str
    name: str
    type: str = "ether"
    mac_address: str = "00:00:00:00:00:00"
    link_status: LinkStatus = "link-down"
    current_tx: float = 0.0
    current_rx: float = 0.0
    # Cumulative byte counters as reported by the device
    tx_bytes: int = 0
    rx_bytes: int = 0
    # 'monitor' when the device reported bits-per-second, 'counters' when the
    # rate has to be derived from byte counter deltas
    rate_source: RateSource = Field(default="counters", exclude=True)
    history: tuple[TrafficSample, ...] = ()


class ClientSession(FrozenModel):
    id: str
    router_id: str
    username: str
    ip_address: str = "unknown"
    uptime: str = "unknown"
    caller_id: str = "N/A"
    service: str = "unknown"
    current_tx: float = 0.0
    current_rx: float = 0.0
    history: tuple[TrafficSample, ...] = ()


class SystemSnapshot(FrozenModel):
    router_id: str
    cpu_load_percent: int = 0
    memory_usage_percent: int = 0
    uptime: str = "unknown"
    board_name: str = "MikroTik"
    version: str = "ROS"


class NormalizedSnapshot(FrozenModel):
    """One poll tick worth of normalized data for a single router"""
    router_id: str
    system: SystemSnapshot
    interfaces: tuple[InterfaceMetric, ...] = ()
    clients: tuple[ClientSession, ...] = ()


class RouterMetrics(FrozenModel):
    """Published state of one router in the metrics store"""
    router_id: str
    system: Optional[SystemSnapshot] = None
    interfaces: tuple[InterfaceMetric, ...] = ()
    clients: tuple[ClientSession, ...] = ()
    updated_at: Optional[datetime] = None
    ticks: int = 0


class AggregatePoint(FrozenModel):
    timestamp: datetime
    tx_mbps: float
    rx_mbps: float


class RouterOverview(FrozenModel):
    router_id: str
    name: str
    method: str
    state: str
    cpu_load_percent: Optional[int] = None
    memory_usage_percent: Optional[int] = None
    interfaces_running: int = 0
    interfaces_total: int = 0
    clients_active: int = 0
    total_tx_mbps: float = 0.0
    total_rx_mbps: float = 0.0
    updated_at: Optional[datetime] = None
