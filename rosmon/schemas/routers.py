"""Request/response models for the router API"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from rosmon.schemas.metrics import (
    AggregatePoint,
    ClientSession,
    InterfaceMetric,
    RouterOverview,
    SystemSnapshot,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_method(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    value = str(value).strip().lower()
    if value == "api":
        return "rpc"
    if value not in ("rpc", "rest"):
        raise ValueError("method must be 'rpc' or 'rest'")
    return value


def _normalize_port(value: Union[int, str, None]) -> Optional[int]:
    if value is None or value == "":
        return None
    port = int(value)
    if not 1 <= port <= 65535:
        raise ValueError("port must be between 1 and 65535")
    return port


class RouterUpsert(CamelModel):
    id: Optional[str] = None
    tenant_id: Optional[str] = None
    name: str
    ip: str
    username: Optional[str] = None
    password: Optional[str] = None
    method: Optional[str] = None
    port: Optional[Union[int, str]] = None

    @field_validator("method")
    @classmethod
    def check_method(cls, v):
        return _normalize_method(v)

    @field_validator("port")
    @classmethod
    def check_port(cls, v):
        return _normalize_port(v)


class ConnectionTest(CamelModel):
    ip: str
    port: Optional[Union[int, str]] = None
    username: Optional[str] = None
    password: Optional[str] = None
    method: Optional[str] = None

    @field_validator("method")
    @classmethod
    def check_method(cls, v):
        return _normalize_method(v)

    @field_validator("port")
    @classmethod
    def check_port(cls, v):
        return _normalize_port(v)


class RouterSummary(CamelModel):
    id: str
    name: str
    ip: str
    method: str


class RouterUpsertResponse(CamelModel):
    success: bool = True
    router: RouterSummary


class PollStatusOut(CamelModel):
    state: str
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0


class RouterListItem(CamelModel):
    id: str
    tenant_id: str
    name: str
    ip: str
    port: int
    method: str
    status: PollStatusOut


class StatsResponse(CamelModel):
    sys_stats: SystemSnapshot
    interfaces: list[InterfaceMetric]
    clients: list[ClientSession]


class CachedMetricsResponse(CamelModel):
    sys_stats: Optional[SystemSnapshot] = None
    interfaces: list[InterfaceMetric]
    clients: list[ClientSession]
    updated_at: Optional[datetime] = None
    status: PollStatusOut


class TrafficResponse(CamelModel):
    router_id: str
    points: list[AggregatePoint]


class TenantOverviewResponse(CamelModel):
    tenant_id: str
    routers: list[RouterOverview]


class ConnectionTestResponse(CamelModel):
    success: bool = True
    model: str
    version: str
