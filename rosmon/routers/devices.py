import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from rosmon.auth import AuthContext, verify_auth
from rosmon.schemas.routers import (
    CachedMetricsResponse,
    ConnectionTest,
    ConnectionTestResponse,
    PollStatusOut,
    RouterListItem,
    RouterSummary,
    RouterUpsert,
    RouterUpsertResponse,
    StatsResponse,
    TrafficResponse,
)
from rosmon.services.adapters import AdapterError
from rosmon.services.metrics_store import MetricsStore, get_metrics_store
from rosmon.services.poller import PollStatus, PollerManager, get_poller_manager
from rosmon.services.registry import ConfigError, RouterConfig, RouterRegistry, get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["routers"])

DEFAULT_TENANT = "default"


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={**extra, "error": message})


def status_out(status: PollStatus) -> PollStatusOut:
    return PollStatusOut(
        state=status.state.value,
        last_success_at=status.last_success_at,
        last_error=status.last_error,
        consecutive_failures=status.consecutive_failures,
    )


def find_visible(router_id: str, registry: RouterRegistry, auth: AuthContext) -> Optional[RouterConfig]:
    """Router config if it exists and belongs to the caller's tenant"""
    config = registry.find(router_id)
    if config is None or not auth.can_access(config.tenant_id):
        return None
    return config


@router.post("/routers", response_model=RouterUpsertResponse)
async def upsert_router(
    body: RouterUpsert,
    auth: AuthContext = Depends(verify_auth),
    registry: RouterRegistry = Depends(get_registry),
    manager: PollerManager = Depends(get_poller_manager),
):
    router_id = body.id or uuid.uuid4().hex[:12]
    existing = registry.find(router_id)
    if existing is not None and not auth.can_access(existing.tenant_id):
        return error_response(404, "Router not found")

    if auth.is_admin:
        tenant_id = body.tenant_id or (existing.tenant_id if existing else DEFAULT_TENANT)
    else:
        tenant_id = auth.tenant_id

    # Credentials left out of an update keep their stored values
    username = body.username or (existing.username if existing else None)
    password = body.password if body.password is not None else (existing.password if existing else None)

    try:
        config = RouterConfig.build(
            id=router_id,
            tenant_id=tenant_id,
            name=body.name,
            host=body.ip,
            username=username,
            password=password,
            method=body.method,
            port=body.port,
        )
    except ConfigError as e:
        return error_response(400, e.message, success=False)

    await registry.upsert(config)
    manager.ensure(config.id)

    return RouterUpsertResponse(
        router=RouterSummary(id=config.id, name=config.name, ip=config.host, method=config.method)
    )


@router.get("/routers", response_model=list[RouterListItem])
async def list_routers(
    auth: AuthContext = Depends(verify_auth),
    registry: RouterRegistry = Depends(get_registry),
    manager: PollerManager = Depends(get_poller_manager),
):
    configs = registry.list(None if auth.is_admin else auth.tenant_id)
    return [
        RouterListItem(
            id=c.id,
            tenant_id=c.tenant_id,
            name=c.name,
            ip=c.host,
            port=c.port,
            method=c.method,
            status=status_out(manager.status(c.id)),
        )
        for c in configs
    ]


@router.delete("/routers/{router_id}")
async def delete_router(
    router_id: str,
    auth: AuthContext = Depends(verify_auth),
    registry: RouterRegistry = Depends(get_registry),
    manager: PollerManager = Depends(get_poller_manager),
):
    if find_visible(router_id, registry, auth) is None:
        return error_response(404, "Router not found")

    # Unregister first so no poll can reopen the router meanwhile
    try:
        await registry.remove(router_id)
    except ConfigError:
        return error_response(404, "Router not found")
    await manager.remove(router_id)
    return {"success": True}


@router.get("/routers/{router_id}/stats", response_model=StatsResponse)
async def get_live_stats(
    router_id: str,
    auth: AuthContext = Depends(verify_auth),
    registry: RouterRegistry = Depends(get_registry),
    manager: PollerManager = Depends(get_poller_manager),
):
    """Poll the router now and return the unified metrics"""
    if find_visible(router_id, registry, auth) is None:
        return error_response(404, "Router not found")

    try:
        state = await manager.poll(router_id)
    except ConfigError:
        return error_response(404, "Router not found")
    except AdapterError as e:
        logger.info(f"Stats fetch failed for {router_id}: {e.message}")
        return error_response(500, e.message)

    return StatsResponse(
        sys_stats=state.system,
        interfaces=list(state.interfaces),
        clients=list(state.clients),
    )


@router.get("/routers/{router_id}/metrics", response_model=CachedMetricsResponse)
async def get_cached_metrics(
    router_id: str,
    auth: AuthContext = Depends(verify_auth),
    registry: RouterRegistry = Depends(get_registry),
    store: MetricsStore = Depends(get_metrics_store),
    manager: PollerManager = Depends(get_poller_manager),
):
    """Latest polled state without contacting the router"""
    if find_visible(router_id, registry, auth) is None:
        return error_response(404, "Router not found")

    state = store.get(router_id)
    return CachedMetricsResponse(
        sys_stats=state.system if state else None,
        interfaces=list(state.interfaces) if state else [],
        clients=list(state.clients) if state else [],
        updated_at=state.updated_at if state else None,
        status=status_out(manager.status(router_id)),
    )


@router.get("/routers/{router_id}/traffic", response_model=TrafficResponse)
async def get_traffic(
    router_id: str,
    auth: AuthContext = Depends(verify_auth),
    registry: RouterRegistry = Depends(get_registry),
    store: MetricsStore = Depends(get_metrics_store),
):
    """Total traffic across the router's interfaces, one point per poll"""
    if find_visible(router_id, registry, auth) is None:
        return error_response(404, "Router not found")
    return TrafficResponse(router_id=router_id, points=store.aggregate_history(router_id))


@router.post("/test-connection", response_model=ConnectionTestResponse)
async def test_connection(
    body: ConnectionTest,
    _: AuthContext = Depends(verify_auth),
    manager: PollerManager = Depends(get_poller_manager),
):
    """Fetch the system resource once without registering anything"""
    try:
        config = RouterConfig.build(
            id="test",
            tenant_id="test",
            name="Test",
            host=body.ip,
            username=body.username,
            password=body.password,
            method=body.method,
            port=body.port,
        )
        system = await manager.probe(config)
    except (AdapterError, ConfigError) as e:
        return error_response(400, e.message, success=False)

    return ConnectionTestResponse(model=system.board_name, version=system.version)
