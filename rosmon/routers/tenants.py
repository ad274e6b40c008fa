from fastapi import APIRouter, Depends

from rosmon.auth import AuthContext, verify_auth
from rosmon.routers.devices import error_response
from rosmon.schemas.routers import TenantOverviewResponse
from rosmon.services.metrics_store import MetricsStore, get_metrics_store
from rosmon.services.poller import PollerManager, get_poller_manager
from rosmon.services.registry import RouterRegistry, get_registry

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


@router.get("/{tenant_id}/overview", response_model=TenantOverviewResponse)
async def get_tenant_overview(
    tenant_id: str,
    auth: AuthContext = Depends(verify_auth),
    registry: RouterRegistry = Depends(get_registry),
    store: MetricsStore = Depends(get_metrics_store),
    manager: PollerManager = Depends(get_poller_manager),
):
    if not auth.can_access(tenant_id):
        return error_response(403, "Access denied")

    configs = registry.list(tenant_id)
    states = {}
    for config in configs:
        status = manager.status(config.id)
        states[config.id] = "failed" if status.consecutive_failures else status.state.value

    return TenantOverviewResponse(
        tenant_id=tenant_id,
        routers=store.tenant_overview(configs, states),
    )
