"""
Router registry.

Holds the connection settings of every registered router, scoped by tenant.
Configs are frozen dataclasses: a poll tick reads one object and keeps it for
the whole tick, so an update made meanwhile only shows up on the next tick.
Writes are serialized by a lock and persisted through SQLAlchemy when the
registry is built with a session factory.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, delete

from rosmon.models import RouterRecord

logger = logging.getLogger(__name__)

RPC_PORT = 8728
RPC_TLS_PORT = 8729
REST_PORT = 80
REST_TLS_PORT = 443

DEFAULT_PORTS = {"rpc": RPC_PORT, "rest": REST_PORT}
METHODS = ("rpc", "rest")


class ConfigError(Exception):
    """Unknown router id or invalid router configuration"""

    def __init__(self, message: str, router_id: Optional[str] = None):
        self.message = message
        self.router_id = router_id
        super().__init__(message)


@dataclass(frozen=True)
class RouterConfig:
    id: str
    tenant_id: str
    name: str
    host: str
    port: int
    username: str = "admin"
    password: str = ""
    method: str = "rpc"

    @classmethod
    def build(
        cls,
        id: str,
        tenant_id: str,
        name: str,
        host: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        method: Optional[str] = None,
        port: Optional[int] = None,
    ) -> "RouterConfig":
        """Create a config applying the registration defaults"""
        method = method or "rpc"
        if method not in METHODS:
            raise ConfigError(f"Unknown method: {method}", id)
        if not host:
            raise ConfigError("Router address is required", id)
        return cls(
            id=id,
            tenant_id=tenant_id,
            name=name or host,
            host=host,
            port=int(port) if port else DEFAULT_PORTS[method],
            username=username or "admin",
            password=password or "",
            method=method,
        )

    @property
    def use_tls(self) -> bool:
        """API-SSL is used only on its well-known port"""
        return self.method == "rpc" and self.port == RPC_TLS_PORT

    @property
    def scheme(self) -> str:
        return "https" if self.port == REST_TLS_PORT else "http"

    @property
    def rest_base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}/rest"


def _to_config(record: RouterRecord) -> RouterConfig:
    return RouterConfig(
        id=record.id,
        tenant_id=record.tenant_id,
        name=record.name,
        host=record.host,
        port=record.port,
        username=record.username,
        password=record.password,
        method=record.method,
    )


class RouterRegistry:
    """Lock-protected registry of router configurations"""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory
        self._routers: dict[str, RouterConfig] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        """Load persisted routers into memory. Returns how many were loaded."""
        if self._session_factory is None:
            return 0

        async with self._lock:
            async with self._session_factory() as db:
                result = await db.execute(select(RouterRecord))
                records = result.scalars().all()
            self._routers = {r.id: _to_config(r) for r in records}

        logger.info(f"Loaded {len(self._routers)} routers from database")
        return len(self._routers)

    async def upsert(self, config: RouterConfig) -> bool:
        """Add or replace a router config. Returns True when it was new."""
        async with self._lock:
            created = config.id not in self._routers
            if self._session_factory is not None:
                await self._persist(config)
            self._routers[config.id] = config

        logger.info(f"Router {'registered' if created else 'updated'}: {config.name} ({config.id}, {config.method})")
        return created

    async def _persist(self, config: RouterConfig):
        async with self._session_factory() as db:
            record = await db.get(RouterRecord, config.id)
            if record is None:
                record = RouterRecord(id=config.id)
                db.add(record)
            record.tenant_id = config.tenant_id
            record.name = config.name
            record.host = config.host
            record.port = config.port
            record.username = config.username
            record.password = config.password
            record.method = config.method
            await db.commit()

    async def remove(self, router_id: str) -> RouterConfig:
        async with self._lock:
            config = self._routers.get(router_id)
            if config is None:
                raise ConfigError("Router not found", router_id)
            if self._session_factory is not None:
                async with self._session_factory() as db:
                    await db.execute(delete(RouterRecord).where(RouterRecord.id == router_id))
                    await db.commit()
            del self._routers[router_id]

        logger.info(f"Router removed: {config.name} ({router_id})")
        return config

    def get(self, router_id: str) -> RouterConfig:
        config = self._routers.get(router_id)
        if config is None:
            raise ConfigError("Router not found", router_id)
        return config

    def find(self, router_id: str) -> Optional[RouterConfig]:
        return self._routers.get(router_id)

    def list(self, tenant_id: Optional[str] = None) -> list[RouterConfig]:
        routers = list(self._routers.values())
        if tenant_id is not None:
            routers = [r for r in routers if r.tenant_id == tenant_id]
        return sorted(routers, key=lambda r: (r.tenant_id, r.name, r.id))

    def __contains__(self, router_id: str) -> bool:
        return router_id in self._routers

    def __len__(self) -> int:
        return len(self._routers)


# Singleton instance
_registry: Optional[RouterRegistry] = None


def get_registry() -> RouterRegistry:
    """Get or create the persistent router registry"""
    global _registry
    if _registry is None:
        from rosmon.database import async_session
        _registry = RouterRegistry(async_session)
    return _registry
