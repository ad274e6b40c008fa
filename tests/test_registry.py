import asyncio

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from conftest import make_config
from rosmon.database import Base
from rosmon.services.registry import ConfigError, RouterConfig, RouterRegistry


class TestRouterConfig:

    def test_defaults(self):
        config = RouterConfig.build(id="r1", tenant_id="t1", name="", host="10.0.0.1")
        assert config.method == "rpc"
        assert config.port == 8728
        assert config.username == "admin"
        assert config.password == ""
        assert config.name == "10.0.0.1"
        assert not config.use_tls

    def test_rest_defaults(self):
        config = make_config(method="rest")
        assert config.port == 80
        assert config.rest_base_url == "http://10.0.0.1:80/rest"

    def test_tls(self):
        assert make_config(method="rpc", port=8729).use_tls
        assert not make_config(method="rest", port=8729).use_tls
        assert make_config(method="rest", port=443).rest_base_url == "https://10.0.0.1:443/rest"

    def test_invalid(self):
        with pytest.raises(ConfigError):
            make_config(method="snmp")
        with pytest.raises(ConfigError):
            make_config(host="")


class TestMemoryRegistry:

    def test_upsert_and_get(self, registry):
        assert asyncio.run(registry.upsert(make_config())) is True
        assert asyncio.run(registry.upsert(make_config(name="Core"))) is False
        assert registry.get("r1").name == "Core"
        assert "r1" in registry
        assert len(registry) == 1

    def test_get_unknown(self, registry):
        with pytest.raises(ConfigError) as exc_info:
            registry.get("missing")
        assert exc_info.value.router_id == "missing"
        assert registry.find("missing") is None

    def test_list_by_tenant(self, registry):
        for config in [
            make_config("r3", "t2", name="Edge"),
            make_config("r1", "t1", name="Core"),
            make_config("r2", "t1", name="Access"),
        ]:
            asyncio.run(registry.upsert(config))

        assert [c.id for c in registry.list("t1")] == ["r2", "r1"]
        assert [c.id for c in registry.list()] == ["r2", "r1", "r3"]
        assert registry.list("t9") == []

    def test_remove(self, registry):
        asyncio.run(registry.upsert(make_config()))
        removed = asyncio.run(registry.remove("r1"))
        assert removed.id == "r1"
        assert "r1" not in registry
        with pytest.raises(ConfigError):
            asyncio.run(registry.remove("r1"))

    def test_load_without_database(self, registry):
        assert asyncio.run(registry.load()) == 0


def test_persistence(tmp_path):
    async def run():
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'routers.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)

        registry = RouterRegistry(session_factory)
        await registry.upsert(make_config("r1", method="rpc", password="secret"))
        await registry.upsert(make_config("r2", tenant_id="t2", method="rest"))
        await registry.upsert(make_config("r1", method="rpc", name="Renamed", password="secret"))
        await registry.remove("r2")

        reloaded = RouterRegistry(session_factory)
        count = await reloaded.load()
        await engine.dispose()
        return count, reloaded

    count, reloaded = asyncio.run(run())
    assert count == 1
    config = reloaded.get("r1")
    assert config.name == "Renamed"
    assert config.password == "secret"
    assert config.port == 8728
    assert config.method == "rpc"
