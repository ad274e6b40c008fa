"""Protocol adapters selected by the router's configured method"""

from rosmon.services.adapters.base import (
    AdapterError,
    AuthError,
    ConnectivityError,
    ProtocolError,
    RawShape,
    RawSnapshot,
    RouterAdapter,
    parse_shape,
)
from rosmon.services.adapters.rest import RestAdapter
from rosmon.services.adapters.rpc import RpcAdapter
from rosmon.services.registry import ConfigError

ADAPTERS = {
    "rpc": RpcAdapter,
    "rest": RestAdapter,
}


def get_adapter(method: str, timeout: float = 5.0) -> RouterAdapter:
    """Build the adapter for a router method ('rpc' or 'rest')"""
    try:
        adapter_cls = ADAPTERS[method]
    except KeyError:
        raise ConfigError(f"Unknown method: {method}")
    return adapter_cls(timeout=timeout)


__all__ = [
    "AdapterError",
    "AuthError",
    "ConnectivityError",
    "ProtocolError",
    "RawShape",
    "RawSnapshot",
    "RouterAdapter",
    "RestAdapter",
    "RpcAdapter",
    "get_adapter",
    "parse_shape",
]
