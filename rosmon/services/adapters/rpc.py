"""
RouterOS binary API adapter (ports 8728 / 8729).

Each logical query runs its own session: connect, log in, send one command,
read the whole response, close. librouteros is blocking, so every session
runs in a worker thread.
"""

import asyncio
import logging
import socket
import ssl
from typing import Optional

from librouteros import connect
from librouteros.exceptions import ConnectionClosed, FatalError, LibRouterosError, TrapError

from rosmon.services.adapters.base import (
    AuthError,
    ConnectivityError,
    ProtocolError,
    RawSnapshot,
    RouterAdapter,
    parse_shape,
)
from rosmon.services.registry import RouterConfig

logger = logging.getLogger(__name__)

INTERFACES_COMMAND = ("/interface/print",)
RESOURCE_COMMAND = ("/system/resource/print",)
SESSIONS_COMMAND = ("/ppp/active/print",)


def build_command(path: str, **args) -> tuple[str, ...]:
    """Build an ordered word list: the path followed by =key=value words"""
    words = [path]
    for key, value in args.items():
        if value is True:
            value = ""
        words.append(f"={key}={value}")
    return tuple(words)


def monitor_traffic_command(names: list[str]) -> tuple[str, ...]:
    return build_command("/interface/monitor-traffic", interface=",".join(names), once=True)


def _ssl_wrapper():
    """API-SSL with self-signed device certificates"""
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx.wrap_socket


class RpcAdapter(RouterAdapter):
    """Connection-per-query client for the RouterOS API protocol"""

    method = "rpc"
    queries_per_tick = 4

    def __init__(self, timeout: float = 5.0, connector=None):
        super().__init__(timeout)
        self._connect = connector or connect

    def _open(self, config: RouterConfig):
        kwargs = {
            "host": config.host,
            "username": config.username,
            "password": config.password,
            "port": config.port,
            "timeout": self.timeout,
        }
        if config.use_tls:
            kwargs["ssl_wrapper"] = _ssl_wrapper()

        try:
            return self._connect(**kwargs)
        except TrapError as e:
            # Login is the only command issued by connect()
            raise AuthError(f"Login rejected: {e}", e) from e
        except (socket.timeout, TimeoutError) as e:
            raise ConnectivityError(f"Timeout connecting to {config.host}:{config.port}", e) from e
        except (ConnectionClosed, FatalError) as e:
            raise ConnectivityError(f"Connection closed by {config.host}: {e}", e) from e
        except OSError as e:
            raise ConnectivityError(f"Cannot connect to {config.host}:{config.port}: {e}", e) from e
        except LibRouterosError as e:
            raise ProtocolError(f"API error during login: {e}", e) from e

    def run_command(self, config: RouterConfig, words: tuple[str, ...]) -> list[dict]:
        """One full session for a single command (blocking)"""
        api = self._open(config)
        try:
            return parse_shape(list(api.rawCmd(*words))).records()
        except TrapError as e:
            raise ProtocolError(f"{words[0]} failed: {e}", e) from e
        except (socket.timeout, TimeoutError) as e:
            raise ConnectivityError(f"Timeout waiting for {words[0]}", e) from e
        except (ConnectionClosed, FatalError) as e:
            raise ConnectivityError(f"Connection lost during {words[0]}: {e}", e) from e
        except OSError as e:
            raise ConnectivityError(f"Socket error during {words[0]}: {e}", e) from e
        except LibRouterosError as e:
            raise ProtocolError(f"{words[0]} failed: {e}", e) from e
        finally:
            try:
                api.close()
            except (OSError, LibRouterosError):
                pass

    async def _query(self, config: RouterConfig, words: tuple[str, ...]) -> list[dict]:
        return await asyncio.to_thread(self.run_command, config, words)

    async def fetch_interfaces(self, config: RouterConfig) -> list[dict]:
        return await self._query(config, INTERFACES_COMMAND)

    async def fetch_system_resource(self, config: RouterConfig) -> dict:
        records = await self._query(config, RESOURCE_COMMAND)
        return dict(records[0]) if records else {}

    async def fetch_active_sessions(self, config: RouterConfig) -> list[dict]:
        return await self._query(config, SESSIONS_COMMAND)

    async def fetch_traffic(self, config: RouterConfig, names: list[str]) -> list[dict]:
        if not names:
            return []
        return await self._query(config, monitor_traffic_command(names))

    async def fetch_snapshot(self, config: RouterConfig) -> RawSnapshot:
        """Sequential sessions: interfaces, resource, sessions, traffic monitor.

        The monitor snapshot is optional; without it the interface list is
        returned as is and rates are derived from byte counters later.
        """
        interfaces = await self.fetch_interfaces(config)
        resource = await self.fetch_system_resource(config)
        sessions = await self.fetch_active_sessions(config)
        snapshot = RawSnapshot(interfaces=interfaces, resource=resource, sessions=sessions)

        names = [i["name"] for i in interfaces if i.get("name")]
        try:
            traffic = await self.fetch_traffic(config, names)
        except (AuthError, ConnectivityError, ProtocolError) as e:
            logger.info(f"Traffic monitor failed for {config.name}, falling back to counters: {e.message}")
            snapshot.failed["monitor-traffic"] = e.message
            return snapshot

        snapshot.interfaces = merge_traffic(interfaces, traffic)
        return snapshot


def merge_traffic(interfaces: list[dict], traffic: list[dict]) -> list[dict]:
    """Overlay monitor-traffic records onto interface records by name"""
    by_name: dict[str, dict] = {}
    for record in traffic:
        name: Optional[str] = record.get("name")
        if name and name not in by_name:
            by_name[name] = record

    merged = []
    for iface in interfaces:
        extra = by_name.get(iface.get("name"))
        merged.append({**iface, **extra} if extra else iface)
    return merged
