"""
RouterOS 7 REST adapter.

Every endpoint is a plain GET on {scheme}://{host}:{port}/rest/{endpoint}
with basic auth. Devices ship self-signed certificates, so TLS verification
is disabled for this boundary.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

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
from rosmon.services.registry import RouterConfig

logger = logging.getLogger(__name__)

INTERFACES_ENDPOINT = "interface"
RESOURCE_ENDPOINT = "system/resource"
SESSIONS_ENDPOINT = "ppp/active"


class RestAdapter(RouterAdapter):
    """Stateless HTTP client for the RouterOS REST API"""

    method = "rest"

    def __init__(self, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(timeout)
        self._transport = transport

    def _client(self, config: RouterConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=config.rest_base_url,
            auth=(config.username, config.password),
            verify=False,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get(self, client: httpx.AsyncClient, endpoint: str) -> RawShape:
        """GET one endpoint and resolve the payload shape"""
        try:
            response = await client.get(f"/{endpoint}")
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"Timeout fetching {endpoint}", e) from e
        except httpx.ConnectError as e:
            error_str = str(e).lower()
            if "ssl" in error_str or "certificate" in error_str:
                raise ConnectivityError(f"SSL error fetching {endpoint}: {str(e)[:100]}", e) from e
            raise ConnectivityError(f"Connection refused fetching {endpoint}: {str(e)[:100]}", e) from e
        except httpx.HTTPError as e:
            raise ConnectivityError(f"Failed to fetch {endpoint}: {str(e)[:100]}", e) from e

        if response.status_code in (401, 403):
            raise AuthError(f"Authentication failed (HTTP {response.status_code})")
        if response.status_code != 200:
            raise ProtocolError(f"Failed to fetch {endpoint}: HTTP {response.status_code}")

        try:
            payload: Any = response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON from {endpoint}", e) from e

        return parse_shape(payload)

    async def _fetch(self, config: RouterConfig, endpoint: str) -> RawShape:
        async with self._client(config) as client:
            return await self._get(client, endpoint)

    async def fetch_interfaces(self, config: RouterConfig) -> list[dict]:
        return (await self._fetch(config, INTERFACES_ENDPOINT)).records()

    async def fetch_system_resource(self, config: RouterConfig) -> dict:
        return (await self._fetch(config, RESOURCE_ENDPOINT)).first()

    async def fetch_active_sessions(self, config: RouterConfig) -> list[dict]:
        return (await self._fetch(config, SESSIONS_ENDPOINT)).records()

    async def fetch_snapshot(self, config: RouterConfig) -> RawSnapshot:
        """Fetch all three endpoints in parallel.

        A failed endpoint leaves its piece empty. When every endpoint fails
        the first error is raised so the tick is skipped.
        """
        endpoints = (INTERFACES_ENDPOINT, RESOURCE_ENDPOINT, SESSIONS_ENDPOINT)
        async with self._client(config) as client:
            results = await asyncio.gather(
                *[self._get(client, endpoint) for endpoint in endpoints],
                return_exceptions=True,
            )

        snapshot = RawSnapshot()
        errors: list[AdapterError] = []
        for endpoint, result in zip(endpoints, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                if not isinstance(result, AdapterError):
                    result = ProtocolError(f"Failed to fetch {endpoint}: {result}", result)
                errors.append(result)
                snapshot.failed[endpoint] = result.message
                logger.debug(f"REST {endpoint} failed for {config.name}: {result.message}")
                continue

            if endpoint == INTERFACES_ENDPOINT:
                snapshot.interfaces = result.records()
            elif endpoint == RESOURCE_ENDPOINT:
                snapshot.resource = result.first()
            else:
                snapshot.sessions = result.records()

        if len(errors) == len(endpoints):
            raise errors[0]

        return snapshot
