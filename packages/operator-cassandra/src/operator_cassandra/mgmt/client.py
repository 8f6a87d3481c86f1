"""
Management API client for per-node database operations.

Every database node runs a management sidecar reachable on the node-instance
IP. NodeMgmtClient receives an injected httpx.AsyncClient and builds the URL
from the node-instance on each call, since there is no single base URL.

All methods are async. Transport and status failures are raised as
ManagementApiError carrying the node name; callers decide whether a failure
is tolerable (decommission) or fatal (everything else).
"""

import logging
from dataclasses import dataclass

import httpx
import pydantic

from operator_cassandra.config import settings
from operator_cassandra.errors import ManagementApiError
from operator_cassandra.mgmt.types import EndpointState, MetadataEndpointsResponse
from operator_cassandra.types import NodeInstance

logger = logging.getLogger(__name__)

ENDPOINTS_PATH = "/api/v0/metadata/endpoints"
DECOMMISSION_PATH = "/api/v0/ops/node/decommission"
DRAIN_PATH = "/api/v0/ops/node/drain"
KEYSPACE_CLEANUP_PATH = "/api/v0/ops/keyspace/cleanup"

KEYSPACE_CLEANUP_TIMEOUT_SECONDS = 20.0


@dataclass
class NodeMgmtClient:
    """
    Management API client with injected httpx client.

    Attributes:
        http: Pre-configured httpx.AsyncClient (TLS, auth headers).
        scheme: "http" or "https".
        port: Management API port on every node-instance.
        timeout: Default per-call timeout in seconds.
        drain_timeout: Timeout for drain, which flushes memtables to disk.

    Example:
        async with httpx.AsyncClient() as http:
            client = NodeMgmtClient(http=http)
            endpoints = await client.get_endpoints(node)
            for ep in endpoints:
                print(f"{ep.host_id} at {ep.address}: {ep.status}")
    """

    http: httpx.AsyncClient
    scheme: str = settings.mgmt_api_scheme
    port: int = settings.mgmt_api_port
    timeout: float = settings.mgmt_api_timeout_seconds
    drain_timeout: float = settings.mgmt_api_drain_timeout_seconds

    async def get_endpoints(self, node: NodeInstance) -> list[EndpointState]:
        """
        Get gossip state for every node known to `node`.

        Calls GET /api/v0/metadata/endpoints.

        Returns:
            One EndpointState per known database node.

        Raises:
            ManagementApiError: On transport, HTTP or response parsing errors.
        """
        logger.debug(f"requesting metadata endpoints from {node.name}")
        response = await self._call(node, "GET", ENDPOINTS_PATH, self.timeout)
        try:
            data = MetadataEndpointsResponse.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            raise ManagementApiError(node.name, ENDPOINTS_PATH, str(e)) from e
        return data.entity

    async def decommission(self, node: NodeInstance) -> None:
        """Ask `node` to stream its data to its peers and leave the ring."""
        logger.info(f"calling decommission on {node.name}")
        await self._call(node, "POST", DECOMMISSION_PATH, self.timeout)

    async def drain(self, node: NodeInstance) -> None:
        """Flush memtables and stop accepting writes on `node`."""
        logger.info(f"calling drain on {node.name}")
        await self._call(node, "POST", DRAIN_PATH, self.drain_timeout)

    async def keyspace_cleanup(
        self,
        node: NodeInstance,
        keyspace: str = "",
        tables: list[str] | None = None,
        jobs: int = -1,
    ) -> None:
        """
        Drop data `node` no longer owns after a topology change.

        Args:
            node: Node-instance to clean up.
            keyspace: Restrict to one keyspace; "" means all.
            tables: Restrict to these tables within the keyspace.
            jobs: Concurrent compaction jobs; -1 leaves the server default.
        """
        body: dict = {}
        if jobs > -1:
            body["jobs"] = str(jobs)
        if keyspace:
            body["keyspace_name"] = keyspace
        if tables:
            body["tables"] = tables

        logger.info(f"calling keyspace cleanup on {node.name}")
        await self._call(
            node, "POST", KEYSPACE_CLEANUP_PATH, KEYSPACE_CLEANUP_TIMEOUT_SECONDS, json=body
        )

    def url_for(self, node: NodeInstance, path: str) -> str:
        if not node.ip:
            raise ManagementApiError(node.name, path, "node-instance has no IP")
        return f"{self.scheme}://{node.ip}:{self.port}{path}"

    async def _call(
        self,
        node: NodeInstance,
        method: str,
        path: str,
        timeout: float,
        json: dict | None = None,
    ) -> httpx.Response:
        url = self.url_for(node, path)
        try:
            response = await self.http.request(method, url, json=json, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ManagementApiError(
                node.name, path, f"status code {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ManagementApiError(node.name, path, str(e) or type(e).__name__) from e
        return response
