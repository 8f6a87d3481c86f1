"""Client and wire types for the per-node management API."""

from operator_cassandra.mgmt.client import NodeMgmtClient
from operator_cassandra.mgmt.types import EndpointState, MetadataEndpointsResponse

__all__ = [
    "EndpointState",
    "MetadataEndpointsResponse",
    "NodeMgmtClient",
]
