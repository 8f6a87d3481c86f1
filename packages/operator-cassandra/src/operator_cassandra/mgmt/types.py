"""
Pydantic response types for the per-node management API.

These are wire types for external data validation. The management API uses
upper-case keys and reports every value as a string, including booleans and
byte counts, so the models carry aliases and small parsing helpers.

Example response from GET /api/v0/metadata/endpoints:
{
    "entity": [
        {
            "HOST_ID": "0cd7a6b4-...",
            "IS_ALIVE": "true",
            "NATIVE_TRANSPORT_ADDRESS": "10.0.0.12",
            "RPC_ADDRESS": "10.0.0.12",
            "STATUS": "NORMAL,-9223372036854775808",
            "LOAD": "101234.0"
        }
    ]
}
"""

from pydantic import BaseModel, ConfigDict, Field


class EndpointState(BaseModel):
    """
    Gossip state for one known database node.

    STATUS begins with "LEAVING" while a decommission streams data away and
    with "LEFT" once the node has left the ring.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    host_id: str = Field(default="", alias="HOST_ID")
    is_alive: str = Field(default="", alias="IS_ALIVE")
    native_transport_address: str = Field(default="", alias="NATIVE_TRANSPORT_ADDRESS")
    rpc_address: str = Field(default="", alias="RPC_ADDRESS")
    status: str = Field(default="", alias="STATUS")
    load: str = Field(default="", alias="LOAD")

    @property
    def address(self) -> str:
        """Client address of the node; native transport wins over rpc."""
        return self.native_transport_address or self.rpc_address

    def is_leaving(self) -> bool:
        return self.status.startswith("LEAVING")

    def has_left(self) -> bool:
        return self.status.startswith("LEFT")

    def load_bytes(self) -> float:
        """
        Bytes of data stored on the node.

        Raises:
            ValueError: If LOAD is not a number.
        """
        return float(self.load)


class MetadataEndpointsResponse(BaseModel):
    """Response from GET /api/v0/metadata/endpoints."""

    entity: list[EndpointState] = Field(default_factory=list)

    def find_by_address(self, address: str) -> EndpointState | None:
        for endpoint in self.entity:
            if endpoint.address == address:
                return endpoint
        return None
