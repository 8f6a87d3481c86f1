"""
Interfaces the reconcile engine needs from its collaborators.

The engine never talks to a concrete orchestration client, management API
transport or template renderer. It is handed implementations of these
protocols, which keeps every coordinator testable against in-memory fakes.

- OrchestrationClient: CRUD over the cluster resource and its child objects
- ManagementApi: per-node database operations (NodeMgmtClient implements it)
- WorkloadFactory: renders the workload for a rack (template rendering is external)
- EventRecorder: user-visible event trail
- EMMCapability: the narrow view of the datacenter the EMM and volume health
  checks decide over
"""

from typing import Protocol, runtime_checkable

from operator_cassandra.events import EventReason
from operator_cassandra.mgmt.types import EndpointState
from operator_cassandra.types import (
    CassandraCluster,
    DisruptionBudget,
    Host,
    NodeInstance,
    VolumeClaim,
    Workload,
)


@runtime_checkable
class OrchestrationClient(Protocol):
    """
    Protocol for the orchestration API.

    Get methods raise NotFoundError when the object does not exist; that is a
    normal state for child objects the engine has not created yet. Writes to
    child objects are plain conditional writes. Cluster status writes are
    optimistic: they carry the resource version the caller last observed and
    raise ConflictError when another writer got there first.
    """

    async def get_cluster(self, namespace: str, name: str) -> CassandraCluster:
        ...

    async def patch_cluster_status(self, cluster: CassandraCluster) -> CassandraCluster:
        """
        Write cluster.status if cluster.resource_version is still current.

        Returns:
            The stored cluster with its new resource version.

        Raises:
            ConflictError: If the stored resource version differs.
        """
        ...

    async def patch_cluster_spec(self, cluster: CassandraCluster) -> CassandraCluster:
        ...

    async def get_workload(self, namespace: str, name: str) -> Workload:
        ...

    async def list_workloads(self, namespace: str, labels: dict[str, str]) -> list[Workload]:
        ...

    async def create_workload(self, workload: Workload) -> None:
        ...

    async def update_workload(self, workload: Workload) -> None:
        ...

    async def list_node_instances(
        self, namespace: str, labels: dict[str, str]
    ) -> list[NodeInstance]:
        ...

    async def update_node_instance(self, node: NodeInstance) -> None:
        ...

    async def delete_node_instance(self, namespace: str, name: str) -> None:
        ...

    async def get_volume_claim(self, namespace: str, name: str) -> VolumeClaim:
        ...

    async def update_volume_claim(self, claim: VolumeClaim) -> None:
        ...

    async def delete_volume_claim(self, namespace: str, name: str) -> None:
        ...

    async def list_hosts(self) -> list[Host]:
        ...

    async def get_disruption_budget(self, namespace: str, name: str) -> DisruptionBudget:
        ...

    async def create_disruption_budget(self, budget: DisruptionBudget) -> None:
        ...

    async def delete_disruption_budget(self, namespace: str, name: str) -> None:
        ...


@runtime_checkable
class ManagementApi(Protocol):
    """Protocol for per-node database management operations."""

    async def get_endpoints(self, node: NodeInstance) -> list[EndpointState]:
        ...

    async def decommission(self, node: NodeInstance) -> None:
        ...

    async def drain(self, node: NodeInstance) -> None:
        ...

    async def keyspace_cleanup(
        self,
        node: NodeInstance,
        keyspace: str = "",
        tables: list[str] | None = None,
        jobs: int = -1,
    ) -> None:
        ...


@runtime_checkable
class WorkloadFactory(Protocol):
    """Renders the desired workload for a rack, with zero replicas and its content hash."""

    def build_workload(self, cluster: CassandraCluster, rack_name: str) -> Workload:
        ...


@runtime_checkable
class EventRecorder(Protocol):
    def record(
        self,
        cluster: CassandraCluster,
        event_type: str,
        reason: EventReason,
        message: str,
    ) -> None:
        ...


@runtime_checkable
class EMMCapability(Protocol):
    """
    What the EMM and volume health checks may observe and do.

    Node-instance listings are the snapshot taken at the start of the pass.
    Host listings are read live.
    """

    async def list_datacenter_hosts(self) -> list[Host]:
        """Hosts currently running node-instances of this datacenter."""
        ...

    async def list_all_hosts(self) -> list[Host]:
        ...

    def datacenter_node_instances(self) -> list[NodeInstance]:
        ...

    def not_ready_node_instances(self) -> list[NodeInstance]:
        ...

    def not_ready_joined_node_instances(self) -> list[NodeInstance]:
        """Not-ready node-instances whose database node has joined the ring before."""
        ...

    async def get_node_instance_claims(self, node: NodeInstance) -> list[VolumeClaim]:
        ...

    async def start_node_replace(self, node_name: str) -> None:
        ...

    def in_progress_node_replacements(self) -> list[str]:
        ...

    async def remove_node_instance(self, node: NodeInstance) -> None:
        ...

    async def update_node_instance(self, node: NodeInstance) -> None:
        ...

    def is_stopped(self) -> bool:
        ...

    def is_initialized(self) -> bool:
        ...
