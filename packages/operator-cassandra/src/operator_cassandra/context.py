"""
Per-pass reconciliation context.

A ReconciliationContext is built for every reconcile pass. It holds the
cluster resource as last observed, the snapshot of workloads and
node-instances taken at the start of the pass, and the collaborators every
check uses. Checks read from the snapshot and write through the client;
any check that mutates returns a completed result, so the next pass starts
from a fresh snapshot.

Status writes are optimistic: patch_status sends the resource version the
pass observed and adopts the new version on success. A concurrent writer
makes the write fail with ConflictError, which surfaces as Error().
"""

import logging
from dataclasses import dataclass, field

from operator_cassandra.config import OperatorSettings, settings
from operator_cassandra.errors import NotFoundError
from operator_cassandra.events import EVENT_TYPE_NORMAL, EventReason
from operator_cassandra.labels import ConditionType, NodeState
from operator_cassandra.mgmt.types import EndpointState
from operator_cassandra.protocols import (
    EventRecorder,
    ManagementApi,
    OrchestrationClient,
    WorkloadFactory,
)
from operator_cassandra.types import (
    CassandraCluster,
    Condition,
    NodeInstance,
    RackInformation,
    VolumeClaim,
    Workload,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationContext:
    """
    Everything one reconcile pass of one cluster resource works with.

    Attributes:
        cluster: Cluster resource as last observed (status updated in place).
        client: Orchestration API.
        mgmt: Management API.
        recorder: Event recorder.
        factory: Renders desired workloads.
        settings: Operator settings.
        rack_information: Desired counts per rack, set at the start of the pass.
        workloads: Workload per rack name, for racks whose workload exists.
        node_instances: Every node-instance of the datacenter, sorted by name.
    """

    cluster: CassandraCluster
    client: OrchestrationClient
    mgmt: ManagementApi
    recorder: EventRecorder
    factory: WorkloadFactory
    settings: OperatorSettings = field(default_factory=lambda: settings)
    rack_information: list[RackInformation] = field(default_factory=list)
    workloads: dict[str, Workload] = field(default_factory=dict)
    node_instances: list[NodeInstance] = field(default_factory=list)
    _endpoints: list[EndpointState] | None = None

    async def load(self) -> None:
        """Take the workload and node-instance snapshot for this pass."""
        labels = self.cluster.datacenter_labels()
        workloads = await self.client.list_workloads(self.cluster.namespace, labels)
        self.workloads = {w.rack: w for w in workloads}
        nodes = await self.client.list_node_instances(self.cluster.namespace, labels)
        self.node_instances = sorted(nodes, key=lambda n: n.name)
        self._endpoints = None

    # Status

    def set_condition(
        self,
        condition_type: ConditionType,
        status: bool,
        reason: str = "",
        message: str = "",
    ) -> bool:
        """Set a condition locally. Returns True when it changed."""
        return self.cluster.status.set_condition(
            Condition(type=condition_type, status=status, reason=reason, message=message)
        )

    async def patch_status(self) -> None:
        """
        Write the cluster status against the observed resource version.

        Raises:
            ConflictError: If the cluster resource changed since it was read.
        """
        stored = await self.client.patch_cluster_status(self.cluster)
        self.cluster.resource_version = stored.resource_version

    async def update_conditions(self, *conditions: tuple[ConditionType, bool]) -> bool:
        """Set several conditions and patch once if any changed."""
        updated = False
        for condition_type, status in conditions:
            updated = self.set_condition(condition_type, status) or updated
        if updated:
            await self.patch_status()
        return updated

    # Events

    def record_event(
        self, reason: EventReason, message: str, event_type: str = EVENT_TYPE_NORMAL
    ) -> None:
        self.recorder.record(self.cluster, event_type, reason, message)

    # Snapshot queries

    def rack_node_instances(self, rack_name: str) -> list[NodeInstance]:
        return [n for n in self.node_instances if n.rack == rack_name]

    def find_node_instance(self, name: str) -> NodeInstance | None:
        for node in self.node_instances:
            if node.name == name:
                return node
        return None

    def has_joined(self, node: NodeInstance) -> bool:
        """True once the node has been seen in the database's membership data."""
        status = self.cluster.status.node_statuses.get(node.name)
        return status is not None and bool(status.host_id)

    def is_server_ready(self, node: NodeInstance) -> bool:
        return node.ready and node.is_started()

    # Management API

    async def fetch_endpoints(self) -> list[EndpointState]:
        """
        Membership data as seen by the first ready, started node-instance.

        The result is cached for the pass. An empty list means no node can
        be asked yet.

        Raises:
            ManagementApiError: If the chosen node's management API fails.
        """
        if self._endpoints is not None:
            return self._endpoints
        for node in self.node_instances:
            if node.ip and self.is_server_ready(node):
                self._endpoints = await self.mgmt.get_endpoints(node)
                return self._endpoints
        self._endpoints = []
        return self._endpoints

    # Mutations shared by several checks

    async def update_rack_node_count(self, workload: Workload, node_count: int) -> None:
        logger.info(
            f"updating node count of {workload.name} from {workload.replicas} to {node_count}"
        )
        workload.replicas = node_count
        await self.client.update_workload(workload)

    async def get_node_instance_claims(self, node: NodeInstance) -> list[VolumeClaim]:
        """
        Volume claims mounted by a node-instance.

        Claims that no longer exist are skipped.
        """
        claims = []
        for claim_name in node.claim_names:
            try:
                claims.append(
                    await self.client.get_volume_claim(self.cluster.namespace, claim_name)
                )
            except NotFoundError:
                logger.debug(f"claim {claim_name} of {node.name} not found")
        return claims

    async def delete_node_instance_claims(self, node: NodeInstance) -> None:
        for claim in await self.get_node_instance_claims(node):
            await self.client.delete_volume_claim(claim.namespace, claim.name)
            self.record_event(EventReason.DELETED_PVC, f"Claim Name: {claim.name}")

    async def start_node_replace(self, node_name: str) -> None:
        """
        Replace a node-instance with a fresh one on a new volume.

        The replacement is recorded in status first, so a crash between the
        steps still leaves a record the next pass can finish. Then the
        node's claims and the node-instance itself are deleted; the workload
        recreates the node-instance with an empty volume.
        """
        node = self.find_node_instance(node_name)
        if node is None:
            raise NotFoundError("NodeInstance", node_name)

        status = self.cluster.status
        if node_name not in status.node_replacements:
            status.node_replacements.append(node_name)
        if node.uid:
            status.replaced_uids[node_name] = node.uid
        self.set_condition(ConditionType.REPLACING_NODES, True)
        await self.patch_status()
        self.record_event(EventReason.REPLACING_NODE, f"Replacing Cassandra node {node_name}")

        await self.delete_node_instance_claims(node)
        await self.client.delete_node_instance(node.namespace, node.name)
        self.node_instances.remove(node)

    def decommissioning_node_instances(self) -> list[NodeInstance]:
        return [n for n in self.node_instances if n.node_state == NodeState.DECOMMISSIONING]
