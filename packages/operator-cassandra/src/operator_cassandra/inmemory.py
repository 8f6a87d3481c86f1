"""
In memory collaborators.

These implement the engine's protocols over plain dictionaries. They are
used by the test suite and by the CLI's dry-run commands, where a JSON
snapshot of a datacenter is loaded and one reconcile pass is run against it.

Objects are deep-copied on every read and write so callers cannot mutate
stored state behind the client's back, the same way a real API server
hands out copies.

Features
- Optimistic concurrency on cluster status and spec writes
- Lowering a workload's replica count removes the node-instances above the
  new count, as the platform's workload controller would
- Management API fake with scripted endpoint states and injectable failures
"""

import copy
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field

from operator_cassandra.errors import (
    ConflictError,
    ManagementApiError,
    NotFoundError,
    OrchestrationError,
)
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

logger = logging.getLogger(__name__)

Key = tuple[str, str]


def _matches(labels: dict[str, str], selector: dict[str, str]) -> bool:
    return all(labels.get(k) == v for k, v in selector.items())


@dataclass
class InMemoryOrchestrationClient:
    """
    Orchestration API over in-memory state, keyed by (namespace, name).

    Hosts are cluster scoped and keyed by name only. Node-instances get a
    fresh uid when seeded without one, as the platform assigns one to every
    object it creates.

    failing
    Method names that raise OrchestrationError, e.g. {"delete_volume_claim"}.
    """

    clusters: dict[Key, CassandraCluster] = field(default_factory=dict)
    workloads: dict[Key, Workload] = field(default_factory=dict)
    node_instances: dict[Key, NodeInstance] = field(default_factory=dict)
    volume_claims: dict[Key, VolumeClaim] = field(default_factory=dict)
    disruption_budgets: dict[Key, DisruptionBudget] = field(default_factory=dict)
    hosts: dict[str, Host] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)

    # Seeding helpers, not part of the protocol

    def add_cluster(self, cluster: CassandraCluster) -> None:
        self.clusters[(cluster.namespace, cluster.name)] = copy.deepcopy(cluster)

    def add_workload(self, workload: Workload) -> None:
        self.workloads[(workload.namespace, workload.name)] = copy.deepcopy(workload)

    def add_node_instance(self, node: NodeInstance) -> None:
        node = copy.deepcopy(node)
        if not node.uid:
            node.uid = str(uuid.uuid4())
        self.node_instances[(node.namespace, node.name)] = node

    def add_volume_claim(self, claim: VolumeClaim) -> None:
        self.volume_claims[(claim.namespace, claim.name)] = copy.deepcopy(claim)

    def add_host(self, host: Host) -> None:
        self.hosts[host.name] = copy.deepcopy(host)

    # Cluster resource

    async def get_cluster(self, namespace: str, name: str) -> CassandraCluster:
        self._fail_if_requested("get_cluster")
        return copy.deepcopy(self._get(self.clusters, "CassandraCluster", namespace, name))

    async def patch_cluster_status(self, cluster: CassandraCluster) -> CassandraCluster:
        self._fail_if_requested("patch_cluster_status")
        stored = self._check_version(cluster)
        stored.status = copy.deepcopy(cluster.status)
        stored.resource_version += 1
        return copy.deepcopy(stored)

    async def patch_cluster_spec(self, cluster: CassandraCluster) -> CassandraCluster:
        self._fail_if_requested("patch_cluster_spec")
        stored = self._check_version(cluster)
        stored.spec = copy.deepcopy(cluster.spec)
        stored.resource_version += 1
        return copy.deepcopy(stored)

    # Workloads

    async def get_workload(self, namespace: str, name: str) -> Workload:
        self._fail_if_requested("get_workload")
        return copy.deepcopy(self._get(self.workloads, "Workload", namespace, name))

    async def list_workloads(self, namespace: str, labels: dict[str, str]) -> list[Workload]:
        self._fail_if_requested("list_workloads")
        return self._list(self.workloads, namespace, labels)

    async def create_workload(self, workload: Workload) -> None:
        self._fail_if_requested("create_workload")
        key = (workload.namespace, workload.name)
        if key in self.workloads:
            raise ConflictError("Workload", workload.name, 0, 0)
        self.workloads[key] = copy.deepcopy(workload)

    async def update_workload(self, workload: Workload) -> None:
        self._fail_if_requested("update_workload")
        current = self._get(self.workloads, "Workload", workload.namespace, workload.name)
        if workload.replicas < current.replicas:
            self._scale_in(workload)
        self.workloads[(workload.namespace, workload.name)] = copy.deepcopy(workload)

    def _scale_in(self, workload: Workload) -> None:
        for key, node in list(self.node_instances.items()):
            if key[0] != workload.namespace:
                continue
            if not node.name.startswith(f"{workload.name}-"):
                continue
            if node.ordinal >= workload.replicas:
                logger.debug(f"removing {node.name} after scale-in of {workload.name}")
                del self.node_instances[key]
        workload.ready_replicas = min(workload.ready_replicas, workload.replicas)

    # Node-instances

    async def list_node_instances(
        self, namespace: str, labels: dict[str, str]
    ) -> list[NodeInstance]:
        self._fail_if_requested("list_node_instances")
        return self._list(self.node_instances, namespace, labels)

    async def update_node_instance(self, node: NodeInstance) -> None:
        self._fail_if_requested("update_node_instance")
        self._get(self.node_instances, "NodeInstance", node.namespace, node.name)
        self.node_instances[(node.namespace, node.name)] = copy.deepcopy(node)

    async def delete_node_instance(self, namespace: str, name: str) -> None:
        self._fail_if_requested("delete_node_instance")
        self._get(self.node_instances, "NodeInstance", namespace, name)
        del self.node_instances[(namespace, name)]

    # Volume claims

    async def get_volume_claim(self, namespace: str, name: str) -> VolumeClaim:
        self._fail_if_requested("get_volume_claim")
        return copy.deepcopy(self._get(self.volume_claims, "VolumeClaim", namespace, name))

    async def update_volume_claim(self, claim: VolumeClaim) -> None:
        self._fail_if_requested("update_volume_claim")
        self._get(self.volume_claims, "VolumeClaim", claim.namespace, claim.name)
        self.volume_claims[(claim.namespace, claim.name)] = copy.deepcopy(claim)

    async def delete_volume_claim(self, namespace: str, name: str) -> None:
        self._fail_if_requested("delete_volume_claim")
        self._get(self.volume_claims, "VolumeClaim", namespace, name)
        del self.volume_claims[(namespace, name)]

    # Hosts

    async def list_hosts(self) -> list[Host]:
        self._fail_if_requested("list_hosts")
        return [copy.deepcopy(self.hosts[name]) for name in sorted(self.hosts)]

    # Disruption budgets

    async def get_disruption_budget(self, namespace: str, name: str) -> DisruptionBudget:
        self._fail_if_requested("get_disruption_budget")
        return copy.deepcopy(
            self._get(self.disruption_budgets, "DisruptionBudget", namespace, name)
        )

    async def create_disruption_budget(self, budget: DisruptionBudget) -> None:
        self._fail_if_requested("create_disruption_budget")
        key = (budget.namespace, budget.name)
        if key in self.disruption_budgets:
            raise ConflictError("DisruptionBudget", budget.name, 0, 0)
        self.disruption_budgets[key] = copy.deepcopy(budget)

    async def delete_disruption_budget(self, namespace: str, name: str) -> None:
        self._fail_if_requested("delete_disruption_budget")
        self._get(self.disruption_budgets, "DisruptionBudget", namespace, name)
        del self.disruption_budgets[(namespace, name)]

    # Helpers

    def _fail_if_requested(self, operation: str) -> None:
        if operation in self.failing:
            raise OrchestrationError(operation, "injected failure")

    def _get(self, store: dict, kind: str, namespace: str, name: str):
        try:
            return store[(namespace, name)]
        except KeyError:
            raise NotFoundError(kind, f"{namespace}/{name}") from None

    def _list(self, store: dict, namespace: str, labels: dict[str, str]) -> list:
        return [
            copy.deepcopy(obj)
            for key, obj in sorted(store.items())
            if key[0] == namespace and _matches(obj.labels, labels)
        ]

    def _check_version(self, cluster: CassandraCluster) -> CassandraCluster:
        stored = self._get(self.clusters, "CassandraCluster", cluster.namespace, cluster.name)
        if stored.resource_version != cluster.resource_version:
            raise ConflictError(
                "CassandraCluster",
                cluster.key,
                cluster.resource_version,
                stored.resource_version,
            )
        return stored


@dataclass
class InMemoryManagementApi:
    """
    Management API fake.

    endpoints
    Gossip state returned by every node, as the database would report it.

    failing
    Paths that raise ManagementApiError, e.g. {"/api/v0/ops/node/decommission"}.

    calls
    (path, node name) for every call made, in order.
    """

    endpoints: list[EndpointState] = field(default_factory=list)
    failing: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)

    async def get_endpoints(self, node: NodeInstance) -> list[EndpointState]:
        self._record("/api/v0/metadata/endpoints", node)
        return [e.model_copy() for e in self.endpoints]

    async def decommission(self, node: NodeInstance) -> None:
        self._record("/api/v0/ops/node/decommission", node)

    async def drain(self, node: NodeInstance) -> None:
        self._record("/api/v0/ops/node/drain", node)

    async def keyspace_cleanup(
        self,
        node: NodeInstance,
        keyspace: str = "",
        tables: list[str] | None = None,
        jobs: int = -1,
    ) -> None:
        self._record("/api/v0/ops/keyspace/cleanup", node)

    def calls_to(self, path: str) -> list[str]:
        return [name for p, name in self.calls if p == path]

    def set_status(self, address: str, status: str) -> None:
        """Set STATUS for the endpoint at `address`."""
        for endpoint in self.endpoints:
            if endpoint.address == address:
                endpoint.status = status
                return
        raise KeyError(address)

    def _record(self, path: str, node: NodeInstance) -> None:
        self.calls.append((path, node.name))
        if path in self.failing:
            raise ManagementApiError(node.name, path, "status code 500")


@dataclass
class RecordingEventRecorder:
    """Keeps recorded events in memory as (type, reason, message)."""

    events: list[tuple[str, EventReason, str]] = field(default_factory=list)

    def record(
        self,
        cluster: CassandraCluster,
        event_type: str,
        reason: EventReason,
        message: str,
    ) -> None:
        logger.info(f"[{cluster.key}] {event_type} {reason.value}: {message}")
        self.events.append((event_type, reason, message))

    def reasons(self) -> list[EventReason]:
        return [reason for _, reason, _ in self.events]


@dataclass
class TemplateWorkloadFactory:
    """
    Workload factory over a static, already-rendered template.

    The content hash is the sha256 of the template serialized with sorted
    keys, so changing any template field marks existing workloads stale.
    """

    template: dict = field(default_factory=dict)

    def build_workload(self, cluster: CassandraCluster, rack_name: str) -> Workload:
        return Workload(
            name=cluster.workload_name(rack_name),
            namespace=cluster.namespace,
            rack=rack_name,
            replicas=0,
            labels=cluster.rack_labels(rack_name),
            content_hash=content_hash(self.template),
            template=copy.deepcopy(self.template),
        )


def content_hash(template: dict) -> str:
    encoded = json.dumps(template, sort_keys=True).encode()
    return hashlib.sha256(encoded).hexdigest()
