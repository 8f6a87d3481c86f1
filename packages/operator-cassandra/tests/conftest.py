"""
Shared fixtures: an in-memory datacenter builder and a fake EMM capability.

Datacenter seeds an InMemoryOrchestrationClient with a cluster resource,
one workload per rack and ready, started node-instances (each on its own
host, with a data claim and a membership entry). Tests tweak the builder's
objects and call save() before reconciling.
"""

from dataclasses import dataclass, field

import pytest

from operator_cassandra import labels as lbl
from operator_cassandra.context import ReconciliationContext
from operator_cassandra.inmemory import (
    InMemoryManagementApi,
    InMemoryOrchestrationClient,
    RecordingEventRecorder,
    TemplateWorkloadFactory,
)
from operator_cassandra.labels import ConditionType, NodeState, TaintValue
from operator_cassandra.mgmt.types import EndpointState
from operator_cassandra.reconciler import ClusterReconciler
from operator_cassandra.topology import calculate_rack_information
from operator_cassandra.types import (
    CassandraCluster,
    ClusterSpec,
    Condition,
    Host,
    NodeInstance,
    NodeStatus,
    Rack,
    Taint,
    VolumeClaim,
    Workload,
    claim_name_for,
)

GIB = 1024**3


class Datacenter:
    """Builds and holds the in-memory state of one datacenter."""

    def __init__(
        self,
        size: int,
        racks: list[str],
        name: str = "dc1",
        namespace: str = "db",
        cluster_name: str = "cluster1",
    ) -> None:
        self.client = InMemoryOrchestrationClient()
        self.mgmt = InMemoryManagementApi()
        self.recorder = RecordingEventRecorder()
        self.factory = TemplateWorkloadFactory(template={"image": "cassandra:4.1.4"})
        self.cluster = CassandraCluster(
            name=name,
            namespace=namespace,
            spec=ClusterSpec(
                cluster_name=cluster_name,
                size=size,
                racks=[Rack(name=r) for r in racks],
            ),
        )
        self.cluster.status.set_condition(Condition(type=ConditionType.INITIALIZED, status=True))
        self.cluster.status.set_condition(Condition(type=ConditionType.READY, status=True))

    def add_rack(
        self,
        rack: str,
        replicas: int,
        ready: int | None = None,
        capacity_bytes: int = 100 * GIB,
        load_bytes: int = GIB,
    ) -> Workload:
        """Add a rack's workload and `replicas` node-instances; the first `ready` are ready."""
        ready = replicas if ready is None else ready
        workload = self.factory.build_workload(self.cluster, rack)
        _, workload.labels = lbl.merge_labels_if_different(
            workload.labels, self.cluster.rack_labels(rack)
        )
        workload.replicas = replicas
        workload.ready_replicas = ready
        self.client.add_workload(workload)

        rack_index = len({w.rack for w in self.client.workloads.values()})
        for ordinal in range(replicas):
            self.add_node(
                workload.node_instance_name(ordinal),
                rack,
                ip=f"10.0.{rack_index}.{ordinal + 1}",
                ready=ordinal < ready,
                capacity_bytes=capacity_bytes,
                load_bytes=load_bytes,
            )
        return workload

    def add_node(
        self,
        name: str,
        rack: str,
        ip: str,
        ready: bool = True,
        capacity_bytes: int = 100 * GIB,
        load_bytes: int = GIB,
    ) -> NodeInstance:
        _, node_labels = lbl.merge_labels_if_different({}, self.cluster.rack_labels(rack))
        node_labels[lbl.NODE_STATE_LABEL] = NodeState.STARTED.value
        node = NodeInstance(
            name=name,
            namespace=self.cluster.namespace,
            labels=node_labels,
            host_name=f"host-{name}",
            ip=ip,
            ready=ready,
            claim_names=[claim_name_for(name)],
        )
        self.client.add_node_instance(node)
        self.client.add_host(Host(name=node.host_name))
        _, claim_labels = lbl.merge_labels_if_different({}, self.cluster.rack_labels(rack))
        self.client.add_volume_claim(
            VolumeClaim(
                name=claim_name_for(name),
                namespace=self.cluster.namespace,
                labels=claim_labels,
                capacity_bytes=capacity_bytes,
            )
        )

        host_id = f"host-id-{name}"
        self.mgmt.endpoints.append(
            EndpointState(host_id=host_id, rpc_address=ip, status="NORMAL", load=str(load_bytes))
        )
        self.cluster.status.node_statuses[name] = NodeStatus(host_id=host_id)
        return node

    def save(self) -> None:
        self.client.add_cluster(self.cluster)

    def node(self, name: str) -> NodeInstance:
        return self.client.node_instances[(self.cluster.namespace, name)]

    def workload(self, rack: str) -> Workload:
        return self.client.workloads[(self.cluster.namespace, self.cluster.workload_name(rack))]

    def stored_cluster(self) -> CassandraCluster:
        return self.client.clusters[(self.cluster.namespace, self.cluster.name)]

    def reconciler(self, **kwargs) -> ClusterReconciler:
        return ClusterReconciler(
            client=self.client,
            mgmt=self.mgmt,
            recorder=self.recorder,
            factory=self.factory,
            **kwargs,
        )

    async def context(self, **kwargs) -> ReconciliationContext:
        """A loaded context over the stored cluster, rack information computed."""
        cluster = await self.client.get_cluster(self.cluster.namespace, self.cluster.name)
        ctx = ReconciliationContext(
            cluster=cluster,
            client=self.client,
            mgmt=self.mgmt,
            recorder=self.recorder,
            factory=self.factory,
            **kwargs,
        )
        await ctx.load()
        ctx.rack_information = calculate_rack_information(cluster.spec)
        return ctx


@pytest.fixture
def make_datacenter():
    """Factory for Datacenter builders."""
    return Datacenter


@dataclass
class FakeEMMCapability:
    """
    EMMCapability over plain lists.

    Records every mutation so tests can assert exactly what the coordinator
    did: updated/removed node-instance names and started replacements.
    """

    nodes: list[NodeInstance] = field(default_factory=list)
    hosts: list[Host] = field(default_factory=list)
    joined: set[str] = field(default_factory=set)
    claims: dict[str, list[VolumeClaim]] = field(default_factory=dict)
    replacements: list[str] = field(default_factory=list)
    stopped: bool = False
    initialized: bool = True

    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    replaced: list[str] = field(default_factory=list)

    # Seeding helpers

    def add_node(
        self,
        name: str,
        rack: str,
        host_name: str,
        ready: bool = True,
        joined: bool = True,
        unschedulable: bool = False,
    ) -> NodeInstance:
        node = NodeInstance(
            name=name,
            namespace="db",
            labels={lbl.RACK_LABEL: rack},
            host_name=host_name,
            ready=ready,
            unschedulable=unschedulable,
            claim_names=[claim_name_for(name)],
        )
        self.nodes.append(node)
        if joined:
            self.joined.add(name)
        else:
            self.joined.discard(name)
        if host_name and not any(h.name == host_name for h in self.hosts):
            self.hosts.append(Host(name=host_name))
        return node

    def add_host(self, name: str, taint: TaintValue | None = None) -> Host:
        host = next((h for h in self.hosts if h.name == name), None)
        if host is None:
            host = Host(name=name)
            self.hosts.append(host)
        if taint is not None:
            host.taints.append(Taint(key=lbl.EMM_TAINT_KEY, value=taint.value))
        return host

    def add_claim(
        self, node_name: str, inaccessible: bool = False, selected_host: str = ""
    ) -> VolumeClaim:
        annotations = {}
        if inaccessible:
            annotations[lbl.VOLUME_HEALTH_ANNOTATION] = lbl.VolumeHealth.INACCESSIBLE.value
        if selected_host:
            annotations[lbl.SELECTED_NODE_ANNOTATION] = selected_host
        claim = VolumeClaim(
            name=claim_name_for(node_name), namespace="db", annotations=annotations
        )
        self.claims.setdefault(node_name, []).append(claim)
        return claim

    def node(self, name: str) -> NodeInstance:
        return next(n for n in self.nodes if n.name == name)

    # EMMCapability

    async def list_datacenter_hosts(self) -> list[Host]:
        used = {n.host_name for n in self.nodes if n.host_name}
        for node in self.nodes:
            used.update(c.selected_host for c in self.claims.get(node.name, []) if c.selected_host)
        return [h for h in self.hosts if h.name in used]

    async def list_all_hosts(self) -> list[Host]:
        return list(self.hosts)

    def datacenter_node_instances(self) -> list[NodeInstance]:
        return list(self.nodes)

    def not_ready_node_instances(self) -> list[NodeInstance]:
        return [n for n in self.nodes if not n.ready]

    def not_ready_joined_node_instances(self) -> list[NodeInstance]:
        return [n for n in self.nodes if not n.ready and n.name in self.joined]

    async def get_node_instance_claims(self, node: NodeInstance) -> list[VolumeClaim]:
        return list(self.claims.get(node.name, []))

    async def start_node_replace(self, node_name: str) -> None:
        self.replaced.append(node_name)
        self.replacements.append(node_name)

    def in_progress_node_replacements(self) -> list[str]:
        return list(self.replacements)

    async def remove_node_instance(self, node: NodeInstance) -> None:
        self.removed.append(node.name)
        self.nodes = [n for n in self.nodes if n.name != node.name]

    async def update_node_instance(self, node: NodeInstance) -> None:
        self.updated.append(node.name)

    def is_stopped(self) -> bool:
        return self.stopped

    def is_initialized(self) -> bool:
        return self.initialized


@pytest.fixture
def capability():
    """An empty fake EMM capability."""
    return FakeEMMCapability()
