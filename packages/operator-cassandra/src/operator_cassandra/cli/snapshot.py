"""
JSON snapshots of a datacenter for dry-run reconciliation.

A snapshot captures everything a reconcile pass observes: the cluster
resource, its workloads, node-instances, volume claims, the hosts they run
on and the membership data the management API would report. Loading a
snapshot yields in-memory collaborators the reconciler can run against
without touching a live cluster.

Example snapshot:
{
    "cluster": {"name": "dc1", "namespace": "db", "cluster_name": "cluster1",
                "size": 3, "racks": ["r1", "r2", "r3"]},
    "workloads": [{"rack": "r1", "replicas": 1, "ready_replicas": 1}],
    "node_instances": [{"name": "cluster1-dc1-r1-sts-0", "rack": "r1",
                        "host_name": "host-a", "ip": "10.0.0.1", "ready": true,
                        "node_state": "Started"}],
    "hosts": [{"name": "host-a", "taints": [{"key": "node.vmware.com/drain",
                                            "value": "drain"}]}],
    "endpoints": [{"HOST_ID": "h1", "RPC_ADDRESS": "10.0.0.1", "STATUS": "NORMAL"}]
}
"""

import json
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field

from operator_cassandra import labels as lbl
from operator_cassandra.inmemory import (
    InMemoryManagementApi,
    InMemoryOrchestrationClient,
    TemplateWorkloadFactory,
    content_hash,
)
from operator_cassandra.labels import ConditionType
from operator_cassandra.mgmt.types import EndpointState
from operator_cassandra.types import (
    CassandraCluster,
    ClusterSpec,
    ClusterStatus,
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


class ClusterSnapshot(BaseModel):
    name: str
    namespace: str = "default"
    cluster_name: str
    size: int
    racks: list[str] = Field(default_factory=list)
    stopped: bool = False
    force_upgrade_racks: list[str] = Field(default_factory=list)
    conditions: dict[ConditionType, bool] = Field(default_factory=dict)
    node_statuses: dict[str, str] = Field(default_factory=dict)
    node_replacements: list[str] = Field(default_factory=list)


class WorkloadSnapshot(BaseModel):
    rack: str
    replicas: int = 0
    ready_replicas: int = 0
    stale_template: bool = False


class NodeInstanceSnapshot(BaseModel):
    name: str
    rack: str
    host_name: str = ""
    ip: str = ""
    ready: bool = False
    unschedulable: bool = False
    node_state: lbl.NodeState | None = None
    seed: bool = False
    annotations: dict[str, str] = Field(default_factory=dict)


class VolumeClaimSnapshot(BaseModel):
    node_instance: str
    capacity_bytes: int | None = None
    selected_host: str = ""
    inaccessible: bool = False


class TaintSnapshot(BaseModel):
    key: str = lbl.EMM_TAINT_KEY
    value: str
    effect: str = lbl.TAINT_EFFECT_NO_SCHEDULE


class HostSnapshot(BaseModel):
    name: str
    taints: list[TaintSnapshot] = Field(default_factory=list)


class DatacenterSnapshot(BaseModel):
    """Top-level snapshot document."""

    cluster: ClusterSnapshot
    workloads: list[WorkloadSnapshot] = Field(default_factory=list)
    node_instances: list[NodeInstanceSnapshot] = Field(default_factory=list)
    volume_claims: list[VolumeClaimSnapshot] = Field(default_factory=list)
    hosts: list[HostSnapshot] = Field(default_factory=list)
    endpoints: list[EndpointState] = Field(default_factory=list)
    template: dict = Field(default_factory=dict)


@dataclass
class LoadedSnapshot:
    """In-memory collaborators built from a snapshot."""

    key: str
    client: InMemoryOrchestrationClient
    mgmt: InMemoryManagementApi
    factory: TemplateWorkloadFactory


def load_snapshot(path: Path) -> LoadedSnapshot:
    """
    Read a snapshot file and build in-memory collaborators from it.

    Raises:
        OSError: If the file cannot be read.
        pydantic.ValidationError: If the document does not match the schema.
    """
    data = json.loads(path.read_text())
    return build_collaborators(DatacenterSnapshot.model_validate(data))


def build_collaborators(snapshot: DatacenterSnapshot) -> LoadedSnapshot:
    spec = snapshot.cluster
    cluster = CassandraCluster(
        name=spec.name,
        namespace=spec.namespace,
        spec=ClusterSpec(
            cluster_name=spec.cluster_name,
            size=spec.size,
            racks=[Rack(name=r) for r in spec.racks],
            stopped=spec.stopped,
            force_upgrade_racks=list(spec.force_upgrade_racks),
        ),
        status=ClusterStatus(
            conditions=[Condition(type=t, status=s) for t, s in spec.conditions.items()],
            node_statuses={n: NodeStatus(host_id=h) for n, h in spec.node_statuses.items()},
            node_replacements=list(spec.node_replacements),
        ),
    )

    client = InMemoryOrchestrationClient()
    client.add_cluster(cluster)
    factory = TemplateWorkloadFactory(template=snapshot.template)

    desired_hash = content_hash(snapshot.template)
    for w in snapshot.workloads:
        client.add_workload(
            Workload(
                name=cluster.workload_name(w.rack),
                namespace=cluster.namespace,
                rack=w.rack,
                replicas=w.replicas,
                ready_replicas=w.ready_replicas,
                labels=cluster.rack_labels(w.rack),
                content_hash="" if w.stale_template else desired_hash,
                template={} if w.stale_template else dict(snapshot.template),
            )
        )

    for n in snapshot.node_instances:
        node_labels = cluster.rack_labels(n.rack)
        if n.node_state is not None:
            node_labels[lbl.NODE_STATE_LABEL] = n.node_state.value
        if n.seed:
            node_labels[lbl.SEED_NODE_LABEL] = "true"
        client.add_node_instance(
            NodeInstance(
                name=n.name,
                namespace=cluster.namespace,
                labels=node_labels,
                annotations=dict(n.annotations),
                host_name=n.host_name,
                ip=n.ip,
                ready=n.ready,
                unschedulable=n.unschedulable,
                claim_names=[claim_name_for(n.name)],
            )
        )

    for c in snapshot.volume_claims:
        annotations = {}
        if c.selected_host:
            annotations[lbl.SELECTED_NODE_ANNOTATION] = c.selected_host
        if c.inaccessible:
            annotations[lbl.VOLUME_HEALTH_ANNOTATION] = lbl.VolumeHealth.INACCESSIBLE.value
        client.add_volume_claim(
            VolumeClaim(
                name=claim_name_for(c.node_instance),
                namespace=cluster.namespace,
                annotations=annotations,
                capacity_bytes=c.capacity_bytes,
            )
        )

    for h in snapshot.hosts:
        client.add_host(
            Host(
                name=h.name,
                taints=[Taint(key=t.key, value=t.value, effect=t.effect) for t in h.taints],
            )
        )

    return LoadedSnapshot(
        key=cluster.key,
        client=client,
        mgmt=InMemoryManagementApi(endpoints=list(snapshot.endpoints)),
        factory=factory,
    )
