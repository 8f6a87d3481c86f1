"""
Internal data types for the reconcile engine.

These are the typed views of the orchestration objects the engine reads and
writes: the cluster resource (desired spec plus status), one workload per
rack, one node-instance per database node, the volume claims backing them and
the hosts they run on.

All types use @dataclass. Pydantic models are reserved for wire formats
(management API responses, CLI snapshots) and settings.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from operator_cassandra import labels as lbl
from operator_cassandra.labels import ConditionType, NodeState, TaintValue, VolumeHealth

_ORDINAL_RE = re.compile(r"-(\d+)$")


@dataclass
class Rack:
    """
    A named failure domain.

    Attributes:
        name: Rack name, unique within the cluster.
        placement: Host label selector hints for scheduling (opaque to the engine).
    """

    name: str
    placement: dict[str, str] = field(default_factory=dict)


@dataclass
class ClusterSpec:
    """
    Desired state of a datacenter, owned by the user.

    Attributes:
        cluster_name: Database cluster the datacenter belongs to.
        size: Total number of database nodes.
        racks: Ordered rack list. Empty means a single rack named "default".
        stopped: Parked flag; every rack is driven to zero replicas.
        force_upgrade_racks: Racks whose workload template is updated even
            when not every node is ready.
    """

    cluster_name: str
    size: int
    racks: list[Rack] = field(default_factory=list)
    stopped: bool = False
    force_upgrade_racks: list[str] = field(default_factory=list)

    def get_racks(self) -> list[Rack]:
        if self.racks:
            return self.racks
        return [Rack(name=lbl.DEFAULT_RACK_NAME)]


@dataclass
class Condition:
    """A named boolean on the cluster status."""

    type: ConditionType
    status: bool
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None


@dataclass
class NodeStatus:
    """
    Per-node record on the cluster status.

    A non-empty host_id means the node has been seen in the database's
    membership data, i.e. it has joined the ring at some point.
    """

    host_id: str = ""


@dataclass
class ClusterStatus:
    """Observed state the operator writes back onto the cluster resource."""

    conditions: list[Condition] = field(default_factory=list)
    node_statuses: dict[str, NodeStatus] = field(default_factory=dict)
    node_replacements: list[str] = field(default_factory=list)
    # node name -> uid of the node-instance that was replaced
    replaced_uids: dict[str, str] = field(default_factory=dict)

    def get_condition(self, condition_type: ConditionType) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def condition_status(self, condition_type: ConditionType) -> bool:
        condition = self.get_condition(condition_type)
        return condition is not None and condition.status

    def set_condition(self, condition: Condition) -> bool:
        """
        Set a condition if its status, reason or message differs from the
        current one. The transition time moves only when the status flips.

        Returns:
            True when the condition changed and a patch is needed.
        """
        current = self.get_condition(condition.type)
        if current is not None and current.status == condition.status:
            if (current.reason, current.message) == (condition.reason, condition.message):
                return False
            current.reason = condition.reason
            current.message = condition.message
            return True
        if condition.last_transition_time is None:
            condition.last_transition_time = datetime.now(timezone.utc)
        if current is None:
            self.conditions.append(condition)
        else:
            self.conditions[self.conditions.index(current)] = condition
        return True


@dataclass
class CassandraCluster:
    """
    The cluster resource: one datacenter of a database cluster.

    Attributes:
        name: Datacenter name.
        namespace: Namespace owning every child object.
        spec: Desired state.
        status: Observed state.
        resource_version: Optimistic concurrency token for status writes.
    """

    name: str
    namespace: str
    spec: ClusterSpec
    status: ClusterStatus = field(default_factory=ClusterStatus)
    resource_version: int = 0

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def cluster_labels(self) -> dict[str, str]:
        return lbl.cluster_labels(self.spec.cluster_name)

    def datacenter_labels(self) -> dict[str, str]:
        return lbl.datacenter_labels(self.spec.cluster_name, self.name)

    def rack_labels(self, rack_name: str) -> dict[str, str]:
        return lbl.rack_labels(self.spec.cluster_name, self.name, rack_name)

    def workload_name(self, rack_name: str) -> str:
        return f"{self.spec.cluster_name}-{self.name}-{rack_name}-sts"

    def disruption_budget_name(self) -> str:
        return f"{self.name}-pdb"

    def is_stopped(self) -> bool:
        return self.spec.stopped

    def is_initialized(self) -> bool:
        return self.status.condition_status(ConditionType.INITIALIZED)


@dataclass
class RackInformation:
    """Desired node and seed counts for one rack, recomputed every pass."""

    rack_name: str
    node_count: int
    seed_count: int = 0


@dataclass
class Workload:
    """
    The scaling unit backing one rack.

    Attributes:
        replicas: Desired replica count (actual node count for the rack).
        ready_replicas: Replicas whose node-instance reports ready.
        content_hash: Hash of the rendered template, for change detection.
        template: Rendered template, opaque to the engine.
    """

    name: str
    namespace: str
    rack: str
    replicas: int = 0
    ready_replicas: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    content_hash: str = ""
    template: dict = field(default_factory=dict)

    def node_instance_name(self, ordinal: int) -> str:
        return f"{self.name}-{ordinal}"


@dataclass
class Taint:
    key: str
    value: str
    effect: str = lbl.TAINT_EFFECT_NO_SCHEDULE


@dataclass
class Host:
    """An infrastructure machine. Not owned by the operator."""

    name: str
    taints: list[Taint] = field(default_factory=list)

    def has_taint(self, key: str, value: str, effect: str) -> bool:
        return any(
            t.key == key and t.value == value and t.effect == effect for t in self.taints
        )

    def has_emm_taint(self, value: TaintValue) -> bool:
        return self.has_taint(lbl.EMM_TAINT_KEY, value.value, lbl.TAINT_EFFECT_NO_SCHEDULE)


@dataclass
class NodeInstance:
    """
    One database node (a pod).

    Attributes:
        host_name: Host the node-instance is scheduled on, "" when unscheduled.
        ip: Address the management API and membership data refer to.
        ready: Readiness as reported by the orchestration platform.
        unschedulable: The scheduler could not place this node-instance.
        claim_names: Volume claims mounted by the node-instance.
        uid: Identity of this incarnation; a recreated node-instance gets a new one.
    """

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    host_name: str = ""
    ip: str = ""
    ready: bool = False
    unschedulable: bool = False
    claim_names: list[str] = field(default_factory=list)
    uid: str = ""

    @property
    def rack(self) -> str:
        return self.labels.get(lbl.RACK_LABEL, "")

    @property
    def node_state(self) -> NodeState | None:
        return NodeState.from_label(self.labels.get(lbl.NODE_STATE_LABEL))

    @property
    def ordinal(self) -> int:
        match = _ORDINAL_RE.search(self.name)
        if match is None:
            return -1
        return int(match.group(1))

    @property
    def is_seed(self) -> bool:
        return self.labels.get(lbl.SEED_NODE_LABEL) == "true"

    def is_started(self) -> bool:
        return self.node_state == NodeState.STARTED

    def is_starting(self) -> bool:
        return self.node_state == NodeState.STARTING


@dataclass
class VolumeClaim:
    """A persistent volume claim backing one node-instance."""

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    capacity_bytes: int | None = None

    @property
    def selected_host(self) -> str:
        return self.annotations.get(lbl.SELECTED_NODE_ANNOTATION, "")

    @property
    def is_inaccessible(self) -> bool:
        return (
            self.annotations.get(lbl.VOLUME_HEALTH_ANNOTATION)
            == VolumeHealth.INACCESSIBLE.value
        )


@dataclass
class DisruptionBudget:
    name: str
    namespace: str
    min_available: int
    labels: dict[str, str] = field(default_factory=dict)


def claim_name_for(node_instance_name: str) -> str:
    """Name of the data volume claim for a node-instance."""
    return f"server-data-{node_instance_name}"
