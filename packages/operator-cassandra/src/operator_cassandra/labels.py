"""
Wire names for labels, annotations and taints.

Everything that is serialized onto orchestration objects lives here so the
rest of the engine works with enums and never with raw strings.
"""

from enum import Enum

# Identity labels
CLUSTER_LABEL = "cassandra.datastax.com/cluster"
DATACENTER_LABEL = "cassandra.datastax.com/datacenter"
RACK_LABEL = "cassandra.datastax.com/rack"
SEED_NODE_LABEL = "cassandra.datastax.com/seed-node"
NODE_STATE_LABEL = "cassandra.datastax.com/node-state"

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "cass-operator"

# Annotations
EMM_FAILURE_ANNOTATION = "appplatform.vmware.com/emm-failure"
VOLUME_HEALTH_ANNOTATION = "volumehealth.storage.kubernetes.io/health"
SELECTED_NODE_ANNOTATION = "volume.kubernetes.io/selected-node"
CONTENT_HASH_ANNOTATION = "cassandra.datastax.com/resource-hash"

# Host taints
EMM_TAINT_KEY = "node.vmware.com/drain"
TAINT_EFFECT_NO_SCHEDULE = "NoSchedule"

DEFAULT_RACK_NAME = "default"


class NodeState(str, Enum):
    """Database node lifecycle, stored in NODE_STATE_LABEL."""

    READY_TO_START = "Ready-to-Start"
    STARTING = "Starting"
    STARTED = "Started"
    DECOMMISSIONING = "Decommissioning"

    @classmethod
    def from_label(cls, value: str | None) -> "NodeState | None":
        """Parse a label value, returning None for missing or unknown values."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class TaintValue(str, Enum):
    """Values of EMM_TAINT_KEY."""

    PLANNED_DOWNTIME = "planned-downtime"
    EVACUATE_ALL_DATA = "drain"


class EMMFailure(str, Enum):
    """Reasons written to EMM_FAILURE_ANNOTATION."""

    GENERIC_FAILURE = "GenericFailure"
    NOT_ENOUGH_RESOURCES = "NotEnoughResources"
    TOO_MANY_EXISTING_FAILURES = "TooManyExistingFailures"


class VolumeHealth(str, Enum):
    """Values of VOLUME_HEALTH_ANNOTATION."""

    INACCESSIBLE = "inaccessible"


class ConditionType(str, Enum):
    """Cluster resource status conditions."""

    READY = "Ready"
    INITIALIZED = "Initialized"
    REPLACING_NODES = "ReplacingNodes"
    SCALING_UP = "ScalingUp"
    SCALING_DOWN = "ScalingDown"
    UPDATING = "Updating"
    STOPPED = "Stopped"
    RESUMING = "Resuming"
    ROLLING_RESTART = "RollingRestart"
    VALID = "Valid"


def cluster_labels(cluster_name: str) -> dict[str, str]:
    return {CLUSTER_LABEL: cluster_name}


def datacenter_labels(cluster_name: str, datacenter: str) -> dict[str, str]:
    labels = cluster_labels(cluster_name)
    labels[DATACENTER_LABEL] = datacenter
    return labels


def rack_labels(cluster_name: str, datacenter: str, rack: str) -> dict[str, str]:
    labels = datacenter_labels(cluster_name, datacenter)
    labels[RACK_LABEL] = rack
    return labels


def merge_labels_if_different(
    existing: dict[str, str], desired: dict[str, str]
) -> tuple[bool, dict[str, str]]:
    """
    Merge desired labels (plus the managed-by label) into existing ones.

    Returns:
        (changed, merged). When nothing changes, merged is `existing`.
    """
    merged = {**existing, **desired, MANAGED_BY_LABEL: MANAGED_BY_VALUE}
    if merged == existing:
        return False, existing
    return True, merged
