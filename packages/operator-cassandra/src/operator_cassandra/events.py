"""
Event reasons recorded against the cluster resource.

Events are the user-visible trail of what the operator did. Reasons are
stable identifiers; messages are free text.
"""

from enum import Enum

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


class EventReason(str, Enum):
    CREATED_RESOURCE = "CreatedResource"
    SCALING_UP_RACK = "ScalingUpRack"
    SCALING_DOWN_RACK = "ScalingDownRack"
    STOPPING_DATACENTER = "StoppingDatacenter"
    LABELED_POD_AS_SEED = "LabeledPodAsSeed"
    UNLABELED_POD_AS_SEED = "UnlabeledPodAsSeed"
    LABELED_RACK_RESOURCE = "LabeledRackResource"
    LABELED_POD_AS_DECOMMISSIONING = "LabeledPodAsDecommissioning"
    DELETED_PVC = "DeletedPvc"
    REPLACING_NODE = "ReplacingNode"
    FINISHED_REPLACE_NODE = "FinishedReplaceNode"
    UPDATING_RACK = "UpdatingRack"
