"""
Cassandra Operator Library

Decision engine for a rack-aware Cassandra/DSE datacenter operator:

- Result algebra: Continue / Done / RequeueSoon / Error, composed with run_guards
- Topology: per-rack node and seed counts from size and rack list
- Rack reconciliation, one-node-at-a-time decommission
- Maintenance mode (EMM) arbitration and inaccessible volume replacement
- ReconcileController: work queue honouring requeues and error backoff
"""

__version__ = "0.1.0"

from operator_cassandra.controller import ReconcileController
from operator_cassandra.reconciler import ClusterReconciler
from operator_cassandra.result import (
    Continue,
    Done,
    Error,
    ReconcileOutput,
    ReconcileResult,
    RequeueSoon,
    run_guards,
)
from operator_cassandra.topology import calculate_rack_information, split_racks

__all__ = [
    "__version__",
    "ClusterReconciler",
    "Continue",
    "Done",
    "Error",
    "ReconcileController",
    "ReconcileOutput",
    "ReconcileResult",
    "RequeueSoon",
    "calculate_rack_information",
    "run_guards",
    "split_racks",
]
