"""
Top-level reconcile pass for one cluster resource.

ClusterReconciler composes every check into one prioritized pipeline:

1. Compute per-rack desired node and seed counts
2. Refresh node statuses from membership data, finish node replacements
3. Drive in-flight decommissions
4. Arbitrate maintenance taints and inaccessible volumes (when enabled)
5. Reconcile racks
6. Clear action conditions once every action has settled
7. Mark the datacenter Initialized and Ready

The first completed result ends the pass. Operator errors raised by any
check become Error() so the controller backs off; programming errors
propagate.
"""

import logging
from dataclasses import dataclass, field

from operator_cassandra.capability import ContextEMMCapability
from operator_cassandra.config import OperatorSettings, settings
from operator_cassandra.context import ReconciliationContext
from operator_cassandra.decommission import DecommissionCoordinator
from operator_cassandra.emm import EMMCoordinator
from operator_cassandra.errors import ManagementApiError, NotFoundError, OperatorError
from operator_cassandra.events import EventReason
from operator_cassandra.labels import ConditionType
from operator_cassandra.protocols import (
    EventRecorder,
    ManagementApi,
    OrchestrationClient,
    WorkloadFactory,
)
from operator_cassandra.pvc_health import PVCHealthMonitor
from operator_cassandra.racks import RackReconciler
from operator_cassandra.result import (
    Continue,
    Done,
    Error,
    ReconcileResult,
    RequeueSoon,
    run_guards,
)
from operator_cassandra.topology import calculate_rack_information
from operator_cassandra.types import NodeStatus

logger = logging.getLogger(__name__)

ACTION_CONDITIONS = (
    ConditionType.UPDATING,
    ConditionType.ROLLING_RESTART,
    ConditionType.RESUMING,
)


@dataclass
class ClusterReconciler:
    """
    Reconciles cluster resources by key.

    Example:
        reconciler = ClusterReconciler(
            client=client,
            mgmt=NodeMgmtClient(http=http),
            recorder=recorder,
            factory=factory,
        )
        result = await reconciler.reconcile("db", "dc1")
    """

    client: OrchestrationClient
    mgmt: ManagementApi
    recorder: EventRecorder
    factory: WorkloadFactory
    settings: OperatorSettings = field(default_factory=lambda: settings)

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one pass for the cluster resource namespace/name."""
        try:
            cluster = await self.client.get_cluster(namespace, name)
        except NotFoundError:
            logger.info(f"cluster {namespace}/{name} not found, ignoring")
            return Done()
        except OperatorError as e:
            return Error(e)

        ctx = ReconciliationContext(
            cluster=cluster,
            client=self.client,
            mgmt=self.mgmt,
            recorder=self.recorder,
            factory=self.factory,
            settings=self.settings,
        )
        try:
            await ctx.load()
            return await self.reconcile_context(ctx)
        except OperatorError as e:
            logger.error(f"reconcile of {cluster.key} failed: {e}")
            return Error(e)

    async def reconcile_context(self, ctx: ReconciliationContext) -> ReconcileResult:
        decommission = DecommissionCoordinator(ctx)
        racks = RackReconciler(ctx, decommission)

        guards = [
            lambda: self.calculate_rack_information(ctx),
            lambda: self.update_node_statuses(ctx),
            decommission.check_decommissioning_nodes,
        ]
        if self.settings.emm_enabled:
            capability = ContextEMMCapability(ctx)
            guards.append(EMMCoordinator(capability, self.settings).check)
            guards.append(PVCHealthMonitor(capability, self.settings).check)
        guards += [
            racks.reconcile,
            lambda: self.clear_action_conditions(ctx),
            lambda: self.check_initialized_and_ready(ctx),
        ]

        result = await run_guards(guards)
        if result.completed():
            return result
        return Done()

    async def calculate_rack_information(self, ctx: ReconciliationContext) -> ReconcileResult:
        try:
            ctx.rack_information = calculate_rack_information(ctx.cluster.spec)
        except OperatorError as e:
            logger.error(f"error calculating rack information for {ctx.cluster.key}: {e}")
            return Error(e)
        return Continue()

    async def update_node_statuses(self, ctx: ReconciliationContext) -> ReconcileResult:
        """
        Record host IDs from membership data and finish node replacements.

        Membership data is best effort here: a failing management API is
        logged and the pass goes on with the statuses it has.
        """
        status = ctx.cluster.status
        updated = False

        try:
            endpoints = await ctx.fetch_endpoints()
        except ManagementApiError as e:
            logger.warning(f"could not refresh node statuses for {ctx.cluster.key}: {e}")
            endpoints = []

        for node in ctx.node_instances:
            if not node.ip:
                continue
            for endpoint in endpoints:
                if endpoint.address == node.ip and endpoint.host_id:
                    current = status.node_statuses.get(node.name)
                    if current is None or current.host_id != endpoint.host_id:
                        status.node_statuses[node.name] = NodeStatus(host_id=endpoint.host_id)
                        updated = True
                    break

        for node_name in list(status.node_replacements):
            node = ctx.find_node_instance(node_name)
            if node is None or not ctx.is_server_ready(node):
                continue
            replaced_uid = status.replaced_uids.get(node_name)
            if replaced_uid and node.uid == replaced_uid:
                # still the old node-instance, not yet gone
                continue
            status.node_replacements.remove(node_name)
            status.replaced_uids.pop(node_name, None)
            ctx.record_event(
                EventReason.FINISHED_REPLACE_NODE, f"Finished replacing {node_name}"
            )
            updated = True

        if updated:
            await ctx.patch_status()
        return Continue()

    async def clear_action_conditions(self, ctx: ReconciliationContext) -> ReconcileResult:
        """
        Clear conditions of actions that have settled.

        Scaling up is followed by a keyspace cleanup so the old nodes drop
        the token ranges the new ones took over. One successful cleanup
        call is enough.
        """
        status = ctx.cluster.status
        updated = False

        if status.condition_status(ConditionType.SCALING_UP):
            await self._cleanup_after_scaling(ctx)
            updated = ctx.set_condition(ConditionType.SCALING_UP, False) or updated

        if not status.node_replacements:
            updated = ctx.set_condition(ConditionType.REPLACING_NODES, False) or updated
        for condition_type in ACTION_CONDITIONS:
            updated = ctx.set_condition(condition_type, False) or updated

        if updated:
            await ctx.patch_status()
            return RequeueSoon(0)
        return Continue()

    async def _cleanup_after_scaling(self, ctx: ReconciliationContext) -> None:
        error: ManagementApiError | None = None
        for node in ctx.node_instances:
            if not (node.ip and ctx.is_server_ready(node)):
                continue
            try:
                await ctx.mgmt.keyspace_cleanup(node)
                return
            except ManagementApiError as e:
                logger.warning(f"keyspace cleanup on {node.name} failed: {e}")
                error = e
        if error is not None:
            raise error

    async def check_initialized_and_ready(self, ctx: ReconciliationContext) -> ReconcileResult:
        updated = ctx.set_condition(ConditionType.INITIALIZED, True)
        stopped = ctx.cluster.is_stopped() or ctx.cluster.status.condition_status(
            ConditionType.STOPPED
        )
        if not stopped:
            updated = ctx.set_condition(ConditionType.READY, True) or updated

        if updated:
            await ctx.patch_status()
            return RequeueSoon(0)
        return Continue()
