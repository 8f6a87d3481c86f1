"""
Per-rack reconciliation.

Each rack runs an ordered list of guards. A guard either acts and returns a
completed result, or returns Continue and hands over to the next one:

1. Workload missing: create it, requeue
2. Disruption budget missing or stale: recreate it (non-blocking)
3. Workload identity labels stale: patch them (non-blocking)
4. Rack listed for a force upgrade: update its template regardless of
   readiness, requeue
5. Fewer replicas than desired: scale up, requeue
6. Cluster stopped with replicas left: drain and scale to zero, requeue
7. More replicas than desired: hand over to the DecommissionCoordinator
8. Fewer ready replicas than desired: wait
9. More ready replicas than desired: log, wait
10. Everything ready: fix node-instance and claim labels, seed labels, then
    roll out a stale template

Racks are visited in order and the first rack with a completed result ends
the pass, so at most one rack is mutated at a time.
"""

import functools
import logging

from operator_cassandra import labels as lbl
from operator_cassandra.context import ReconciliationContext
from operator_cassandra.decommission import DecommissionCoordinator
from operator_cassandra.errors import ManagementApiError, NotFoundError
from operator_cassandra.events import EventReason
from operator_cassandra.labels import ConditionType
from operator_cassandra.result import Continue, ReconcileResult, RequeueSoon, run_guards
from operator_cassandra.types import DisruptionBudget, RackInformation, Workload

logger = logging.getLogger(__name__)


class RackReconciler:
    """Runs the rack guard sequence over every rack of a datacenter."""

    def __init__(
        self, ctx: ReconciliationContext, decommission: DecommissionCoordinator
    ) -> None:
        self.ctx = ctx
        self.decommission = decommission

    async def reconcile(self) -> ReconcileResult:
        for rack in self.ctx.rack_information:
            result = await self.reconcile_rack(rack)
            if result.completed():
                return result
        return Continue()

    async def reconcile_rack(self, rack: RackInformation) -> ReconcileResult:
        guards = [
            self.check_rack_created,
            self.check_disruption_budget,
            self.check_rack_labels,
            self.check_force_upgrade,
            self.check_scale_up,
            self.check_stopped,
            self.check_scale_down,
            self.check_ready_replicas,
            self.check_node_labels,
            self.check_seed_labels,
            self.check_rack_template,
        ]
        return await run_guards(functools.partial(guard, rack) for guard in guards)

    def _workload(self, rack: RackInformation) -> Workload:
        return self.ctx.workloads[rack.rack_name]

    def _requeue(self) -> RequeueSoon:
        return RequeueSoon(self.ctx.settings.requeue_short_seconds)

    async def check_rack_created(self, rack: RackInformation) -> ReconcileResult:
        ctx = self.ctx
        if rack.rack_name in ctx.workloads:
            return Continue()

        logger.info(f"creating workload for rack {rack.rack_name}")
        workload = ctx.factory.build_workload(ctx.cluster, rack.rack_name)
        _, workload.labels = lbl.merge_labels_if_different(
            workload.labels, ctx.cluster.rack_labels(rack.rack_name)
        )
        await ctx.client.create_workload(workload)
        ctx.workloads[rack.rack_name] = workload
        ctx.record_event(EventReason.CREATED_RESOURCE, f"Created StatefulSet {workload.name}")

        await self.check_disruption_budget(rack)
        return self._requeue()

    async def check_disruption_budget(self, rack: RackInformation) -> ReconcileResult:
        ctx = self.ctx
        cluster = ctx.cluster
        name = cluster.disruption_budget_name()
        min_available = max(cluster.spec.size - 1, 0)

        try:
            current = await ctx.client.get_disruption_budget(cluster.namespace, name)
        except NotFoundError:
            current = None

        if current is not None and current.min_available == min_available:
            return Continue()

        # Budgets cannot be updated in place.
        if current is not None:
            logger.info(
                f"re-creating disruption budget {name}: min available "
                f"{current.min_available} -> {min_available}"
            )
            await ctx.client.delete_disruption_budget(cluster.namespace, name)

        _, budget_labels = lbl.merge_labels_if_different({}, cluster.datacenter_labels())
        await ctx.client.create_disruption_budget(
            DisruptionBudget(
                name=name,
                namespace=cluster.namespace,
                min_available=min_available,
                labels=budget_labels,
            )
        )
        ctx.record_event(EventReason.CREATED_RESOURCE, f"Created PodDisruptionBudget {name}")
        return Continue()

    async def check_rack_labels(self, rack: RackInformation) -> ReconcileResult:
        ctx = self.ctx
        workload = self._workload(rack)
        changed, updated = lbl.merge_labels_if_different(
            workload.labels, ctx.cluster.rack_labels(rack.rack_name)
        )
        if changed:
            logger.info(f"updating labels of {workload.name}")
            workload.labels = updated
            await ctx.client.update_workload(workload)
            ctx.record_event(
                EventReason.LABELED_RACK_RESOURCE,
                f"Update rack labels for StatefulSet {workload.name}",
            )
        return Continue()

    async def check_force_upgrade(self, rack: RackInformation) -> ReconcileResult:
        ctx = self.ctx
        spec = ctx.cluster.spec
        if rack.rack_name not in spec.force_upgrade_racks:
            return Continue()

        workload = self._workload(rack)
        desired = ctx.factory.build_workload(ctx.cluster, rack.rack_name)
        if desired.content_hash != workload.content_hash:
            ctx.record_event(EventReason.UPDATING_RACK, f"Force updating rack {rack.rack_name}")
            await ctx.update_conditions((ConditionType.UPDATING, True))
            await self._apply_template(workload, desired)

        spec.force_upgrade_racks = [r for r in spec.force_upgrade_racks if r != rack.rack_name]
        stored = await ctx.client.patch_cluster_spec(ctx.cluster)
        ctx.cluster.resource_version = stored.resource_version
        return self._requeue()

    async def check_scale_up(self, rack: RackInformation) -> ReconcileResult:
        ctx = self.ctx
        workload = self._workload(rack)
        if workload.replicas >= rack.node_count:
            return Continue()

        if ctx.cluster.status.condition_status(ConditionType.STOPPED):
            await ctx.update_conditions(
                (ConditionType.STOPPED, False), (ConditionType.RESUMING, True)
            )
        else:
            await ctx.update_conditions((ConditionType.SCALING_UP, True))

        ctx.record_event(EventReason.SCALING_UP_RACK, f"Scaling up rack {rack.rack_name}")
        await ctx.update_rack_node_count(workload, rack.node_count)
        return self._requeue()

    async def check_stopped(self, rack: RackInformation) -> ReconcileResult:
        ctx = self.ctx
        workload = self._workload(rack)
        if not (ctx.cluster.is_stopped() and workload.replicas > 0):
            return Continue()

        logger.info(f"datacenter is stopped, setting rack {rack.rack_name} to zero replicas")
        await ctx.update_conditions((ConditionType.STOPPED, True), (ConditionType.READY, False))
        ctx.record_event(EventReason.STOPPING_DATACENTER, "Stopping datacenter")

        drained = 0
        drain_errors = 0
        for node in ctx.rack_node_instances(rack.rack_name):
            if not (node.ip and ctx.is_server_ready(node)):
                continue
            drained += 1
            try:
                await ctx.mgmt.drain(node)
            except ManagementApiError as e:
                # The node is going down either way.
                logger.error(f"error during drain of {node.name}: {e}")
                drain_errors += 1
        logger.info(
            f"rack {rack.rack_name} drains done: {drained} drained, {drain_errors} errors"
        )

        await ctx.update_rack_node_count(workload, 0)
        return self._requeue()

    async def check_scale_down(self, rack: RackInformation) -> ReconcileResult:
        workload = self._workload(rack)
        if workload.replicas <= rack.node_count:
            return Continue()
        return await self.decommission.decommission_node_on_rack(rack, workload)

    async def check_ready_replicas(self, rack: RackInformation) -> ReconcileResult:
        workload = self._workload(rack)
        if workload.ready_replicas < rack.node_count:
            logger.info(
                f"rack {rack.rack_name}: {workload.ready_replicas} of "
                f"{rack.node_count} replicas ready, waiting"
            )
            return self._requeue()
        if workload.ready_replicas > rack.node_count:
            logger.warning(
                f"rack {rack.rack_name} has {workload.ready_replicas} ready replicas "
                f"but wants {rack.node_count}"
            )
            return self._requeue()
        return Continue()

    async def check_node_labels(self, rack: RackInformation) -> ReconcileResult:
        """Identity labels on each node-instance of the rack and its claims."""
        ctx = self.ctx
        rack_labels = ctx.cluster.rack_labels(rack.rack_name)

        for node in ctx.rack_node_instances(rack.rack_name):
            changed, updated = lbl.merge_labels_if_different(node.labels, rack_labels)
            if changed:
                logger.info(f"updating labels of {node.name}")
                node.labels = updated
                await ctx.client.update_node_instance(node)
                ctx.record_event(
                    EventReason.LABELED_RACK_RESOURCE,
                    f"Update rack labels for Pod {node.name}",
                )

            for claim in await ctx.get_node_instance_claims(node):
                changed, updated = lbl.merge_labels_if_different(claim.labels, rack_labels)
                if changed:
                    claim.labels = updated
                    await ctx.client.update_volume_claim(claim)
                    ctx.record_event(
                        EventReason.LABELED_RACK_RESOURCE,
                        f"Update rack labels for PersistentVolumeClaim {claim.name}",
                    )
        return Continue()

    async def check_seed_labels(self, rack: RackInformation) -> ReconcileResult:
        """
        Label the first seed_count ready node-instances of the rack as seeds.

        Node-instances are taken in name order. A starting node-instance
        keeps whatever seed label it has.
        """
        ctx = self.ctx
        count = 0
        for node in sorted(ctx.rack_node_instances(rack.rack_name), key=lambda n: n.name):
            is_seed = ctx.is_server_ready(node) and count < rack.seed_count
            if is_seed:
                count += 1

            if is_seed and not node.is_seed:
                node.labels[lbl.SEED_NODE_LABEL] = "true"
                await ctx.client.update_node_instance(node)
                ctx.record_event(
                    EventReason.LABELED_POD_AS_SEED, f"Labeled as seed node pod {node.name}"
                )
            elif not is_seed and node.is_seed and not node.is_starting():
                del node.labels[lbl.SEED_NODE_LABEL]
                await ctx.client.update_node_instance(node)
                ctx.record_event(
                    EventReason.UNLABELED_POD_AS_SEED,
                    f"Unlabeled as seed node pod {node.name}",
                )
        return Continue()

    async def check_rack_template(self, rack: RackInformation) -> ReconcileResult:
        ctx = self.ctx
        workload = self._workload(rack)
        desired = ctx.factory.build_workload(ctx.cluster, rack.rack_name)
        if desired.content_hash == workload.content_hash:
            return Continue()

        logger.info(f"template of {workload.name} changed, updating")
        await ctx.update_conditions((ConditionType.UPDATING, True))
        ctx.record_event(EventReason.UPDATING_RACK, f"Updating rack {rack.rack_name}")
        await self._apply_template(workload, desired)
        return self._requeue()

    async def _apply_template(self, workload: Workload, desired: Workload) -> None:
        """Adopt the desired template, keeping replica count and any extra labels."""
        workload.template = desired.template
        workload.content_hash = desired.content_hash
        workload.labels = {**workload.labels, **desired.labels}
        await self.ctx.client.update_workload(workload)
