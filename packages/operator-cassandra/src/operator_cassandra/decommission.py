"""
Decommission coordination for scale-down.

A rack shrinks one node at a time, always from its highest ordinal so
ordinals stay contiguous:

1. ScalingDown is set on the cluster status
2. The node-instance with ordinal replicas - 1 is picked
3. Peers are checked for enough free space to absorb its data
4. The database's decommission operation is called on it
5. The node-instance is labelled Decommissioning
6. Each pass polls the membership data until the node reports LEFT
7. Its claims are deleted, the workload shrinks by one and its node status
   entry is dropped
8. ScalingDown is cleared once no node-instance is Decommissioning

The decommission call is known to report failure on success paths, so call
errors are logged and tolerated by default (see
OperatorSettings.tolerate_decommission_errors). Completion is confirmed only
by the membership data.
"""

import logging

from operator_cassandra import labels as lbl
from operator_cassandra.context import ReconciliationContext
from operator_cassandra.errors import InvariantError, ManagementApiError
from operator_cassandra.events import EventReason
from operator_cassandra.labels import ConditionType, NodeState
from operator_cassandra.mgmt.types import EndpointState
from operator_cassandra.result import Continue, Error, ReconcileResult, RequeueSoon
from operator_cassandra.types import NodeInstance, RackInformation, Workload, claim_name_for

logger = logging.getLogger(__name__)

NOT_ENOUGH_SPACE_REASON = "notEnoughSpaceToScaleDown"


class DecommissionCoordinator:
    """Removes one node at a time from over-sized racks."""

    def __init__(self, ctx: ReconciliationContext) -> None:
        self.ctx = ctx

    async def decommission_node_on_rack(
        self, rack: RackInformation, workload: Workload
    ) -> ReconcileResult:
        """
        Start decommissioning the highest-ordinal node of a rack.

        Called by the rack reconciler when the workload has more replicas
        than the rack's desired node count. Never lowers the replica count.
        """
        ctx = self.ctx
        await ctx.update_conditions((ConditionType.SCALING_DOWN, True))

        logger.info(
            f"rack {rack.rack_name} has {workload.replicas} replicas, "
            f"wants {rack.node_count}; decommissioning one node"
        )
        ctx.record_event(EventReason.SCALING_DOWN_RACK, f"Scaling down rack {rack.rack_name}")

        node_name = workload.node_instance_name(workload.replicas - 1)
        node = ctx.find_node_instance(node_name)
        if node is None:
            return Error(
                InvariantError(f"could not find node-instance {node_name} to decommission")
            )
        if not (node.ip and ctx.is_server_ready(node)):
            return Error(
                InvariantError(
                    f"management API is not up on {node_name}, which is being decommissioned"
                )
            )

        endpoints = await ctx.fetch_endpoints()
        failure = await self._ensure_peers_can_absorb(node, endpoints)
        if failure is not None:
            return failure

        await self._call_decommission(node)

        logger.info(f"marking {node.name} as decommissioning")
        node.labels[lbl.NODE_STATE_LABEL] = NodeState.DECOMMISSIONING.value
        await ctx.client.update_node_instance(node)
        ctx.record_event(
            EventReason.LABELED_POD_AS_DECOMMISSIONING,
            f"Labeled node as decommissioning {node.name}",
        )

        return RequeueSoon(ctx.settings.requeue_decommission_wait_seconds)

    async def check_decommissioning_nodes(self) -> ReconcileResult:
        """
        Drive in-flight decommissions to completion.

        While any node-instance is labelled Decommissioning, this blocks the
        rest of the pass and requeues. Once none is, ScalingDown is cleared.
        """
        ctx = self.ctx
        if not ctx.cluster.status.condition_status(ConditionType.SCALING_DOWN):
            return Continue()

        for node in ctx.decommissioning_node_instances():
            endpoints = await ctx.fetch_endpoints()
            endpoint = _find_endpoint(endpoints, node)

            if endpoint is not None and endpoint.has_left():
                logger.info(f"{node.name} finished decommissioning")
                result = await self._clean_up_after_decommission(node)
                if result is not None:
                    return result
            elif endpoint is not None and endpoint.is_leaving():
                logger.info(f"{node.name} is decommissioning, checking again soon")
            else:
                logger.info(f"decommission of {node.name} has not started, trying again")
                await self._call_decommission(node)

            return RequeueSoon(ctx.settings.requeue_decommission_seconds)

        await ctx.update_conditions((ConditionType.SCALING_DOWN, False))
        return Continue()

    async def _call_decommission(self, node: NodeInstance) -> None:
        try:
            await self.ctx.mgmt.decommission(node)
        except ManagementApiError as e:
            if not self.ctx.settings.tolerate_decommission_errors:
                raise
            logger.info(
                f"error from decommission attempt on {node.name}, "
                f"will retry if it has not started: {e}"
            )

    async def _clean_up_after_decommission(self, node: NodeInstance) -> ReconcileResult | None:
        ctx = self.ctx

        logger.info(f"deleting claims of {node.name}")
        await ctx.delete_node_instance_claims(node)

        workload = ctx.workloads.get(node.rack)
        if workload is None:
            return Error(InvariantError(f"no workload found for rack {node.rack!r}"))

        # A second scale event may already have moved the highest ordinal.
        if node.ordinal == workload.replicas - 1:
            await ctx.update_rack_node_count(workload, workload.replicas - 1)
        else:
            logger.info(
                f"{node.name} is no longer the last node of {workload.name}, "
                "leaving replica count unchanged"
            )

        if ctx.cluster.status.node_statuses.pop(node.name, None) is not None:
            await ctx.patch_status()
        return None

    async def _ensure_peers_can_absorb(
        self, departing: NodeInstance, endpoints: list[EndpointState]
    ) -> ReconcileResult | None:
        """
        Check every other node has room for the departing node's data.

        Returns:
            Error() after setting Valid=false when a peer is too full, else None.
        """
        ctx = self.ctx
        used = _used_bytes_by_node(ctx.node_instances, endpoints)
        needed = used.get(departing.name, 0.0)

        for node in ctx.node_instances:
            if node.name == departing.name:
                continue

            claim = await ctx.client.get_volume_claim(
                ctx.cluster.namespace, claim_name_for(node.name)
            )
            if claim.capacity_bytes is None:
                return Error(
                    InvariantError(
                        "could not determine storage capacity when checking "
                        "if scale-down attempt is valid"
                    )
                )

            free = claim.capacity_bytes - used.get(node.name, 0.0)
            if free < needed:
                msg = (
                    f"Not enough free space available to decommission. {node.name} has "
                    f"{int(free)} free space, but {int(needed)} is needed."
                )
                logger.warning(msg)
                if ctx.set_condition(
                    ConditionType.VALID, False, reason=NOT_ENOUGH_SPACE_REASON, message=msg
                ):
                    await ctx.patch_status()
                return Error(InvariantError(msg))
        return None


def _find_endpoint(endpoints: list[EndpointState], node: NodeInstance) -> EndpointState | None:
    if not node.ip:
        return None
    for endpoint in endpoints:
        if endpoint.address == node.ip:
            return endpoint
    return None


def _used_bytes_by_node(
    nodes: list[NodeInstance], endpoints: list[EndpointState]
) -> dict[str, float]:
    """
    Map node-instance name to reported load in bytes.

    Raises:
        InvariantError: If a reported load is not a number.
    """
    used = {}
    for node in nodes:
        endpoint = _find_endpoint(endpoints, node)
        if endpoint is None or not endpoint.load:
            continue
        try:
            used[node.name] = endpoint.load_bytes()
        except ValueError as e:
            raise InvariantError(
                f"failed to parse load {endpoint.load!r} reported for {node.name}"
            ) from e
    return used
