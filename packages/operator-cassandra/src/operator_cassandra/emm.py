"""
Infrastructure maintenance (EMM) arbitration.

The infrastructure signals maintenance by tainting a host with
node.vmware.com/drain:

- "planned-downtime": the host goes away temporarily; its volumes survive
- "drain": evacuate all data; the host and its local volumes go away

The operator either makes room (deletes node-instances so they reschedule
elsewhere) or refuses by annotating the host's node-instances with an
emm-failure reason, which the infrastructure reads as a failed operation.
The rule is never to put a second rack at risk while one rack already has
down, previously-joined nodes.

EMMCoordinator is pure decision logic over an EMMCapability, so it can be
driven by fakes. Host sets are iterated in sorted order.

Evacuate-all-data hosts are emptied one node-instance per pass while
planned-downtime hosts are emptied all at once. The two policies are kept
apart on purpose: evacuating rebuilds data, so it goes slowly; planned
downtime migrates nothing.
"""

import functools
import logging
from dataclasses import dataclass, field

from operator_cassandra import labels as lbl
from operator_cassandra.config import OperatorSettings, settings as default_settings
from operator_cassandra.labels import EMMFailure, TaintValue
from operator_cassandra.protocols import EMMCapability
from operator_cassandra.result import Continue, ReconcileResult, RequeueSoon, run_guards
from operator_cassandra.types import NodeInstance

logger = logging.getLogger(__name__)


def racks_with_down_joined_nodes(capability: EMMCapability) -> list[str]:
    """Racks holding not-ready node-instances whose database node has joined before."""
    return sorted({n.rack for n in capability.not_ready_joined_node_instances()})


async def node_names_with_inaccessible_claims(
    capability: EMMCapability, rack_name: str = ""
) -> list[str]:
    """
    Node-instances with at least one claim marked inaccessible.

    Args:
        rack_name: Restrict to one rack; "" means every rack.
    """
    names = []
    for node in capability.datacenter_node_instances():
        if rack_name and node.rack != rack_name:
            continue
        claims = await capability.get_node_instance_claims(node)
        if any(claim.is_inaccessible for claim in claims):
            names.append(node.name)
    return sorted(names)


@dataclass
class TaintedHosts:
    """Host names carrying each EMM taint value, observed once per check."""

    planned_downtime: set[str] = field(default_factory=set)
    evacuate_all_data: set[str] = field(default_factory=set)

    @property
    def all(self) -> set[str]:
        return self.planned_downtime | self.evacuate_all_data


class EMMCoordinator:
    """Decides which maintenance operations may proceed."""

    def __init__(
        self, capability: EMMCapability, settings: OperatorSettings | None = None
    ) -> None:
        self.capability = capability
        self.settings = settings if settings is not None else default_settings

    async def check(self) -> ReconcileResult:
        """
        Run the EMM guards.

        Returns:
            The first completed result, or Continue when there is nothing to
            do or maintenance must wait for node-instances to come back.
        """
        result = await run_guards(
            [self.cleanup_emm_annotations, self.wait_for_failure_processing]
        )
        if result.completed():
            return result

        if not self.capability.is_initialized():
            logger.info("skipping EMM check as the cluster is not yet initialized")
            return Continue()

        tainted = await self.tainted_hosts()
        down_racks = racks_with_down_joined_nodes(self.capability)

        guards = [
            functools.partial(self.fail_when_not_enough_resources, tainted),
            functools.partial(self.fail_evacuate_when_stopped, tainted),
            functools.partial(self.fail_when_too_many_down_racks, tainted, down_racks),
        ]
        if down_racks:
            down_rack = down_racks[0]
            guards.append(
                functools.partial(self.fail_hosts_outside_down_rack, tainted, down_rack)
            )
        guards.append(functools.partial(self.remove_not_ready_on_tainted_hosts, tainted))

        if down_racks:
            # Down node-instances outside tainted hosts are most likely ones
            # moved earlier; let them start unless their volume is stuck.
            guards.append(functools.partial(self.replace_evacuated_node_instances, tainted))
            return await run_guards(guards)

        guards.append(functools.partial(self.remove_next_from_evacuate_host, tainted))
        guards.append(functools.partial(self.remove_all_from_planned_downtime_host, tainted))
        return await run_guards(guards)

    # Observations

    async def tainted_hosts(self) -> TaintedHosts:
        tainted = TaintedHosts()
        for host in await self.capability.list_datacenter_hosts():
            if host.has_emm_taint(TaintValue.PLANNED_DOWNTIME):
                tainted.planned_downtime.add(host.name)
            if host.has_emm_taint(TaintValue.EVACUATE_ALL_DATA):
                tainted.evacuate_all_data.add(host.name)
        return tainted

    def node_instances_on_host(self, host_name: str) -> list[NodeInstance]:
        return [
            n for n in self.capability.datacenter_node_instances() if n.host_name == host_name
        ]

    def failed_node_instances(self) -> list[NodeInstance]:
        return [
            n
            for n in self.capability.datacenter_node_instances()
            if lbl.EMM_FAILURE_ANNOTATION in n.annotations
        ]

    # Guards

    async def cleanup_emm_annotations(self) -> ReconcileResult:
        """Strip failure annotations from node-instances whose host is no longer tainted."""
        tainted = (await self.tainted_hosts()).all
        updated = False
        for node in self.failed_node_instances():
            if node.host_name in tainted:
                continue
            del node.annotations[lbl.EMM_FAILURE_ANNOTATION]
            await self.capability.update_node_instance(node)
            updated = True

        if updated:
            logger.info("cleaned up defunct EMM failure annotations")
            return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    async def wait_for_failure_processing(self) -> ReconcileResult:
        """A tainted host still has failed node-instances: the infrastructure has not reacted yet."""
        tainted = (await self.tainted_hosts()).all
        if any(n.host_name in tainted for n in self.failed_node_instances()):
            return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    async def fail_when_not_enough_resources(self, tainted: TaintedHosts) -> ReconcileResult:
        """
        Fail every operation when the untainted hosts cannot hold every node-instance.

        This is a basic check that displaced node-instances have somewhere
        to go, not a scheduling simulation.
        """
        all_hosts = {h.name for h in await self.capability.list_all_hosts()}
        available = all_hosts - tainted.all
        if len(self.capability.datacenter_node_instances()) <= len(available):
            return Continue()

        updated = False
        for host_name in sorted(tainted.all):
            updated = await self.fail_emm(host_name, EMMFailure.NOT_ENOUGH_RESOURCES) or updated
        if updated:
            return RequeueSoon(self.settings.requeue_not_enough_resources_seconds)
        return Continue()

    async def fail_evacuate_when_stopped(self, tainted: TaintedHosts) -> ReconcileResult:
        """Rebuilding evacuated data needs a running cluster."""
        if not self.capability.is_stopped():
            return Continue()

        updated = False
        for host_name in sorted(tainted.evacuate_all_data):
            logger.info(
                f"failing evacuate-all-data operation on {host_name} "
                "as the datacenter is stopped"
            )
            updated = await self.fail_emm(host_name, EMMFailure.GENERIC_FAILURE) or updated
        if updated:
            return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    async def fail_when_too_many_down_racks(
        self, tainted: TaintedHosts, down_racks: list[str]
    ) -> ReconcileResult:
        if len(down_racks) <= 1:
            return Continue()

        updated = False
        for host_name in sorted(tainted.all):
            logger.info(
                f"failing EMM operation on {host_name}: racks {down_racks} "
                "already have not ready node-instances"
            )
            updated = (
                await self.fail_emm(host_name, EMMFailure.TOO_MANY_EXISTING_FAILURES) or updated
            )
        if updated:
            return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    async def fail_hosts_outside_down_rack(
        self, tainted: TaintedHosts, down_rack: str
    ) -> ReconcileResult:
        """Only hosts carrying node-instances of the down rack may be worked on."""
        down_rack_hosts = {
            n.host_name
            for n in self.capability.datacenter_node_instances()
            if n.rack == down_rack
        }
        outside = tainted.all - down_rack_hosts

        updated = False
        for host_name in sorted(outside):
            logger.info(
                f"failing EMM operation on {host_name}: it has no node-instances "
                f"of the down rack {down_rack}"
            )
            updated = (
                await self.fail_emm(host_name, EMMFailure.TOO_MANY_EXISTING_FAILURES) or updated
            )
        if updated:
            return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    async def remove_not_ready_on_tainted_hosts(self, tainted: TaintedHosts) -> ReconcileResult:
        """
        Delete not-ready node-instances on tainted hosts.

        A node-instance stuck starting on a tainted host would hold back the
        start of every other node-instance. Earlier guards guarantee that
        the only not-ready node-instances left either never joined or all
        belong to the one down rack.
        """
        removed = False
        for node in self.capability.not_ready_node_instances():
            if node.host_name in tainted.all:
                await self.capability.remove_node_instance(node)
                removed = True
        if removed:
            return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    async def replace_evacuated_node_instances(self, tainted: TaintedHosts) -> ReconcileResult:
        """
        Replace down node-instances that cannot schedule because their volume
        is pinned to a host being evacuated.

        The scheduler gives no machine readable reason, so an unschedulable
        node-instance whose claim selects an evacuating host other than its
        own is assumed stuck on that claim.
        """
        replaced = False
        for node in self.capability.not_ready_joined_node_instances():
            if not node.unschedulable:
                continue
            claim_host = await self._selected_host(node)
            if (
                claim_host
                and claim_host != node.host_name
                and claim_host in tainted.evacuate_all_data
            ):
                logger.info(f"replacing {node.name}: its volume is pinned to {claim_host}")
                await self.capability.start_node_replace(node.name)
                replaced = True
        if replaced:
            return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    async def remove_next_from_evacuate_host(self, tainted: TaintedHosts) -> ReconcileResult:
        for host_name in sorted(tainted.evacuate_all_data):
            for node in self.node_instances_on_host(host_name):
                logger.info(f"removing {node.name} from evacuating host {host_name}")
                await self.capability.remove_node_instance(node)
                return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    async def remove_all_from_planned_downtime_host(
        self, tainted: TaintedHosts
    ) -> ReconcileResult:
        for host_name in sorted(tainted.planned_downtime):
            nodes = self.node_instances_on_host(host_name)
            if not nodes:
                continue
            logger.info(
                f"removing {len(nodes)} node-instance(s) from {host_name} for planned downtime"
            )
            for node in nodes:
                await self.capability.remove_node_instance(node)
            return RequeueSoon(self.settings.requeue_short_seconds)
        return Continue()

    # Operations

    async def fail_emm(self, host_name: str, failure: EMMFailure) -> bool:
        """
        Annotate every node-instance on a host with a failure reason.

        Node-instances that already carry a failure annotation are left alone.

        Returns:
            True if any node-instance was updated.
        """
        updated = False
        for node in self.node_instances_on_host(host_name):
            if lbl.EMM_FAILURE_ANNOTATION in node.annotations:
                continue
            node.annotations[lbl.EMM_FAILURE_ANNOTATION] = failure.value
            await self.capability.update_node_instance(node)
            updated = True
        return updated

    async def _selected_host(self, node: NodeInstance) -> str:
        for claim in await self.capability.get_node_instance_claims(node):
            if claim.selected_host:
                return claim.selected_host
        return ""
