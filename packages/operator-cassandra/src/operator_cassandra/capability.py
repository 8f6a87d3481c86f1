"""EMMCapability backed by a reconciliation context."""

from dataclasses import dataclass

from operator_cassandra.context import ReconciliationContext
from operator_cassandra.types import Host, NodeInstance, VolumeClaim


@dataclass
class ContextEMMCapability:
    """
    Gives the EMM and volume health checks their narrow view of a pass.

    Node-instance listings come from the pass snapshot; removals keep the
    snapshot in step so later guards in the same pass do not see deleted
    node-instances.
    """

    ctx: ReconciliationContext

    async def list_all_hosts(self) -> list[Host]:
        return await self.ctx.client.list_hosts()

    async def list_datacenter_hosts(self) -> list[Host]:
        """
        Hosts running node-instances of this datacenter, plus hosts their
        claims are pinned to.

        An evacuated node-instance that cannot schedule keeps its claim
        pinned to the old host, which must stay in view until the node is
        replaced.
        """
        used = {n.host_name for n in self.ctx.node_instances if n.host_name}
        for node in self.ctx.node_instances:
            for claim in await self.ctx.get_node_instance_claims(node):
                if claim.selected_host:
                    used.add(claim.selected_host)
        return [h for h in await self.ctx.client.list_hosts() if h.name in used]

    def datacenter_node_instances(self) -> list[NodeInstance]:
        return list(self.ctx.node_instances)

    def not_ready_node_instances(self) -> list[NodeInstance]:
        return [n for n in self.ctx.node_instances if not n.ready]

    def not_ready_joined_node_instances(self) -> list[NodeInstance]:
        return [n for n in self.ctx.node_instances if not n.ready and self.ctx.has_joined(n)]

    async def get_node_instance_claims(self, node: NodeInstance) -> list[VolumeClaim]:
        return await self.ctx.get_node_instance_claims(node)

    async def start_node_replace(self, node_name: str) -> None:
        await self.ctx.start_node_replace(node_name)

    def in_progress_node_replacements(self) -> list[str]:
        return list(self.ctx.cluster.status.node_replacements)

    async def remove_node_instance(self, node: NodeInstance) -> None:
        await self.ctx.client.delete_node_instance(node.namespace, node.name)
        self.ctx.node_instances = [n for n in self.ctx.node_instances if n.name != node.name]

    async def update_node_instance(self, node: NodeInstance) -> None:
        await self.ctx.client.update_node_instance(node)

    def is_stopped(self) -> bool:
        return self.ctx.cluster.is_stopped()

    def is_initialized(self) -> bool:
        return self.ctx.cluster.is_initialized()
