"""Replacement of node-instances whose volume has become inaccessible."""

import logging

from operator_cassandra.config import OperatorSettings, settings as default_settings
from operator_cassandra.emm import node_names_with_inaccessible_claims, racks_with_down_joined_nodes
from operator_cassandra.protocols import EMMCapability
from operator_cassandra.result import Continue, ReconcileResult, RequeueSoon

logger = logging.getLogger(__name__)


class PVCHealthMonitor:
    """
    Starts at most one node replacement per pass for inaccessible volumes.

    Replacement rebuilds the node from its peers, so it is only started when
    it cannot widen an outage: never while two racks are down, only inside
    the down rack when one is, and never while another replacement runs.
    """

    def __init__(
        self, capability: EMMCapability, settings: OperatorSettings | None = None
    ) -> None:
        self.capability = capability
        self.settings = settings if settings is not None else default_settings

    async def check(self) -> ReconcileResult:
        candidates = await node_names_with_inaccessible_claims(self.capability)
        if not candidates:
            return Continue()

        down_racks = racks_with_down_joined_nodes(self.capability)
        if len(down_racks) > 1:
            logger.info(
                "found volumes marked inaccessible but ignoring them: "
                f"racks {down_racks} have not ready node-instances"
            )
            return Continue()

        if len(down_racks) == 1:
            candidates = await node_names_with_inaccessible_claims(
                self.capability, down_racks[0]
            )
            if not candidates:
                logger.info(
                    "found volumes marked inaccessible but ignoring them: "
                    f"a different rack ({down_racks[0]}) has not ready node-instances"
                )
                return Continue()

        if self.capability.in_progress_node_replacements():
            logger.info("found volumes marked inaccessible but a node replacement is running")
            return Continue()

        node_name = candidates[0]
        logger.info(f"starting node replacement for {node_name} with an inaccessible volume")
        await self.capability.start_node_replace(node_name)
        return RequeueSoon(self.settings.requeue_short_seconds)
