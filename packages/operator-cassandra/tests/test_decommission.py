"""
Tests for scale-down via the database's decommission protocol.

Each test builds one rack of three ready node-instances with a desired
count of two, so the highest ordinal (sts-2, at 10.0.1.3) is the one to go.
"""

import pytest

from operator_cassandra import labels as lbl
from operator_cassandra.config import OperatorSettings
from operator_cassandra.decommission import NOT_ENOUGH_SPACE_REASON, DecommissionCoordinator
from operator_cassandra.errors import InvariantError, ManagementApiError
from operator_cassandra.events import EventReason
from operator_cassandra.labels import ConditionType, NodeState
from operator_cassandra.mgmt.client import DECOMMISSION_PATH
from operator_cassandra.result import Continue, Error, RequeueSoon
from operator_cassandra.types import Condition, claim_name_for

GIB = 1024**3

LAST = "cluster1-dc1-r1-sts-2"
LAST_IP = "10.0.1.3"


@pytest.fixture
def oversized(make_datacenter):
    """Rack r1 runs three replicas but should run two."""
    dc = make_datacenter(size=2, racks=["r1"])
    dc.add_rack("r1", 3)
    return dc


def decommissioning(dc, node_name: str = LAST):
    """Mark a decommission as already started on `node_name`."""
    dc.cluster.status.set_condition(Condition(type=ConditionType.SCALING_DOWN, status=True))
    dc.node(node_name).labels[lbl.NODE_STATE_LABEL] = NodeState.DECOMMISSIONING.value
    dc.save()
    return dc


class TestStartDecommission:
    """Tests for DecommissionCoordinator.decommission_node_on_rack()."""

    @pytest.mark.asyncio
    async def test_decommissions_highest_ordinal(self, oversized):
        """The last node is decommissioned and labelled; replicas are left alone."""
        oversized.save()
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).decommission_node_on_rack(
            ctx.rack_information[0], ctx.workloads["r1"]
        )

        assert result == RequeueSoon(10)
        assert oversized.mgmt.calls_to(DECOMMISSION_PATH) == [LAST]
        assert oversized.node(LAST).node_state == NodeState.DECOMMISSIONING
        assert oversized.workload("r1").replicas == 3
        assert oversized.stored_cluster().status.condition_status(ConditionType.SCALING_DOWN)
        reasons = oversized.recorder.reasons()
        assert EventReason.SCALING_DOWN_RACK in reasons
        assert EventReason.LABELED_POD_AS_DECOMMISSIONING in reasons

    @pytest.mark.asyncio
    async def test_tolerates_decommission_call_errors(self, oversized):
        """A failing decommission call is logged; completion is confirmed later."""
        oversized.save()
        oversized.mgmt.failing.add(DECOMMISSION_PATH)
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).decommission_node_on_rack(
            ctx.rack_information[0], ctx.workloads["r1"]
        )

        assert result == RequeueSoon(10)
        assert oversized.node(LAST).node_state == NodeState.DECOMMISSIONING

    @pytest.mark.asyncio
    async def test_strict_mode_raises_call_errors(self, oversized):
        oversized.save()
        oversized.mgmt.failing.add(DECOMMISSION_PATH)
        ctx = await oversized.context(
            settings=OperatorSettings(tolerate_decommission_errors=False)
        )

        with pytest.raises(ManagementApiError):
            await DecommissionCoordinator(ctx).decommission_node_on_rack(
                ctx.rack_information[0], ctx.workloads["r1"]
            )
        assert oversized.node(LAST).node_state == NodeState.STARTED

    @pytest.mark.asyncio
    async def test_not_enough_space_on_peers(self, make_datacenter):
        """Peers that cannot absorb the departing data block the scale-down."""
        dc = make_datacenter(size=2, racks=["r1"])
        dc.add_rack("r1", 3, capacity_bytes=10 * GIB, load_bytes=6 * GIB)
        dc.save()
        ctx = await dc.context()

        result = await DecommissionCoordinator(ctx).decommission_node_on_rack(
            ctx.rack_information[0], ctx.workloads["r1"]
        )

        assert isinstance(result, Error)
        assert isinstance(result.error, InvariantError)
        assert dc.mgmt.calls_to(DECOMMISSION_PATH) == []
        valid = dc.stored_cluster().status.get_condition(ConditionType.VALID)
        assert valid is not None
        assert valid.status is False
        assert valid.reason == NOT_ENOUGH_SPACE_REASON

    @pytest.mark.asyncio
    async def test_not_enough_space_replaces_stale_reason(self, make_datacenter):
        """An earlier Valid=false keeps its status but takes the new reason and message."""
        dc = make_datacenter(size=2, racks=["r1"])
        dc.add_rack("r1", 3, capacity_bytes=10 * GIB, load_bytes=6 * GIB)
        dc.cluster.status.set_condition(
            Condition(type=ConditionType.VALID, status=False, reason="earlier", message="old")
        )
        dc.save()
        ctx = await dc.context()

        await DecommissionCoordinator(ctx).decommission_node_on_rack(
            ctx.rack_information[0], ctx.workloads["r1"]
        )

        valid = dc.stored_cluster().status.get_condition(ConditionType.VALID)
        assert valid.status is False
        assert valid.reason == NOT_ENOUGH_SPACE_REASON
        assert "Not enough free space" in valid.message

    @pytest.mark.asyncio
    async def test_missing_node_instance_is_error(self, oversized):
        oversized.save()
        del oversized.client.node_instances[("db", LAST)]
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).decommission_node_on_rack(
            ctx.rack_information[0], ctx.workloads["r1"]
        )

        assert isinstance(result, Error)
        assert isinstance(result.error, InvariantError)
        assert oversized.mgmt.calls_to(DECOMMISSION_PATH) == []


class TestDecommissionProgress:
    """Tests for DecommissionCoordinator.check_decommissioning_nodes()."""

    @pytest.mark.asyncio
    async def test_idle_without_scaling_down(self, oversized):
        """Nothing to check unless ScalingDown is set."""
        oversized.save()
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).check_decommissioning_nodes()

        assert result == Continue()
        assert oversized.mgmt.calls == []

    @pytest.mark.asyncio
    async def test_leaving_node_waits(self, oversized):
        """A node still streaming data keeps its replica and claims."""
        decommissioning(oversized)
        oversized.mgmt.set_status(LAST_IP, "LEAVING,-9223372036854775808")
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).check_decommissioning_nodes()

        assert result == RequeueSoon(5)
        assert oversized.workload("r1").replicas == 3
        assert ("db", claim_name_for(LAST)) in oversized.client.volume_claims
        assert oversized.mgmt.calls_to(DECOMMISSION_PATH) == []

    @pytest.mark.asyncio
    async def test_not_started_decommission_is_reissued(self, oversized):
        """A node still reporting NORMAL is asked to decommission again."""
        decommissioning(oversized)
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).check_decommissioning_nodes()

        assert result == RequeueSoon(5)
        assert oversized.mgmt.calls_to(DECOMMISSION_PATH) == [LAST]
        assert oversized.workload("r1").replicas == 3

    @pytest.mark.asyncio
    async def test_left_node_shrinks_rack_by_one(self, oversized):
        """Only a LEFT status lets the replica count drop, by exactly one."""
        decommissioning(oversized)
        oversized.mgmt.set_status(LAST_IP, "LEFT,-9223372036854775808,1700000000000")
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).check_decommissioning_nodes()

        assert result == RequeueSoon(5)
        assert oversized.workload("r1").replicas == 2
        assert ("db", claim_name_for(LAST)) not in oversized.client.volume_claims
        assert ("db", LAST) not in oversized.client.node_instances
        assert LAST not in oversized.stored_cluster().status.node_statuses
        assert EventReason.DELETED_PVC in oversized.recorder.reasons()

    @pytest.mark.asyncio
    async def test_left_node_that_is_not_last_keeps_replicas(self, oversized):
        """A node that is no longer the highest ordinal does not shrink the rack."""
        middle = "cluster1-dc1-r1-sts-1"
        decommissioning(oversized, middle)
        oversized.mgmt.set_status("10.0.1.2", "LEFT")
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).check_decommissioning_nodes()

        assert result == RequeueSoon(5)
        assert oversized.workload("r1").replicas == 3
        assert ("db", claim_name_for(middle)) not in oversized.client.volume_claims

    @pytest.mark.asyncio
    async def test_clears_scaling_down_when_done(self, oversized):
        """ScalingDown is cleared once no node-instance is decommissioning."""
        oversized.cluster.status.set_condition(
            Condition(type=ConditionType.SCALING_DOWN, status=True)
        )
        oversized.save()
        ctx = await oversized.context()

        result = await DecommissionCoordinator(ctx).check_decommissioning_nodes()

        assert result == Continue()
        stored = oversized.stored_cluster()
        assert not stored.status.condition_status(ConditionType.SCALING_DOWN)
