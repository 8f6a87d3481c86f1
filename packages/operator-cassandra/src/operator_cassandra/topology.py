"""
Rack topology planning.

Desired node and seed counts are derived from the cluster size and the
ordered rack list on every pass. Nothing here is persisted, so the layout is
a pure function of the spec:

    >>> split_racks(13, 5)
    [3, 3, 3, 2, 2]

Racks at lower indices receive the remainder first, which keeps the layout
stable when racks are appended to the end of the list.
"""

from operator_cassandra.errors import TopologyError
from operator_cassandra.types import ClusterSpec, RackInformation

DEFAULT_SEED_COUNT = 3


def split_racks(node_count: int, rack_count: int) -> list[int]:
    """
    Divide node_count as evenly as possible across rack_count racks.

    Args:
        node_count: Total number of nodes, >= 0.
        rack_count: Number of racks, >= 1.

    Returns:
        rack_count non-negative integers summing to node_count. Racks at
        index < node_count % rack_count get exactly one extra node.

    Raises:
        ValueError: If rack_count < 1 or node_count < 0.
    """
    if rack_count < 1:
        raise ValueError(f"rack_count must be at least 1, got {rack_count}")
    if node_count < 0:
        raise ValueError(f"node_count must not be negative, got {node_count}")

    per_rack, extra = divmod(node_count, rack_count)
    return [per_rack + 1 if i < extra else per_rack for i in range(rack_count)]


def seed_count_for(size: int, rack_count: int) -> int:
    """Total seeds for the datacenter: 3, fewer on tiny clusters, one per rack on wide ones."""
    if size < DEFAULT_SEED_COUNT:
        return size
    if rack_count > DEFAULT_SEED_COUNT:
        return rack_count
    return DEFAULT_SEED_COUNT


def calculate_rack_information(spec: ClusterSpec) -> list[RackInformation]:
    """
    Compute desired node and seed counts per rack.

    Args:
        spec: Desired cluster spec. An empty rack list means one "default" rack.

    Returns:
        One RackInformation per rack, in rack order.

    Raises:
        TopologyError: If the size is smaller than the number of racks.
    """
    racks = spec.get_racks()
    rack_count = len(racks)

    if spec.size < rack_count:
        raise TopologyError(
            f"the number of nodes ({spec.size}) must be at least "
            f"the number of racks ({rack_count})"
        )

    if spec.stopped:
        node_counts = [0] * rack_count
    else:
        node_counts = split_racks(spec.size, rack_count)

    seed_counts = split_racks(seed_count_for(spec.size, rack_count), rack_count)

    return [
        RackInformation(
            rack_name=rack.name,
            node_count=node_counts[i],
            seed_count=seed_counts[i],
        )
        for i, rack in enumerate(racks)
    ]
