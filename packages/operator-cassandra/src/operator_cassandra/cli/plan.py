"""Topology planning command.

Shows how a datacenter of a given size is laid out over its racks: node and
seed counts per rack, in rack order, exactly as a reconcile pass computes them.
"""

import json

import typer
from rich.console import Console
from rich.table import Table

from operator_cassandra.errors import TopologyError
from operator_cassandra.topology import calculate_rack_information
from operator_cassandra.types import ClusterSpec, Rack


def plan(
    size: int = typer.Option(..., "--size", "-n", help="Total number of database nodes"),
    racks: str = typer.Option(
        "", "--racks", "-r", help="Comma-separated rack names (default: one rack)"
    ),
    stopped: bool = typer.Option(False, "--stopped", help="Plan for a parked datacenter"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show per-rack node and seed counts for a datacenter size."""
    rack_names = [r.strip() for r in racks.split(",") if r.strip()]
    spec = ClusterSpec(
        cluster_name="plan",
        size=size,
        racks=[Rack(name=name) for name in rack_names],
        stopped=stopped,
    )

    try:
        information = calculate_rack_information(spec)
    except TopologyError as e:
        print(f"Error: {e}")
        raise typer.Exit(1)

    if json_output:
        data = [
            {"rack": r.rack_name, "nodes": r.node_count, "seeds": r.seed_count}
            for r in information
        ]
        print(json.dumps(data, indent=2))
        return

    console = Console()
    table = Table(title=f"Topology for {size} node(s)")
    table.add_column("Rack", style="cyan")
    table.add_column("Nodes", justify="right")
    table.add_column("Seeds", justify="right")
    for r in information:
        table.add_row(r.rack_name, str(r.node_count), str(r.seed_count))
    console.print(table)
