"""Dry-run reconciliation command.

Loads a datacenter snapshot into in-memory collaborators and runs reconcile
passes against it. Nothing leaves the process: the output lists the result
of each pass, the events the operator would have recorded and the management
API calls it would have made.
"""

import asyncio
import json
from pathlib import Path

import pydantic
import typer
from rich.console import Console
from rich.table import Table

from operator_cassandra.cli.snapshot import LoadedSnapshot, load_snapshot
from operator_cassandra.controller import split_key
from operator_cassandra.inmemory import RecordingEventRecorder
from operator_cassandra.reconciler import ClusterReconciler
from operator_cassandra.result import Done, Error, ReconcileResult, RequeueSoon


def describe_result(result: ReconcileResult) -> str:
    if isinstance(result, RequeueSoon):
        return f"requeue in {result.seconds:g}s"
    if isinstance(result, Error):
        return f"error: {result.error}"
    if isinstance(result, Done):
        return "done"
    return "continue"


def check(
    snapshot_path: Path = typer.Argument(..., help="Datacenter snapshot (JSON)"),
    passes: int = typer.Option(
        1, "--passes", "-p", min=1, help="Maximum number of reconcile passes"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Run reconcile passes against a snapshot without touching a cluster."""
    try:
        loaded = load_snapshot(snapshot_path)
    except (OSError, ValueError, pydantic.ValidationError) as e:
        print(f"Error: could not load {snapshot_path}: {e}")
        raise typer.Exit(1)

    recorder = RecordingEventRecorder()
    results = asyncio.run(_run_passes(loaded, recorder, passes))

    if json_output:
        data = {
            "passes": [describe_result(r) for r in results],
            "events": [
                {"type": t, "reason": reason.value, "message": message}
                for t, reason, message in recorder.events
            ],
            "management_calls": [
                {"path": path, "node": node} for path, node in loaded.mgmt.calls
            ],
        }
        print(json.dumps(data, indent=2))
    else:
        _print_tables(loaded, recorder, results)

    if any(isinstance(r, Error) for r in results):
        raise typer.Exit(1)


async def _run_passes(
    loaded: LoadedSnapshot, recorder: RecordingEventRecorder, passes: int
) -> list[ReconcileResult]:
    reconciler = ClusterReconciler(
        client=loaded.client,
        mgmt=loaded.mgmt,
        recorder=recorder,
        factory=loaded.factory,
    )
    namespace, name = split_key(loaded.key)

    results: list[ReconcileResult] = []
    for _ in range(passes):
        result = await reconciler.reconcile(namespace, name)
        results.append(result)
        # Only a requeue asks for another pass
        if not isinstance(result, RequeueSoon):
            break
    return results


def _print_tables(
    loaded: LoadedSnapshot,
    recorder: RecordingEventRecorder,
    results: list[ReconcileResult],
) -> None:
    console = Console()

    table = Table(title=f"Reconcile passes for {loaded.key}")
    table.add_column("Pass", justify="right", style="cyan")
    table.add_column("Result")
    for i, result in enumerate(results, start=1):
        style = "red" if isinstance(result, Error) else "green"
        table.add_row(str(i), f"[{style}]{describe_result(result)}[/{style}]")
    console.print(table)

    if recorder.events:
        events = Table(title="Events")
        events.add_column("Type")
        events.add_column("Reason", style="cyan")
        events.add_column("Message")
        for event_type, reason, message in recorder.events:
            events.add_row(event_type, reason.value, message)
        console.print(events)

    if loaded.mgmt.calls:
        calls = Table(title="Management API calls")
        calls.add_column("Node", style="cyan")
        calls.add_column("Path")
        for path, node in loaded.mgmt.calls:
            calls.add_row(node, path)
        console.print(calls)
