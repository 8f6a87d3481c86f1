"""Tests for the operator-cassandra CLI."""

import json

import pytest
from typer.testing import CliRunner

from operator_cassandra.cli.main import app

runner = CliRunner()

QUIET = ["--log-level", "WARNING"]


def node_instances(rack: str, count: int, rack_index: int) -> list[dict]:
    return [
        {
            "name": f"cluster1-dc1-{rack}-sts-{i}",
            "rack": rack,
            "host_name": f"host-{rack}-{i}",
            "ip": f"10.0.{rack_index}.{i + 1}",
            "ready": True,
            "node_state": "Started",
        }
        for i in range(count)
    ]


@pytest.fixture
def snapshot():
    """One rack of three ready nodes, matching a size of three."""
    nodes = node_instances("r1", 3, 1)
    return {
        "cluster": {
            "name": "dc1",
            "namespace": "db",
            "cluster_name": "cluster1",
            "size": 3,
            "racks": ["r1"],
            "conditions": {"Initialized": True, "Ready": True},
        },
        "workloads": [{"rack": "r1", "replicas": 3, "ready_replicas": 3}],
        "node_instances": nodes,
        "volume_claims": [
            {"node_instance": n["name"], "capacity_bytes": 100 * 1024**3} for n in nodes
        ],
        "hosts": [{"name": n["host_name"]} for n in nodes],
        "endpoints": [
            {
                "HOST_ID": f"id-{i}",
                "RPC_ADDRESS": n["ip"],
                "STATUS": "NORMAL",
                "LOAD": "1024",
            }
            for i, n in enumerate(nodes)
        ],
        "template": {"image": "cassandra:4.1.4"},
    }


def write(tmp_path, data) -> str:
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(data))
    return str(path)


class TestPlan:
    """Tests for `operator-cassandra plan`."""

    def test_plan_json(self):
        result = runner.invoke(
            app, QUIET + ["plan", "--size", "13", "--racks", "a,b,c,d,e", "--json"]
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [r["nodes"] for r in data] == [3, 3, 3, 2, 2]
        assert [r["rack"] for r in data] == ["a", "b", "c", "d", "e"]

    def test_plan_table(self):
        result = runner.invoke(app, QUIET + ["plan", "--size", "3"])

        assert result.exit_code == 0, result.output
        assert "default" in result.stdout

    def test_plan_rejects_too_many_racks(self):
        result = runner.invoke(app, QUIET + ["plan", "--size", "2", "--racks", "a,b,c"])

        assert result.exit_code == 1
        assert "Error" in result.stdout


class TestCheck:
    """Tests for `operator-cassandra check`."""

    def test_steady_snapshot_settles(self, tmp_path, snapshot):
        path = write(tmp_path, snapshot)

        result = runner.invoke(app, QUIET + ["check", path, "--passes", "5", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["passes"][-1] == "done"
        reasons = [e["reason"] for e in data["events"]]
        assert "LabeledPodAsSeed" in reasons

    def test_scale_down_snapshot_decommissions(self, tmp_path, snapshot):
        snapshot["cluster"]["size"] = 2
        path = write(tmp_path, snapshot)

        result = runner.invoke(app, QUIET + ["check", path, "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["passes"] == ["requeue in 10s"]
        assert {
            "path": "/api/v0/ops/node/decommission",
            "node": "cluster1-dc1-r1-sts-2",
        } in data["management_calls"]

    def test_table_output(self, tmp_path, snapshot):
        path = write(tmp_path, snapshot)

        result = runner.invoke(app, QUIET + ["check", path, "--passes", "5"])

        assert result.exit_code == 0, result.output
        assert "done" in result.stdout

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, QUIET + ["check", str(tmp_path / "absent.json")])

        assert result.exit_code == 1

    def test_invalid_snapshot(self, tmp_path):
        path = write(tmp_path, {"cluster": {"name": "dc1"}})

        result = runner.invoke(app, QUIET + ["check", path])

        assert result.exit_code == 1
        assert "could not load" in result.stdout
