"""Integration tests for the cloudgraph CLI."""

import json
import logging

import pytest
import yaml
from click.testing import CliRunner

from cloudgraph.cli import main

WEB_1 = "aws:111111111111:us-east-1:compute:i-0b2"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger("cloudgraph")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


@pytest.fixture
def config_file(tmp_path, inventory_dir):
    config = {
        "storage": {"backend": "sqlite", "path": str(tmp_path / "graph.db")},
        "engine": {"max_workers": 2},
        "adapters": [str(inventory_dir / name) for name in ("aws.yaml", "azure.yaml", "gcp.yaml")],
    }
    path = tmp_path / "cloudgraph.yaml"
    path.write_text(yaml.safe_dump(config))
    return path


@pytest.fixture
def invoke(runner, config_file):
    def _invoke(*args):
        return runner.invoke(main, ["--config", str(config_file), "--log-level", "ERROR", *args])

    return _invoke


@pytest.fixture
def synced(invoke):
    result = invoke("sync")
    assert result.exit_code == 0, result.output
    return invoke


class TestSyncCommand:
    def test_sync_text(self, invoke):
        result = invoke("sync")

        assert result.exit_code == 0
        assert "completed" in result.output
        assert "inference: 11 edge(s), 10 new" in result.output

    def test_sync_json(self, invoke):
        result = invoke("sync", "--format", "json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "completed"
        assert [r["provider"] for r in data["records"]] == ["aws", "azure", "gcp"]
        assert data["edges_inferred"] == 11

    def test_sync_single_provider(self, invoke):
        result = invoke("sync", "--provider", "gcp", "--format", "json")
        data = json.loads(result.output)
        assert [r["provider"] for r in data["records"]] == ["gcp"]

    def test_no_adapters(self, runner, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("storage:\n  backend: memory\n")
        result = runner.invoke(main, ["--config", str(path), "sync"])
        assert result.exit_code == 2
        assert "No adapters configured" in result.output


class TestQueryCommands:
    def test_stats(self, synced):
        result = synced("stats", "--format", "json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["total_nodes"] == 14
        assert data["total_edges"] == 11

    def test_blast_radius(self, synced):
        result = synced("blast-radius", WEB_1, "--depth", "1")
        assert result.exit_code == 0
        assert f"Blast radius of {WEB_1}" in result.output
        assert "hop 1:" in result.output

    def test_blast_radius_missing_node(self, synced):
        result = synced("blast-radius", "aws:nope:us-east-1:compute:nope")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_timeline(self, synced):
        result = synced("timeline", WEB_1, "--format", "json")
        data = json.loads(result.output)
        assert [entry["change_type"] for entry in data] == ["node-created"]

    def test_cross_cloud(self, synced):
        result = synced("cross-cloud", "--format", "json")
        data = json.loads(result.output)
        assert data["total_cross_cloud_edges"] == 7
        assert data["by_provider_pair"] == {"aws<->azure": 1, "aws<->gcp": 6}

    def test_drift_clean_after_sync(self, synced):
        result = synced("drift", "--format", "json")
        data = json.loads(result.output)
        assert data["drifted_nodes"] == []
        assert data["new_nodes"] == []
        assert data["disappeared_nodes"] == []


class TestValidateCommand:
    def test_orphan_is_a_warning(self, synced):
        result = synced("validate")
        assert result.exit_code == 0
        assert "ORPHAN_NODE" in result.output
        assert "orders-sql" in result.output

    def test_strict(self, synced):
        assert synced("validate", "--strict").exit_code == 1

    def test_empty_graph_passes(self, invoke):
        result = invoke("validate", "--format", "json")
        assert result.exit_code == 0
        assert json.loads(result.output)["valid"] is True


class TestConfigErrors:
    def test_invalid_config(self, runner, examples_dir):
        result = runner.invoke(
            main, ["--config", str(examples_dir / "invalid" / "bad_engine.yaml"), "stats"]
        )
        assert result.exit_code == 2
        assert "Config validation error" in result.output

    def test_config_not_a_mapping(self, runner, examples_dir):
        result = runner.invoke(
            main, ["--config", str(examples_dir / "invalid" / "not_a_mapping.yaml"), "stats"]
        )
        assert result.exit_code == 2
        assert "Error loading config" in result.output

    def test_defaults_without_config(self, runner):
        result = runner.invoke(main, ["--log-level", "ERROR", "stats"])
        assert result.exit_code == 0
        assert "Nodes:   0" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
