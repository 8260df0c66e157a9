"""Unit tests for CLI commands."""

import pytest
from rich.console import Console
from typer.testing import CliRunner

from federation_manager import cli
from federation_manager.cli import app
from federation_manager.exceptions import KubernetesError
from federation_manager.models.cluster import ClusterMembership, offline_status, ready_status, utc_now

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Render tables without truncation."""
    monkeypatch.setattr(cli, "console", Console(width=200))


def test_version():
    """Test that version command prints the package version."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "Federation manager version 0.1.0" in result.stdout


def test_run_help():
    """Test that run command help works."""
    result = runner.invoke(app, ["run", "--help"])
    assert result.exit_code == 0
    assert "--config" in result.stdout
    assert "--kubeconfig" in result.stdout
    assert "--metrics-port" in result.stdout
    assert "--minimize-latency" in result.stdout


def test_run_missing_config():
    """Test that run fails gracefully with a missing configuration file."""
    result = runner.invoke(app, ["run", "--config", "nonexistent.yaml"])
    assert result.exit_code == 1
    assert "Configuration file not found" in result.stdout


def test_run_missing_kubeconfig():
    """Test that run fails gracefully with an unusable kubeconfig."""
    result = runner.invoke(app, ["run", "--kubeconfig", "/nonexistent/config"])
    assert result.exit_code == 1
    assert "Failed to load kubeconfig" in result.stdout


def test_clusters_help():
    """Test that clusters command help works."""
    result = runner.invoke(app, ["clusters", "--help"])
    assert result.exit_code == 0
    assert "--namespace" in result.stdout


class FakeHostClient:
    memberships: list = []
    error = None

    def __init__(self, api_client, namespace):
        self.namespace = namespace

    def list_clusters(self):
        if self.error is not None:
            raise self.error
        return self.memberships


@pytest.fixture
def fake_host(monkeypatch):
    monkeypatch.setattr("federation_manager.client.load_api_client", lambda kubeconfig, context: object())
    monkeypatch.setattr("federation_manager.client.HostClient", FakeHostClient)
    FakeHostClient.memberships = []
    FakeHostClient.error = None
    return FakeHostClient


def test_clusters_table(fake_host):
    """Test that clusters lists health and topology."""
    ready = ready_status(utc_now(), "v1.29.2").model_copy(update={"zones": ["us-east-1a"], "region": "us-east-1"})
    fake_host.memberships = [
        ClusterMembership(name="west", api_endpoint="https://west.example.com", status=offline_status(utc_now())),
        ClusterMembership(name="east", api_endpoint="https://east.example.com", status=ready),
    ]

    result = runner.invoke(app, ["clusters"])

    assert result.exit_code == 0
    assert "east" in result.stdout
    assert "west" in result.stdout
    assert "us-east-1a" in result.stdout
    assert "v1.29.2" in result.stdout
    assert "Ready: 1/2" in result.stdout


def test_clusters_empty(fake_host):
    result = runner.invoke(app, ["clusters", "--namespace", "federation"])

    assert result.exit_code == 0
    assert "No member clusters found in namespace federation" in result.stdout


def test_clusters_api_error(fake_host):
    fake_host.error = KubernetesError("Failed to list member clusters", "403 Forbidden")

    result = runner.invoke(app, ["clusters"])

    assert result.exit_code == 1
    assert "Failed to list member clusters" in result.stdout
