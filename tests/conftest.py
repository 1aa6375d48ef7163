"""Shared pytest fixtures for capacity_controller tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from capacity_controller.cli.main import app


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir: Path) -> Path:
    """Create a temporary controller config file."""
    config_path = temp_dir / "config.yaml"
    config_path.write_text(
        """
management_cluster:
  context: management
  kubeconfig: /tmp/kubeconfig
clusters:
  us-east:
    context: us-east
  eu-west:
    context: eu-west
defaults:
  workers: 4
  sad_pod_limit: 3
"""
    )
    return config_path


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables for each test."""
    # Clear any CAPACITY_ prefixed environment variables
    for key in list(os.environ.keys()):
        if key.startswith("CAPACITY_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def cli_app() -> typer.Typer:
    """Return the CLI app for testing."""
    return app
