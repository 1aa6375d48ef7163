"""Unit tests for capacity controller configuration models."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from capacity_controller.integrations.kubernetes.config import (
    CapacityControllerConfig,
    ClusterConfig,
    ControllerDefaultsConfig,
)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestClusterConfig:
    """Test ClusterConfig Pydantic model."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        config = ClusterConfig()
        assert config.context == ""
        assert config.kubeconfig == "~/.kube/config"
        assert config.timeout == 300

    def test_kubeconfig_path_expansion(self) -> None:
        """Test that tilde in kubeconfig path is expanded."""
        config = ClusterConfig(kubeconfig="~/custom/config")
        assert "~" not in config.kubeconfig
        assert config.kubeconfig == str(Path("~/custom/config").expanduser())

    @pytest.mark.parametrize("timeout", [0, -100])
    def test_timeout_must_be_positive(self, timeout: int) -> None:
        """Test that non-positive timeouts raise ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            ClusterConfig(timeout=timeout)
        assert "timeout must be positive" in str(exc_info.value)

    def test_extra_fields_forbidden(self) -> None:
        """Test that extra fields are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            ClusterConfig(namespace="default")  # type: ignore[call-arg]
        assert "extra" in str(exc_info.value).lower()


@pytest.mark.unit
@pytest.mark.kubernetes
class TestControllerDefaultsConfig:
    """Test ControllerDefaultsConfig Pydantic model."""

    def test_default_values(self) -> None:
        """Test default controller settings."""
        config = ControllerDefaultsConfig()
        assert config.workers == 2
        assert config.resync_seconds == 300
        assert config.retry_attempts == 3
        assert config.sad_pod_limit == 5
        assert config.namespace == ""

    @pytest.mark.parametrize("field", ["workers", "sad_pod_limit"])
    def test_at_least_one(self, field: str) -> None:
        """Test that worker and sad pod counts must be at least 1."""
        with pytest.raises(ValidationError) as exc_info:
            ControllerDefaultsConfig(**{field: 0})
        assert "at least 1" in str(exc_info.value)

    def test_resync_must_be_positive(self) -> None:
        """Test that resync period must be positive."""
        with pytest.raises(ValidationError):
            ControllerDefaultsConfig(resync_seconds=0)

    def test_retry_attempts_may_be_zero(self) -> None:
        """Test that retries can be disabled but not negative."""
        assert ControllerDefaultsConfig(retry_attempts=0).retry_attempts == 0
        with pytest.raises(ValidationError):
            ControllerDefaultsConfig(retry_attempts=-1)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestCapacityControllerConfig:
    """Test CapacityControllerConfig loading."""

    def test_defaults(self) -> None:
        """Test an empty configuration."""
        config = CapacityControllerConfig()
        assert config.clusters == {}
        assert config.get_cluster_names() == []

    def test_from_file(self, temp_config_file: Path) -> None:
        """Test loading the YAML configuration file."""
        config = CapacityControllerConfig.from_file(temp_config_file)

        assert config.get_cluster_names() == ["eu-west", "us-east"]
        assert config.defaults.workers == 4
        assert config.defaults.sad_pod_limit == 3

    def test_from_file_missing(self, temp_dir: Path) -> None:
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            CapacityControllerConfig.from_file(temp_dir / "missing.yaml")

    def test_from_file_not_a_mapping(self, temp_dir: Path) -> None:
        """Test that a YAML list is rejected."""
        path = temp_dir / "list.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ValueError, match="must contain a mapping"):
            CapacityControllerConfig.from_file(path)

    def test_from_file_invalid_yaml(self, temp_dir: Path) -> None:
        """Test that unparsable YAML is reported as ValueError."""
        path = temp_dir / "broken.yaml"
        path.write_text("clusters: [unclosed\n")

        with pytest.raises(ValueError, match="not valid YAML"):
            CapacityControllerConfig.from_file(path)

    def test_from_file_empty(self, temp_dir: Path) -> None:
        """Test that an empty file yields the defaults."""
        path = temp_dir / "empty.yaml"
        path.write_text("")

        assert CapacityControllerConfig.from_file(path) == CapacityControllerConfig.from_env()

    def test_unknown_keys_rejected(self) -> None:
        """Test that typos in the configuration are rejected."""
        with pytest.raises(ValidationError):
            CapacityControllerConfig.model_validate({"cluster": {}})

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment variables override the base configuration."""
        monkeypatch.setenv("CAPACITY_CONTEXT", "prod-mgmt")
        monkeypatch.setenv("CAPACITY_NAMESPACE", "shipper")
        monkeypatch.setenv("CAPACITY_WORKERS", "8")
        monkeypatch.setenv("CAPACITY_RESYNC_SECONDS", "60")

        config = CapacityControllerConfig.from_env(
            {"management_cluster": {"context": "local"}, "defaults": {"workers": 2}}
        )

        assert config.management_cluster.context == "prod-mgmt"
        assert config.defaults.namespace == "shipper"
        assert config.defaults.workers == 8
        assert config.defaults.resync_seconds == 60

    def test_env_kubeconfig_expanded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the kubeconfig override goes through path expansion."""
        monkeypatch.setenv("CAPACITY_KUBECONFIG", "~/mgmt.yaml")

        config = CapacityControllerConfig.from_env()

        assert config.management_cluster.kubeconfig == str(Path("~/mgmt.yaml").expanduser())

    def test_env_invalid_workers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a non-numeric worker count raises ValueError."""
        monkeypatch.setenv("CAPACITY_WORKERS", "many")

        with pytest.raises(ValueError):
            CapacityControllerConfig.from_env()

    def test_base_config_not_mutated(self) -> None:
        """Test that from_env leaves the caller's mapping alone."""
        base = {"defaults": {"workers": 3}}

        CapacityControllerConfig.from_env(base)

        assert base == {"defaults": {"workers": 3}}
