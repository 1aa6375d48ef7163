"""Capacity controller configuration models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator


class ClusterConfig(BaseModel):
    """Connection settings for a single Kubernetes cluster."""

    model_config = ConfigDict(extra="forbid")

    context: str = ""
    kubeconfig: str = "~/.kube/config"
    timeout: int = 300

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("kubeconfig")
    @classmethod
    def validate_kubeconfig(cls, v: str) -> str:
        """Expand ~ in kubeconfig path."""
        return str(Path(v).expanduser())


class ControllerDefaultsConfig(BaseModel):
    """Runtime settings for the capacity controller."""

    model_config = ConfigDict(extra="forbid")

    workers: int = 2
    resync_seconds: int = 300
    retry_attempts: int = 3
    sad_pod_limit: int = 5
    namespace: str = ""

    @field_validator("workers", "sad_pod_limit")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        """Validate the value is at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("resync_seconds")
    @classmethod
    def validate_resync(cls, v: int) -> int:
        """Validate resync period is positive."""
        if v <= 0:
            raise ValueError("resync_seconds must be positive")
        return v

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Validate retry_attempts is non-negative."""
        if v < 0:
            raise ValueError("retry_attempts must be non-negative")
        return v


class CapacityControllerConfig(BaseModel):
    """Complete capacity controller configuration.

    ``management_cluster`` is where CapacityTarget and Release objects live;
    ``clusters`` are the application clusters whose Deployments get scaled,
    keyed by the cluster names used in ``CapacityTarget.spec.clusters``.
    """

    model_config = ConfigDict(extra="forbid")

    management_cluster: ClusterConfig = ClusterConfig()
    clusters: dict[str, ClusterConfig] = {}
    defaults: ControllerDefaultsConfig = ControllerDefaultsConfig()

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> CapacityControllerConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            CAPACITY_KUBECONFIG: Kubeconfig path for the management cluster
            CAPACITY_CONTEXT: Kubeconfig context for the management cluster
            CAPACITY_NAMESPACE: Namespace to watch for CapacityTargets
            CAPACITY_WORKERS: Worker threads per queue
            CAPACITY_RESYNC_SECONDS: Watch timeout before re-establishing a watch
        """
        config_dict = base_config.copy() if base_config else {}

        management = dict(config_dict.get("management_cluster") or {})
        defaults = dict(config_dict.get("defaults") or {})

        if kubeconfig := os.environ.get("CAPACITY_KUBECONFIG"):
            management["kubeconfig"] = kubeconfig

        if context := os.environ.get("CAPACITY_CONTEXT"):
            management["context"] = context

        if (namespace := os.environ.get("CAPACITY_NAMESPACE")) is not None:
            defaults["namespace"] = namespace

        if workers := os.environ.get("CAPACITY_WORKERS"):
            defaults["workers"] = int(workers)

        if resync := os.environ.get("CAPACITY_RESYNC_SECONDS"):
            defaults["resync_seconds"] = int(resync)

        config_dict["management_cluster"] = management
        config_dict["defaults"] = defaults
        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Path | str) -> CapacityControllerConfig:
        """Load configuration from a YAML file, then apply environment overrides.

        Args:
            path: Path to the YAML configuration file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is not valid YAML or does not hold a mapping.
        """
        try:
            raw = yaml.safe_load(Path(path).expanduser().read_text()) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Configuration file {path} is not valid YAML: {e}") from e
        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        return cls.from_env(raw)

    def get_cluster_names(self) -> list[str]:
        """Return the configured application cluster names, sorted."""
        return sorted(self.clusters)
