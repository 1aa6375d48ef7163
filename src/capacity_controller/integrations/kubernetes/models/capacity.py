"""CapacityTarget and Release custom resource models."""

from __future__ import annotations

import copy
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from capacity_controller.integrations.kubernetes.models.base import ObjectMeta
from capacity_controller.integrations.kubernetes.models.workloads import PodStatus

CRD_GROUP = "shipper.booking.com"
CRD_VERSION = "v1"
CAPACITY_TARGET_PLURAL = "capacitytargets"
RELEASE_PLURAL = "releases"

RELEASE_REPLICAS_ANNOTATION = "shipper.booking.com/release.replicas"


class ClusterConditionType(StrEnum):
    """Condition types tracked per cluster."""

    READY = "Ready"
    OPERATIONAL = "Operational"


class ConditionStatus(StrEnum):
    """Tri-state condition status."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionReason(StrEnum):
    """Machine-readable reasons for a non-healthy condition."""

    NONE = ""
    SERVER_ERROR = "ServerError"
    WRONG_POD_COUNT = "WrongPodCount"
    PODS_NOT_READY = "PodsNotReady"
    MISSING_DEPLOYMENT = "MissingDeployment"


class _CapacityModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ClusterCapacityCondition(_CapacityModel):
    """Typed, timestamped health signal for one cluster."""

    type: ClusterConditionType
    status: ConditionStatus
    last_transition_time: str | None = Field(default=None, alias="lastTransitionTime")
    reason: str = ""
    message: str = ""


class ClusterCapacityStatus(_CapacityModel):
    """Observed capacity of one cluster."""

    name: str
    available_replicas: int = Field(default=0, alias="availableReplicas")
    achieved_percent: int = Field(default=0, alias="achievedPercent")
    sad_pods: list[PodStatus] = Field(default_factory=list, alias="sadPods")
    conditions: list[ClusterCapacityCondition] = Field(default_factory=list)


class ClusterCapacityTarget(_CapacityModel):
    """Desired share of the release's replicas on one cluster."""

    name: str
    percent: int = Field(default=0, ge=0, le=100)


class CapacityTargetSpec(_CapacityModel):
    clusters: list[ClusterCapacityTarget] = Field(default_factory=list)


class CapacityTargetStatus(_CapacityModel):
    clusters: list[ClusterCapacityStatus] = Field(default_factory=list)


class CapacityTarget(_CapacityModel):
    """Goal state for the number of pods of a release in each cluster.

    The object keeps a private copy of the dict it was parsed from so that
    ``to_k8s_object`` can hand the API server back every field untouched
    except ``status``.
    """

    api_version: str = Field(default=f"{CRD_GROUP}/{CRD_VERSION}", alias="apiVersion")
    kind: str = "CapacityTarget"
    metadata: ObjectMeta
    spec: CapacityTargetSpec = Field(default_factory=CapacityTargetSpec)
    status: CapacityTargetStatus = Field(default_factory=CapacityTargetStatus)

    _raw: dict[str, Any] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> CapacityTarget:
        """Parse a CapacityTarget from the custom objects API dict.

        The source dict is deep-copied; mutating the result never touches
        the caller's (usually cached) object.
        """
        raw = copy.deepcopy(obj)
        if raw.get("status") is None:
            raw["status"] = {}
        target = cls.model_validate(raw)
        target._raw = raw
        return target

    def to_k8s_object(self) -> dict[str, Any]:
        """Render the full object for a replace call, with the current status."""
        body = copy.deepcopy(self._raw)
        body.setdefault("apiVersion", self.api_version)
        body.setdefault("kind", self.kind)
        body.setdefault("metadata", self.metadata.model_dump(by_alias=True, exclude_none=True))
        body["status"] = self.status.model_dump(mode="json", by_alias=True, exclude_none=True)
        return body

    @property
    def key(self) -> str:
        """``namespace/name`` work queue key."""
        return self.metadata.key

    def summary(self) -> str:
        """One-line rendering of the status for events and logs."""
        parts = []
        for cluster in self.status.clusters:
            conditions = " ".join(f"{c.type}={c.status}" for c in cluster.conditions)
            text = (
                f"{cluster.name}: {cluster.available_replicas} available "
                f"({cluster.achieved_percent}%)"
            )
            if conditions:
                text += f" {conditions}"
            if cluster.sad_pods:
                text += f" sadPods={len(cluster.sad_pods)}"
            parts.append(text)
        return "[" + "; ".join(parts) + "]"


class Release(_CapacityModel):
    """The subset of a Release the capacity controller reads."""

    metadata: ObjectMeta

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> Release:
        """Parse a Release from the custom objects API dict."""
        return cls.model_validate(obj)

    @property
    def replicas_annotation(self) -> str | None:
        """Raw value of the total-replicas annotation, None when absent."""
        return self.metadata.annotations.get(RELEASE_REPLICAS_ANNOTATION)
