"""Pod diagnostic models reported for unhealthy ("sad") pods."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from capacity_controller.integrations.kubernetes.models.base import _safe_get


class ContainerStatus(BaseModel):
    """Container status within a pod."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(description="Container name")
    image: str | None = Field(default=None, description="Container image")
    ready: bool = Field(default=False, description="Whether container is ready")
    restart_count: int = Field(default=0, alias="restartCount", description="Number of restarts")
    state: str = Field(default="unknown", description="Current state")
    reason: str | None = Field(default=None, description="Reason for a waiting/terminated state")
    message: str | None = Field(default=None, description="Message for a waiting/terminated state")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> ContainerStatus:
        """Create from a kubernetes V1ContainerStatus object."""
        state = "unknown"
        reason = None
        message = None
        if obj_state := _safe_get(obj, "state"):
            if _safe_get(obj_state, "running"):
                state = "running"
            elif waiting := _safe_get(obj_state, "waiting"):
                state = "waiting"
                reason = _safe_get(waiting, "reason", default="Waiting")
                message = _safe_get(waiting, "message")
            elif terminated := _safe_get(obj_state, "terminated"):
                state = "terminated"
                reason = _safe_get(terminated, "reason", default="Terminated")
                message = _safe_get(terminated, "message")

        return cls(
            name=_safe_get(obj, "name", default=""),
            image=_safe_get(obj, "image"),
            ready=bool(_safe_get(obj, "ready", default=False)),
            restart_count=_safe_get(obj, "restart_count", default=0) or 0,
            state=state,
            reason=reason,
            message=message,
        )


class PodCondition(BaseModel):
    """A pod condition as reported by the kubelet."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    status: str
    reason: str | None = None
    message: str | None = None

    @classmethod
    def from_k8s_object(cls, obj: Any) -> PodCondition:
        """Create from a kubernetes V1PodCondition object."""
        return cls(
            type=_safe_get(obj, "type", default=""),
            status=_safe_get(obj, "status", default="Unknown"),
            reason=_safe_get(obj, "reason"),
            message=_safe_get(obj, "message"),
        )


class PodStatus(BaseModel):
    """Diagnostics for a pod that is not ready.

    Carries the pod's failing conditions together with its container and
    init container statuses so an operator can tell crash loops, scheduling
    failures and failing probes apart without querying the cluster.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(description="Pod name")
    phase: str = Field(default="Unknown", description="Pod phase")
    conditions: list[PodCondition] = Field(
        default_factory=list, description="Pod conditions that are not True"
    )
    containers: list[ContainerStatus] = Field(
        default_factory=list, description="Container statuses"
    )
    init_containers: list[ContainerStatus] = Field(
        default_factory=list, alias="initContainers", description="Init container statuses"
    )

    @classmethod
    def from_k8s_object(cls, obj: Any) -> PodStatus:
        """Create from a kubernetes V1Pod object."""
        conditions = [
            PodCondition.from_k8s_object(cond)
            for cond in _safe_get(obj, "status", "conditions", default=[]) or []
            if _safe_get(cond, "status") != "True"
        ]
        containers = [
            ContainerStatus.from_k8s_object(cs)
            for cs in _safe_get(obj, "status", "container_statuses", default=[]) or []
        ]
        init_containers = [
            ContainerStatus.from_k8s_object(cs)
            for cs in _safe_get(obj, "status", "init_container_statuses", default=[]) or []
        ]

        return cls(
            name=_safe_get(obj, "metadata", "name", default=""),
            phase=_safe_get(obj, "status", "phase", default="Unknown"),
            conditions=conditions,
            containers=containers,
            init_containers=init_containers,
        )
