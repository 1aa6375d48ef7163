"""Base models and helpers for Kubernetes objects.

Typed objects (``V1Deployment``, ``V1Pod``) come from the core API groups;
custom resources come back from ``CustomObjectsApi`` as plain dicts. The
helpers here read both shapes.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OwnerReference(BaseModel):
    """Kubernetes owner reference."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    api_version: str | None = Field(default=None, alias="apiVersion")
    kind: str | None = None
    name: str | None = None
    uid: str | None = None
    controller: bool | None = None


class ObjectMeta(BaseModel):
    """Subset of ``metadata`` the controller reads."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(description="Resource name")
    namespace: str = Field(default="default", description="Resource namespace")
    uid: str | None = Field(default=None, description="Kubernetes UID")
    resource_version: str | None = Field(default=None, alias="resourceVersion")
    labels: dict[str, str] = Field(default_factory=dict, description="Resource labels")
    annotations: dict[str, str] = Field(default_factory=dict, description="Resource annotations")
    owner_references: list[OwnerReference] = Field(
        default_factory=list, alias="ownerReferences", description="Owner references"
    )

    @property
    def key(self) -> str:
        """``namespace/name`` cache key."""
        return f"{self.namespace}/{self.name}"


def _safe_get(obj: Any, *attrs: str, default: Any = None) -> Any:
    """Safely traverse nested attributes on kubernetes SDK objects or dicts.

    Dict lookups accept the snake_case attribute name and fall back to the
    camelCase wire name (``owner_references`` -> ``ownerReferences``).
    """
    current = obj
    for attr in attrs:
        if current is None:
            return default
        if isinstance(current, Mapping):
            value = current.get(attr)
            if value is None and "_" in attr:
                head, *rest = attr.split("_")
                value = current.get(head + "".join(part.title() for part in rest))
            current = value
        else:
            current = getattr(current, attr, None)
    return current if current is not None else default


def _get_labels(obj: Any) -> dict[str, str]:
    """Extract labels dict, empty when unset."""
    labels = _safe_get(obj, "metadata", "labels")
    return dict(labels) if labels else {}

