"""Models for the custom resources and workloads the controller reads and writes."""

from capacity_controller.integrations.kubernetes.models.base import ObjectMeta, OwnerReference
from capacity_controller.integrations.kubernetes.models.capacity import (
    CAPACITY_TARGET_PLURAL,
    CRD_GROUP,
    CRD_VERSION,
    RELEASE_PLURAL,
    RELEASE_REPLICAS_ANNOTATION,
    CapacityTarget,
    CapacityTargetSpec,
    CapacityTargetStatus,
    ClusterCapacityCondition,
    ClusterCapacityStatus,
    ClusterCapacityTarget,
    ClusterConditionType,
    ConditionReason,
    ConditionStatus,
    Release,
)
from capacity_controller.integrations.kubernetes.models.workloads import (
    ContainerStatus,
    PodCondition,
    PodStatus,
)

__all__ = [
    "CAPACITY_TARGET_PLURAL",
    "CRD_GROUP",
    "CRD_VERSION",
    "RELEASE_PLURAL",
    "RELEASE_REPLICAS_ANNOTATION",
    "CapacityTarget",
    "CapacityTargetSpec",
    "CapacityTargetStatus",
    "ClusterCapacityCondition",
    "ClusterCapacityStatus",
    "ClusterCapacityTarget",
    "ClusterConditionType",
    "ConditionReason",
    "ConditionStatus",
    "ContainerStatus",
    "ObjectMeta",
    "OwnerReference",
    "PodCondition",
    "PodStatus",
    "Release",
]
