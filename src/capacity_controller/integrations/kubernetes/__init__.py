"""Kubernetes integration - API clients, caches and configuration models."""

from capacity_controller.integrations.kubernetes.client import KubernetesClient
from capacity_controller.integrations.kubernetes.cluster_store import ClusterClientStore
from capacity_controller.integrations.kubernetes.config import (
    CapacityControllerConfig,
    ClusterConfig,
    ControllerDefaultsConfig,
)
from capacity_controller.integrations.kubernetes.custom_objects import ShipperClient
from capacity_controller.integrations.kubernetes.events import EventRecorder, EventType
from capacity_controller.integrations.kubernetes.exceptions import (
    CacheNotSyncedError,
    ClusterNotReadyError,
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)
from capacity_controller.integrations.kubernetes.informers import (
    InformerFactory,
    Lister,
    ResourceEventHandler,
    ResourceKind,
    SharedInformer,
)

__all__ = [
    "CacheNotSyncedError",
    "CapacityControllerConfig",
    "ClusterClientStore",
    "ClusterConfig",
    "ClusterNotReadyError",
    "ControllerDefaultsConfig",
    "EventRecorder",
    "EventType",
    "InformerFactory",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesError",
    "KubernetesNotFoundError",
    "KubernetesTimeoutError",
    "KubernetesValidationError",
    "Lister",
    "ResourceEventHandler",
    "ResourceKind",
    "SharedInformer",
    "ShipperClient",
]
