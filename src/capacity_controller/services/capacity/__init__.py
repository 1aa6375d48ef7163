"""Capacity service module.

Scales the Deployments of a release in every application cluster to the
share its CapacityTarget asks for, and reports per-cluster health.
"""

from capacity_controller.services.capacity.cluster_reconciler import ClusterCapacityReconciler
from capacity_controller.services.capacity.conditions import (
    get_cluster_capacity_condition,
    new_cluster_capacity_condition,
    set_cluster_capacity_condition,
)
from capacity_controller.services.capacity.controller import CapacityController
from capacity_controller.services.capacity.exceptions import (
    CapacityError,
    InvalidCapacityError,
    InvalidPodCountError,
    InvalidReplicaAnnotationError,
    MissingDeploymentError,
    MultipleOwnerReferencesError,
    ReleaseIsGoneError,
    StatusUpdateError,
)
from capacity_controller.services.capacity.pod_health import PodHealthInspector, PodHealthReport
from capacity_controller.services.capacity.replicas import (
    calculate_achieved_percent,
    calculate_replica_count,
)
from capacity_controller.services.capacity.sync_handler import CapacitySyncHandler

__all__ = [
    "CapacityController",
    "CapacityError",
    "CapacitySyncHandler",
    "ClusterCapacityReconciler",
    "InvalidCapacityError",
    "InvalidPodCountError",
    "InvalidReplicaAnnotationError",
    "MissingDeploymentError",
    "MultipleOwnerReferencesError",
    "PodHealthInspector",
    "PodHealthReport",
    "ReleaseIsGoneError",
    "StatusUpdateError",
    "calculate_achieved_percent",
    "calculate_replica_count",
    "get_cluster_capacity_condition",
    "new_cluster_capacity_condition",
    "set_cluster_capacity_condition",
]
