"""Reconciliation of one cluster's share of a CapacityTarget."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from capacity_controller.integrations.kubernetes.events import EventType
from capacity_controller.integrations.kubernetes.exceptions import KubernetesError
from capacity_controller.integrations.kubernetes.labels import labels_to_selector_string
from capacity_controller.integrations.kubernetes.models.base import _safe_get
from capacity_controller.integrations.kubernetes.models.capacity import (
    ClusterConditionType,
    ConditionReason,
    ConditionStatus,
)
from capacity_controller.services.capacity.base import ClusterServiceBase
from capacity_controller.services.capacity.conditions import (
    new_cluster_capacity_condition,
    set_cluster_capacity_condition,
)
from capacity_controller.services.capacity.exceptions import (
    CapacityError,
    InvalidPodCountError,
    MissingDeploymentError,
)
from capacity_controller.services.capacity.pod_health import PodHealthInspector
from capacity_controller.services.capacity.replicas import (
    calculate_achieved_percent,
    calculate_replica_count,
)

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.cluster_store import ClusterClientStore
    from capacity_controller.integrations.kubernetes.events import EventSink
    from capacity_controller.integrations.kubernetes.models.capacity import (
        CapacityTarget,
        ClusterCapacityStatus,
        ClusterCapacityTarget,
    )

FAILED_CAPACITY_CHANGE = "FailedCapacityChange"
CAPACITY_CHANGED = "CapacityChanged"


class ClusterCapacityReconciler(ClusterServiceBase):
    """Drives one cluster's Deployment toward its share of the release.

    Every outcome is written to the cluster's status entry as conditions;
    nothing raised by a cluster escapes ``reconcile``, so one broken cluster
    never stops the others from being processed.
    """

    _entity_name = "cluster_capacity"

    def __init__(
        self,
        store: ClusterClientStore,
        recorder: EventSink,
        inspector: PodHealthInspector | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: Registry of application cluster clients.
            recorder: Records events on the CapacityTarget.
            inspector: Pod readiness inspector; built from *store* by default.
        """
        super().__init__(store)
        self._recorder = recorder
        self._inspector = inspector or PodHealthInspector(store)

    def reconcile(
        self,
        capacity_target: CapacityTarget,
        cluster_spec: ClusterCapacityTarget,
        cluster_status: ClusterCapacityStatus,
        total_replicas: int,
        now: datetime | None = None,
    ) -> None:
        """Reconcile one cluster and record the outcome in *cluster_status*.

        Args:
            capacity_target: The (private copy of the) CapacityTarget.
            cluster_spec: Desired percentage for this cluster.
            cluster_status: Status entry of this cluster, modified in place.
            total_replicas: Total replica count of the release.
            now: Transition time for changed conditions.
        """
        cluster = cluster_spec.name
        namespace = capacity_target.metadata.namespace
        log = self._log.bind(capacity_target=capacity_target.key, cluster=cluster)

        def set_condition(
            condition_type: ClusterConditionType,
            status: ConditionStatus,
            reason: ConditionReason = ConditionReason.NONE,
            message: str = "",
        ) -> None:
            condition = new_cluster_capacity_condition(condition_type, status, reason, message)
            set_cluster_capacity_condition(cluster_status, condition, now=now)

        def server_error(error: KubernetesError) -> None:
            log.warning("cluster_unavailable", error=str(error))
            _clear_observations(cluster_status)
            set_condition(
                ClusterConditionType.OPERATIONAL,
                ConditionStatus.FALSE,
                ConditionReason.SERVER_ERROR,
                str(error),
            )
            self._record_failure(capacity_target, error)

        # Find the Deployment
        try:
            factory = self._informer_factory(cluster)
            deployments = (
                factory.deployments()
                .lister()
                .list(namespace=namespace, selector=capacity_target.metadata.labels)
            )
        except KubernetesError as e:
            server_error(e)
            return

        if len(deployments) != 1:
            error = MissingDeploymentError(
                cluster,
                labels_to_selector_string(capacity_target.metadata.labels),
                len(deployments),
            )
            log.warning("deployment_not_found", count=len(deployments))
            _clear_observations(cluster_status)
            set_condition(
                ClusterConditionType.READY,
                ConditionStatus.FALSE,
                ConditionReason.MISSING_DEPLOYMENT,
                str(error),
            )
            self._record_failure(capacity_target, error)
            return

        deployment: Any = deployments[0]
        deployment_name = _safe_get(deployment, "metadata", "name")
        desired = calculate_replica_count(total_replicas, cluster_spec.percent)

        # Scale it
        current = _safe_get(deployment, "spec", "replicas")
        if current is None or current != desired:
            try:
                client = self._client(cluster)
                deployment = client.patch_deployment_replicas(namespace, deployment_name, desired)
            except KubernetesError as e:
                server_error(e)
                return
            log.info(
                "deployment_scaled", deployment=deployment_name, previous=current, replicas=desired
            )
            self._recorder.eventf(
                capacity_target,
                EventType.NORMAL,
                CAPACITY_CHANGED,
                'Scaled "%s/%s" to %d replicas',
                namespace,
                deployment_name,
                desired,
            )

        available = _safe_get(deployment, "status", "available_replicas", default=0) or 0
        cluster_status.available_replicas = available
        cluster_status.achieved_percent = (
            calculate_achieved_percent(total_replicas, available) if total_replicas > 0 else 0
        )

        # Check the pods
        try:
            report = self._inspector.inspect(deployment, cluster)
        except KubernetesError as e:
            server_error(e)
            return

        if report.pod_count != desired:
            error = InvalidPodCountError(deployment_name, desired, report.pod_count)
            set_condition(
                ClusterConditionType.READY,
                ConditionStatus.FALSE,
                ConditionReason.WRONG_POD_COUNT,
                str(error),
            )
            self._record_failure(capacity_target, error)
            return

        set_condition(ClusterConditionType.OPERATIONAL, ConditionStatus.TRUE)

        if report.sad_pod_count > 0:
            cluster_status.sad_pods = report.sad_pods
            set_condition(
                ClusterConditionType.READY,
                ConditionStatus.FALSE,
                ConditionReason.PODS_NOT_READY,
                f"there are {report.sad_pod_count} sad pods",
            )
            log.info("sad_pods_found", sad_pods=report.sad_pod_count)
            return

        cluster_status.sad_pods = []
        set_condition(ClusterConditionType.READY, ConditionStatus.TRUE)
        log.debug("cluster_ready", replicas=desired, available=available)

    def _record_failure(
        self, capacity_target: CapacityTarget, error: KubernetesError | CapacityError
    ) -> None:
        self._recorder.event(
            capacity_target, EventType.WARNING, FAILED_CAPACITY_CHANGE, str(error)
        )


def _clear_observations(cluster_status: ClusterCapacityStatus) -> None:
    """Drop replica counts and sad pods that can no longer be confirmed."""
    cluster_status.available_replicas = 0
    cluster_status.achieved_percent = 0
    cluster_status.sad_pods = []
