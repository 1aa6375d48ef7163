"""Reconciliation of a whole CapacityTarget."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from capacity_controller.integrations.kubernetes.events import EventType
from capacity_controller.integrations.kubernetes.exceptions import (
    KubernetesError,
    KubernetesNotFoundError,
)
from capacity_controller.integrations.kubernetes.informers import (
    InvalidKeyError,
    split_meta_namespace_key,
)
from capacity_controller.integrations.kubernetes.models.capacity import (
    CapacityTarget,
    ClusterCapacityStatus,
    Release,
)
from capacity_controller.services.capacity.exceptions import (
    InvalidReplicaAnnotationError,
    MultipleOwnerReferencesError,
    ReleaseIsGoneError,
    StatusUpdateError,
)

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.custom_objects import ShipperClient
    from capacity_controller.integrations.kubernetes.events import EventSink
    from capacity_controller.integrations.kubernetes.informers import Lister
    from capacity_controller.services.capacity.cluster_reconciler import (
        ClusterCapacityReconciler,
    )

FAILED_CAPACITY_TARGET_CHANGE = "FailedCapacityTargetChange"
CAPACITY_TARGET_CHANGED = "CapacityTargetChanged"


class CapacitySyncHandler:
    """Reconciles one CapacityTarget, identified by its ``namespace/name`` key.

    A sync validates the owning Release, reconciles every cluster listed in
    ``spec.clusters``, then writes the whole status back in one call. Problems with
    the CapacityTarget or its Release raise before any cluster is touched;
    problems with a single cluster only show up in that cluster's conditions.
    """

    def __init__(
        self,
        capacity_targets: Lister,
        releases: Lister,
        shipper: ShipperClient,
        reconciler: ClusterCapacityReconciler,
        recorder: EventSink,
        log: structlog.BoundLogger,
    ) -> None:
        """Initialize the handler.

        Args:
            capacity_targets: CapacityTarget cache of the management cluster.
            releases: Release cache of the management cluster.
            shipper: Writes CapacityTargets back to the management cluster.
            reconciler: Per-cluster reconciler.
            recorder: Records events on the CapacityTarget.
            log: Logger used for every message of the handler.
        """
        self._capacity_targets = capacity_targets
        self._releases = releases
        self._shipper = shipper
        self._reconciler = reconciler
        self._recorder = recorder
        self._log = log

    def sync(self, key: str, now: datetime | None = None) -> None:
        """Reconcile the CapacityTarget stored under *key*.

        Args:
            key: ``namespace/name`` of the CapacityTarget.
            now: Transition time for conditions changed by this sync.

        Raises:
            MultipleOwnerReferencesError: If the target has not exactly one owner.
            KubernetesNotFoundError: If the owning Release is not cached.
            ReleaseIsGoneError: If the cached Release has another UID.
            InvalidReplicaAnnotationError: If the Release has no usable total.
            StatusUpdateError: If the status could not be written back.
            KubernetesError: If a management cluster cache is unavailable.
        """
        try:
            namespace, name = split_meta_namespace_key(key)
        except InvalidKeyError as e:
            self._log.error("invalid_resource_key", key=key, error=str(e))
            return

        log = self._log.bind(capacity_target=key)
        try:
            cached = self._capacity_targets.get(namespace, name)
        except KubernetesNotFoundError:
            log.info("capacity_target_gone")
            return

        target = CapacityTarget.from_k8s_object(cached)
        total_replicas = self._total_replicas(target)
        now = now or datetime.now(UTC)
        log.debug("capacity_target_sync_started", total_replicas=total_replicas)

        statuses = {status.name: status for status in target.status.clusters}
        for cluster_spec in target.spec.clusters:
            status = statuses.setdefault(
                cluster_spec.name, ClusterCapacityStatus(name=cluster_spec.name)
            )
            self._reconciler.reconcile(target, cluster_spec, status, total_replicas, now=now)
        target.status.clusters = sorted(statuses.values(), key=lambda status: status.name)

        update_error: StatusUpdateError | None = None
        try:
            self._shipper.update_capacity_target(target)
        except KubernetesError as e:
            log.warning("capacity_target_update_failed", error=str(e))
            self._recorder.event(target, EventType.WARNING, FAILED_CAPACITY_TARGET_CHANGE, str(e))
            update_error = StatusUpdateError(key, e)

        self._recorder.eventf(
            target,
            EventType.NORMAL,
            CAPACITY_TARGET_CHANGED,
            'Set "%s" status to %s',
            key,
            target.summary(),
        )

        if update_error is not None:
            raise update_error from update_error.cause
        log.info("capacity_target_synced", clusters=len(target.status.clusters))

    def _release_for(self, target: CapacityTarget) -> Release:
        owners = target.metadata.owner_references
        if len(owners) != 1:
            raise MultipleOwnerReferencesError(target.key, len(owners))

        owner = owners[0]
        release = Release.from_k8s_object(self._releases.get(target.metadata.namespace, owner.name))
        if release.metadata.uid != owner.uid:
            raise ReleaseIsGoneError(target.key, owner.name, owner.uid, release.metadata.uid)
        return release

    def _total_replicas(self, target: CapacityTarget) -> int:
        release = self._release_for(target)
        value = release.replicas_annotation
        if value is None:
            raise InvalidReplicaAnnotationError(target.key, release.metadata.name, value)
        try:
            total = int(value)
        except ValueError:
            raise InvalidReplicaAnnotationError(target.key, release.metadata.name, value) from None
        if total < 0:
            raise InvalidReplicaAnnotationError(target.key, release.metadata.name, value)
        return total
