"""Capacity controller: work queues, event handlers and workers."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, NamedTuple

import structlog

from capacity_controller.integrations.kubernetes.exceptions import (
    CacheNotSyncedError,
    KubernetesTimeoutError,
)
from capacity_controller.integrations.kubernetes.informers import (
    InvalidKeyError,
    ResourceEventHandler,
    ResourceKind,
    meta_namespace_key,
    split_meta_namespace_key,
)
from capacity_controller.integrations.kubernetes.labels import selector_matches
from capacity_controller.integrations.kubernetes.models.base import _get_labels, _safe_get
from capacity_controller.services.capacity.cluster_reconciler import ClusterCapacityReconciler
from capacity_controller.services.capacity.pod_health import SAD_POD_LIMIT, PodHealthInspector
from capacity_controller.services.capacity.sync_handler import CapacitySyncHandler
from capacity_controller.utils.workqueue import (
    RateLimitingQueue,
    default_controller_rate_limiter,
)

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.cluster_store import ClusterClientStore
    from capacity_controller.integrations.kubernetes.custom_objects import ShipperClient
    from capacity_controller.integrations.kubernetes.events import EventSink
    from capacity_controller.integrations.kubernetes.informers import InformerFactory

logger = structlog.get_logger()

CAPACITY_TARGET_QUEUE = "capacity_controller_capacitytargets"
DEPLOYMENT_QUEUE = "capacity_controller_deployments"

WorkloadEnqueuer = Callable[["InformerFactory", str, Any], None]


class DeploymentKey(NamedTuple):
    """Identity of a Deployment in one application cluster."""

    cluster: str
    key: str


class CapacityController:
    """Keeps the Deployments of every release at the capacity their targets ask for.

    CapacityTarget changes on the management cluster feed the CapacityTarget
    queue, whose workers run the sync. Changes to Deployments and Pods in the
    application clusters feed the deployment queue, keyed by the Deployment
    they concern; its workers map each Deployment back to the CapacityTargets
    that select it and queue those. Syncs only ever run from the CapacityTarget
    queue, so one target is never synced twice at the same time.
    """

    def __init__(
        self,
        management_informers: InformerFactory,
        store: ClusterClientStore,
        shipper: ShipperClient,
        recorder: EventSink,
        sad_pod_limit: int = SAD_POD_LIMIT,
    ) -> None:
        """Initialize the controller and register its event handlers.

        Args:
            management_informers: Informer factory of the management cluster.
            store: Registry of application cluster clients.
            shipper: Writes CapacityTargets back to the management cluster.
            recorder: Records events on CapacityTargets.
            sad_pod_limit: Sad pods reported per cluster.
        """
        self._log = logger.bind(controller="capacity")
        self._capacity_target_informer = management_informers.capacity_targets()
        self._release_informer = management_informers.releases()
        self._store = store

        self.capacity_target_queue = RateLimitingQueue(
            default_controller_rate_limiter(), name=CAPACITY_TARGET_QUEUE
        )
        self.deployment_queue = RateLimitingQueue(
            default_controller_rate_limiter(), name=DEPLOYMENT_QUEUE
        )

        # Last seen labels of every queued Deployment; deleted ones are gone from the cache.
        self._deployment_labels: dict[DeploymentKey, dict[str, str]] = {}
        self._deployment_labels_lock = threading.Lock()

        reconciler = ClusterCapacityReconciler(
            store, recorder, PodHealthInspector(store, sad_pod_limit=sad_pod_limit)
        )
        self.sync_handler = CapacitySyncHandler(
            self._capacity_target_informer.lister(),
            self._release_informer.lister(),
            shipper,
            reconciler,
            recorder,
            self._log,
        )

        self._capacity_target_handler = ResourceEventHandler(
            on_add=self._enqueue_capacity_target,
            on_update=lambda old, new: self._enqueue_capacity_target(new),
        )
        self._workload_enqueuers: dict[ResourceKind, WorkloadEnqueuer] = {
            ResourceKind.DEPLOYMENT: self._enqueue_deployment,
            ResourceKind.POD: self._enqueue_pod_deployments,
        }

        self._log.info("setting_up_event_handlers")
        self._capacity_target_informer.add_event_handler(self._capacity_target_handler)
        store.add_subscription_callback(self._subscribe)
        store.add_event_handler_callback(self._register_event_handlers)

    # =========================================================================
    # Cluster callbacks
    # =========================================================================

    def _subscribe(self, informer_factory: InformerFactory) -> None:
        informer_factory.deployments()
        informer_factory.pods()

    def _register_event_handlers(
        self, informer_factory: InformerFactory, cluster_name: str
    ) -> None:
        for kind, enqueue in self._workload_enqueuers.items():
            handler = _workload_handler(enqueue, informer_factory, cluster_name)
            informer_factory.informer_for(kind).add_event_handler(handler)
        self._log.debug("cluster_event_handlers_registered", cluster=cluster_name)

    # =========================================================================
    # Enqueueing
    # =========================================================================

    def _enqueue_capacity_target(self, obj: Any) -> None:
        try:
            key = meta_namespace_key(obj)
        except InvalidKeyError as e:
            self._log.error("capacity_target_key_failed", error=str(e))
            return
        self.capacity_target_queue.add(key)

    def capacity_target_keys_for(self, obj: Any) -> list[str]:
        """Keys of the CapacityTargets whose labels select *obj*.

        A CapacityTarget selects objects in its own namespace that carry all
        of its labels; a CapacityTarget without labels selects nothing.
        """
        namespace = _safe_get(obj, "metadata", "namespace")
        return self._capacity_target_keys(namespace, _get_labels(obj))

    def _capacity_target_keys(self, namespace: str | None, labels: dict[str, str]) -> list[str]:
        keys = []
        for target in self._capacity_target_informer.lister().list(namespace=namespace):
            target_labels = _get_labels(target)
            if target_labels and all(labels.get(k) == v for k, v in target_labels.items()):
                keys.append(meta_namespace_key(target))
        return keys

    def _enqueue_deployment(
        self, informer_factory: InformerFactory, cluster_name: str, deployment: Any
    ) -> None:
        if not self._capacity_target_informer.has_synced():
            self._log.debug("workload_event_before_sync", cluster=cluster_name)
            return
        try:
            key = DeploymentKey(cluster_name, meta_namespace_key(deployment))
        except InvalidKeyError as e:
            self._log.error("deployment_key_failed", cluster=cluster_name, error=str(e))
            return
        with self._deployment_labels_lock:
            self._deployment_labels[key] = _get_labels(deployment)
        self.deployment_queue.add(key)

    def _enqueue_pod_deployments(
        self, informer_factory: InformerFactory, cluster_name: str, pod: Any
    ) -> None:
        """Queue the Deployments in the pod's cluster whose selector matches the pod."""
        pod_labels = _get_labels(pod)
        try:
            deployments = informer_factory.deployments().lister().list(
                namespace=_safe_get(pod, "metadata", "namespace")
            )
        except CacheNotSyncedError:
            self._log.debug("pod_event_before_deployment_sync", cluster=cluster_name)
            return

        for deployment in deployments:
            selector = _safe_get(deployment, "spec", "selector")
            if selector is None:
                continue
            try:
                matches = selector_matches(selector, pod_labels)
            except ValueError as e:
                self._log.warning(
                    "deployment_selector_invalid",
                    cluster=cluster_name,
                    deployment=meta_namespace_key(deployment),
                    error=str(e),
                )
                continue
            if matches:
                self._enqueue_deployment(informer_factory, cluster_name, deployment)

    # =========================================================================
    # Workers
    # =========================================================================

    def run(
        self, workers: int, stop_event: threading.Event, sync_timeout: float | None = None
    ) -> None:
        """Process both queues until *stop_event* is set.

        Waits for the CapacityTarget and Release caches, starts *workers*
        threads per queue, and on shutdown lets in-flight syncs finish.

        Raises:
            KubernetesTimeoutError: If the caches did not sync within *sync_timeout*.
        """
        self._log.info("capacity_controller_starting", workers=workers)
        threads: list[threading.Thread] = []
        try:
            for informer in (self._capacity_target_informer, self._release_informer):
                if not informer.wait_for_sync(sync_timeout):
                    raise KubernetesTimeoutError(
                        f"{informer.kind} cache did not sync", timeout_seconds=sync_timeout
                    )

            for i in range(workers):
                for queue in (self.capacity_target_queue, self.deployment_queue):
                    thread = threading.Thread(
                        target=self._run_worker,
                        args=(queue,),
                        name=f"{queue.name}-{i}",
                        daemon=True,
                    )
                    thread.start()
                    threads.append(thread)

            self._log.info("capacity_controller_started")
            stop_event.wait()
        finally:
            self.capacity_target_queue.shut_down()
            self.deployment_queue.shut_down()
            for thread in threads:
                thread.join()
            self._log.info("capacity_controller_stopped")

    def _run_worker(self, queue: RateLimitingQueue) -> None:
        while self.process_next_work_item(queue):
            pass

    def process_next_work_item(self, queue: RateLimitingQueue) -> bool:
        """Take one item from *queue* and handle it.

        CapacityTarget keys are synced; Deployment keys are translated into
        CapacityTarget keys.

        Returns:
            False once the queue has shut down, True otherwise.
        """
        item, shutdown = queue.get()
        if shutdown:
            return False

        try:
            if queue is self.deployment_queue:
                self._handle_deployment_item(queue, item)
            else:
                self._handle_capacity_target_item(queue, item)
            return True
        finally:
            queue.done(item)

    def _handle_capacity_target_item(self, queue: RateLimitingQueue, item: Any) -> None:
        if not isinstance(item, str):
            queue.forget(item)
            self._log.error("unexpected_work_item", queue=queue.name, item=repr(item))
            return
        try:
            split_meta_namespace_key(item)
        except InvalidKeyError as e:
            queue.forget(item)
            self._log.error("invalid_work_item", queue=queue.name, error=str(e))
            return

        try:
            self.sync_handler.sync(item)
        except Exception as e:
            self._log.warning(
                "capacity_target_sync_failed",
                queue=queue.name,
                key=item,
                requeues=queue.num_requeues(item),
                error=str(e),
            )
            queue.add_rate_limited(item)
            return

        queue.forget(item)
        self._log.info("capacity_target_sync_succeeded", queue=queue.name, key=item)

    def _handle_deployment_item(self, queue: RateLimitingQueue, item: Any) -> None:
        if not isinstance(item, DeploymentKey):
            queue.forget(item)
            self._log.error("unexpected_work_item", queue=queue.name, item=repr(item))
            return
        try:
            namespace, _ = split_meta_namespace_key(item.key)
        except InvalidKeyError as e:
            queue.forget(item)
            self._log.error("invalid_work_item", queue=queue.name, error=str(e))
            return

        with self._deployment_labels_lock:
            labels = self._deployment_labels.get(item)
        if labels is None:
            queue.forget(item)
            self._log.debug("deployment_labels_unknown", cluster=item.cluster, key=item.key)
            return

        try:
            keys = self._capacity_target_keys(namespace, labels)
        except CacheNotSyncedError as e:
            self._log.warning(
                "deployment_mapping_failed", cluster=item.cluster, key=item.key, error=str(e)
            )
            queue.add_rate_limited(item)
            return

        with self._deployment_labels_lock:
            # a newer event may have replaced the labels while this one was mapped
            if self._deployment_labels.get(item) is labels:
                del self._deployment_labels[item]

        for key in keys:
            self.capacity_target_queue.add(key)
        queue.forget(item)
        self._log.debug(
            "deployment_mapped", cluster=item.cluster, key=item.key, capacity_targets=keys
        )


def _workload_handler(
    enqueue: WorkloadEnqueuer, informer_factory: InformerFactory, cluster_name: str
) -> ResourceEventHandler:
    """Bind a workload enqueuer to one cluster's informers."""

    def _on_event(obj: Any) -> None:
        enqueue(informer_factory, cluster_name, obj)

    return ResourceEventHandler(
        on_add=_on_event,
        on_update=lambda old, new: _on_event(new),
        on_delete=_on_event,
    )
