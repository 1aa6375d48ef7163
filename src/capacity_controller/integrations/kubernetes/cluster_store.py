"""Registry of application-cluster clients and informer factories."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_when_event_set,
    wait_exponential,
)

from capacity_controller.integrations.kubernetes.client import KubernetesClient
from capacity_controller.integrations.kubernetes.exceptions import (
    ClusterNotReadyError,
    KubernetesConnectionError,
)
from capacity_controller.integrations.kubernetes.informers import InformerFactory

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.config import (
        CapacityControllerConfig,
        ClusterConfig,
    )

logger = structlog.get_logger()

SubscriptionCallback = Callable[[InformerFactory], None]
EventHandlerCallback = Callable[[InformerFactory, str], None]
ClientFactory = Callable[[str, "ClusterConfig"], KubernetesClient]


@dataclass
class _ClusterEntry:
    client: KubernetesClient
    informer_factory: InformerFactory


class ClusterClientStore:
    """Hands out per-cluster clients and informer factories.

    Clusters become available asynchronously: ``start`` connects every
    configured cluster in a background thread, retrying until it answers.
    When a cluster comes up, subscription callbacks request the informers
    they need from its factory, event handler callbacks attach their
    handlers, and the factory is started.
    """

    def __init__(
        self,
        config: CapacityControllerConfig,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: Controller configuration listing the application clusters.
            client_factory: Builds a client for ``(name, cluster_config)``;
                defaults to ``KubernetesClient``.
        """
        self._config = config
        self._client_factory = client_factory or self._default_client_factory
        self._clusters: dict[str, _ClusterEntry] = {}
        self._subscription_callbacks: list[SubscriptionCallback] = []
        self._event_handler_callbacks: list[EventHandlerCallback] = []
        self._lock = threading.RLock()
        self._stop_event: threading.Event | None = None
        self._log = logger.bind(component="cluster_store")

    def _default_client_factory(self, name: str, cluster_config: ClusterConfig) -> KubernetesClient:
        return KubernetesClient(
            cluster_config,
            name=name,
            retry_attempts=self._config.defaults.retry_attempts,
        )

    # =========================================================================
    # Callbacks
    # =========================================================================

    def add_subscription_callback(self, callback: SubscriptionCallback) -> None:
        """Register a callback that requests informers from each cluster's factory."""
        with self._lock:
            self._subscription_callbacks.append(callback)
            entries = list(self._clusters.values())
        for entry in entries:
            callback(entry.informer_factory)

    def add_event_handler_callback(self, callback: EventHandlerCallback) -> None:
        """Register a callback that attaches event handlers for each cluster."""
        with self._lock:
            self._event_handler_callbacks.append(callback)
            entries = dict(self._clusters)
        for name, entry in entries.items():
            callback(entry.informer_factory, name)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _entry(self, name: str) -> _ClusterEntry:
        with self._lock:
            entry = self._clusters.get(name)
        if entry is None:
            raise ClusterNotReadyError(name, "is not known to the cluster store")
        return entry

    def get_client(self, name: str) -> KubernetesClient:
        """Return the client of cluster *name*.

        Raises:
            ClusterNotReadyError: If the cluster has not connected.
        """
        return self._entry(name).client

    def get_informer_factory(self, name: str) -> InformerFactory:
        """Return the informer factory of cluster *name*.

        Raises:
            ClusterNotReadyError: If the cluster has not connected or its
                caches have not synced.
        """
        factory = self._entry(name).informer_factory
        if not factory.has_synced():
            raise ClusterNotReadyError(name, "has not synced its caches")
        return factory

    def cluster_names(self) -> list[str]:
        """Names of the clusters that are connected, sorted."""
        with self._lock:
            return sorted(self._clusters)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def register_cluster(self, name: str, client: KubernetesClient) -> InformerFactory:
        """Make a connected cluster available and run the callbacks for it.

        The informer factory is started immediately when the store is
        running.
        """
        factory = InformerFactory(
            client,
            name,
            resync_seconds=self._config.defaults.resync_seconds,
            namespace=self._config.defaults.namespace,
        )
        with self._lock:
            subscriptions = list(self._subscription_callbacks)
            handlers = list(self._event_handler_callbacks)

        for subscribe in subscriptions:
            subscribe(factory)
        for attach in handlers:
            attach(factory, name)

        with self._lock:
            self._clusters[name] = _ClusterEntry(client=client, informer_factory=factory)
            stop_event = self._stop_event

        if stop_event is not None:
            factory.start(stop_event)
        self._log.info("cluster_registered", cluster=name)
        return factory

    def start(self, stop_event: threading.Event) -> None:
        """Connect every configured cluster in the background."""
        with self._lock:
            self._stop_event = stop_event
        for name in self._config.get_cluster_names():
            thread = threading.Thread(
                target=self._connect_cluster,
                args=(name, self._config.clusters[name], stop_event),
                name=f"cluster-connect-{name}",
                daemon=True,
            )
            thread.start()

    def _connect_cluster(
        self, name: str, cluster_config: ClusterConfig, stop_event: threading.Event
    ) -> None:
        log = self._log.bind(cluster=name)

        @retry(
            retry=retry_if_exception_type(KubernetesConnectionError),
            stop=stop_when_event_set(stop_event),
            wait=wait_exponential(multiplier=1, min=1, max=60),
            before_sleep=lambda state: log.warning(
                "cluster_connect_retry",
                attempt=state.attempt_number,
                error=str(state.outcome.exception()) if state.outcome else None,
            ),
            reraise=True,
        )
        def _connect() -> KubernetesClient:
            client = self._client_factory(name, cluster_config)
            if not client.check_connection():
                client.close()
                raise KubernetesConnectionError(
                    message="Kubernetes API server did not answer", cluster=name
                )
            return client

        try:
            client = _connect()
        except KubernetesConnectionError as e:
            log.warning("cluster_connect_abandoned", error=str(e))
            return

        if stop_event.is_set():
            client.close()
            return
        self.register_cluster(name, client)

    def close(self) -> None:
        """Close every cluster client."""
        with self._lock:
            entries = list(self._clusters.values())
            self._clusters.clear()
        for entry in entries:
            entry.client.close()
