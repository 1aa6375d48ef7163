"""Base class for services that work against application clusters.

Provides shared infrastructure for the capacity services, including cluster
lookups through the client store and structured logging.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.client import KubernetesClient
    from capacity_controller.integrations.kubernetes.cluster_store import ClusterClientStore
    from capacity_controller.integrations.kubernetes.informers import InformerFactory

logger = structlog.get_logger()


class ClusterServiceBase:
    """Base class for per-cluster capacity services.

    Provides shared concerns:
    - Cluster client and informer factory lookup
    - Structured logging with entity binding

    Subclasses set ``_entity_name`` for structured log context.

    Example:
        >>> class PodHealthInspector(ClusterServiceBase):
        ...     _entity_name = "pod_health"
    """

    _entity_name: str = ""

    def __init__(self, store: ClusterClientStore) -> None:
        """Initialize the service.

        Args:
            store: Registry of application cluster clients.
        """
        self._store = store
        self._log = logger.bind(entity=self._entity_name)

    def _client(self, cluster: str) -> KubernetesClient:
        """Return the client of *cluster*.

        Raises:
            ClusterNotReadyError: If the cluster is not connected.
        """
        return self._store.get_client(cluster)

    def _informer_factory(self, cluster: str) -> InformerFactory:
        """Return the synced informer factory of *cluster*.

        Raises:
            ClusterNotReadyError: If the cluster is not connected or not synced.
        """
        return self._store.get_informer_factory(cluster)
