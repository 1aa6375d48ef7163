"""Client for the shipper custom resources on the management cluster."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from capacity_controller.integrations.kubernetes.models.capacity import (
    CAPACITY_TARGET_PLURAL,
    CRD_GROUP,
    CRD_VERSION,
    RELEASE_PLURAL,
    CapacityTarget,
)

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()


class ShipperClient:
    """Typed access to CapacityTarget and Release objects.

    The list methods accept the keyword arguments the watch machinery passes
    (``watch``, ``resource_version``, ``timeout_seconds``...) so they can be
    used directly as informer list functions.
    """

    def __init__(self, client: KubernetesClient, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace
        self._log = logger.bind(cluster=client.name)

    def _list(self, plural: str, **kwargs: Any) -> Any:
        api = self._client.custom_objects
        if self._namespace:
            return api.list_namespaced_custom_object(
                CRD_GROUP, CRD_VERSION, self._namespace, plural, **kwargs
            )
        return api.list_cluster_custom_object(CRD_GROUP, CRD_VERSION, plural, **kwargs)

    def list_capacity_targets(self, **kwargs: Any) -> Any:
        """List CapacityTarget objects (raw dicts, or a stream when watching)."""
        return self._list(CAPACITY_TARGET_PLURAL, **kwargs)

    def list_releases(self, **kwargs: Any) -> Any:
        """List Release objects (raw dicts, or a stream when watching)."""
        return self._list(RELEASE_PLURAL, **kwargs)

    def update_capacity_target(self, target: CapacityTarget) -> dict[str, Any]:
        """Replace a CapacityTarget with the given object, status included.

        Args:
            target: The object to write; its resourceVersion guards against
                concurrent modification.

        Returns:
            The object as stored by the API server.

        Raises:
            KubernetesConflictError: If the object changed since it was read.
            KubernetesError: For any other API failure.
        """
        name = target.metadata.name
        namespace = target.metadata.namespace
        try:
            result = self._client.custom_objects.replace_namespaced_custom_object(
                CRD_GROUP,
                CRD_VERSION,
                namespace,
                CAPACITY_TARGET_PLURAL,
                name,
                target.to_k8s_object(),
            )
        except Exception as e:
            raise self._client.translate_api_exception(
                e,
                resource_type="CapacityTarget",
                resource_name=name,
                namespace=namespace,
                cluster=self._client.name,
            ) from e

        self._log.debug("capacity_target_updated", namespace=namespace, name=name)
        return result
