"""Kubernetes API client wrapper.

Provides a per-cluster client that wraps the official kubernetes Python client
with an isolated ApiClient per cluster, lazy API group initialization, retry
logic, and consistent error translation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from capacity_controller.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from kubernetes.client import (
        ApiClient,
        AppsV1Api,
        CoreV1Api,
        CustomObjectsApi,
        V1Deployment,
        VersionApi,
    )

    from capacity_controller.integrations.kubernetes.config import ClusterConfig

logger = structlog.get_logger()


class KubernetesClient:
    """Kubernetes API client bound to a single cluster.

    Unlike the global ``kubernetes.config.load_kube_config`` flow, every
    instance owns its ApiClient, so clients for many clusters can coexist in
    one process:
    - Lazy API group initialization
    - Automatic retry with tenacity for transient errors
    - Consistent error translation to custom exceptions
    - Context manager support

    Example:
        ```python
        from capacity_controller.integrations.kubernetes import KubernetesClient
        from capacity_controller.integrations.kubernetes.config import ClusterConfig

        with KubernetesClient(ClusterConfig(context="eu-west"), name="eu-west") as client:
            deployments = client.apps_v1.list_namespaced_deployment("web")
        ```
    """

    def __init__(
        self,
        cluster_config: ClusterConfig,
        name: str = "management",
        retry_attempts: int = 3,
    ) -> None:
        """Initialize Kubernetes client from a cluster config.

        Loads the kubeconfig context for the cluster, falling back to
        in-cluster configuration when no kubeconfig is usable.

        Args:
            cluster_config: Connection settings for the cluster.
            name: Cluster name used in logs and errors.
            retry_attempts: Attempts for retried operations.
        """
        self._config = cluster_config
        self._name = name
        self._retries = retry_attempts
        self._current_context: str | None = None
        self._api_client: ApiClient | None = None

        # Lazy-loaded API group instances
        self._core_v1: CoreV1Api | None = None
        self._apps_v1: AppsV1Api | None = None
        self._custom_objects: CustomObjectsApi | None = None
        self._version_api: VersionApi | None = None

        self._load_config()

        logger.info(
            "Kubernetes client initialized",
            cluster=self._name,
            context=self._current_context,
        )

    def _load_config(self) -> None:
        """Build the ApiClient from kubeconfig or in-cluster configuration."""
        from kubernetes import client, config
        from kubernetes.config import ConfigException

        context = self._config.context or None

        try:
            self._api_client = config.new_client_from_config(
                config_file=self._config.kubeconfig,
                context=context,
            )
            self._current_context = context or "default"
            logger.debug(
                "loaded_kubeconfig",
                cluster=self._name,
                context=context,
                kubeconfig=self._config.kubeconfig,
            )
        except ConfigException:
            try:
                configuration = client.Configuration()
                config.load_incluster_config(client_configuration=configuration)
                self._api_client = client.ApiClient(configuration)
                self._current_context = "in-cluster"
                logger.debug("loaded_incluster_config", cluster=self._name)
            except ConfigException as e:
                raise KubernetesConnectionError(
                    message="Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                    cluster=self._name,
                ) from e

        self._invalidate_api_cache()

    def _invalidate_api_cache(self) -> None:
        """Clear cached API group instances."""
        self._core_v1 = None
        self._apps_v1 = None
        self._custom_objects = None
        self._version_api = None

    # =========================================================================
    # Lazy API Group Accessors
    # =========================================================================

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance (pods, events)."""
        if self._core_v1 is None:
            from kubernetes.client import CoreV1Api

            self._core_v1 = CoreV1Api(self._api_client)
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """Get AppsV1Api instance (deployments)."""
        if self._apps_v1 is None:
            from kubernetes.client import AppsV1Api

            self._apps_v1 = AppsV1Api(self._api_client)
        return self._apps_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance (CapacityTargets, Releases)."""
        if self._custom_objects is None:
            from kubernetes.client import CustomObjectsApi

            self._custom_objects = CustomObjectsApi(self._api_client)
        return self._custom_objects

    @property
    def version_api(self) -> VersionApi:
        """Get VersionApi instance for cluster version info."""
        if self._version_api is None:
            from kubernetes.client import VersionApi

            self._version_api = VersionApi(self._api_client)
        return self._version_api

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
        cluster: str | None = None,
    ) -> KubernetesError:
        """Translate a kubernetes ApiException to a custom exception.

        Args:
            e: The original exception.
            resource_type: Type of resource being operated on.
            resource_name: Name of the resource.
            namespace: Namespace of the resource.
            cluster: Cluster the request was sent to.

        Returns:
            An appropriate KubernetesError subclass.
        """
        from kubernetes.client import ApiException

        if isinstance(e, KubernetesError):
            return e

        if isinstance(e, (Urllib3HTTPError, ConnectionError, TimeoutError)):
            return KubernetesConnectionError(
                message=f"Kubernetes API unreachable: {e}",
                original_error=e,
                cluster=cluster,
            )

        if not isinstance(e, ApiException):
            return KubernetesError(
                message=str(e),
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
                cluster=cluster,
            )

        status = e.status

        if status in (401, 403):
            return KubernetesAuthError(
                message=e.reason or "Authentication/authorization failed",
                status_code=status,
                reason=e.reason,
            )

        if status == 404:
            return KubernetesNotFoundError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status == 409:
            return KubernetesConflictError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status in (400, 422):
            return KubernetesValidationError(
                message=e.reason or "Validation failed",
                status_code=status,
            )

        return KubernetesError(
            message=e.reason or f"Kubernetes API error: {status}",
            status_code=status,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
            cluster=cluster,
        )

    # =========================================================================
    # Retry Decorator
    # =========================================================================

    def make_retry_decorator(self) -> Any:
        """Create a retry decorator for transient connection errors.

        Returns:
            A tenacity retry decorator configured with exponential backoff.
        """
        return retry(
            retry=retry_if_exception_type(KubernetesConnectionError),
            stop=stop_after_attempt(max(self._retries, 1)),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )

    # =========================================================================
    # Operations
    # =========================================================================

    def patch_deployment_replicas(self, namespace: str, name: str, replicas: int) -> V1Deployment:
        """Set ``spec.replicas`` of a Deployment with a strategic merge patch.

        Only the replica field is sent, so concurrent edits to other fields
        are never overwritten.

        Args:
            namespace: Deployment namespace.
            name: Deployment name.
            replicas: Desired replica count.

        Returns:
            The Deployment as returned by the API server after the patch.

        Raises:
            KubernetesError: Translated API failure after retries.
        """
        body = {"spec": {"replicas": replicas}}

        @self.make_retry_decorator()
        def _patch() -> V1Deployment:
            try:
                return self.apps_v1.patch_namespaced_deployment(
                    name=name,
                    namespace=namespace,
                    body=body,
                )
            except Exception as e:
                raise self.translate_api_exception(
                    e,
                    resource_type="Deployment",
                    resource_name=name,
                    namespace=namespace,
                    cluster=self._name,
                ) from e

        deployment = _patch()
        logger.info(
            "deployment_replicas_patched",
            cluster=self._name,
            namespace=namespace,
            deployment=name,
            replicas=replicas,
        )
        return deployment

    # =========================================================================
    # Connection Check
    # =========================================================================

    def check_connection(self) -> bool:
        """Check if connection to the Kubernetes API server is working.

        Returns:
            True if connection is successful, False otherwise.
        """
        try:
            self.version_api.get_code()
            return True
        except Exception:
            return False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def name(self) -> str:
        """Get the cluster name this client talks to."""
        return self._name

    @property
    def timeout(self) -> int:
        """Get the configured request timeout."""
        return self._config.timeout

    def get_current_context(self) -> str:
        """Get the loaded context name, or 'in-cluster' inside a pod."""
        return self._current_context or "unknown"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the client and release resources."""
        self._invalidate_api_cache()
        if self._api_client is not None:
            self._api_client.close()
            self._api_client = None
        logger.debug("Kubernetes client closed", cluster=self._name)

    def __enter__(self) -> KubernetesClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()
