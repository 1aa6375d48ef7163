"""Readiness inspection of the pods behind a Deployment."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from capacity_controller.integrations.kubernetes.models.base import _safe_get
from capacity_controller.integrations.kubernetes.models.workloads import PodStatus
from capacity_controller.services.capacity.base import ClusterServiceBase

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.cluster_store import ClusterClientStore

SAD_POD_LIMIT = 5


@dataclass(frozen=True)
class PodHealthReport:
    """Outcome of inspecting a Deployment's pods.

    Attributes:
        pod_count: Pods matched by the Deployment's selector.
        sad_pod_count: How many of them are not ready.
        sad_pods: Diagnostics for at most ``sad_pod_limit`` sad pods, by name.
    """

    pod_count: int
    sad_pod_count: int
    sad_pods: list[PodStatus] = field(default_factory=list)


def is_pod_ready(pod: Any) -> bool:
    """Return True if the pod's ``Ready`` condition is ``True``."""
    for condition in _safe_get(pod, "status", "conditions", default=[]) or []:
        if _safe_get(condition, "type") == "Ready":
            return _safe_get(condition, "status") == "True"
    return False


class PodHealthInspector(ClusterServiceBase):
    """Finds the not-ready ("sad") pods of a Deployment from the pod cache."""

    _entity_name = "pod_health"

    def __init__(self, store: ClusterClientStore, sad_pod_limit: int = SAD_POD_LIMIT) -> None:
        super().__init__(store)
        self._sad_pod_limit = sad_pod_limit

    def inspect(self, deployment: Any, cluster_name: str) -> PodHealthReport:
        """Inspect the pods selected by *deployment* in *cluster_name*.

        Args:
            deployment: The Deployment whose ``spec.selector`` picks the pods.
            cluster_name: Cluster the Deployment lives in.

        Returns:
            Pod and sad pod counts plus diagnostics for the first sad pods.

        Raises:
            ClusterNotReadyError: If the cluster is unavailable.
            CacheNotSyncedError: If the cluster's pod cache has not synced.
        """
        factory = self._informer_factory(cluster_name)
        namespace = _safe_get(deployment, "metadata", "namespace")
        selector = _safe_get(deployment, "spec", "selector")

        pods = factory.pods().lister().list(namespace=namespace, selector=selector)
        if selector is None:
            # a nil selector selects nothing
            pods = []

        sad = [pod for pod in pods if not is_pod_ready(pod)]
        report = PodHealthReport(
            pod_count=len(pods),
            sad_pod_count=len(sad),
            sad_pods=[PodStatus.from_k8s_object(pod) for pod in sad[: self._sad_pod_limit]],
        )

        self._log.debug(
            "pods_inspected",
            cluster=cluster_name,
            namespace=namespace,
            deployment=_safe_get(deployment, "metadata", "name"),
            pods=report.pod_count,
            sad_pods=report.sad_pod_count,
        )
        return report
