"""Shared fixtures for unit tests: object builders, fake recorder and cluster store."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes.client import (
    V1ContainerState,
    V1ContainerStateRunning,
    V1ContainerStateWaiting,
    V1ContainerStatus,
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStatus,
    V1LabelSelector,
    V1ObjectMeta,
    V1Pod,
    V1PodCondition,
    V1PodStatus,
    V1PodTemplateSpec,
)

from capacity_controller.integrations.kubernetes.cluster_store import ClusterClientStore
from capacity_controller.integrations.kubernetes.config import CapacityControllerConfig

APP_LABELS = {"app": "web", "release": "web-1"}
RELEASE_UID = "release-uid-1"


class FakeRecorder:
    """Collects events as ``(type, reason, message)`` tuples."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str]] = []

    def event(self, obj: Any, event_type: Any, reason: str, message: str) -> None:
        self.events.append((str(event_type), reason, message))

    def eventf(self, obj: Any, event_type: Any, reason: str, message_fmt: str, *args: Any) -> None:
        self.event(obj, event_type, reason, message_fmt % args if args else message_fmt)

    @property
    def reasons(self) -> list[str]:
        return [reason for _, reason, _ in self.events]


@pytest.fixture
def recorder() -> FakeRecorder:
    """Create an in-memory event recorder."""
    return FakeRecorder()


@pytest.fixture
def make_deployment() -> Callable[..., V1Deployment]:
    """Create a factory for V1Deployment objects."""

    def _make(
        name: str = "web",
        namespace: str = "default",
        labels: dict[str, str] | None = None,
        replicas: int | None = None,
        available: int | None = 0,
        selector: dict[str, str] | None = None,
    ) -> V1Deployment:
        return V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=dict(APP_LABELS) if labels is None else labels,
            ),
            spec=V1DeploymentSpec(
                replicas=replicas,
                selector=V1LabelSelector(match_labels=selector or {"app": "web"}),
                template=V1PodTemplateSpec(),
            ),
            status=V1DeploymentStatus(available_replicas=available),
        )

    return _make


@pytest.fixture
def make_pod() -> Callable[..., V1Pod]:
    """Create a factory for V1Pod objects; not-ready pods are crash looping."""

    def _make(
        name: str,
        namespace: str = "default",
        labels: dict[str, str] | None = None,
        ready: bool = True,
    ) -> V1Pod:
        if ready:
            state = V1ContainerState(running=V1ContainerStateRunning())
        else:
            state = V1ContainerState(
                waiting=V1ContainerStateWaiting(reason="CrashLoopBackOff", message="back-off")
            )
        return V1Pod(
            metadata=V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels={"app": "web"} if labels is None else labels,
            ),
            status=V1PodStatus(
                phase="Running",
                conditions=[
                    V1PodCondition(type="Initialized", status="True"),
                    V1PodCondition(
                        type="Ready",
                        status="True" if ready else "False",
                        reason=None if ready else "ContainersNotReady",
                    ),
                ],
                container_statuses=[
                    V1ContainerStatus(
                        name="app",
                        image="web:1.0",
                        image_id="",
                        ready=ready,
                        restart_count=0 if ready else 4,
                        state=state,
                    )
                ],
            ),
        )

    return _make


@pytest.fixture
def make_pods(make_pod: Callable[..., V1Pod]) -> Callable[..., list[V1Pod]]:
    """Create a factory for ``ready`` healthy pods followed by ``sad`` unready ones."""

    def _make(ready: int = 0, sad: int = 0, namespace: str = "default") -> list[V1Pod]:
        pods = [make_pod(f"web-ready-{i}", namespace=namespace) for i in range(ready)]
        pods += [make_pod(f"web-sad-{i}", namespace=namespace, ready=False) for i in range(sad)]
        return pods

    return _make


@pytest.fixture
def make_capacity_target() -> Callable[..., dict[str, Any]]:
    """Create a factory for CapacityTarget dicts as returned by CustomObjectsApi."""

    def _make(
        clusters: Iterable[tuple[str, int]] = (("us-east", 50),),
        name: str = "web-1",
        namespace: str = "default",
        labels: dict[str, str] | None = None,
        owner_references: list[dict[str, Any]] | None = None,
        status_clusters: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        if owner_references is None:
            owner_references = [
                {
                    "apiVersion": "shipper.booking.com/v1",
                    "kind": "Release",
                    "name": "web-1",
                    "uid": RELEASE_UID,
                }
            ]
        return {
            "apiVersion": "shipper.booking.com/v1",
            "kind": "CapacityTarget",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": "ct-uid-1",
                "resourceVersion": "100",
                "labels": dict(APP_LABELS) if labels is None else labels,
                "ownerReferences": owner_references,
            },
            "spec": {
                "clusters": [{"name": cluster, "percent": percent} for cluster, percent in clusters]
            },
            "status": {"clusters": status_clusters or []},
        }

    return _make


@pytest.fixture
def make_release() -> Callable[..., dict[str, Any]]:
    """Create a factory for Release dicts."""

    def _make(
        name: str = "web-1",
        namespace: str = "default",
        uid: str = RELEASE_UID,
        replicas: str | None = "10",
    ) -> dict[str, Any]:
        annotations = {}
        if replicas is not None:
            annotations["shipper.booking.com/release.replicas"] = replicas
        return {
            "apiVersion": "shipper.booking.com/v1",
            "kind": "Release",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": uid,
                "annotations": annotations,
            },
        }

    return _make


@pytest.fixture
def cluster_store() -> ClusterClientStore:
    """Create a cluster store without configured clusters."""
    return ClusterClientStore(CapacityControllerConfig())


@pytest.fixture
def add_cluster(cluster_store: ClusterClientStore) -> Callable[..., MagicMock]:
    """Register a cluster with synced deployment and pod caches; returns its mock client."""

    def _add(name: str, deployments: Iterable[Any] = (), pods: Iterable[Any] = ()) -> MagicMock:
        client = MagicMock()
        client.name = name
        factory = cluster_store.register_cluster(name, client)
        factory.deployments().replace(list(deployments))
        factory.pods().replace(list(pods))
        return client

    return _add
