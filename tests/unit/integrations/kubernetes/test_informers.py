"""Unit tests for informer caches, listers and the informer factory."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from capacity_controller.integrations.kubernetes.exceptions import (
    CacheNotSyncedError,
    KubernetesNotFoundError,
)
from capacity_controller.integrations.kubernetes.informers import (
    InformerFactory,
    InvalidKeyError,
    ResourceEventHandler,
    ResourceKind,
    SharedInformer,
    meta_namespace_key,
    split_meta_namespace_key,
)


class RecordingHandler:
    """Collects informer callbacks as ``(event, key)`` tuples."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def handler(self) -> ResourceEventHandler:
        return ResourceEventHandler(
            on_add=lambda obj: self.calls.append(("add", meta_namespace_key(obj))),
            on_update=lambda old, new: self.calls.append(("update", meta_namespace_key(new))),
            on_delete=lambda obj: self.calls.append(("delete", meta_namespace_key(obj))),
        )


@pytest.fixture
def informer() -> SharedInformer:
    """Create an informer for pods with a mock list function."""
    return SharedInformer(ResourceKind.POD, MagicMock(), cluster="us-east")


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKeys:
    """Test cache key helpers."""

    def test_meta_namespace_key(self, make_pod: Callable[..., Any]) -> None:
        """Test keys of typed objects and dicts."""
        assert meta_namespace_key(make_pod("web-0")) == "default/web-0"
        assert meta_namespace_key({"metadata": {"name": "node-1"}}) == "node-1"

    def test_meta_namespace_key_without_name(self) -> None:
        """Test objects without a name have no key."""
        with pytest.raises(InvalidKeyError):
            meta_namespace_key({"metadata": {"namespace": "default"}})

    @pytest.mark.parametrize(
        ("key", "expected"),
        [("default/web-1", ("default", "web-1")), ("web-1", ("", "web-1"))],
    )
    def test_split_valid(self, key: str, expected: tuple[str, str]) -> None:
        """Test valid keys split into namespace and name."""
        assert split_meta_namespace_key(key) == expected

    @pytest.mark.parametrize("key", ["", "a/b/c", "default/", 42, None])
    def test_split_invalid(self, key: Any) -> None:
        """Test invalid keys are rejected."""
        with pytest.raises(InvalidKeyError):
            split_meta_namespace_key(key)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSharedInformer:
    """Test SharedInformer cache and handler dispatch."""

    def test_replace_dispatches_diff(
        self, informer: SharedInformer, make_pod: Callable[..., Any]
    ) -> None:
        """Test a relist turns into adds, updates and deletes."""
        recorder = RecordingHandler()
        informer.add_event_handler(recorder.handler())
        informer.replace([make_pod("a"), make_pod("b")])

        informer.replace([make_pod("b"), make_pod("c")])

        assert recorder.calls == [
            ("add", "default/a"),
            ("add", "default/b"),
            ("update", "default/b"),
            ("add", "default/c"),
            ("delete", "default/a"),
        ]
        assert informer.has_synced()

    def test_handle_event(self, informer: SharedInformer, make_pod: Callable[..., Any]) -> None:
        """Test watch events update the cache and notify handlers."""
        recorder = RecordingHandler()
        informer.add_event_handler(recorder.handler())

        informer.handle_event("ADDED", make_pod("a"))
        informer.handle_event("MODIFIED", make_pod("a", ready=False))
        informer.handle_event("MODIFIED", make_pod("b"))
        informer.handle_event("DELETED", make_pod("a"))

        assert recorder.calls == [
            ("add", "default/a"),
            ("update", "default/a"),
            ("add", "default/b"),
            ("delete", "default/a"),
        ]
        assert informer.get_by_key("default/a") is None
        assert informer.get_by_key("default/b") is not None

    def test_late_handler_sees_existing_items(
        self, informer: SharedInformer, make_pod: Callable[..., Any]
    ) -> None:
        """Test handlers added after the first list get adds for cached objects."""
        informer.replace([make_pod("a")])
        recorder = RecordingHandler()

        informer.add_event_handler(recorder.handler())

        assert recorder.calls == [("add", "default/a")]

    def test_failing_handler_does_not_stop_others(
        self, informer: SharedInformer, make_pod: Callable[..., Any]
    ) -> None:
        """Test a raising handler is isolated from the rest."""
        recorder = RecordingHandler()
        informer.add_event_handler(ResourceEventHandler(on_add=MagicMock(side_effect=ValueError)))
        informer.add_event_handler(recorder.handler())

        informer.handle_event("ADDED", make_pod("a"))

        assert recorder.calls == [("add", "default/a")]

    def test_wait_for_sync_timeout(self, informer: SharedInformer) -> None:
        """Test waiting on an informer that never lists."""
        assert informer.wait_for_sync(0.01) is False


@pytest.mark.unit
@pytest.mark.kubernetes
class TestLister:
    """Test Lister reads."""

    def test_unsynced_reads_fail(self, informer: SharedInformer) -> None:
        """Test reads before the first list raise CacheNotSyncedError."""
        lister = informer.lister()

        with pytest.raises(CacheNotSyncedError):
            lister.list()
        with pytest.raises(CacheNotSyncedError):
            lister.get("default", "a")

    def test_list_filters_and_sorts(
        self, informer: SharedInformer, make_pod: Callable[..., Any]
    ) -> None:
        """Test namespace and selector filters; results sorted by key."""
        informer.replace(
            [
                make_pod("c"),
                make_pod("a"),
                make_pod("b", labels={"app": "api"}),
                make_pod("a", namespace="other"),
            ]
        )
        lister = informer.lister()

        names = [p.metadata.name for p in lister.list(namespace="default", selector={"app": "web"})]
        assert names == ["a", "c"]
        assert len(lister.list()) == 4

    def test_get(self, informer: SharedInformer, make_pod: Callable[..., Any]) -> None:
        """Test get returns cached objects and raises on a miss."""
        pod = make_pod("a")
        informer.replace([pod])
        lister = informer.lister()

        assert lister.get("default", "a") is pod
        with pytest.raises(KubernetesNotFoundError) as exc_info:
            lister.get("default", "missing")
        assert exc_info.value.resource_type == "Pod"


@pytest.mark.unit
@pytest.mark.kubernetes
class TestListWatch:
    """Test the list/watch loop."""

    @pytest.fixture
    def watch(self) -> Iterator[MagicMock]:
        with patch("kubernetes.watch.Watch") as mock_watch:
            yield mock_watch.return_value

    def test_list_then_watch(self, watch: MagicMock, make_pod: Callable[..., Any]) -> None:
        """Test the loop lists, then applies watch events from that version."""
        stop_event = threading.Event()
        list_func = MagicMock(
            return_value={"items": [make_pod("a")], "metadata": {"resourceVersion": "7"}}
        )
        informer = SharedInformer(
            ResourceKind.POD, list_func, cluster="us-east", list_kwargs={"namespace": "web"}
        )

        def stream(*args: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
            yield {"type": "ADDED", "object": make_pod("b")}
            yield {"type": "DELETED", "object": make_pod("a")}
            stop_event.set()

        watch.stream.side_effect = stream

        informer.run(stop_event)

        list_func.assert_called_once_with(namespace="web")
        kwargs = watch.stream.call_args.kwargs
        assert kwargs["resource_version"] == "7"
        assert kwargs["namespace"] == "web"
        assert [meta_namespace_key(p) for p in informer.items()] == ["default/b"]

    def test_expired_watch_relists(self, watch: MagicMock, make_pod: Callable[..., Any]) -> None:
        """Test a 410 from the watch triggers a new list."""
        stop_event = threading.Event()
        list_func = MagicMock(return_value={"items": [make_pod("a")], "metadata": {}})
        informer = SharedInformer(ResourceKind.POD, list_func, cluster="us-east")

        def expired(*args: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
            yield {"type": "ERROR", "object": {"message": "too old"}, "raw_object": {"code": 410}}

        def quiet(*args: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
            stop_event.set()
            yield from ()

        watch.stream.side_effect = [expired(), quiet()]

        informer.run(stop_event)

        assert list_func.call_count == 2


@pytest.mark.unit
@pytest.mark.kubernetes
class TestInformerFactory:
    """Test InformerFactory."""

    def test_informers_are_shared(self) -> None:
        """Test one informer per kind."""
        factory = InformerFactory(MagicMock(), "us-east")

        assert factory.pods() is factory.informer_for(ResourceKind.POD)
        assert factory.pods() is not factory.deployments()
        assert factory.pods().cluster == "us-east"

    def test_namespaced_list_functions(self) -> None:
        """Test a namespace restricts the typed list calls."""
        client = MagicMock()
        factory = InformerFactory(client, "us-east", namespace="web")

        factory.deployments()._list()

        client.apps_v1.list_namespaced_deployment.assert_called_once_with(namespace="web")

    def test_cluster_wide_list_functions(self) -> None:
        """Test all-namespace list calls without a namespace."""
        client = MagicMock()
        factory = InformerFactory(client, "us-east")

        factory.pods()._list()

        client.core_v1.list_pod_for_all_namespaces.assert_called_once_with()

    def test_has_synced(self, make_pod: Callable[..., Any]) -> None:
        """Test the factory is synced once every requested informer is."""
        factory = InformerFactory(MagicMock(), "us-east")
        assert factory.has_synced() is True

        factory.pods().replace([make_pod("a")])
        factory.deployments()
        assert factory.has_synced() is False
        assert factory.wait_for_cache_sync(0.01) is False

        factory.deployments().replace([])
        assert factory.has_synced() is True

    def test_start_and_late_informers(self) -> None:
        """Test start runs existing informers and informers requested later."""
        factory = InformerFactory(MagicMock(), "us-east")
        stop_event = threading.Event()
        pods = factory.pods()

        with patch.object(SharedInformer, "start") as mock_start:
            factory.start(stop_event)
            deployments = factory.deployments()

        assert mock_start.call_count == 2
        assert pods is not deployments
