"""List/watch caches ("informers") for Kubernetes objects.

Each ``SharedInformer`` lists a resource once, then keeps a local copy up to
date from a watch stream running in a background thread. Readers go through a
``Lister``; objects handed out are shared snapshots and must not be mutated.
An ``InformerFactory`` owns the informers of one cluster.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from capacity_controller.integrations.kubernetes.custom_objects import ShipperClient
from capacity_controller.integrations.kubernetes.exceptions import (
    CacheNotSyncedError,
    KubernetesNotFoundError,
)
from capacity_controller.integrations.kubernetes.labels import selector_matches
from capacity_controller.integrations.kubernetes.models.base import _get_labels, _safe_get

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

WATCH_ERROR_BACKOFF_SECONDS = 5.0


class ResourceKind(StrEnum):
    """Kinds of objects the controller caches."""

    CAPACITY_TARGET = "CapacityTarget"
    RELEASE = "Release"
    DEPLOYMENT = "Deployment"
    POD = "Pod"


class InvalidKeyError(ValueError):
    """Raised for cache keys that are not ``namespace/name`` strings."""


@dataclass(frozen=True)
class ResourceEventHandler:
    """Callbacks invoked when a cached object changes.

    Any callback may be omitted. ``on_update`` receives ``(old, new)``.
    """

    on_add: Callable[[Any], None] | None = None
    on_update: Callable[[Any, Any], None] | None = None
    on_delete: Callable[[Any], None] | None = None


def meta_namespace_key(obj: Any) -> str:
    """Return the ``namespace/name`` key of an object (``name`` if cluster scoped).

    Raises:
        InvalidKeyError: If the object has no name.
    """
    name = _safe_get(obj, "metadata", "name")
    if not name:
        raise InvalidKeyError(f"object has no metadata.name: {obj!r}")
    namespace = _safe_get(obj, "metadata", "namespace")
    return f"{namespace}/{name}" if namespace else name


def split_meta_namespace_key(key: Any) -> tuple[str, str]:
    """Split a ``namespace/name`` key into its parts.

    Raises:
        InvalidKeyError: If *key* is not a string of the expected shape.
    """
    if not isinstance(key, str):
        raise InvalidKeyError(f"expected a string key, got {key!r}")
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise InvalidKeyError(f"unexpected key format: {key!r}")


def _resource_version(obj: Any) -> str | None:
    return _safe_get(obj, "metadata", "resource_version")


class SharedInformer:
    """Cache of one resource kind in one cluster, fed by list + watch."""

    def __init__(
        self,
        kind: ResourceKind,
        list_func: Callable[..., Any],
        *,
        cluster: str,
        resync_seconds: int = 300,
        list_kwargs: dict[str, Any] | None = None,
    ) -> None:
        self.kind = kind
        self.cluster = cluster
        self._list_func = list_func
        self._list_kwargs = list_kwargs or {}
        self._resync_seconds = resync_seconds
        self._items: dict[str, Any] = {}
        self._handlers: list[ResourceEventHandler] = []
        self._lock = threading.RLock()
        self._synced = threading.Event()
        self._thread: threading.Thread | None = None
        self._log = logger.bind(informer=kind.value, cluster=cluster)

    # -----------------------------------------------------------------------
    # Handlers
    # -----------------------------------------------------------------------

    def add_event_handler(self, handler: ResourceEventHandler) -> None:
        """Register a handler; objects already cached are replayed as adds."""
        with self._lock:
            self._handlers.append(handler)
            existing = list(self._items.values())
        if handler.on_add:
            for obj in existing:
                self._call(handler.on_add, obj)

    def _call(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            self._log.exception("event_handler_failed")

    def _dispatch_add(self, obj: Any) -> None:
        for handler in list(self._handlers):
            if handler.on_add:
                self._call(handler.on_add, obj)

    def _dispatch_update(self, old: Any, new: Any) -> None:
        for handler in list(self._handlers):
            if handler.on_update:
                self._call(handler.on_update, old, new)

    def _dispatch_delete(self, obj: Any) -> None:
        for handler in list(self._handlers):
            if handler.on_delete:
                self._call(handler.on_delete, obj)

    # -----------------------------------------------------------------------
    # Store
    # -----------------------------------------------------------------------

    def replace(self, objects: Iterable[Any]) -> None:
        """Replace the cache content with a full listing and mark it synced.

        Handlers see adds for new keys, updates for keys already present and
        deletes for keys that disappeared.
        """
        fresh = {meta_namespace_key(obj): obj for obj in objects}
        with self._lock:
            previous = self._items
            self._items = fresh

        for key, obj in fresh.items():
            if key in previous:
                self._dispatch_update(previous[key], obj)
            else:
                self._dispatch_add(obj)
        for key, obj in previous.items():
            if key not in fresh:
                self._dispatch_delete(obj)

        if not self._synced.is_set():
            self._log.debug("cache_synced", items=len(fresh))
        self._synced.set()

    def handle_event(self, event_type: str, obj: Any) -> None:
        """Apply one watch event (ADDED, MODIFIED or DELETED) to the cache."""
        key = meta_namespace_key(obj)
        if event_type in ("ADDED", "MODIFIED"):
            with self._lock:
                old = self._items.get(key)
                self._items[key] = obj
            if old is None:
                self._dispatch_add(obj)
            else:
                self._dispatch_update(old, obj)
        elif event_type == "DELETED":
            with self._lock:
                old = self._items.pop(key, None)
            self._dispatch_delete(old if old is not None else obj)

    def items(self) -> list[Any]:
        """Snapshot of every cached object."""
        with self._lock:
            return list(self._items.values())

    def get_by_key(self, key: str) -> Any | None:
        with self._lock:
            return self._items.get(key)

    def has_synced(self) -> bool:
        """Whether the initial listing has completed."""
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        """Block until the initial listing completes or *timeout* expires."""
        return self._synced.wait(timeout)

    def lister(self) -> Lister:
        """Return a read accessor for this cache."""
        return Lister(self)

    # -----------------------------------------------------------------------
    # List/Watch loop
    # -----------------------------------------------------------------------

    def start(self, stop_event: threading.Event) -> None:
        """Start the list/watch loop in a daemon thread (idempotent)."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self.run,
            args=(stop_event,),
            name=f"informer-{self.cluster}-{self.kind.value.lower()}",
            daemon=True,
        )
        self._thread.start()

    def run(self, stop_event: threading.Event) -> None:
        """List, then watch until *stop_event* is set; relist when the watch expires."""
        from kubernetes.client import ApiException

        self._log.info("informer_started")
        while not stop_event.is_set():
            try:
                resource_version = self._list()
                self._watch(resource_version, stop_event)
            except ApiException as e:
                if e.status == 410:
                    self._log.debug("watch_expired_relisting")
                    continue
                self._log.warning("list_watch_failed", status=e.status, reason=e.reason)
                stop_event.wait(WATCH_ERROR_BACKOFF_SECONDS)
            except Exception as e:
                self._log.warning("list_watch_failed", error=str(e))
                stop_event.wait(WATCH_ERROR_BACKOFF_SECONDS)
        self._log.info("informer_stopped")

    def _list(self) -> str | None:
        result = self._list_func(**self._list_kwargs)
        self.replace(_safe_get(result, "items", default=[]) or [])
        return _resource_version(result)

    def _watch(self, resource_version: str | None, stop_event: threading.Event) -> None:
        from kubernetes import watch
        from kubernetes.client import ApiException

        watcher = watch.Watch()
        while not stop_event.is_set():
            stream = watcher.stream(
                self._list_func,
                resource_version=resource_version,
                timeout_seconds=self._resync_seconds,
                **self._list_kwargs,
            )
            for event in stream:
                if stop_event.is_set():
                    watcher.stop()
                    return
                event_type = event["type"]
                obj = event["object"]
                if event_type == "ERROR":
                    code = _safe_get(event, "raw_object", "code", default=500)
                    raise ApiException(status=code, reason=_safe_get(obj, "message"))
                resource_version = _resource_version(obj) or resource_version
                if event_type == "BOOKMARK":
                    continue
                self.handle_event(event_type, obj)


class Lister:
    """Read-only view over an informer cache."""

    def __init__(self, informer: SharedInformer) -> None:
        self._informer = informer

    def _ensure_synced(self) -> None:
        if not self._informer.has_synced():
            raise CacheNotSyncedError(self._informer.kind.value, self._informer.cluster)

    def list(self, namespace: str | None = None, selector: Any = None) -> list[Any]:
        """List cached objects, optionally filtered by namespace and label selector.

        Results are ordered by ``namespace/name``.

        Raises:
            CacheNotSyncedError: If the cache has not completed its first listing.
        """
        self._ensure_synced()
        matches = [
            obj
            for obj in self._informer.items()
            if (namespace is None or _safe_get(obj, "metadata", "namespace") == namespace)
            and selector_matches(selector, _get_labels(obj))
        ]
        return sorted(matches, key=meta_namespace_key)

    def get(self, namespace: str, name: str) -> Any:
        """Get one cached object.

        Raises:
            CacheNotSyncedError: If the cache has not completed its first listing.
            KubernetesNotFoundError: If the object is not cached.
        """
        self._ensure_synced()
        key = f"{namespace}/{name}" if namespace else name
        obj = self._informer.get_by_key(key)
        if obj is None:
            raise KubernetesNotFoundError(
                resource_type=self._informer.kind.value,
                resource_name=name,
                namespace=namespace or None,
            )
        return obj


class InformerFactory:
    """Informers for one cluster, created on first request and started together."""

    def __init__(
        self,
        client: KubernetesClient,
        cluster: str,
        resync_seconds: int = 300,
        namespace: str = "",
    ) -> None:
        self.client = client
        self.cluster = cluster
        self._resync_seconds = resync_seconds
        self._namespace = namespace
        self._informers: dict[ResourceKind, SharedInformer] = {}
        self._lock = threading.Lock()
        self._stop_event: threading.Event | None = None

    def _list_function(self, kind: ResourceKind) -> tuple[Callable[..., Any], dict[str, Any]]:
        namespaced = {"namespace": self._namespace} if self._namespace else {}
        if kind is ResourceKind.DEPLOYMENT:
            if self._namespace:
                return self.client.apps_v1.list_namespaced_deployment, namespaced
            return self.client.apps_v1.list_deployment_for_all_namespaces, {}
        if kind is ResourceKind.POD:
            if self._namespace:
                return self.client.core_v1.list_namespaced_pod, namespaced
            return self.client.core_v1.list_pod_for_all_namespaces, {}

        shipper = ShipperClient(self.client, namespace=self._namespace)
        if kind is ResourceKind.CAPACITY_TARGET:
            return shipper.list_capacity_targets, {}
        return shipper.list_releases, {}

    def informer_for(self, kind: ResourceKind) -> SharedInformer:
        """Return the informer for *kind*, creating it on first use.

        Informers requested after ``start`` are started immediately.
        """
        with self._lock:
            informer = self._informers.get(kind)
            if informer is None:
                list_func, list_kwargs = self._list_function(kind)
                informer = SharedInformer(
                    kind,
                    list_func,
                    cluster=self.cluster,
                    resync_seconds=self._resync_seconds,
                    list_kwargs=list_kwargs,
                )
                self._informers[kind] = informer
                if self._stop_event is not None:
                    informer.start(self._stop_event)
        return informer

    def deployments(self) -> SharedInformer:
        return self.informer_for(ResourceKind.DEPLOYMENT)

    def pods(self) -> SharedInformer:
        return self.informer_for(ResourceKind.POD)

    def capacity_targets(self) -> SharedInformer:
        return self.informer_for(ResourceKind.CAPACITY_TARGET)

    def releases(self) -> SharedInformer:
        return self.informer_for(ResourceKind.RELEASE)

    def start(self, stop_event: threading.Event) -> None:
        """Start every requested informer."""
        with self._lock:
            self._stop_event = stop_event
            informers = list(self._informers.values())
        for informer in informers:
            informer.start(stop_event)

    def has_synced(self) -> bool:
        """Whether every requested informer completed its first listing."""
        with self._lock:
            informers = list(self._informers.values())
        return all(informer.has_synced() for informer in informers)

    def wait_for_cache_sync(self, timeout: float | None = None) -> bool:
        """Block until every requested informer has synced.

        Args:
            timeout: Limit in seconds for each informer, or None to wait forever.

        Returns:
            True if all caches synced in time.
        """
        with self._lock:
            informers = list(self._informers.values())
        return all(informer.wait_for_sync(timeout) for informer in informers)
