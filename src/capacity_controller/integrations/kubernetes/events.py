"""Kubernetes Event recording for controller decisions."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from capacity_controller.integrations.kubernetes.models.base import _safe_get

if TYPE_CHECKING:
    from capacity_controller.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

AGENT_NAME = "capacity-controller"


class EventType(StrEnum):
    """Kubernetes event types."""

    NORMAL = "Normal"
    WARNING = "Warning"


class EventSink(Protocol):
    """Anything that can record an event against an object."""

    def event(self, obj: Any, event_type: EventType, reason: str, message: str) -> None: ...

    def eventf(
        self, obj: Any, event_type: EventType, reason: str, message_fmt: str, *args: Any
    ) -> None: ...


class EventRecorder:
    """Records ``core/v1`` Events on the cluster holding the involved object.

    Recording is best effort: an API failure is logged and never propagates
    into the reconciliation that produced the event.
    """

    def __init__(self, client: KubernetesClient, component: str = AGENT_NAME) -> None:
        self._client = client
        self._component = component
        self._log = logger.bind(component=component)

    def event(self, obj: Any, event_type: EventType, reason: str, message: str) -> None:
        """Record an event for *obj*.

        Args:
            obj: The involved object (a model or a raw Kubernetes object).
            event_type: Normal or Warning.
            reason: Short CamelCase reason.
            message: Human-readable message.
        """
        from kubernetes.client import (
            CoreV1Event,
            V1EventSource,
            V1ObjectMeta,
            V1ObjectReference,
        )

        name = _safe_get(obj, "metadata", "name")
        namespace = _safe_get(obj, "metadata", "namespace") or "default"
        now = datetime.now(UTC)

        body = CoreV1Event(
            metadata=V1ObjectMeta(generate_name=f"{name}.", namespace=namespace),
            involved_object=V1ObjectReference(
                api_version=_safe_get(obj, "api_version"),
                kind=_safe_get(obj, "kind"),
                name=name,
                namespace=namespace,
                uid=_safe_get(obj, "metadata", "uid"),
                resource_version=_safe_get(obj, "metadata", "resource_version"),
            ),
            reason=reason,
            message=message,
            type=str(event_type),
            source=V1EventSource(component=self._component),
            reporting_component=self._component,
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )

        self._log.info(
            "event_recorded",
            namespace=namespace,
            name=name,
            type=str(event_type),
            reason=reason,
            message=message,
        )

        try:
            self._client.core_v1.create_namespaced_event(namespace, body)
        except Exception as e:
            error = self._client.translate_api_exception(
                e, resource_type="Event", namespace=namespace, cluster=self._client.name
            )
            self._log.warning("event_record_failed", reason=reason, error=str(error))

    def eventf(
        self, obj: Any, event_type: EventType, reason: str, message_fmt: str, *args: Any
    ) -> None:
        """Record an event with a printf-style message."""
        self.event(obj, event_type, reason, message_fmt % args if args else message_fmt)
