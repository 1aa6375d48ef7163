"""Capacity controller exceptions.

Errors raised while validating a CapacityTarget abort the whole sync and are
retried by the work queue; per-cluster failures are reported as conditions
instead and never surface here.
"""

from __future__ import annotations


class CapacityError(Exception):
    """Base exception for capacity reconciliation.

    Attributes:
        message: Human-readable error message.
        key: ``namespace/name`` of the CapacityTarget involved (if known).
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        """Initialize CapacityError.

        Args:
            message: Human-readable error message.
            key: ``namespace/name`` of the CapacityTarget.
        """
        super().__init__(message)
        self.message = message
        self.key = key

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.key:
            return f"{self.message} [CapacityTarget {self.key}]"
        return self.message


class MultipleOwnerReferencesError(CapacityError):
    """Raised when a CapacityTarget does not have exactly one owner reference."""

    def __init__(self, key: str, count: int) -> None:
        super().__init__(f"expected exactly one owner reference, found {count}", key=key)
        self.count = count


class ReleaseIsGoneError(CapacityError):
    """Raised when the owning Release was replaced by an object with another UID."""

    def __init__(
        self, key: str, release: str, expected_uid: str | None, actual_uid: str | None
    ) -> None:
        super().__init__(
            f"release {release!r} has UID {actual_uid!r}, owner reference expects {expected_uid!r}",
            key=key,
        )
        self.release = release
        self.expected_uid = expected_uid
        self.actual_uid = actual_uid


class InvalidReplicaAnnotationError(CapacityError):
    """Raised when a Release's total-replicas annotation is missing or malformed."""

    def __init__(self, key: str, release: str, value: str | None) -> None:
        if value is None:
            message = f"release {release!r} has no replica count annotation"
        else:
            message = f"release {release!r} has invalid replica count annotation {value!r}"
        super().__init__(message, key=key)
        self.release = release
        self.value = value


class InvalidPodCountError(CapacityError):
    """Raised when the pods observed for a deployment differ from the desired count."""

    def __init__(self, deployment: str, expected: int, actual: int) -> None:
        super().__init__(f"expected {expected} pods for deployment {deployment!r}, found {actual}")
        self.deployment = deployment
        self.expected = expected
        self.actual = actual


class MissingDeploymentError(CapacityError):
    """Raised when the label selector does not match exactly one Deployment."""

    def __init__(self, cluster: str, selector: str, count: int) -> None:
        super().__init__(
            f"expected exactly one deployment matching {selector!r} in cluster {cluster!r}, "
            f"found {count}"
        )
        self.cluster = cluster
        self.selector = selector
        self.count = count


class InvalidCapacityError(CapacityError, ValueError):
    """Raised for replica totals or percentages outside their valid range."""


class StatusUpdateError(CapacityError):
    """Raised when the computed status could not be written back."""

    def __init__(self, key: str, cause: Exception) -> None:
        super().__init__(f"failed to update status: {cause}", key=key)
        self.cause = cause
