"""Per-cluster capacity conditions.

Conditions are edited in memory only; writing them back is up to the caller.
"""

from __future__ import annotations

from datetime import UTC, datetime

from capacity_controller.integrations.kubernetes.models.capacity import (
    ClusterCapacityCondition,
    ClusterCapacityStatus,
    ClusterConditionType,
    ConditionStatus,
)


def _format_time(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def new_cluster_capacity_condition(
    condition_type: ClusterConditionType,
    status: ConditionStatus,
    reason: str = "",
    message: str = "",
) -> ClusterCapacityCondition:
    """Build a condition without a transition time; ``set`` assigns one."""
    return ClusterCapacityCondition(
        type=condition_type,
        status=status,
        reason=str(reason),
        message=message,
    )


def get_cluster_capacity_condition(
    cluster_status: ClusterCapacityStatus, condition_type: ClusterConditionType
) -> ClusterCapacityCondition | None:
    """Return the condition of the given type, or None if absent."""
    for condition in cluster_status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_cluster_capacity_condition(
    cluster_status: ClusterCapacityStatus,
    condition: ClusterCapacityCondition,
    now: datetime | None = None,
) -> None:
    """Insert or update *condition* in *cluster_status*, keyed by its type.

    - Same status, reason and message as the current condition: nothing changes.
    - Same status, different reason or message: both are updated and the
      transition time is kept.
    - Different status (or a new type): the transition time is set to *now*.

    Conditions stay ordered by type.

    Args:
        cluster_status: Status entry to modify in place.
        condition: The desired condition.
        now: Transition time to record; defaults to the current UTC time.
    """
    current = get_cluster_capacity_condition(cluster_status, condition.type)

    if current is not None and current.status == condition.status:
        if current.reason != condition.reason or current.message != condition.message:
            current.reason = condition.reason
            current.message = condition.message
        return

    new_condition = condition.model_copy(
        update={"last_transition_time": _format_time(now or datetime.now(UTC))}
    )
    conditions = [c for c in cluster_status.conditions if c.type != condition.type]
    conditions.append(new_condition)
    cluster_status.conditions = sorted(conditions, key=lambda c: str(c.type))
