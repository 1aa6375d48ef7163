"""Conversion between capacity percentages and replica counts."""

from __future__ import annotations

import math

from capacity_controller.services.capacity.exceptions import InvalidCapacityError


def calculate_replica_count(total_replicas: int, percent: int) -> int:
    """Return the replicas a cluster needs to hold *percent* of *total_replicas*.

    Rounds up, so any non-zero percentage of a non-zero total yields at least
    one replica (33% of 10 is 4).

    Raises:
        InvalidCapacityError: If the total is negative or the percentage is
            outside ``[0, 100]``.
    """
    if total_replicas < 0:
        raise InvalidCapacityError(f"total replicas must not be negative, got {total_replicas}")
    if not 0 <= percent <= 100:
        raise InvalidCapacityError(f"percent must be within [0, 100], got {percent}")
    return math.ceil(percent / 100 * total_replicas)


def calculate_achieved_percent(total_replicas: int, available_replicas: int) -> int:
    """Return the rounded-up share of *total_replicas* that is available.

    Used for reporting only.

    Raises:
        InvalidCapacityError: If the total is not positive.
    """
    if total_replicas <= 0:
        raise InvalidCapacityError(f"total replicas must be positive, got {total_replicas}")
    return math.ceil(available_replicas / total_replicas * 100)
