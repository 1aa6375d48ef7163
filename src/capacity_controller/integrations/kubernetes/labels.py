"""Label selector evaluation for cached objects.

Informer caches are queried locally, so label selectors have to be evaluated
client side. Selectors may be given as plain ``{key: value}`` mappings, as
``V1LabelSelector`` objects or as their dict form
(``{"matchLabels": ..., "matchExpressions": ...}``).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from capacity_controller.integrations.kubernetes.models.base import _safe_get

_OPERATORS = {"In", "NotIn", "Exists", "DoesNotExist"}


def _normalize(selector: Any) -> tuple[dict[str, str], list[dict[str, Any]]]:
    """Split a selector into match labels and match expressions."""
    if selector is None:
        return {}, []

    if isinstance(selector, Mapping):
        if "matchLabels" in selector or "matchExpressions" in selector:
            match_labels = dict(selector.get("matchLabels") or {})
            expressions = [dict(expr) for expr in selector.get("matchExpressions") or []]
            return match_labels, expressions
        return {str(k): str(v) for k, v in selector.items()}, []

    match_labels = dict(_safe_get(selector, "match_labels", default={}) or {})
    expressions = [
        {
            "key": _safe_get(expr, "key"),
            "operator": _safe_get(expr, "operator"),
            "values": list(_safe_get(expr, "values", default=[]) or []),
        }
        for expr in _safe_get(selector, "match_expressions", default=[]) or []
    ]
    return match_labels, expressions


def _expression_matches(expression: Mapping[str, Any], labels: Mapping[str, str]) -> bool:
    key = expression.get("key")
    operator = expression.get("operator")
    values = set(expression.get("values") or [])

    if operator not in _OPERATORS:
        raise ValueError(f"Unsupported label selector operator: {operator}")

    if operator == "Exists":
        return key in labels
    if operator == "DoesNotExist":
        return key not in labels
    if operator == "In":
        return key in labels and labels[key] in values
    return key not in labels or labels[key] not in values


def selector_matches(selector: Any, labels: Mapping[str, str] | None) -> bool:
    """Return True if *labels* satisfy *selector*.

    An empty selector matches everything, as in the Kubernetes API.

    Raises:
        ValueError: If a match expression uses an unknown operator.
    """
    labels = labels or {}
    match_labels, expressions = _normalize(selector)

    if any(labels.get(key) != value for key, value in match_labels.items()):
        return False
    return all(_expression_matches(expr, labels) for expr in expressions)


def labels_to_selector_string(labels: Mapping[str, str] | None) -> str:
    """Render an equality selector as ``k1=v1,k2=v2`` (sorted by key)."""
    return ",".join(f"{key}={value}" for key, value in sorted((labels or {}).items()))
