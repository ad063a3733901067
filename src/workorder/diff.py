"""Structural comparison of desired and live objects."""

from typing import Any

# Server-managed subtree never considered when deciding whether to write
IGNORED_FIELDS = frozenset({'status'})


def _identity(obj: dict) -> tuple[str, str, str]:
    metadata = obj.get('metadata') or {}
    return (
        obj.get('kind', ''),
        metadata.get('namespace', '') or '',
        metadata.get('name', '') or '',
    )


def _without_ignored(obj: dict) -> dict[str, Any]:
    return {k: v for k, v in obj.items() if k not in IGNORED_FIELDS}


def deep_equal(a: Any, b: Any) -> bool:
    """Recursive equality that also requires matching scalar types.

    Plain `==` treats True, 1 and 1.0 as equal; decoded manifests must not,
    since the API server stores booleans, integers and floats distinctly.
    """
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))
    if type(a) is not type(b):
        return False
    return a == b


def is_equivalent(desired: dict, live: dict) -> bool:
    """Check whether a live object already matches the desired object.

    Objects are equivalent when kind, namespace and name match and every
    top-level field other than 'status' is deeply equal. Mapping key order
    is irrelevant; list order and scalar types are significant.
    """
    if _identity(desired) != _identity(live):
        return False
    return deep_equal(_without_ignored(desired), _without_ignored(live))
