"""
Cache key construction and dependency snapshots.

Keys look like ``"<prefix>-<k1>=<v1>&<k2>=<v2>"`` with parameters sorted
by name and empty values dropped, so two equivalent parameter sets always
map to the same key.
"""
import json
from typing import Any, Mapping, Optional, Sequence, Union

Scalar = Union[str, int, float, bool]


def _format_value(value: Scalar) -> str:
    # JavaScript rendering, so keys match the ones browser clients build
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_key(prefix: str, params: Optional[Mapping[str, Optional[Scalar]]] = None) -> str:
    """
    Build a deterministic cache key from a prefix and a parameter map.

    Args:
        prefix: Namespace for the logical query (e.g. "douban-movie")
        params: Query parameters; None and "" values are ignored

    Returns:
        ``prefix + "-" + "k=v&..."`` with keys in ascending order
    """
    params = params or {}
    pairs = sorted(
        (name, _format_value(value))
        for name, value in params.items()
        if value is not None and value != ""
    )
    joined = "&".join(f"{name}={value}" for name, value in pairs)
    return f"{prefix}-{joined}"


def _fallback(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    return repr(value)


def dependency_snapshot(dependencies: Sequence[Any]) -> str:
    """
    Canonical serialization of a dependency tuple.

    Two tuples with deeply-equal contents produce the same snapshot,
    regardless of dict ordering or container identity.
    """
    return json.dumps(
        list(dependencies),
        sort_keys=True,
        separators=(",", ":"),
        default=_fallback,
    )
