"""Deterministic cache key construction."""

import hashlib
import json
from typing import Any, Mapping, Optional


def make_cache_key(operation: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Generate a deterministic cache key for an operation call.

    Format: {operation}:{params_hash}, or just {operation} when every
    parameter is None. Parameters set to None are dropped and the rest are
    serialized with sorted field names, so argument order never changes the
    key.

    Args:
        operation: Canonical operation name (e.g. "contacts")
        params: Call parameters

    Returns:
        Cache key string starting with the operation name

    Raises:
        ValueError: If the operation name is empty
    """
    if not isinstance(operation, str) or not operation:
        raise ValueError("Cache key operation name must be a non-empty string")

    normalized = {
        name: _serialize_arg(value)
        for name, value in sorted((params or {}).items())
        if value is not None
    }
    if not normalized:
        return operation

    params_json = json.dumps(normalized, sort_keys=True, separators=(",", ":"), default=str)
    params_hash = hashlib.sha256(params_json.encode()).hexdigest()[:12]

    return f"{operation}:{params_hash}"


def _serialize_arg(arg: Any) -> Any:
    """Serialize an argument for hashing."""
    if isinstance(arg, (str, int, float, bool, type(None))):
        return arg
    elif isinstance(arg, (list, tuple)):
        return [_serialize_arg(a) for a in arg]
    elif isinstance(arg, dict):
        return {str(k): _serialize_arg(v) for k, v in sorted(arg.items())}
    elif hasattr(arg, "model_dump"):
        return _serialize_arg(arg.model_dump(mode="json"))
    else:
        return str(arg)
