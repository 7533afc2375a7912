"""
Proof Pack Canonical JSON Encoding

Ensures semantically identical values produce identical byte representations,
so that report payloads, ledger entries and manifests hash the same way on
every host.
"""

import json
import math
from typing import Any, Dict, List, Set, Union


class CanonicalizationError(ValueError):
    """Raised when a value cannot be represented in canonical JSON."""


class CyclicStructureError(CanonicalizationError):
    """Raised when a container references itself, directly or indirectly."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"cannot canonicalize cyclic structure at {path}")


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to canonical JSON bytes.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order)
    - No whitespace between tokens (compact form)
    - UTF-8 encoding, no ASCII escaping of non-ASCII text
    - Integral floats are written as integers (1.0 -> 1)
    - NaN and infinities are rejected
    - Arrays preserve order

    Raises:
        CyclicStructureError: if a dict or list contains itself
        CanonicalizationError: on unsupported types or non-string keys

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    canonical = _canonicalize_value(obj, set(), "$")
    return json.dumps(
        canonical,
        separators=(',', ':'),
        ensure_ascii=False,
        allow_nan=False,
    ).encode('utf-8')


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return canonicalize(obj).decode('utf-8')


def _canonicalize_value(value: Any, active: Set[int], path: str) -> Any:
    """Recursively canonicalize a value."""
    if value is None:
        return None
    elif isinstance(value, bool):
        return value
    elif isinstance(value, int):
        return int(value)
    elif isinstance(value, float):
        return _canonicalize_number(value, path)
    elif isinstance(value, str):
        return value
    elif isinstance(value, dict):
        return _enter(value, active, path, _canonicalize_object)
    elif isinstance(value, (list, tuple)):
        return _enter(value, active, path, _canonicalize_array)
    else:
        raise CanonicalizationError(f"Cannot canonicalize type {type(value).__name__} at {path}")


def _enter(container, active: Set[int], path: str, fn):
    # Only containers on the current path count; shared siblings are fine.
    marker = id(container)
    if marker in active:
        raise CyclicStructureError(path)
    active.add(marker)
    try:
        return fn(container, active, path)
    finally:
        active.discard(marker)


def _canonicalize_number(value: float, path: str) -> Union[int, float]:
    if math.isnan(value) or math.isinf(value):
        raise CanonicalizationError(f"Non-finite number at {path}")
    if value.is_integer():
        return int(value)
    return value


def _canonicalize_object(obj: Dict[str, Any], active: Set[int], path: str) -> Dict[str, Any]:
    """
    Canonicalize an object by sorting keys lexicographically.

    Keys must be strings; mixed key types have no stable ordering.
    """
    for k in obj.keys():
        if not isinstance(k, str):
            raise CanonicalizationError(f"Object key {k!r} at {path} is not a string")
    sorted_keys = sorted(obj.keys())
    return {k: _canonicalize_value(obj[k], active, f"{path}.{k}") for k in sorted_keys}


def _canonicalize_array(arr: Union[List, tuple], active: Set[int], path: str) -> List:
    """Canonicalize an array, preserving order."""
    return [_canonicalize_value(item, active, f"{path}[{i}]") for i, item in enumerate(arr)]
