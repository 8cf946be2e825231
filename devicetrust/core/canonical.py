"""
Canonical JSON serialization for signing.

Every payload that is signed or verified goes through these functions so that
two implementations produce identical bytes for logically equal data.

Rules:
- object keys sorted by code point at every nesting level
- no insignificant whitespace
- UTF-8 output, non-ASCII characters kept as-is
- integers only (no floats, no NaN), booleans and null allowed
"""

import json
from typing import Any

from .errors import CanonicalEncodingError

# Federation canonical JSON bounds integers to the IEEE-754 safe range.
MAX_SAFE_INTEGER = 2 ** 53 - 1


def canonicalize(obj: Any) -> Any:
    """
    Convert nested dict/list data to canonical form.

    - dict keys sorted (keys must be strings)
    - tuples converted to lists
    - recursive normalization through mappings and sequences

    Raises:
        CanonicalEncodingError: On non-string keys or unsupported values
    """
    if isinstance(obj, dict):
        for key in obj:
            if not isinstance(key, str):
                raise CanonicalEncodingError(f"Object keys must be strings, got {type(key).__name__}")
        return {k: canonicalize(obj[k]) for k in sorted(obj.keys())}
    if isinstance(obj, (list, tuple)):
        return [canonicalize(x) for x in obj]
    if obj is None or isinstance(obj, (str, bool)):
        return obj
    if isinstance(obj, int):
        if abs(obj) > MAX_SAFE_INTEGER:
            raise CanonicalEncodingError(f"Integer out of canonical range: {obj}")
        return obj
    if isinstance(obj, float):
        raise CanonicalEncodingError("Floats are not allowed in canonical JSON")
    raise CanonicalEncodingError(f"Unsupported type for canonical JSON: {type(obj).__name__}")


def canonical_json_bytes(obj: Any) -> bytes:
    """
    Deterministic JSON bytes for signing.

    Guarantees:
    - canonical preprocessing via canonicalize()
    - sort_keys=True (secondary safety)
    - separators remove whitespace
    - ensure_ascii=False keeps UTF-8 stable

    Returns:
        UTF-8 encoded JSON bytes
    """
    canon = canonicalize(obj)
    s = json.dumps(canon, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    return s.encode("utf-8")


def canonical_json_str(obj: Any) -> str:
    """
    Deterministic JSON string (for display or commitments).

    Same guarantees as canonical_json_bytes but returns string.
    """
    return canonical_json_bytes(obj).decode("utf-8")
