"""
hasher.py - Canonical payload hashing (RFC 8785 JCS + SHA-256).

CRITICAL INVARIANTS:
1. Equal payloads hash equal regardless of key insertion order
2. Output is stable across processes and across both producers
   (stream ingestor, ledger synchronizer)
3. Strings are hashed verbatim; no Unicode normalization
4. 1 and "1" are DIFFERENT payloads; producers must agree on encodings

Constraints:
- Numbers: IEEE-754 doubles, no NaN/Infinity, no "+" in exponents,
  integral floats without ".0", minus zero as "0"
- Objects: keys sorted by UTF-16 code units; keys must be strings
- Arrays: order preserved
"""

import hashlib
import json
import math
from typing import Any

from ledger_history.services.reconciliation.errors import SerializationError

# Payload key under which the ledger synchronizer nests the ledger-row fields
# it adds. The nested object is not part of the hashed content.
ENRICHMENT_KEY = "_ledger"


def _float_to_string(f: float) -> str:
    if math.isnan(f) or math.isinf(f):
        raise SerializationError(
            "NaN and Infinity are not permitted in JSON", details={"value": repr(f)}
        )

    if f == 0.0:
        # Both 0.0 and -0.0 serialize as "0" per RFC 8785
        return "0"

    if f.is_integer() and abs(f) < 1e21:
        return str(int(f))

    s = json.dumps(f, allow_nan=False)

    # JCS: no "+" and no leading zeros in exponent. e.g. 1.5e-07 -> 1.5e-7
    if "e" in s:
        mantissa, exponent = s.split("e")
        sign = "-" if exponent.startswith("-") else ""
        s = f"{mantissa}e{sign}{exponent.lstrip('+-').lstrip('0')}"

    return s


def _utf16_sort_key(s: str) -> bytes:
    return s.encode("utf-16-be")


def canonicalize(data: Any) -> bytes:
    """
    Produce RFC 8785 (JCS) canonical JSON bytes for ``data``.

    Supports None, bool, int, float, str, list/tuple and dict with string
    keys, nested arbitrarily.

    Raises:
        SerializationError: For unsupported types, non-string keys, NaN or
            infinities.
    """
    if data is None:
        return b"null"

    if isinstance(data, bool):
        return b"true" if data else b"false"

    if isinstance(data, int):
        return str(data).encode("utf-8")

    if isinstance(data, float):
        return _float_to_string(data).encode("utf-8")

    if isinstance(data, str):
        return json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    if isinstance(data, (list, tuple)):
        return b"[" + b",".join(canonicalize(item) for item in data) + b"]"

    if isinstance(data, dict):
        for key in data:
            if not isinstance(key, str):
                raise SerializationError(
                    "Object keys must be strings",
                    details={"key": repr(key), "key_type": type(key).__name__},
                )

        parts = []
        for key in sorted(data.keys(), key=_utf16_sort_key):
            key_bytes = json.dumps(key, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
            parts.append(key_bytes + b":" + canonicalize(data[key]))

        return b"{" + b",".join(parts) + b"}"

    raise SerializationError(
        f"Type {type(data).__name__} not serializable to JCS",
        details={"type": type(data).__name__},
    )


def compute_content_hash(payload: dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical form of ``payload``."""
    return hashlib.sha256(canonicalize(payload)).hexdigest()


def content_view(payload: dict[str, Any]) -> dict[str, Any]:
    """``payload`` without the synchronizer's enrichment object."""
    return {k: v for k, v in payload.items() if k != ENRICHMENT_KEY}
