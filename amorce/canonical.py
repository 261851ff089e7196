from __future__ import annotations

import hashlib
import json
from typing import Any

from .errors import ValidationError


def stable_json(obj: Any) -> str:
    try:
        return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"value is not canonical JSON: {exc}") from exc


def canonicalize(obj: Any) -> bytes:
    """Deterministic bytes for signing and hashing.

    Object keys are sorted by code point at every level, there is no
    insignificant whitespace and array order is kept as given. Two records
    that compare equal always produce the same bytes.
    """
    return stable_json(obj).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    if not isinstance(data, (bytes, bytearray)):
        raise ValidationError("data must be bytes")
    return hashlib.sha256(bytes(data)).hexdigest()


def canonical_sha256_hex(obj: Any) -> str:
    return sha256_hex(canonicalize(obj))
