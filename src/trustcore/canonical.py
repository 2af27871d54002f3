"""Canonical JSON serialization and SHA-256 helpers.

Canonical bytes are RFC 8785 (JCS) output: UTF-8, keys sorted, no
insignificant whitespace, shortest round-trip numbers, arrays in insertion
order, no trailing newline. Control characters are always written as
``\\u00XX``, including the five that JCS gives short escapes. Signatures, TSA
imprints and chain hashes are all computed over these bytes, so verification
always re-canonicalizes parsed values and never trusts stored JSON formatting.
"""

import base64
import hashlib
import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import rfc8785
from pydantic import BaseModel

from trustcore.errors import CanonicalizationError

GENESIS_HASH = "0" * 64
RECORD_SEPARATOR = b"\x1e"

# JCS short escapes for control characters, rewritten to the \u00XX form.
_SHORT_ESCAPES = {b"b": b"\\u0008", b"t": b"\\u0009", b"n": b"\\u000a", b"f": b"\\u000c", b"r": b"\\u000d"}
_ESCAPE = re.compile(rb"\\(.)", re.DOTALL)


def rfc3339(moment: datetime) -> str:
    """Format a datetime as RFC 3339 UTC with millisecond precision and a Z suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _prepare(value: Any, path: str) -> Any:
    """Reduce value to plain JSON types, dropping None members of mappings."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, Mapping):
        out = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise CanonicalizationError(f"{path}: object keys must be strings, got {type(key).__name__}")
            if item is None:
                continue
            out[_prepare(key, path)] = _prepare(item, f"{path}.{key}")
        return out
    if isinstance(value, (list, tuple)):
        return [_prepare(item, f"{path}[{i}]") for i, item in enumerate(value)]
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise CanonicalizationError(f"{path}: string is not valid UTF-8") from e
        return value
    if isinstance(value, bool) or value is None or isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError(f"{path}: {value!r} has no JSON representation")
        return value
    if isinstance(value, datetime):
        return rfc3339(value)
    raise CanonicalizationError(f"{path}: unsupported type {type(value).__name__}")


def canonicalize(value: Any) -> bytes:
    """Return the canonical JSON bytes of a JSON-like value or pydantic model."""
    prepared = _prepare(value, "$")
    try:
        encoded = rfc8785.dumps(prepared)
    except (ValueError, TypeError) as e:
        raise CanonicalizationError(str(e)) from e
    return _ESCAPE.sub(lambda m: _SHORT_ESCAPES.get(m.group(1), m.group(0)), encoded)


def sha256_digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def chain_hash(prev_event_hash: str, payload: Any) -> str:
    """Hash linking an audit event to its predecessor.

    SHA-256 over ``prev_event_hash || 0x1E || canonical(payload)``; the record
    separator keeps the hash prefix and the payload from fusing.
    """
    hasher = hashlib.sha256()
    hasher.update(prev_event_hash.encode("ascii"))
    hasher.update(RECORD_SEPARATOR)
    hasher.update(canonicalize(payload))
    return hasher.hexdigest()
