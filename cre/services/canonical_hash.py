"""
Canonical Serializer & Hasher

Turns an arbitrary nested value into a stable string and a SHA-256 digest.

Guarantees:
- Object keys are sorted by code point at every depth, so two logically
  equal mappings built in a different order canonicalize identically.
- Sequence order is significant and preserved.
- ``None`` and the ``UNDEFINED`` sentinel render as distinct tokens.
- Pure functions, no shared state: safe to call from concurrent handlers.

Used for evidence-pack hashes (workup idempotency keys) and for
deterministic report version strings.
"""

import hashlib
import json
import math
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

from cre.config.config import get_settings


class CanonicalizationError(TypeError):
    """Raised for values that cannot be canonicalized (cycles, unknown types)."""


class _Undefined:
    """Marker for an explicitly undefined value (distinct from ``None``)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()

NULL_TOKEN = "null"
UNDEFINED_TOKEN = "undefined"
INPUTS_HASH_PREFIX_LENGTH = 8


def canonicalize(value: Any) -> str:
    """
    Serialize a value into its canonical string form.

    Args:
        value: Any nesting of mappings, sequences, sets, scalars,
            pydantic models, dates and enums.

    Returns:
        Canonical string; equal logical content yields an equal string.

    Raises:
        CanonicalizationError: On cyclic structures or unsupported types.
    """
    return _encode(value, set())


def hash_value(value: Any) -> str:
    """Return the lowercase hex SHA-256 of the canonical form of ``value``."""
    canonical = canonicalize(value)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_report_version(
    inputs: Any,
    funnel_version: str,
    algorithm_version: str | None = None,
    prompt_version: str | None = None,
) -> str:
    """
    Build a deterministic report version string.

    Format: ``{funnel_version}-{algorithm_version}-{prompt_version}-{inputs_hash_prefix}``
    where the prefix is the first 8 hex characters of ``hash_value(inputs)``.
    Missing algorithm/prompt versions fall back to the configured settings.
    """
    settings = get_settings()
    algorithm_version = algorithm_version or settings.algorithm_version
    prompt_version = prompt_version or settings.prompt_version
    inputs_hash_prefix = hash_value(inputs)[:INPUTS_HASH_PREFIX_LENGTH]
    return f"{funnel_version}-{algorithm_version}-{prompt_version}-{inputs_hash_prefix}"


# ============================================================================
# Encoding
# ============================================================================

def _encode(value: Any, path: set[int]) -> str:
    if value is None:
        return NULL_TOKEN
    if value is UNDEFINED:
        return UNDEFINED_TOKEN

    # Enum before scalars: str/int enums are also str/int instances
    if isinstance(value, Enum):
        return _encode(value.value, path)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _encode_float(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, datetime | date):
        return json.dumps(value.isoformat(), ensure_ascii=False)
    if isinstance(value, BaseModel):
        return _encode(value.model_dump(mode="json"), path)

    if isinstance(value, Mapping | list | tuple | set | frozenset):
        marker = id(value)
        if marker in path:
            raise CanonicalizationError("Cannot canonicalize a cyclic structure")
        path.add(marker)
        try:
            if isinstance(value, Mapping):
                return _encode_mapping(value, path)
            if isinstance(value, set | frozenset):
                return "[" + ",".join(sorted(_encode(item, path) for item in value)) + "]"
            return "[" + ",".join(_encode(item, path) for item in value) + "]"
        finally:
            path.discard(marker)

    raise CanonicalizationError(
        f"Cannot canonicalize value of type {type(value).__name__}"
    )


def _encode_float(value: float) -> str:
    # JSON number semantics: no NaN/Infinity, 1.0 == 1
    if not math.isfinite(value):
        return NULL_TOKEN
    if value.is_integer():
        return str(int(value))
    return json.dumps(value)


def _encode_mapping(value: Mapping, path: set[int]) -> str:
    entries: dict[str, str] = {}
    for key, item in value.items():
        encoded_key = _encode_key(key)
        if encoded_key in entries:
            raise CanonicalizationError(f"Mapping key collides after coercion: {encoded_key!r}")
        entries[encoded_key] = _encode(item, path)

    parts = [
        f"{json.dumps(key, ensure_ascii=False)}:{entries[key]}"
        for key in sorted(entries)
    ]
    return "{" + ",".join(parts) + "}"


def _encode_key(key: Any) -> str:
    if isinstance(key, Enum):
        return _encode_key(key.value)
    if isinstance(key, str):
        return key
    if isinstance(key, bool | int | float) or key is None:
        # Same text JSON object keys would carry
        return _encode(key, set())
    raise CanonicalizationError(
        f"Cannot canonicalize mapping key of type {type(key).__name__}"
    )
