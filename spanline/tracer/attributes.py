"""Attribute value validation.

Attribute values form a closed set: ``str``, ``bool``, 64-bit ``int``,
``float``, or a homogeneous sequence of one of those. Anything else is
rejected here, at the API boundary, instead of travelling down the pipeline.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1

MAX_ATTRIBUTES = 128


def _valid_scalar(value: Any) -> bool:
    if isinstance(value, (bool, str, float)):
        return True
    if isinstance(value, int):
        return _INT64_MIN <= value <= _INT64_MAX
    return False


def _scalar_kind(value: Any) -> type:
    # bool is a subclass of int; keep the two apart for homogeneity checks
    if isinstance(value, bool):
        return bool
    for kind in (str, int, float):
        if isinstance(value, kind):
            return kind
    return type(value)


def clean_value(value: Any) -> Optional[Any]:
    """
    Return the stored form of an attribute value, or None if it is rejected.

    Sequences come back as tuples so that stored values cannot be mutated
    through a reference the caller kept.
    """
    if _valid_scalar(value):
        return value
    if isinstance(value, (str, bytes, bytearray)) or isinstance(value, Mapping):
        return None
    if isinstance(value, Sequence):
        items = tuple(value)
        if not items:
            return items
        kind = _scalar_kind(items[0])
        for item in items:
            if not _valid_scalar(item) or _scalar_kind(item) is not kind:
                return None
        return items
    return None


def clean_attributes(
    attributes: Optional[Mapping],
    limit: int = MAX_ATTRIBUTES,
) -> Tuple[Dict[str, Any], int]:
    """
    Validate a mapping of attributes.

    Returns:
        (accepted attributes in insertion order, number dropped)
    """
    accepted: Dict[str, Any] = {}
    dropped = 0
    if not attributes:
        return accepted, dropped
    for key, value in attributes.items():
        if not isinstance(key, str) or not key:
            logger.debug(f"Rejected attribute with invalid key {key!r}")
            dropped += 1
            continue
        cleaned = clean_value(value)
        if cleaned is None:
            logger.debug(f"Rejected attribute {key!r}: unsupported value type {type(value).__name__}")
            dropped += 1
            continue
        if key not in accepted and len(accepted) >= limit:
            dropped += 1
            continue
        accepted[key] = cleaned
    return accepted, dropped
