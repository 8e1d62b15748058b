"""
Correlation IDs for request tracking across services.

A correlation ID is a UUID version 4 in canonical 8-4-4-4-12 form.  Only
:func:`generate_correlation_id` mints them; anything arriving from outside
(headers, storage) must pass :func:`is_valid_correlation_id` first.
"""

import re
import uuid
from typing import Any, NewType

CorrelationId = NewType("CorrelationId", str)

# Version nibble is the first char of the third group, variant the first of the fourth.
_UUID_V4_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}",
    re.IGNORECASE,
)


def generate_correlation_id() -> CorrelationId:
    """Return a new random UUID v4 string."""
    return CorrelationId(str(uuid.uuid4()))


def is_valid_correlation_id(value: Any) -> bool:
    """True if *value* is a canonical UUID v4 string (hex case-insensitive)."""
    if not isinstance(value, str) or len(value) != 36:
        return False
    return _UUID_V4_RE.fullmatch(value) is not None
