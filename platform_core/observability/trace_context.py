"""
W3C Trace Context parsing and injection.

Parses and formats the ``traceparent`` / ``tracestate`` header pair
(https://www.w3.org/TR/trace-context/).  The two directions fail
differently on purpose:

* :func:`extract_trace_context` reads untrusted input and returns ``None``
  for anything malformed.
* :func:`inject_trace_context` writes values authored by this process and
  raises :class:`InvalidTraceContextError` when they are wrong.

Headers may be a plain ``dict``, a werkzeug ``Headers``, a requests
``CaseInsensitiveDict``, or an iterable of ``(name, value)`` pairs; names are
always compared case-insensitively.
"""

import re
import secrets
from dataclasses import dataclass
from typing import Any, List, MutableMapping, Optional, Tuple

from ..constants import (
    MAX_TRACE_FLAGS,
    SPAN_ID_HEX_LENGTH,
    TRACE_ID_HEX_LENGTH,
    TRACEPARENT_HEADER,
    TRACEPARENT_VERSION,
    TRACESTATE_HEADER,
)
from .errors import InvalidTraceContextError

# version-traceId-spanId-traceFlags; only version 00 is understood
_TRACEPARENT_RE = re.compile(r"00-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})")
_LOWER_HEX_RE = re.compile(r"[0-9a-f]*")

ALL_ZEROS_TRACE_ID = "0" * TRACE_ID_HEX_LENGTH
ALL_ZEROS_SPAN_ID = "0" * SPAN_ID_HEX_LENGTH


@dataclass(frozen=True)
class TraceContext:
    """A position in a distributed trace, as carried by ``traceparent``."""

    trace_id: str
    span_id: str
    trace_flags: int
    tracestate: Optional[str] = None

    @property
    def sampled(self) -> bool:
        return bool(self.trace_flags & 0x01)


# ── Id generation ────────────────────────────────────────────────


def _random_hex(length: int) -> str:
    zeros = "0" * length
    while True:
        value = secrets.token_hex(length // 2)
        if value != zeros:
            return value


def generate_trace_id() -> str:
    """Return 32 lowercase hex chars from the OS CSPRNG, never all zeros."""
    return _random_hex(TRACE_ID_HEX_LENGTH)


def generate_span_id() -> str:
    """Return 16 lowercase hex chars from the OS CSPRNG, never all zeros."""
    return _random_hex(SPAN_ID_HEX_LENGTH)


# ── Header access ────────────────────────────────────────────────


def _header_items(headers: Any) -> List[Tuple[str, Any]]:
    """Flatten *headers* into ``(name, value)`` pairs, keeping repeats."""
    if headers is None:
        return []
    # werkzeug.Headers iterates as pairs and keeps duplicates
    if hasattr(headers, "to_wsgi_list"):
        return list(headers.items())
    if hasattr(headers, "items"):
        pairs = []
        for name, value in headers.items():
            if isinstance(value, (list, tuple)):
                pairs.extend((name, v) for v in value)
            else:
                pairs.append((name, value))
        return pairs
    return [tuple(pair) for pair in headers]


def _header_values(headers: Any, name: str) -> List[Any]:
    wanted = name.lower()
    values = []
    for key, value in _header_items(headers):
        if isinstance(key, str) and key.lower() == wanted:
            values.append(value)
    return values


# ── Extraction ───────────────────────────────────────────────────


def parse_traceparent(value: Any) -> Optional[TraceContext]:
    """Parse one ``traceparent`` value; ``None`` on any deviation."""
    if not isinstance(value, str):
        return None
    match = _TRACEPARENT_RE.fullmatch(value)
    if match is None:
        return None

    trace_id, span_id, flags = match.groups()
    if trace_id == ALL_ZEROS_TRACE_ID or span_id == ALL_ZEROS_SPAN_ID:
        return None
    return TraceContext(trace_id=trace_id, span_id=span_id, trace_flags=int(flags, 16))


def extract_trace_context(headers: Any) -> Optional[TraceContext]:
    """
    Extract a :class:`TraceContext` from incoming HTTP headers.

    Validation rules:
        * version MUST be ``00`` (``ff`` is forbidden, others unsupported)
        * trace id: 32 lowercase hex chars, not all zeros
        * span id: 16 lowercase hex chars, not all zeros
        * flags: 2 lowercase hex chars

    Multiple ``tracestate`` headers are joined with commas in arrival
    order.  Never raises.

    Returns:
        The parsed context, or ``None`` if ``traceparent`` is missing or invalid.
    """
    try:
        parents = _header_values(headers, TRACEPARENT_HEADER)
    except (TypeError, ValueError):
        return None
    if not parents:
        return None

    context = parse_traceparent(parents[0])
    if context is None:
        return None

    states = [v for v in _header_values(headers, TRACESTATE_HEADER) if isinstance(v, str)]
    tracestate = ",".join(states) if states else None
    if tracestate is None:
        return context
    return TraceContext(
        trace_id=context.trace_id,
        span_id=context.span_id,
        trace_flags=context.trace_flags,
        tracestate=tracestate,
    )


# ── Injection ────────────────────────────────────────────────────


def _check_hex_id(label: str, value: Any, length: int) -> None:
    if (
        not isinstance(value, str)
        or len(value) != length
        or _LOWER_HEX_RE.fullmatch(value) is None
    ):
        raise InvalidTraceContextError(
            f'Invalid {label}: must be {length} lowercase hex characters, got "{value}"'
        )
    if value == "0" * length:
        raise InvalidTraceContextError(f"Invalid {label}: must not be all zeros")


def format_traceparent(context: TraceContext) -> str:
    """Render *context* as a ``traceparent`` value, validating every field."""
    _check_hex_id("traceId", context.trace_id, TRACE_ID_HEX_LENGTH)
    _check_hex_id("spanId", context.span_id, SPAN_ID_HEX_LENGTH)

    flags = context.trace_flags
    if isinstance(flags, bool) or not isinstance(flags, int) or not 0 <= flags <= MAX_TRACE_FLAGS:
        raise InvalidTraceContextError(
            f"Invalid traceFlags: must be an integer between 0x00 and 0xff, got {flags!r}"
        )
    return f"{TRACEPARENT_VERSION}-{context.trace_id}-{context.span_id}-{flags:02x}"


def _drop_header(headers: MutableMapping, name: str) -> None:
    wanted = name.lower()
    for key in [k for k in list(headers.keys()) if isinstance(k, str) and k.lower() == wanted]:
        headers.pop(key, None)


def inject_trace_context(context: TraceContext, headers: MutableMapping) -> None:
    """
    Write *context* into *headers* in place.

    Any existing ``traceparent`` (under any casing) is replaced.
    ``tracestate`` is replaced when the context carries one.

    Raises:
        InvalidTraceContextError: If an id has the wrong length or charset,
            is all zeros, or the flags are not an integer in ``0..255``.
    """
    traceparent = format_traceparent(context)

    _drop_header(headers, TRACEPARENT_HEADER)
    headers[TRACEPARENT_HEADER] = traceparent

    if context.tracestate:
        _drop_header(headers, TRACESTATE_HEADER)
        headers[TRACESTATE_HEADER] = context.tracestate

