"""
PII scrubbing for strings, object graphs, and log records.

Automatically redacts email addresses, phone numbers, bearer tokens, long
identifiers and any caller-supplied patterns.  ``scrub`` rebuilds arbitrary
JSON-like values without mutating them; ``PiiScrubber`` is also a
``logging.Filter`` installed on every diagnostic handler.
"""

import dataclasses
import datetime as _dt
import enum
import logging
import re
import types
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Pattern, Sequence, Set

from ..constants import CIRCULAR_REF_MARKER, DEFAULT_SCRUB_MAX_DEPTH
from .patterns import PiiPattern, compile_pattern, validate_pattern

logger = logging.getLogger(__name__)

# Restrictive defaults to avoid false positives on UUIDs and short ids.
DEFAULT_PII_PATTERNS: List[PiiPattern] = [
    PiiPattern(
        name="email",
        pattern=r"[\w+.-]+@[\w.-]+\.\w{2,}",
        replacement="[REDACTED-EMAIL]",
    ),
    PiiPattern(
        name="phone",
        pattern=(
            r"(?:\+\d{1,3}[-.\s])?\(?\d{3,4}\)?[-.\s]?\d{3,4}[-.\s]?\d{4}"
            r"(?:\s?(?:ext|x)\.?\s?\d{2,6})?"
        ),
        replacement="[REDACTED-PHONE]",
    ),
    PiiPattern(
        name="token",
        pattern=r"Bearer\s+[a-zA-Z0-9._-]{20,}",
        replacement="Bearer [REDACTED-TOKEN]",
    ),
    PiiPattern(
        name="api_key",
        pattern=r"[a-zA-Z0-9._-]{50,}",
        replacement="[REDACTED-IDENTIFIER]",
    ),
]

# Record attribute names that should *always* be fully redacted when present.
_REDACT_ATTRS: FrozenSet[str] = frozenset(
    {
        "password",
        "passwd",
        "secret",
        "token",
        "api_key",
        "private_key",
        "session_token",
        "access_token",
        "refresh_token",
    }
)

# Values that are data containers, not string payloads: returned by identity.
_OPAQUE_TYPES = (
    _dt.datetime,
    _dt.date,
    _dt.time,
    _dt.timedelta,
    re.Pattern,
    enum.Enum,
    BaseException,
    types.ModuleType,
    set,
    frozenset,
    bytes,
    bytearray,
)

_EMAIL_RE = re.compile(r"[\w+.-]+@[\w.-]+\.\w{2,}")
_PHONE_RE = re.compile(
    r"(?:\+\d{1,3}[-.\s]?)?\(?(?:\d{2,4})\)?[-.\s]?\d{2,4}[-.\s]?\d{2,4}"
    r"(?:\s?(?:ext\.?|x|extension)\s?\d{2,6})?",
    re.IGNORECASE,
)
_BEARER_RE = re.compile(r"Bearer\s+[a-zA-Z0-9._-]+", re.IGNORECASE)
_IDENTIFIER_RE = re.compile(r"[a-zA-Z0-9._-]{40,}")


@dataclass(frozen=True)
class ScrubOptions:
    """Options for :func:`scrub`."""

    max_depth: int = DEFAULT_SCRUB_MAX_DEPTH


# ── String scrubbing ─────────────────────────────────────────────


def apply_pattern(text: str, compiled: Pattern, replacement: str) -> str:
    """Replace every non-overlapping match of *compiled* with *replacement*.

    The replacement is literal text; backslashes and group references are
    not interpreted.
    """
    try:
        return compiled.sub(lambda _m: replacement, text)
    except Exception as exc:
        logger.warning("[PII] Failed to apply pattern: %s", exc)
        return text


def apply_patterns(text: Any, patterns: Sequence[Any]) -> Any:
    """Apply each valid pattern to *text* in order; skip invalid ones."""
    if not isinstance(text, str):
        return text
    if not isinstance(patterns, (list, tuple)) or not patterns:
        return text

    result = text
    for pattern in patterns:
        validation = validate_pattern(pattern)
        if not validation:
            logger.warning("[PII] Skipping invalid pattern: %s", validation.error)
            continue

        source = pattern.pattern if isinstance(pattern, PiiPattern) else pattern["pattern"]
        replacement = (
            pattern.replacement if isinstance(pattern, PiiPattern) else pattern["replacement"]
        )
        compiled = compile_pattern(source)
        if compiled is None:
            continue
        result = apply_pattern(result, compiled, replacement)

    return result


def _sub(text: Any, regex: Pattern, token: str, label: str) -> Any:
    if not isinstance(text, str):
        return text
    try:
        return regex.sub(lambda _m: token, text)
    except Exception as exc:
        logger.warning("[PII] Failed to %s: %s", label, exc)
        return text


def sanitize_email(text: str, replacement: Optional[str] = None) -> str:
    """Replace email addresses, including plus-addressing and subdomains."""
    return _sub(text, _EMAIL_RE, replacement or "[REDACTED-EMAIL]", "sanitize email")


def sanitize_phone(text: str, replacement: Optional[str] = None) -> str:
    """Replace phone numbers in common international formats, with extensions."""
    return _sub(text, _PHONE_RE, replacement or "[REDACTED-PHONE]", "sanitize phone")


def redact_token(text: str, replacement: Optional[str] = None) -> str:
    """Replace ``Bearer <token>`` credentials."""
    return _sub(text, _BEARER_RE, replacement or "Bearer [REDACTED-TOKEN]", "redact token")


def mask_identifier(text: str, replacement: Optional[str] = None) -> str:
    """Replace runs of 40+ identifier characters (API keys, long tokens)."""
    return _sub(
        text, _IDENTIFIER_RE, replacement or "[REDACTED-IDENTIFIER]", "mask identifier"
    )


# ── Object graph scrubbing ───────────────────────────────────────


def _is_container(value: Any) -> bool:
    if isinstance(value, (Mapping, Sequence)):
        return True
    return dataclasses.is_dataclass(value) or hasattr(value, "__dict__")


def _object_fields(obj: Any) -> Dict[str, Any]:
    """Field view of a dataclass or plain object; scrubbed as a dict."""
    if dataclasses.is_dataclass(obj):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    return dict(vars(obj))


def _rebuild_tuple(original: tuple, items: List[Any]) -> tuple:
    if hasattr(original, "_fields") and len(items) == len(original):
        return type(original)(*items)
    return tuple(items)


class _GraphScrubber:
    """One traversal: identity sets live exactly as long as a ``scrub`` call."""

    def __init__(self, patterns: Sequence[Any], max_depth: int) -> None:
        self.patterns = patterns
        self.max_depth = max_depth
        self.in_progress: Set[int] = set()
        self.processed: Dict[int, Any] = {}
        self.depth_exceeded = False

    def visit(self, current: Any, depth: int) -> Any:
        if depth > self.max_depth:
            self.depth_exceeded = True
            return current

        if isinstance(current, str):
            return apply_patterns(current, self.patterns)
        if current is None or isinstance(current, (bool, int, float)):
            return current
        if isinstance(current, _OPAQUE_TYPES) or callable(current):
            return current
        if not _is_container(current):
            return current

        key = id(current)
        if key in self.processed:
            return self.processed[key]
        if key in self.in_progress:
            return CIRCULAR_REF_MARKER

        self.in_progress.add(key)
        try:
            if isinstance(current, Mapping):
                result: Any = self._visit_mapping(current, depth)
            elif isinstance(current, tuple):
                result = _rebuild_tuple(current, self._visit_items(current, depth))
            elif isinstance(current, Sequence):
                result = self._visit_items(current, depth)
            else:
                result = self._visit_mapping(_object_fields(current), depth)
        finally:
            self.in_progress.discard(key)

        self.processed[key] = result
        return result

    def _visit_items(self, items: Sequence[Any], depth: int) -> List[Any]:
        out = []
        for index, value in enumerate(items):
            try:
                out.append(self.visit(value, depth + 1))
            except Exception as exc:
                logger.warning("[PII] Failed to traverse index %d: %s", index, exc)
        return out

    def _visit_mapping(self, mapping: Mapping, depth: int) -> Dict[Any, Any]:
        out: Dict[Any, Any] = {}
        for k in list(mapping.keys()):
            try:
                out[k] = self.visit(mapping[k], depth + 1)
            except Exception as exc:
                logger.warning('[PII] Failed to traverse key "%s": %s', k, exc)
        return out


def scrub(value: Any, patterns: Sequence[Any], options: Optional[ScrubOptions] = None) -> Any:
    """
    Recursively rebuild *value* with every string run through the patterns.

    Mappings become new dicts (keys untouched) and other sequences become
    lists.  Tuples and namedtuples keep their type.  Dataclasses and plain
    objects are walked field by field and come back as dicts.  Numbers,
    booleans, ``None`` and opaque values (dates, sets, bytes, enums,
    exceptions) pass through.  The input is never mutated.

    Args:
        value: Any JSON-like value.
        patterns: ``PiiPattern`` objects or their dict form.
        options: Traversal limits; ``max_depth`` defaults to 50.

    Returns:
        The scrubbed copy.  Back-references to a container still being
        traversed are replaced by ``"[Circular]"``; a container reached twice
        through siblings yields the same scrubbed object both times.  Values
        nested deeper than ``max_depth`` are returned unscrubbed.
    """
    if not isinstance(patterns, (list, tuple)):
        logger.warning("[PII] scrub: patterns must be an array")
        return value

    opts = options or ScrubOptions()
    walker = _GraphScrubber(patterns, opts.max_depth)
    result = walker.visit(value, 0)
    if walker.depth_exceeded:
        logger.warning(
            "[PII] scrub: max depth %d exceeded; deeper values were left unscrubbed",
            opts.max_depth,
        )
    return result


# ── Logging filter ───────────────────────────────────────────────


class PiiScrubber(logging.Filter):
    """Pattern set bound to the scrubbing functions, usable as a log filter.

    Attach to a handler or logger::

        handler.addFilter(PiiScrubber())
    """

    def __init__(self, patterns: Optional[Sequence[Any]] = None) -> None:
        super().__init__()
        self.patterns = list(DEFAULT_PII_PATTERNS if patterns is None else patterns)

    def scrub_text(self, text: str) -> str:
        return apply_patterns(text, self.patterns)

    def scrub(self, value: Any, options: Optional[ScrubOptions] = None) -> Any:
        return scrub(value, self.patterns, options)

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        # Scrub the formatted message
        msg = record.getMessage()
        record.msg = self.scrub_text(msg)
        record.args = None  # prevent double-formatting

        # Scrub well-known extra attributes
        for attr in _REDACT_ATTRS:
            if hasattr(record, attr):
                setattr(record, attr, "[REDACTED]")

        return True
