"""
PII pattern definitions and validation.

A :class:`PiiPattern` pairs a regex source with the token that replaces its
matches.  Patterns arrive from configuration or from a remote endpoint, so
they are validated up front: a bad regex is reported through a
:class:`ValidationResult`, never raised at match time.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Pattern

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("name", "pattern", "replacement")


@dataclass(frozen=True)
class PiiPattern:
    """A named regex plus the replacement token for its matches."""

    name: str
    pattern: str
    replacement: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PiiPattern":
        return cls(
            name=data["name"],
            pattern=data["pattern"],
            replacement=data["replacement"],
        )

    def to_dict(self) -> dict:
        return {"name": self.name, "pattern": self.pattern, "replacement": self.replacement}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation; truthy when valid."""

    is_valid: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.is_valid


_VALID = ValidationResult(True)


def is_valid_regex(source: Any) -> ValidationResult:
    """Check that *source* is a non-empty string that compiles."""
    if not isinstance(source, str) or not source:
        return ValidationResult(False, "Regex string must be a non-empty string")
    try:
        re.compile(source)
    except re.error as exc:
        return ValidationResult(False, f"Regex compilation failed: {exc}")
    return _VALID


def validate_pattern(pattern: Any) -> ValidationResult:
    """
    Validate a single pattern.

    Accepts a :class:`PiiPattern` or any mapping with the same keys.

    Returns:
        ``ValidationResult`` with the first problem found, if any.
    """
    if isinstance(pattern, PiiPattern):
        fields = pattern.to_dict()
    elif isinstance(pattern, Mapping):
        fields = pattern
    else:
        return ValidationResult(False, "Pattern must be an object")

    for key in _REQUIRED_FIELDS:
        value = fields.get(key)
        if not isinstance(value, str) or not value:
            return ValidationResult(False, f"Pattern must have a valid {key} field")

    regex_result = is_valid_regex(fields["pattern"])
    if not regex_result:
        return ValidationResult(False, f"Invalid regex pattern: {regex_result.error}")

    return _VALID


def validate_patterns(patterns: Any) -> ValidationResult:
    """Validate every pattern, stopping at the first invalid entry."""
    if not isinstance(patterns, (list, tuple)):
        return ValidationResult(False, "Patterns must be an array")

    for index, pattern in enumerate(patterns):
        result = validate_pattern(pattern)
        if not result:
            return ValidationResult(
                False, f"Pattern at index {index} is invalid: {result.error}"
            )
    return _VALID


def compile_pattern(source: str) -> Optional[Pattern]:
    """Compile *source*, or log and return ``None`` so the caller can skip it."""
    try:
        return re.compile(source)
    except (re.error, TypeError) as exc:
        logger.warning("[PII] Failed to compile regex: %s", exc)
        return None


def coerce_patterns(items: Iterable[Any]) -> List[PiiPattern]:
    """
    Turn wire-format dicts (or existing patterns) into ``PiiPattern`` objects.

    Raises:
        ValueError: If any entry fails :func:`validate_pattern`.
    """
    items = list(items)
    result = validate_patterns(items)
    if not result:
        raise ValueError(result.error)
    return [p if isinstance(p, PiiPattern) else PiiPattern.from_dict(p) for p in items]

