"""
Configuration loading and validation for the observability package.

Settings come from (highest priority first) explicit arguments, an optional
JSON config file, environment variables (``.env`` is honoured), and the
defaults in :mod:`platform_core.constants`.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .constants import (
    BREADCRUMB_MAX_ITEMS,
    BREADCRUMB_MAX_SIZE_KB,
    BREADCRUMB_STORAGE_KEY,
    DEFAULT_SERVICE_NAME,
    PII_PATTERNS_FETCH_TIMEOUT_MS,
    RUNTIME_SERVER,
    SUPPORTED_RUNTIMES,
)

load_dotenv()

# Known sections and the type each of their keys must have.
_SCHEMA: Dict[str, Dict[str, tuple]] = {
    "logger": {
        "service_name": (str,),
        "patterns": (list,),
        "pii_patterns_url": (str,),
        "pii_patterns_fetch_timeout_ms": (int,),
        "production": (bool,),
        "runtime": (str,),
    },
    "tracer": {
        "service_name": (str,),
    },
    "breadcrumbs": {
        "max_items": (int,),
        "max_size_kb": (int, float),
        "storage_key": (str,),
        "storage_dir": (str,),
    },
}


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


# ── Environment ──────────────────────────────────────────────────


def is_production() -> bool:
    """True when ``APP_ENV`` is ``production``."""
    return os.environ.get("APP_ENV", "").strip().lower() == "production"


def detect_runtime() -> str:
    """Return ``OBSERVABILITY_RUNTIME`` if it names a known runtime, else ``server``."""
    runtime = os.environ.get("OBSERVABILITY_RUNTIME", "").strip().lower()
    return runtime if runtime in SUPPORTED_RUNTIMES else RUNTIME_SERVER


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


# ── File loading ─────────────────────────────────────────────────


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration from a JSON file and resolve ``${ENV_VAR:-default}``
    placeholders in all string values.

    Args:
        config_path: Path to the config file.

    Returns:
        Fully-resolved configuration dictionary.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    full_path = Path(config_path)

    if not full_path.exists():
        raise ConfigError(f"Configuration file not found: {full_path}")

    try:
        with open(full_path, "r") as f:
            config = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {full_path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read {full_path}: {exc}") from exc

    if not isinstance(config, dict):
        raise ConfigError(f"Top-level value in {full_path} must be an object")

    return _resolve(config)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate a config dict against the known sections.

    Returns:
        A list of human-readable error strings.  Empty means valid.
    """
    from .observability.patterns import validate_patterns

    errors: List[str] = []

    for section, keys in _SCHEMA.items():
        values = config.get(section)
        if values is None:
            continue
        if not isinstance(values, dict):
            errors.append(f"Config section '{section}' must be an object")
            continue
        for key, types in keys.items():
            if key not in values:
                continue
            value = values[key]
            # bool is an int subclass; only accept it where bool is declared
            if isinstance(value, bool) and bool not in types:
                errors.append(f"'{section}.{key}' has the wrong type")
            elif not isinstance(value, types):
                errors.append(f"'{section}.{key}' has the wrong type")

    logger_cfg = config.get("logger") or {}
    if isinstance(logger_cfg, dict):
        patterns = logger_cfg.get("patterns")
        if isinstance(patterns, list):
            result = validate_patterns(patterns)
            if not result:
                errors.append(f"logger.patterns: {result.error}")
        runtime = logger_cfg.get("runtime")
        if isinstance(runtime, str) and runtime not in SUPPORTED_RUNTIMES:
            errors.append(f"logger.runtime must be one of {sorted(SUPPORTED_RUNTIMES)}")
        timeout = logger_cfg.get("pii_patterns_fetch_timeout_ms")
        if isinstance(timeout, int) and not isinstance(timeout, bool) and timeout <= 0:
            errors.append("logger.pii_patterns_fetch_timeout_ms must be positive")

    crumbs = config.get("breadcrumbs") or {}
    if isinstance(crumbs, dict):
        for key in ("max_items", "max_size_kb"):
            value = crumbs.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool) and value <= 0:
                errors.append(f"breadcrumbs.{key} must be positive")

    return errors


# ── Typed configs ────────────────────────────────────────────────


def logger_config_from(config: Optional[Dict[str, Any]] = None):
    """Build a ``LoggerConfig`` from the ``logger`` section plus environment."""
    from .observability.logging import LoggerConfig
    from .observability.patterns import coerce_patterns

    section = dict((config or {}).get("logger") or {})
    return LoggerConfig(
        service_name=section.get("service_name")
        or os.environ.get("SERVICE_NAME", DEFAULT_SERVICE_NAME),
        patterns=coerce_patterns(section.get("patterns") or []),
        pii_patterns_url=section.get("pii_patterns_url")
        or os.environ.get("PII_PATTERNS_URL")
        or None,
        pii_patterns_fetch_timeout_ms=section.get(
            "pii_patterns_fetch_timeout_ms",
            _env_int("PII_PATTERNS_FETCH_TIMEOUT_MS", PII_PATTERNS_FETCH_TIMEOUT_MS),
        ),
        production=section.get("production"),
        runtime=section.get("runtime"),
    )


def breadcrumb_config_from(config: Optional[Dict[str, Any]] = None):
    """Build a ``BreadcrumbConfig`` from the ``breadcrumbs`` section plus environment."""
    from .observability.breadcrumbs import BreadcrumbConfig

    section = dict((config or {}).get("breadcrumbs") or {})
    return BreadcrumbConfig(
        max_items=section.get(
            "max_items", _env_int("BREADCRUMB_MAX_ITEMS", BREADCRUMB_MAX_ITEMS)
        ),
        max_size_kb=section.get(
            "max_size_kb", _env_int("BREADCRUMB_MAX_SIZE_KB", BREADCRUMB_MAX_SIZE_KB)
        ),
        storage_key=section.get("storage_key")
        or os.environ.get("BREADCRUMB_STORAGE_KEY", BREADCRUMB_STORAGE_KEY),
    )


def breadcrumb_storage_dir(config: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Directory for file-backed breadcrumb persistence, if configured."""
    section = (config or {}).get("breadcrumbs") or {}
    return section.get("storage_dir") or os.environ.get("BREADCRUMB_STORAGE_DIR") or None


def tracer_service_name(config: Optional[Dict[str, Any]] = None) -> str:
    section = (config or {}).get("tracer") or {}
    return section.get("service_name") or os.environ.get("SERVICE_NAME", DEFAULT_SERVICE_NAME)


# ── Private helpers ──────────────────────────────────────────────

_PLACEHOLDER_RE = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _resolve(obj: Any) -> Any:
    """Recursively resolve ``${ENV_VAR:-default}`` in string values."""
    if isinstance(obj, str):
        return _PLACEHOLDER_RE.sub(_replace_match, obj)
    elif isinstance(obj, dict):
        return {k: _resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_resolve(v) for v in obj]
    return obj


def _replace_match(m: re.Match) -> str:
    var = m.group(1)
    default = m.group(2) if m.group(2) is not None else ""
    return os.environ.get(var, default)
