"""
Breadcrumbs: a bounded, PII-scrubbed trail of recent user interactions.

``BreadcrumbManager`` keeps a FIFO queue of small events (clicks,
navigations, form submissions, network calls) capped both by count and by
serialized size.  Every event is scrubbed before it is stored, and the whole
queue is written to a pluggable persistence provider on a background worker
so ``add`` never blocks on storage.

Usage::

    crumbs = BreadcrumbManager()
    crumbs.add(NavigationBreadcrumb(url="/drafts", timestamp=now_ms()))
    trail = crumbs.get_all()
"""

import json
import logging
import math
import os
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Deque, Dict, List, Mapping, MutableMapping, Optional, Protocol, Union

from ..config import breadcrumb_config_from, breadcrumb_storage_dir, detect_runtime
from ..constants import (
    BREADCRUMB_MAX_ITEMS,
    BREADCRUMB_MAX_SIZE_KB,
    BREADCRUMB_STORAGE_KEY,
    BREADCRUMB_TYPES,
    RUNTIME_BROWSER,
    RUNTIME_MOBILE,
    RUNTIME_SERVER,
)
from .pii import DEFAULT_PII_PATTERNS, scrub

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Milliseconds since the epoch, the breadcrumb timestamp unit."""
    return int(time.time() * 1000)


# ── Event types ──────────────────────────────────────────────────


class _Breadcrumb:
    type = ""

    def _data(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: ``{"type", "data", "timestamp", "correlationId"?}``."""
        out: Dict[str, Any] = {
            "type": self.type,
            "data": self._data(),
            "timestamp": self.timestamp,
        }
        if self.correlation_id is not None:
            out["correlationId"] = self.correlation_id
        return out


@dataclass(frozen=True)
class ClickBreadcrumb(_Breadcrumb):
    """CSS selector of the clicked element, e.g. ``button.submit``."""

    selector: str
    timestamp: float
    correlation_id: Optional[str] = None
    type = "click"

    def _data(self) -> Dict[str, Any]:
        return {"selector": self.selector}


@dataclass(frozen=True)
class NavigationBreadcrumb(_Breadcrumb):
    """URL path without query string, e.g. ``/drafts``."""

    url: str
    timestamp: float
    correlation_id: Optional[str] = None
    type = "navigation"

    def _data(self) -> Dict[str, Any]:
        return {"url": self.url}


@dataclass(frozen=True)
class FormSubmitBreadcrumb(_Breadcrumb):
    """Form element id; input values are never captured."""

    form_id: str
    timestamp: float
    correlation_id: Optional[str] = None
    type = "form_submit"

    def _data(self) -> Dict[str, Any]:
        return {"formId": self.form_id}


@dataclass(frozen=True)
class NetworkBreadcrumb(_Breadcrumb):
    path: str
    status_code: int
    timestamp: float
    correlation_id: Optional[str] = None
    type = "network"

    def _data(self) -> Dict[str, Any]:
        return {"path": self.path, "statusCode": self.status_code}


BreadcrumbEvent = Union[ClickBreadcrumb, NavigationBreadcrumb, FormSubmitBreadcrumb, NetworkBreadcrumb]


def _require(data: Mapping[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ValueError(f"Breadcrumb field '{key}' must be {kind.__name__}")
    return value


def breadcrumb_from_dict(raw: Any) -> BreadcrumbEvent:
    """
    Parse the wire form of a breadcrumb.

    Raises:
        ValueError: On an unknown ``type`` or a missing / mistyped field.
    """
    if not isinstance(raw, Mapping):
        raise ValueError("Breadcrumb must be an object")
    data = raw.get("data")
    if not isinstance(data, Mapping):
        raise ValueError("Breadcrumb 'data' must be an object")

    timestamp = raw.get("timestamp")
    if (
        isinstance(timestamp, bool)
        or not isinstance(timestamp, (int, float))
        or not math.isfinite(timestamp)
    ):
        raise ValueError("Breadcrumb 'timestamp' must be a number")
    correlation_id = raw.get("correlationId")
    if correlation_id is not None and not isinstance(correlation_id, str):
        raise ValueError("Breadcrumb 'correlationId' must be a string")

    kind = raw.get("type")
    if kind not in BREADCRUMB_TYPES:
        raise ValueError(f"Unknown breadcrumb type: {kind!r}")
    if kind == "click":
        return ClickBreadcrumb(_require(data, "selector", str), timestamp, correlation_id)
    if kind == "navigation":
        return NavigationBreadcrumb(_require(data, "url", str), timestamp, correlation_id)
    if kind == "form_submit":
        return FormSubmitBreadcrumb(_require(data, "formId", str), timestamp, correlation_id)
    return NetworkBreadcrumb(
        _require(data, "path", str),
        _require(data, "statusCode", int),
        timestamp,
        correlation_id,
    )


def _serialize(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _byte_size(payload: Any) -> int:
    return len(_serialize(payload).encode("utf-8"))


# ── Persistence ──────────────────────────────────────────────────


class PersistenceProvider(Protocol):
    """Key/value storage for the serialized queue."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class InMemoryPersistence:
    """Per-instance storage; contents die with the object."""

    def __init__(self) -> None:
        self._storage: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._storage.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._storage[key] = value

    def remove_item(self, key: str) -> None:
        self._storage.pop(key, None)


# Shared across ProcessPersistence instances; lost on restart.
_process_storage: Dict[str, str] = {}


class ProcessPersistence:
    """Server runtime: one map shared by the whole process."""

    def get_item(self, key: str) -> Optional[str]:
        return _process_storage.get(key)

    def set_item(self, key: str, value: str) -> None:
        _process_storage[key] = value

    def remove_item(self, key: str) -> None:
        _process_storage.pop(key, None)


class SessionPersistence:
    """Browser runtime: the host's per-session mapping."""

    def __init__(self, session: MutableMapping[str, Any]) -> None:
        self.session = session

    def get_item(self, key: str) -> Optional[str]:
        return self.session.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.session[key] = value

    def remove_item(self, key: str) -> None:
        self.session.pop(key, None)


class FilePersistence:
    """Mobile runtime: one JSON file per key in the app's data directory."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def detect_persistence_provider(
    runtime: Optional[str] = None,
    session_store: Optional[MutableMapping[str, Any]] = None,
    storage_dir: Optional[Union[str, Path]] = None,
) -> PersistenceProvider:
    """Choose storage for *runtime*; anything unsupported falls back to memory."""
    runtime = runtime or detect_runtime()
    if runtime == RUNTIME_MOBILE and storage_dir:
        return FilePersistence(storage_dir)
    if runtime == RUNTIME_BROWSER and session_store is not None:
        return SessionPersistence(session_store)
    if runtime == RUNTIME_SERVER:
        return ProcessPersistence()
    return InMemoryPersistence()


# ── Manager ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class BreadcrumbConfig:
    max_items: int = BREADCRUMB_MAX_ITEMS
    max_size_kb: float = BREADCRUMB_MAX_SIZE_KB
    storage_key: str = BREADCRUMB_STORAGE_KEY


class BreadcrumbManager:
    """Singleton FIFO of breadcrumbs, bounded by count and serialized size.

    The first construction decides config and persistence; later calls
    return the same instance and ignore their arguments.
    """

    _instance: Optional["BreadcrumbManager"] = None
    _lock = threading.Lock()

    def __new__(
        cls,
        config: Optional[BreadcrumbConfig] = None,
        persistence: Optional[PersistenceProvider] = None,
    ) -> "BreadcrumbManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(
        self,
        config: Optional[BreadcrumbConfig] = None,
        persistence: Optional[PersistenceProvider] = None,
    ) -> None:
        if self._initialized:
            return
        self._initialized = True
        self.config = config or breadcrumb_config_from()
        self._persistence = persistence or detect_persistence_provider(
            storage_dir=breadcrumb_storage_dir()
        )
        self._queue: Deque[BreadcrumbEvent] = deque()
        self._queue_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="breadcrumbs")
        self._last_write: Optional[Future] = None
        self._load()

    @property
    def max_size_bytes(self) -> int:
        return int(self.config.max_size_kb * 1024)

    # ── Public API ───────────────────────────────────────────────

    def add(self, event: Union[BreadcrumbEvent, Mapping[str, Any]]) -> None:
        """
        Scrub *event*, evict from the head until it fits, append, persist.

        Eviction runs while the queue holds ``max_items`` or more, then while
        the serialized queue plus the new event exceeds ``max_size_kb``.
        Invalid events are logged and dropped.
        """
        try:
            crumb = self._scrubbed(event)
        except ValueError as exc:
            logger.warning("[BreadcrumbManager] Dropping invalid breadcrumb: %s", exc)
            return

        event_size = _byte_size(crumb.to_dict())
        with self._queue_lock:
            while self._queue and len(self._queue) >= self.config.max_items:
                self._queue.popleft()
            while self._queue and self._queue_size() + event_size > self.max_size_bytes:
                self._queue.popleft()
            self._queue.append(crumb)
            snapshot = _serialize([c.to_dict() for c in self._queue])
            self._submit(self._persistence.set_item, self.config.storage_key, snapshot)

    def get_all(self) -> List[BreadcrumbEvent]:
        """Return a copy of the queue, oldest first."""
        with self._queue_lock:
            return list(self._queue)

    def clear(self) -> None:
        """Empty the queue and remove the persisted copy."""
        with self._queue_lock:
            self._queue.clear()
            self._submit(self._persistence.remove_item, self.config.storage_key)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued writes; ``True`` if they all finished in time."""
        pending = self._last_write
        if pending is None:
            return True
        done, _ = wait([pending], timeout=timeout)
        return bool(done)

    @classmethod
    def reset(cls) -> None:
        """Discard the singleton and its persisted state (tests only)."""
        with cls._lock:
            instance = cls._instance
            cls._instance = None
        if instance is None:
            return
        instance._executor.shutdown(wait=True)
        with instance._queue_lock:
            instance._queue.clear()
        try:
            instance._persistence.remove_item(instance.config.storage_key)
        except Exception as exc:
            logger.warning("[BreadcrumbManager] Failed to remove persisted breadcrumbs: %s", exc)

    # ── Internals ────────────────────────────────────────────────

    def _scrubbed(self, event: Union[BreadcrumbEvent, Mapping[str, Any]]) -> BreadcrumbEvent:
        wire = event.to_dict() if isinstance(event, _Breadcrumb) else event
        crumb = breadcrumb_from_dict(wire)
        # Only the payload carries user data; type, timestamp and ids stay intact.
        payload = crumb.to_dict()
        payload["data"] = scrub(payload["data"], DEFAULT_PII_PATTERNS)
        return breadcrumb_from_dict(payload)

    def _queue_size(self) -> int:
        return _byte_size([c.to_dict() for c in self._queue])

    def _submit(self, fn, *args: Any) -> None:
        self._last_write = self._executor.submit(_write, fn, *args)

    def _load(self) -> None:
        try:
            stored = self._persistence.get_item(self.config.storage_key)
            if not stored:
                return
            parsed = json.loads(stored)
        except Exception as exc:
            logger.warning("[BreadcrumbManager] Failed to load from storage: %s", exc)
            return

        if not isinstance(parsed, list):
            logger.warning("[BreadcrumbManager] Ignoring persisted breadcrumbs: not a list")
            return

        for raw in parsed:
            try:
                self._queue.append(breadcrumb_from_dict(raw))
            except ValueError as exc:
                logger.warning("[BreadcrumbManager] Skipping persisted breadcrumb: %s", exc)

        # Same limits as add(): oldest entries go first.
        while len(self._queue) > self.config.max_items:
            self._queue.popleft()
        while self._queue and self._queue_size() > self.max_size_bytes:
            self._queue.popleft()


def _write(fn, *args: Any) -> None:
    try:
        fn(*args)
    except Exception as exc:
        logger.warning("[BreadcrumbManager] Failed to save to storage: %s", exc)
