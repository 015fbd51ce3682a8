"""
Durable key-value store for the agent and session collections.

Each collection is one JSON array under a fixed storage key, read and written
as a whole document. Writers hold a reentrant process lock plus an exclusive
file lock so composite read-modify-write sequences are serialized.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Protocol, TypeVar

from .errors import StorageCorruptionError, ValidationError

logger = logging.getLogger(__name__)

AGENTS_KEY = "odyssey_agents"
SESSIONS_KEY = "odyssey_sessions"

DEFAULT_STORE_DIR = Path.home() / ".odyssey" / "store"

_SAFE_KEY_RE = re.compile(r"[^a-zA-Z0-9._-]")

T = TypeVar("T")


class Record(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)


def key_path(base_dir: Path, key: str) -> Path:
    """Map a storage key to its document path and reject traversal."""
    safe_name = _SAFE_KEY_RE.sub("_", key)
    path = (base_dir / f"{safe_name}.json").resolve()
    if path.parent != base_dir.resolve():
        raise ValueError(f"Unsafe storage key: {key}")
    return path


class DurableStore:
    """File-backed collection store with serialized writers."""

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = base_dir or DEFAULT_STORE_DIR
        ensure_private_dir(self.base_dir)
        self._lock_path = self.base_dir / ".lock"
        ensure_private_file(self._lock_path)
        self._mutex = threading.RLock()
        self._depth = 0
        self._lockf = None
        self._errors: dict[str, StorageCorruptionError] = {}

    @contextmanager
    def transaction(self) -> Iterator[DurableStore]:
        """Serialized critical section; nested use re-enters the held lock."""
        with self._mutex:
            if self._depth == 0:
                self._lockf = open(self._lock_path, "r+")
                fcntl.flock(self._lockf.fileno(), fcntl.LOCK_EX)
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
                if self._depth == 0:
                    fcntl.flock(self._lockf.fileno(), fcntl.LOCK_UN)
                    self._lockf.close()
                    self._lockf = None

    def load(self, key: str, parse: Callable[[Mapping[str, Any]], T]) -> list[T]:
        """Read a whole collection.

        A document that fails to parse degrades to an empty collection; the
        error is kept in ``last_error(key)`` and the bad file is moved aside.
        """
        with self.transaction():
            path = key_path(self.base_dir, key)
            if not path.exists():
                self._errors.pop(key, None)
                return []
            try:
                with open(path, encoding="utf-8") as f:
                    raw = json.load(f)
                if not isinstance(raw, list):
                    raise ValueError(f"expected a JSON array, got {type(raw).__name__}")
                for item in raw:
                    if not isinstance(item, dict):
                        raise ValueError(f"expected a JSON object per record, got {type(item).__name__}")
                records = [parse(item) for item in raw]
            except (ValueError, KeyError, TypeError, ValidationError) as e:
                return self._degrade(key, path, e)
            self._errors.pop(key, None)
            return records

    def save(self, key: str, records: Iterable[Record]) -> None:
        """Atomically replace a whole collection."""
        payload = [record.to_dict() for record in records]
        with self.transaction():
            path = key_path(self.base_dir, key)
            tmp_path = path.with_suffix(path.suffix + f".tmp.{os.getpid()}")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            ensure_private_file(path)

    def last_error(self, key: str) -> Optional[StorageCorruptionError]:
        return self._errors.get(key)

    @property
    def errors(self) -> dict[str, StorageCorruptionError]:
        return dict(self._errors)

    def _degrade(self, key: str, path: Path, exc: Exception) -> list:
        error = StorageCorruptionError(key, f"{type(exc).__name__}: {exc}")
        self._errors[key] = error
        backup = path.with_suffix(path.suffix + ".corrupt")
        os.replace(path, backup)
        ensure_private_file(backup)
        logger.error("%s; continuing with an empty collection (backup: %s)", error, backup)
        return []
