"""
Persisted build-state store.

This module keeps the key/value cache that survives between build
invocations (resolved option values, the selected toolchain profile).

Key features:
- JSON file backed, written atomically
- Per-key exclusive acquire/release so concurrent resolutions of the
  same key cannot pin divergent values
- Thread-safe reads and writes
"""

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional


class BuildStateError(Exception):
    """Raised when the build-state file cannot be written."""
    pass


class BuildStateStore:
    """Thread-safe key/value store for cached build state.

    The store is passed explicitly to every consumer. There is no module
    level instance.

    Example:
        store = BuildStateStore(build_dir / "build-state.json")
        with store.acquire("ENABLE_FAST_CHANNELS"):
            if not store.contains("ENABLE_FAST_CHANNELS"):
                store.set("ENABLE_FAST_CHANNELS", False)
        store.save()
    """

    def __init__(self, state_file: Optional[Path] = None):
        """Initialize the store.

        Args:
            state_file: Path of the JSON file backing the store. When None
                the store lives in memory only.
        """
        self.state_file = state_file
        self.lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}
        self._values: Dict[str, Any] = {}
        self._dirty = False
        self._load()

    def _load(self) -> None:
        """Load values from disk (if the file exists)."""
        if self.state_file is None or not self.state_file.exists():
            return

        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"Ignoring unreadable build state {self.state_file}: {e}")
            return

        if not isinstance(data, dict):
            logging.warning(f"Ignoring malformed build state {self.state_file}")
            return

        with self.lock:
            self._values = data

        logging.info(f"Loaded {len(data)} cached entries from {self.state_file}")

    def save(self) -> None:
        """Write the store to disk atomically if anything changed.

        Raises:
            BuildStateError: If the file cannot be written
        """
        if self.state_file is None:
            return

        with self.lock:
            if not self._dirty:
                return
            data = dict(self._values)
            self._dirty = False

        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.state_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            temp_file.replace(self.state_file)
        except OSError as e:
            raise BuildStateError(f"Failed to save build state {self.state_file}: {e}") from e

        logging.debug(f"Saved {len(data)} cached entries to {self.state_file}")

    def _lock_for(self, key: str) -> threading.Lock:
        with self.lock:
            key_lock = self._key_locks.get(key)
            if key_lock is None:
                key_lock = threading.Lock()
                self._key_locks[key] = key_lock
            return key_lock

    @contextmanager
    def acquire(self, key: str) -> Iterator[None]:
        """Hold the exclusive lock for a single key.

        Args:
            key: Cache key to lock

        Yields:
            Nothing; the key is released when the block exits
        """
        key_lock = self._lock_for(key)
        key_lock.acquire()
        try:
            yield
        finally:
            key_lock.release()

    def contains(self, key: str) -> bool:
        with self.lock:
            return key in self._values

    def get(self, key: str, default: Any = None) -> Any:
        with self.lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a value under a key and mark the store dirty."""
        with self.lock:
            if key not in self._values or self._values[key] != value:
                self._values[key] = value
                self._dirty = True

    def delete(self, key: str) -> None:
        with self.lock:
            if key in self._values:
                del self._values[key]
                self._dirty = True
