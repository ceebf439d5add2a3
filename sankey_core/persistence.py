"""
Autosave of durable diagram state to a local key/value store.

- Storage backends: in-memory (optionally with a byte quota) and a directory
  of JSON files, one file per key
- Writes are coalesced: every change cancels the pending write and schedules
  a new one, so a burst of edits (e.g. a drag) costs one write with the
  latest state
- A storage failure switches persistence off for the rest of the session;
  the editor keeps working in memory and no write is retried
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from .config import SAVE_DELAY, STORAGE_KEY
from .diagram_store import CHANGE_CLEAR, CHANGE_LOAD, DiagramStore
from .serialization import deserialize, serialize

logger = logging.getLogger(__name__)

_PROBE_KEY = "__storage_test__"


class StorageError(Exception):
    """The storage medium could not complete an operation."""


class StorageQuotaExceeded(StorageError):
    """The storage medium is full."""


# --- Storage Backends ---

class KeyValueStorage:
    """Minimal string key/value interface. Failures raise StorageError."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str):
        raise NotImplementedError

    def delete(self, key: str):
        raise NotImplementedError

    def is_available(self) -> bool:
        """Probe the medium with a throwaway write."""
        try:
            self.set(_PROBE_KEY, _PROBE_KEY)
            self.delete(_PROBE_KEY)
            return True
        except StorageError:
            return False


class MemoryStorage(KeyValueStorage):
    """Dict-backed storage. `quota` caps the total size of stored values in bytes."""

    def __init__(self, quota: Optional[int] = None):
        self._data: dict[str, str] = {}
        self._quota = quota

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        if self._quota is not None:
            used = sum(len(v.encode()) for k, v in self._data.items() if k != key)
            if used + len(value.encode()) > self._quota:
                raise StorageQuotaExceeded(f"quota of {self._quota} bytes exceeded")
        self._data[key] = value

    def delete(self, key: str):
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStorage(KeyValueStorage):
    """One `<key>.json` file per key inside `directory`."""

    def __init__(self, directory: str | Path):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise StorageError(f"invalid storage key: {key!r}")
        return self._directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"cannot read {path}: {e}") from e

    def set(self, key: str, value: str):
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"cannot write {path}: {e}") from e

    def delete(self, key: str):
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"cannot delete {path}: {e}") from e


# --- Scheduling ---

class Cancellable(Protocol):
    def cancel(self) -> Any:
        ...


class Scheduler(Protocol):
    """Runs a callback later. `asyncio.AbstractEventLoop` satisfies this."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        ...


# --- Persistence ---

class DiagramPersistence:
    """
    Keeps a store's durable state mirrored in storage.

    Without a scheduler every change is written immediately; with one, writes
    are deferred by `delay` seconds and coalesced.
    """

    def __init__(
        self,
        store: DiagramStore,
        storage: KeyValueStorage,
        scheduler: Optional[Scheduler] = None,
        delay: float = SAVE_DELAY,
        key: str = STORAGE_KEY,
    ):
        self._store = store
        self._storage = storage
        self._scheduler = scheduler
        self._delay = delay
        self._key = key
        self._pending: Optional[Cancellable] = None
        self._attached = False
        self._available = storage.is_available()
        if not self._available:
            logger.warning("Storage is not available; changes will not be saved")

    # --- Properties ---

    @property
    def available(self) -> bool:
        return self._available

    @property
    def pending(self) -> bool:
        """True while a deferred write is scheduled."""
        return self._pending is not None

    @property
    def key(self) -> str:
        return self._key

    # --- Store Subscription ---

    def attach(self):
        """Start saving on every durable change of the store."""
        if not self._attached:
            self._store.on_change(self._on_store_change)
            self._attached = True

    def detach(self):
        if self._attached:
            self._store.remove_change_callback(self._on_store_change)
            self._attached = False

    def _on_store_change(self, reason: str):
        if reason == CHANGE_LOAD:
            return  # just read from storage; nothing new to write
        if reason == CHANGE_CLEAR:
            self.clear()
            return
        self.schedule_save()

    # --- Writing ---

    def _mark_unavailable(self, error: Exception):
        logger.warning("Failed to save diagram state, persistence disabled: %s", error)
        self._available = False

    def _cancel_pending(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def schedule_save(self):
        """Request a write; replaces any write that is still pending."""
        if not self._available:
            return
        self._cancel_pending()
        if self._scheduler is None:
            self.flush()
            return
        self._pending = self._scheduler.call_later(self._delay, self._run_pending)

    def _run_pending(self):
        self._pending = None
        self.flush()

    def flush(self) -> bool:
        """Write the current state now. Returns False if nothing was written."""
        self._cancel_pending()
        if not self._available:
            return False
        payload = serialize(self._store.durable_state())
        try:
            self._storage.set(self._key, payload)
        except (StorageError, OSError) as e:
            self._mark_unavailable(e)
            return False
        return True

    def close(self):
        """Write anything still pending and stop listening to the store."""
        if self._pending is not None:
            self.flush()
        self.detach()

    # --- Reading ---

    def load(self) -> bool:
        """
        Restore state from storage into the store.

        Returns False, leaving the store as it was, when nothing is stored,
        the stored payload is invalid, or storage cannot be read.
        """
        if not self._available:
            return False
        try:
            stored = self._storage.get(self._key)
        except (StorageError, OSError) as e:
            logger.warning("Storage unavailable while loading: %s", e)
            self._available = False
            return False
        if stored is None:
            return False

        state = deserialize(stored)
        if state is None:
            logger.warning("Failed to load state from storage; starting empty")
            return False
        self._store.load_state(state)
        return True

    def clear(self):
        """Drop any pending write and remove the stored state."""
        self._cancel_pending()
        if not self._available:
            return
        try:
            self._storage.delete(self._key)
        except (StorageError, OSError) as e:
            logger.warning("Failed to clear stored state: %s", e)
