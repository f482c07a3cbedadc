"""
Persistent key-value stores.

Values are strings (JSON encoded by callers). The JSON file variant uses
cross-platform locking and writes through a temp file + rename.
"""

import json
import os
import shutil
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

from .errors import StorageError
from ..utils.events import log_debug

# --- Cross-Platform Locking ---
try:
    import fcntl
    def lock_file(f): fcntl.flock(f, fcntl.LOCK_EX)
    def unlock_file(f): fcntl.flock(f, fcntl.LOCK_UN)
except ImportError:
    # Windows: single-tab/single-process use is assumed
    def lock_file(f): pass
    def unlock_file(f): pass


class PersistentStore(ABC):
    """get/set/delete by key. Everything the terminal persists goes through one of these."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> List[str]: ...

    def get_flag(self, key: str) -> bool:
        return self.get(key) == "true"

    def set_flag(self, key: str, value: bool = True) -> None:
        self.set(key, "true" if value else "false")


class MemoryStore(PersistentStore):
    """In-process store, used by tests and as a scratch backend."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for '{key}' must be a string, got {type(value).__name__}")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class JsonFileStore(PersistentStore):
    """Whole store kept in one JSON object on disk, re-read on every access."""

    def __init__(self, path: Path, lock_path: Optional[Path] = None):
        self.path = Path(path)
        self.lock_path = Path(lock_path) if lock_path else self.path.with_suffix(".lock")
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _file_lock(self):
        """Cross-platform File Lock."""
        try:
            lock_f = open(self.lock_path, 'w')
        except OSError as e:
            raise StorageError(f"Could not open lock file {self.lock_path}: {e}") from e
        with lock_f:
            try:
                lock_file(lock_f)
                yield
            finally:
                unlock_file(lock_f)

    def _load(self) -> Dict[str, str]:
        """Loads the store safely. A corrupted file is backed up, never overwritten."""
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            backup_path = self.path.with_name(f"{self.path.stem}.bak.{os.urandom(4).hex()}")
            log_debug(f"CRITICAL: Store JSON corrupted. Backing up to {backup_path}")
            shutil.copy(self.path, backup_path)
            raise StorageError(f"Store file is corrupted ({e}). Check backup {backup_path.name}.") from e
        except OSError as e:
            raise StorageError(f"Could not read store file: {e}") from e
        if not isinstance(data, dict):
            raise StorageError("Store file must contain a JSON object")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        # Atomic write pattern: Write to temp, then rename
        temp_path = self.path.with_suffix(".tmp")
        try:
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(temp_path, self.path)
        except OSError as e:
            raise StorageError(f"Could not write store file: {e}") from e

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for '{key}' must be a string, got {type(value).__name__}")
        with self._file_lock():
            data = self._load()
            data[key] = value
            self._save(data)

    def delete(self, key: str) -> None:
        with self._file_lock():
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def keys(self) -> List[str]:
        return list(self._load())
