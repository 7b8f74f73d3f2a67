"""Persisted key/value strings shared by the controller and the views.

Every read-modify-write cycle on a store is non-atomic; callers that need
exclusion get it from the single-slot executor, not from here.
"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)

MULTILOGUE_KEY = "multilogue"
THOUGHTS_KEY = "thoughts"

Subscriber = Callable[[str, str], None]


class KeyValueStore(ABC):
    """String store with change notification."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None when the key was never set."""
        ...

    @abstractmethod
    def _write(self, key: str, value: str) -> None:
        ...

    def set(self, key: str, value: str) -> None:
        self._write(key, value)
        logger.debug("Stored %s (%d chars)", key, len(value))
        for callback in list(self._subscribers):
            callback(key, value)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback(key, value)`` after every set. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe


class MemoryStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__()
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def _write(self, key: str, value: str) -> None:
        self._values[key] = value


class FileStore(KeyValueStore):
    """One UTF-8 text file per key, ``<directory>/<key>.txt``."""

    def __init__(self, directory: Path) -> None:
        super().__init__()
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        return self._directory / f"{key}.txt"

    def get(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()

    def _write(self, key: str, value: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as tmp:
                tmp.write(value)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, str(path))
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
