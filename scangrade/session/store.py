"""Durable slots holding at most one session snapshot per key."""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from ..config import SESSIONS_FOLDER
from ..errors import SessionStorageError

logger = logging.getLogger("scangrade.session")

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class SessionStore(Protocol):
    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, data: str) -> None: ...

    def delete(self, key: str) -> None: ...


class FileSessionStore:
    """One JSON file per key, replaced atomically on every write."""

    def __init__(self, folder: Optional[Path] = None):
        self.folder = Path(folder or SESSIONS_FOLDER)

    def path_for(self, key: str) -> Path:
        safe = _UNSAFE.sub("_", key) or "default"
        return self.folder / f"{safe}.json"

    def read(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SessionStorageError(f"Could not read saved session: {e}")

    def write(self, key: str, data: str) -> None:
        path = self.path_for(key)
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.folder, prefix=f".{path.stem}-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise SessionStorageError(f"Could not save session: {e}")

    def delete(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise SessionStorageError(f"Could not clear saved session: {e}")


class MemorySessionStore:
    """Process-local slots, for tests and for running without a disk."""

    def __init__(self):
        self.slots: dict[str, str] = {}
        self.writes = 0

    def read(self, key: str) -> Optional[str]:
        return self.slots.get(key)

    def write(self, key: str, data: str) -> None:
        self.slots[key] = data
        self.writes += 1

    def delete(self, key: str) -> None:
        self.slots.pop(key, None)
