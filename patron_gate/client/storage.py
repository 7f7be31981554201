"""Key/value stores backing the session controller.

- `FileStorage`: durable, survives restarts (the browser's localStorage role).
- `MemoryStorage`: ephemeral, scoped to one page lifetime (the sessionStorage role).
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Protocol

STORAGE_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """Minimal string store. Values are written and read wholesale."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


@dataclass
class MemoryStorage:
    """In-memory store; contents are lost with the instance."""

    data: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


@dataclass
class FileStorage:
    """One file per key under `base_dir`. Last writer wins."""

    base_dir: str = "./.patron_gate"

    def __post_init__(self) -> None:
        """Ensure base directory exists."""
        self.base_dir = os.path.abspath(self.base_dir)
        Path(self.base_dir).mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not STORAGE_KEY_RE.match(key or ""):
            raise ValueError(f"Invalid storage key: {key!r}")
        return Path(self.base_dir) / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        # Write-then-rename so readers never observe a half-written value.
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def remove(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()
