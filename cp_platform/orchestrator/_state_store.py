# cp_platform/orchestrator/_state_store.py
# state store management for orchestrator.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
import json
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from collections.abc import Mapping
from typing import Any, Protocol

__all__ = [
    "KeyValueStore", "JsonFileStore", "MemoryStore", "StateStore",
    "LAST_SYNC_KEY", "VERSIONS_KEY", "CHANGELOG_KEY", "STATISTICS_KEY",
]

LAST_SYNC_KEY = "last_sync"
VERSIONS_KEY = "versions"
CHANGELOG_KEY = "changelog"
STATISTICS_KEY = "statistics"

_SAFE_KEY = re.compile(r"[^a-zA-Z0-9_.-]+")


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...
    def set(self, key: str, value: Any) -> None: ...
    def delete(self, key: str) -> None: ...


@dataclass
class JsonFileStore:
    """One JSON document per key under base_path; writes are atomic."""

    base_path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def path_for(self, key: str) -> Path:
        name = _SAFE_KEY.sub("_", str(key).strip()) or "_"
        return self.base_path / f"{name}.json"

    def _read(self, p: Path, default: Any) -> Any:
        if not p.exists():
            return default
        try:
            return json.loads(p.read_text("utf-8"))
        except (OSError, ValueError):
            return default

    def _write_atomic(self, p: Path, data: Any) -> None:
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
        tmp.replace(p)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read(self.path_for(key), default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._write_atomic(self.path_for(key), value)

    def delete(self, key: str) -> None:
        with self._lock:
            p = self.path_for(key)
            if p.exists():
                p.unlink()


class MemoryStore:
    """Process-local store; values are deep-copied in and out like a real backend."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


@dataclass
class StateStore:
    kv: KeyValueStore

    @classmethod
    def at(cls, base_path: Path) -> "StateStore":
        return cls(JsonFileStore(Path(base_path)))

    def _dict(self, key: str) -> dict[str, Any]:
        v = self.kv.get(key, {})
        return dict(v) if isinstance(v, dict) else {}

    # last sync per platform (ISO timestamps)
    def load_last_sync(self) -> dict[str, str]:
        return {str(k): str(v) for k, v in self._dict(LAST_SYNC_KEY).items() if v}

    def save_last_sync(self, data: Mapping[str, str]) -> None:
        self.kv.set(LAST_SYNC_KEY, dict(data))

    # item id -> {hash, timestamp, size}
    def load_versions(self) -> dict[str, dict[str, Any]]:
        return {k: dict(v) for k, v in self._dict(VERSIONS_KEY).items() if isinstance(v, dict)}

    def save_versions(self, data: Mapping[str, Mapping[str, Any]]) -> None:
        self.kv.set(VERSIONS_KEY, {k: dict(v) for k, v in data.items()})

    def load_changelog(self) -> list[dict[str, Any]]:
        v = self.kv.get(CHANGELOG_KEY, [])
        return [dict(e) for e in v if isinstance(e, dict)] if isinstance(v, list) else []

    def save_changelog(self, entries: list[Mapping[str, Any]]) -> None:
        self.kv.set(CHANGELOG_KEY, [dict(e) for e in entries])

    def load_statistics(self) -> dict[str, Any]:
        return self._dict(STATISTICS_KEY)

    def save_statistics(self, data: Mapping[str, Any]) -> None:
        self.kv.set(STATISTICS_KEY, dict(data))
