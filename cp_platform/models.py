# cp_platform/models.py
# Explicit item schema shared by hashing, orchestration and platform clients.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from dataclasses import dataclass, field, replace
from collections.abc import Mapping
from typing import Any

__all__ = ["Version", "Item"]


@dataclass(frozen=True)
class Version:
    hash: str
    timestamp: str
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"hash": self.hash, "timestamp": self.timestamp, "size": self.size}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Version":
        return cls(
            hash=str(data.get("hash") or ""),
            timestamp=str(data.get("timestamp") or ""),
            size=_int_or_none(data.get("size")) or 0,
        )


def _int_or_none(v: Any) -> int | None:
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _str_or_none(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


@dataclass
class Item:
    """
    One platform-reported photo record.

    Required: id, source. Everything else is optional and hashing treats
    missing values as absent rather than empty.
    """

    id: str
    source: str
    filename: str | None = None
    size: int | None = None
    created_at: str | None = None
    last_modified: str | None = None
    url: str | None = None
    width: int | None = None
    height: int | None = None
    format: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    version: Version | None = None

    # Platform payloads come in camelCase (JS APIs) or snake_case.
    _ALIASES = {
        "created_at": ("created_at", "createdAt"),
        "last_modified": ("last_modified", "lastModified"),
    }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, source: str | None = None) -> "Item":
        def pick(name: str) -> Any:
            for k in cls._ALIASES.get(name, (name,)):
                if data.get(k) is not None:
                    return data.get(k)
            return None

        md = data.get("metadata")
        ver = data.get("version")
        return cls(
            id=str(data.get("id") or ""),
            source=str(source or data.get("source") or "").strip().lower(),
            filename=_str_or_none(data.get("filename")),
            size=_int_or_none(data.get("size")),
            created_at=_str_or_none(pick("created_at")),
            last_modified=_str_or_none(pick("last_modified")),
            url=_str_or_none(data.get("url")),
            width=_int_or_none(data.get("width")),
            height=_int_or_none(data.get("height")),
            format=_str_or_none(data.get("format")),
            metadata=dict(md) if isinstance(md, Mapping) else {},
            version=Version.from_mapping(ver) if isinstance(ver, Mapping) else None,
        )

    def with_version(self, version: Version) -> "Item":
        return replace(self, version=version)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "filename": self.filename,
            "size": self.size,
            "created_at": self.created_at,
            "last_modified": self.last_modified,
            "url": self.url,
            "width": self.width,
            "height": self.height,
            "format": self.format,
            "metadata": dict(self.metadata),
        }
        if self.version is not None:
            out["version"] = self.version.to_dict()
        return out
