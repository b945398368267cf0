# cp_platform/orchestrator/_analyzer.py
# conflict detection for orchestrator.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Callable

from ..id_map import identity, item_timestamp, metadata_hash
from ._types import Conflict, ConflictType, Item

__all__ = [
    "group_by_identity", "analyze", "severity", "detect_types",
    "has_metadata_conflict", "has_content_conflict",
    "has_timestamp_conflict", "has_version_conflict",
]

SEVERITY_MIN = 1
SEVERITY_MAX = 10


def group_by_identity(items_by_source: Mapping[str, Iterable[Item]]) -> dict[str, list[Item]]:
    groups: dict[str, list[Item]] = {}
    for _platform, items in items_by_source.items():
        for it in items or ():
            groups.setdefault(identity(it), []).append(it)
    return groups


# Detectors
def has_metadata_conflict(items: Sequence[Item]) -> bool:
    return len({metadata_hash(it) for it in items}) > 1


def has_content_conflict(items: Sequence[Item]) -> bool:
    hashes = {it.version.hash for it in items if it.version is not None and it.version.hash}
    return len(hashes) > 1


def has_timestamp_conflict(items: Sequence[Item]) -> bool:
    return len({item_timestamp(it) for it in items}) > 1


def has_version_conflict(items: Sequence[Item]) -> bool:
    stamps = {it.version.timestamp for it in items if it.version is not None and it.version.timestamp}
    return len(stamps) > 1


_DETECTORS: tuple[tuple[ConflictType, Callable[[Sequence[Item]], bool]], ...] = (
    (ConflictType.METADATA, has_metadata_conflict),
    (ConflictType.CONTENT, has_content_conflict),
    (ConflictType.TIMESTAMP, has_timestamp_conflict),
    (ConflictType.VERSION, has_version_conflict),
)

_WEIGHTS: dict[ConflictType, int] = {
    ConflictType.CONTENT: 3,
    ConflictType.VERSION: 2,
    ConflictType.METADATA: 1,
}


def detect_types(items: Sequence[Item]) -> frozenset[ConflictType]:
    return frozenset(tag for tag, fn in _DETECTORS if fn(items))


def severity(types: Iterable[ConflictType], item_count: int) -> int:
    tags = set(types)
    score = 1 + sum(w for tag, w in _WEIGHTS.items() if tag in tags)
    score += min(max(item_count - 2, 0), 3)
    return max(SEVERITY_MIN, min(score, SEVERITY_MAX))


def analyze(ident: str, items: Sequence[Item], *, session_id: str | None = None) -> Conflict | None:
    """Classify one identity group; None when the group agrees on everything."""
    if len(items) < 2:
        return None
    types = detect_types(items)
    if not types:
        return None
    return Conflict(
        identity=ident,
        types=types,
        items=list(items),
        severity=severity(types, len(items)),
        session_id=session_id,
    )
