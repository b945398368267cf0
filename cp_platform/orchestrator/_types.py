# cp_platform/orchestrator/_types.py
# types and protocols for orchestrator.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from collections.abc import Sequence
from typing import Any, Protocol

from ..id_map import now_iso as _now_iso
from ..models import Item, Version

__all__ = [
    "Item", "Version",
    "SyncStatus", "SyncType", "ConflictType", "ResolutionStrategy", "EventType",
    "Conflict", "Resolution", "PendingResolution",
    "SessionConfig", "SessionProgress", "SessionStats", "SyncSession",
    "PlatformClient",
    "SyncError", "SessionNotFoundError", "InvalidTransitionError",
    "ConflictNotFoundError", "UnknownStrategyError",
]


def _new_id() -> str:
    return str(uuid.uuid4())


# Enums

class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CANCELLED)


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    DIFFERENTIAL = "differential"
    MANUAL = "manual"


class ConflictType(str, Enum):
    METADATA = "metadata_conflict"
    CONTENT = "content_conflict"
    TIMESTAMP = "timestamp_conflict"
    VERSION = "version_conflict"


class ResolutionStrategy(str, Enum):
    MANUAL = "manual"
    LATEST_TIMESTAMP = "latest_timestamp"
    SOURCE_PRIORITY = "source_priority"
    LARGEST_SIZE = "largest_size"
    HIGHEST_QUALITY = "highest_quality"
    MERGE_METADATA = "merge_metadata"
    KEEP_BOTH = "keep_both"

    @classmethod
    def parse(cls, value: Any) -> "ResolutionStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            raise UnknownStrategyError(f"unknown resolution strategy: {value!r}") from None


class EventType(str, Enum):
    INITIALIZED = "initialized"
    SYNC_QUEUED = "sync-queued"
    SYNC_STARTED = "sync-started"
    SYNC_PROGRESS = "sync-progress"
    SYNC_PROGRESS_UPDATED = "sync-progress-updated"
    CONFLICTS_DETECTED = "conflicts-detected"
    CONFLICT_REQUIRES_RESOLUTION = "conflict-requires-resolution"
    CONFLICT_RESOLVED = "conflict-resolved"
    CONFLICT_RESOLVED_MANUALLY = "conflict-resolved-manually"
    CHANGE_APPLIED = "change-applied"
    CHANGES_LOGGED = "changes-logged"
    SYNC_COMPLETED = "sync-completed"
    SYNC_FAILED = "sync-failed"
    SYNC_CANCELLED = "sync-cancelled"
    SYNC_PAUSED = "sync-paused"
    SYNC_RESUMED = "sync-resumed"
    CLEANUP_COMPLETED = "cleanup-completed"
    SHUTDOWN = "shutdown"
    ERROR = "error"


# Errors

class SyncError(RuntimeError): ...
class SessionNotFoundError(SyncError): ...
class InvalidTransitionError(SyncError): ...
class ConflictNotFoundError(SyncError): ...
class UnknownStrategyError(SyncError, ValueError): ...


# Conflicts & resolutions

@dataclass
class Resolution:
    strategy: ResolutionStrategy
    selected_item: Item | None = None
    selected_items: list[Item] | None = None
    reason: str = ""
    resolved_at: str = field(default_factory=_now_iso)

    @property
    def item_ids(self) -> list[str]:
        if self.selected_items is not None:
            return [it.id for it in self.selected_items]
        return [self.selected_item.id] if self.selected_item is not None else []

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "strategy": self.strategy.value,
            "reason": self.reason,
            "resolved_at": self.resolved_at,
        }
        if self.selected_item is not None:
            out["selected_item"] = self.selected_item.to_dict()
        if self.selected_items is not None:
            out["selected_items"] = [it.to_dict() for it in self.selected_items]
        return out


@dataclass
class Conflict:
    identity: str
    types: frozenset[ConflictType]
    items: list[Item]
    severity: int
    session_id: str | None = None
    id: str = field(default_factory=_new_id)
    detected_at: str = field(default_factory=_now_iso)
    resolution: Resolution | None = None

    @property
    def resolved(self) -> bool:
        return self.resolution is not None

    def resolve(self, resolution: Resolution) -> None:
        if self.resolution is not None:
            raise InvalidTransitionError(f"conflict {self.id} is already resolved")
        self.resolution = resolution

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "identity": self.identity,
            "types": sorted(t.value for t in self.types),
            "items": [it.to_dict() for it in self.items],
            "severity": self.severity,
            "detected_at": self.detected_at,
            "resolved": self.resolved,
            "resolution": self.resolution.to_dict() if self.resolution else None,
        }


@dataclass
class PendingResolution:
    session_id: str
    conflict: Conflict
    hint: str = "manual"
    added_at: str = field(default_factory=_now_iso)

    @property
    def conflict_id(self) -> str:
        return self.conflict.id

    @property
    def gating(self) -> bool:
        # only conflicts deferred by the manual strategy hold a session open
        return self.hint == "manual"

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "conflict_id": self.conflict.id,
            "hint": self.hint,
            "added_at": self.added_at,
            "conflict": self.conflict.to_dict(),
        }


# Sessions

@dataclass
class SessionConfig:
    conflict_resolution: ResolutionStrategy = ResolutionStrategy.MANUAL
    force_full: bool = False
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflict_resolution": self.conflict_resolution.value,
            "force_full": self.force_full,
            "dry_run": self.dry_run,
        }


@dataclass
class SessionProgress:
    total_items: int = 0
    processed_items: int = 0
    synced_items: int = 0
    skipped_items: int = 0
    conflict_items: int = 0
    percentage: int = 0

    def recompute(self) -> int:
        if self.total_items > 0:
            done = self.processed_items + self.synced_items + self.skipped_items
            self.percentage = min(100, round(done / self.total_items * 100))
        return self.percentage

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "synced_items": self.synced_items,
            "skipped_items": self.skipped_items,
            "conflict_items": self.conflict_items,
            "percentage": self.percentage,
        }


@dataclass
class SessionStats:
    data_transferred: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    changes: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_transferred": self.data_transferred,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "errors": [dict(e) for e in self.errors],
            "changes": [dict(c) for c in self.changes],
        }


@dataclass
class SyncSession:
    platforms: tuple[str, ...]
    type: SyncType = SyncType.INCREMENTAL
    config: SessionConfig = field(default_factory=SessionConfig)
    id: str = field(default_factory=_new_id)
    status: SyncStatus = SyncStatus.IDLE
    progress: SessionProgress = field(default_factory=SessionProgress)
    stats: SessionStats = field(default_factory=SessionStats)
    created_at: str = field(default_factory=_now_iso)
    start_time: str | None = None
    end_time: str | None = None
    paused_at: str | None = None
    resumed_at: str | None = None
    error: dict[str, Any] | None = None

    # runtime only (never serialized)
    platform_data: dict[str, list[Item]] = field(default_factory=dict, repr=False)
    collected_ok: set[str] = field(default_factory=set, repr=False)
    applied: set[str] = field(default_factory=set, repr=False)
    awaiting_manual: bool = field(default=False, repr=False)
    run_gate: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    settled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def __post_init__(self) -> None:
        if not self.platforms:
            raise ValueError("a sync session needs at least one platform")
        self.run_gate.set()

    @property
    def duration_ms(self) -> int | None:
        if not self.start_time or not self.end_time:
            return None
        a = datetime.fromisoformat(self.start_time.replace("Z", "+00:00"))
        b = datetime.fromisoformat(self.end_time.replace("Z", "+00:00"))
        return int((b - a).total_seconds() * 1000)

    def record_error(self, phase: str, message: str, **where: Any) -> dict[str, Any]:
        entry = {"phase": phase, "message": message, "timestamp": _now_iso()}
        entry.update({k: v for k, v in where.items() if v is not None})
        self.stats.errors.append(entry)
        return entry

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "platforms": list(self.platforms),
            "type": self.type.value,
            "status": self.status.value,
            "config": self.config.to_dict(),
            "progress": self.progress.to_dict(),
            "stats": self.stats.to_dict(),
            "created_at": self.created_at,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "paused_at": self.paused_at,
            "resumed_at": self.resumed_at,
            "awaiting_manual": self.awaiting_manual,
            "error": self.error,
        }


# Consumed interfaces

class PlatformClient(Protocol):
    async def fetch_items(
        self,
        platform: str,
        *,
        since: str | None = None,
        limit: int = 5000,
        include_metadata: bool = True,
    ) -> Sequence[Item]: ...
