# Public surface of the orchestrator package.
from ..id_map import minimal, identity, version  # single source of truth
from ._logging import SyncEvent
from ._state_store import JsonFileStore, MemoryStore, StateStore
from ._types import (
    Conflict,
    ConflictNotFoundError,
    ConflictType,
    EventType,
    InvalidTransitionError,
    Item,
    PendingResolution,
    Resolution,
    ResolutionStrategy,
    SessionNotFoundError,
    SyncError,
    SyncSession,
    SyncStatus,
    SyncType,
    UnknownStrategyError,
    Version,
)
from .facade import Orchestrator

__all__ = [
    "Orchestrator", "minimal", "identity", "version",
    "SyncEvent", "JsonFileStore", "MemoryStore", "StateStore",
    "Conflict", "ConflictType", "EventType", "Item", "PendingResolution", "Resolution",
    "ResolutionStrategy", "SyncSession", "SyncStatus", "SyncType", "Version",
    "SyncError", "SessionNotFoundError", "InvalidTransitionError",
    "ConflictNotFoundError", "UnknownStrategyError",
]
