# cp_platform/orchestrator/_unresolved.py
# pending (unresolved) conflict queue for orchestrator.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Dict, List, Optional

from ._types import Conflict, PendingResolution

__all__ = ["PendingQueue", "HINT_MANUAL", "HINT_RESOLUTION_FAILED"]

HINT_MANUAL = "manual"
HINT_RESOLUTION_FAILED = "resolution_failed"


class PendingQueue:
    """
    Conflicts awaiting a human decision, keyed by conflict id.

    Insertion order is kept so listings come out oldest first.
    Entries with the manual hint hold their session open; the others are
    informational (an automated resolver gave up) and can still be resolved.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, PendingResolution] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, conflict: Conflict, session_id: str, *, hint: str = HINT_MANUAL) -> PendingResolution:
        entry = PendingResolution(session_id=session_id, conflict=conflict, hint=hint)
        self._entries[conflict.id] = entry
        return entry

    def get(self, conflict_id: str) -> Optional[PendingResolution]:
        return self._entries.get(conflict_id)

    def pop(self, conflict_id: str) -> Optional[PendingResolution]:
        return self._entries.pop(conflict_id, None)

    def for_session(self, session_id: str) -> List[PendingResolution]:
        return [e for e in self._entries.values() if e.session_id == session_id]

    def gating_for_session(self, session_id: str) -> List[PendingResolution]:
        return [e for e in self._entries.values() if e.session_id == session_id and e.gating]

    def purge_session(self, session_id: str) -> int:
        doomed = [cid for cid, e in self._entries.items() if e.session_id == session_id]
        for cid in doomed:
            del self._entries[cid]
        return len(doomed)

    def list(self) -> List[PendingResolution]:
        return list(self._entries.values())
