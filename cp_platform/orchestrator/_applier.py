# cp_platform/orchestrator/_applier.py
# apply phase: turn resolutions into version updates and changelog entries.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import uuid
from collections.abc import Iterable, MutableMapping
from typing import Any

from _logging import log as _root_log

from ..id_map import now_iso, version as compute_version
from ._logging import Emitter
from ._types import Conflict, EventType, Item, ResolutionStrategy, SyncSession

__all__ = ["make_change", "apply_conflicts", "changelog_entry"]

_log = _root_log.child("apply")


def _version_record(item: Item, now: str) -> dict[str, Any]:
    v = item.version or compute_version(item, now)
    return v.to_dict()


def make_change(conflict: Conflict, *, dry_run: bool = False) -> dict[str, Any] | None:
    """Change record for a resolved conflict; None when nothing is written (keep_both)."""
    res = conflict.resolution
    if res is None:
        raise ValueError(f"conflict {conflict.id} is not resolved")
    if res.strategy is ResolutionStrategy.KEEP_BOTH:
        return None
    if res.selected_item is None and not res.selected_items:
        raise ValueError(f"resolution of conflict {conflict.id} selects no item")
    change: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "type": "version_update",
        "strategy": res.strategy.value,
        "reason": res.reason,
        "conflict_id": conflict.id,
        "item_ids": res.item_ids,
        "timestamp": now_iso(),
    }
    if dry_run:
        change["dry_run"] = True
    return change


def _selected(conflict: Conflict) -> list[Item]:
    res = conflict.resolution
    if res is None:
        return []
    if res.selected_items:
        return list(res.selected_items)
    return [res.selected_item] if res.selected_item is not None else []


def apply_conflicts(
    session: SyncSession,
    conflicts: Iterable[Conflict],
    *,
    versions: MutableMapping[str, dict[str, Any]],
    emitter: Emitter,
    enable_versioning: bool = True,
    dry_run: bool = False,
) -> list[dict[str, Any]]:
    """
    Apply every resolved, not-yet-applied conflict of the session.

    keep_both conflicts are marked applied without touching versions.
    A failing change counts its items as skipped; the rest carry on.
    """
    changes: list[dict[str, Any]] = []
    prog = session.progress
    for c in conflicts:
        if not c.resolved or c.id in session.applied:
            continue
        try:
            change = make_change(c, dry_run=dry_run)
            if change is not None and enable_versioning and not dry_run:
                now = now_iso()
                for it in _selected(c):
                    versions[it.id] = _version_record(it, now)
        except Exception as e:
            session.applied.add(c.id)
            prog.skipped_items += len(c.items)
            err = session.record_error("apply", str(e), conflict_id=c.id)
            _log.warn(f"[{session.id[:8]}] change for conflict {c.id[:8]} failed: {e}")
            emitter.emit(EventType.ERROR, session_id=session.id, **err)
            continue

        session.applied.add(c.id)
        prog.synced_items += len(c.items)
        if change is None:
            _log.debug(f"[{session.id[:8]}] conflict {c.id[:8]} kept both; no version update")
            continue
        changes.append(change)
        session.stats.changes.append(change)
        emitter.emit(
            EventType.CHANGE_APPLIED,
            session_id=session.id,
            conflict_id=c.id,
            change_id=change["id"],
            item_ids=change["item_ids"],
            dry_run=dry_run,
        )
    prog.recompute()
    return changes


def changelog_entry(session_id: str, changes: Iterable[dict[str, Any]]) -> dict[str, Any]:
    keep = ("id", "type", "strategy", "reason", "conflict_id", "item_ids")
    return {
        "id": str(uuid.uuid4()),
        "session_id": session_id,
        "timestamp": now_iso(),
        "changes": [{k: ch.get(k) for k in keep} for ch in changes],
    }
