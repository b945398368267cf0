# cp_platform/orchestrator/facade.py
# sync session orchestrator: admission, pipeline, manual re-entry and lifecycle.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from _logging import log as _root_log

from .. import config_base
from ..id_map import minimal, now_iso, ts_epoch
from ._analyzer import analyze, group_by_identity
from ._applier import apply_conflicts, changelog_entry
from ._collector import collect
from ._logging import Emitter, SyncEvent
from ._state_store import StateStore
from ._strategies import resolve as _resolve
from ._telemetry import Stats
from ._types import (
    Conflict,
    ConflictNotFoundError,
    EventType,
    InvalidTransitionError,
    Item,
    PendingResolution,
    PlatformClient,
    Resolution,
    ResolutionStrategy,
    SessionConfig,
    SessionNotFoundError,
    SyncSession,
    SyncStatus,
    SyncType,
)
from ._unresolved import HINT_MANUAL, HINT_RESOLUTION_FAILED, PendingQueue

__all__ = ["Orchestrator"]

_log = _root_log.child("orchestrator")

_DAY = 86400.0


def _opt(opts: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for n in names:
        if opts.get(n) is not None:
            return opts[n]
    return default


@dataclass
class Orchestrator:
    config: Mapping[str, Any]
    client: PlatformClient
    store: StateStore | None = None
    on_progress: Callable[[str], None] | None = None

    emitter: Emitter = field(init=False)
    stats: Stats = field(init=False)
    pending: PendingQueue = field(init=False)

    def __post_init__(self) -> None:
        self.cfg: dict[str, Any] = dict(self.config or {})
        sync = config_base.sync_settings(self.cfg)
        self.max_concurrent = int(sync["max_concurrent_syncs"])
        self.default_strategy = ResolutionStrategy.parse(sync.get("conflict_resolution") or "manual")
        self.enable_versioning = bool(sync.get("enable_versioning", True))
        self.retention_days = float(sync.get("changelog_retention_days") or 90)
        self.source_priority: list[str] = list(sync.get("source_priority") or [])
        self.sync_cfg = sync

        self.state_store: StateStore = self.store or StateStore.at(config_base.state_dir(self.cfg))
        self.store = self.state_store

        self.emitter = Emitter(self.on_progress, queue_size=int(sync.get("event_queue_size") or 256))
        self.emit = self.emitter.emit
        self.stats = Stats()
        self.pending = PendingQueue()

        self.sessions: dict[str, SyncSession] = {}
        self.active: set[str] = set()
        self.waiting: deque[str] = deque()
        self.last_sync: dict[str, str] = {}
        self.versions: dict[str, dict[str, Any]] = {}
        self.changelog: list[dict[str, Any]] = []

        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._persist_lock = asyncio.Lock()
        self.initialized = False

    # Lifecycle
    async def initialize(self) -> None:
        """Reload the four durable records."""
        self.last_sync = await asyncio.to_thread(self.state_store.load_last_sync)
        self.versions = await asyncio.to_thread(self.state_store.load_versions)
        self.changelog = await asyncio.to_thread(self.state_store.load_changelog)
        self.stats.load(await asyncio.to_thread(self.state_store.load_statistics))
        self.initialized = True
        _log.info(
            f"ready: max_concurrent={self.max_concurrent} strategy={self.default_strategy.value} "
            f"versions={len(self.versions)} changelog={len(self.changelog)}"
        )
        self.emit(
            EventType.INITIALIZED,
            platforms=sorted(self.last_sync),
            versions=len(self.versions),
            changelog_entries=len(self.changelog),
        )

    async def shutdown(self, *, grace: float = 5.0) -> None:
        for s in list(self.sessions.values()):
            if not s.status.terminal:
                await self.cancel_sync(s.id)
        tasks = [t for t in self._tasks.values() if not t.done()]
        if tasks:
            _done, stuck = await asyncio.wait(tasks, timeout=grace)
            for t in stuck:
                t.cancel()
        await self._persist(last_sync=True, versions=True, changelog=True, statistics=True)
        _log.info("shutdown complete")
        self.emit(EventType.SHUTDOWN)

    # Events
    def subscribe(self, fn: Callable[[SyncEvent], None]) -> Callable[[], None]:
        return self.emitter.subscribe(fn)

    def events(self) -> asyncio.Queue[SyncEvent]:
        return self.emitter.queue()

    # Administrative API
    def _parse_options(self, options: Mapping[str, Any] | None) -> tuple[SyncType, SessionConfig]:
        opts = dict(options or {})
        raw_type = _opt(opts, "type", default=SyncType.INCREMENTAL.value)
        try:
            stype = SyncType(str(raw_type).strip().lower())
        except ValueError:
            raise ValueError(f"unknown sync type: {raw_type!r}") from None
        strategy = ResolutionStrategy.parse(
            _opt(opts, "conflict_resolution", "conflictResolution", default=self.default_strategy)
        )
        return stype, SessionConfig(
            conflict_resolution=strategy,
            force_full=bool(_opt(opts, "force_full", "forceFull", default=False)),
            dry_run=bool(_opt(opts, "dry_run", "dryRun", default=False)),
        )

    async def start_sync(self, platforms: Iterable[str], options: Mapping[str, Any] | None = None) -> str:
        stype, scfg = self._parse_options(options)
        names = tuple(dict.fromkeys(str(p).strip().lower() for p in (platforms or ()) if str(p).strip()))
        session = SyncSession(platforms=names, type=stype, config=scfg)
        self.sessions[session.id] = session

        if len(self.active) >= self.max_concurrent:
            self.waiting.append(session.id)
            _log.info(f"[{session.id[:8]}] queued ({len(self.waiting)} waiting, {len(self.active)} active)")
            self.emit(EventType.SYNC_QUEUED, session_id=session.id, position=len(self.waiting))
        else:
            self._admit(session)
        return session.id

    def _admit(self, s: SyncSession) -> None:
        s.status = SyncStatus.SYNCING
        s.start_time = now_iso()
        self.active.add(s.id)
        _log.info(f"[{s.id[:8]}] started {s.type.value} sync: {', '.join(s.platforms)}")
        self.emit(
            EventType.SYNC_STARTED,
            session_id=s.id,
            platforms=list(s.platforms),
            type=s.type.value,
            config=s.config.to_dict(),
        )
        task = asyncio.create_task(self._execute(s), name=f"sync-{s.id[:8]}")
        self._tasks[s.id] = task
        task.add_done_callback(lambda _t, sid=s.id: self._tasks.pop(sid, None))

    def _admit_next(self) -> None:
        while self.waiting and len(self.active) < self.max_concurrent:
            sid = self.waiting.popleft()
            s = self.sessions.get(sid)
            if s is not None and s.status is SyncStatus.IDLE:
                self._admit(s)

    def _release(self, s: SyncSession) -> None:
        self.active.discard(s.id)
        self._admit_next()

    def _session(self, session_id: str) -> SyncSession:
        s = self.sessions.get(session_id)
        if s is None:
            raise SessionNotFoundError(f"sync session not found: {session_id}")
        return s

    async def pause_sync(self, session_id: str) -> SyncSession:
        s = self._session(session_id)
        if s.status is not SyncStatus.SYNCING:
            raise InvalidTransitionError(f"cannot pause a session that is {s.status.value}")
        s.status = SyncStatus.PAUSED
        s.paused_at = now_iso()
        s.run_gate.clear()
        _log.info(f"[{s.id[:8]}] paused")
        self.emit(EventType.SYNC_PAUSED, session_id=s.id, paused_at=s.paused_at)
        return s

    async def resume_sync(self, session_id: str) -> SyncSession:
        s = self._session(session_id)
        if s.status is not SyncStatus.PAUSED:
            raise InvalidTransitionError(f"cannot resume a session that is {s.status.value}")
        s.status = SyncStatus.SYNCING
        s.resumed_at = now_iso()
        s.run_gate.set()
        _log.info(f"[{s.id[:8]}] resumed")
        self.emit(EventType.SYNC_RESUMED, session_id=s.id, resumed_at=s.resumed_at)
        # no task left to wake: parked for manual decisions or paused mid-apply
        task = self._tasks.get(s.id)
        if (task is None or task.done()) and not self.pending.gating_for_session(s.id):
            await self._continue(s)
        return s

    async def cancel_sync(self, session_id: str) -> SyncSession:
        s = self._session(session_id)
        if s.status.terminal:
            raise InvalidTransitionError(f"cannot cancel a session that is {s.status.value}")
        s.status = SyncStatus.CANCELLED
        s.end_time = now_iso()
        s.awaiting_manual = False
        if s.id in self.waiting:
            self.waiting.remove(s.id)
        purged = self.pending.purge_session(s.id)
        # wake a task parked on the pause gate; it sees the terminal status and exits
        s.run_gate.set()
        if s.id not in self._tasks:
            s.settled.set()
        self.stats.record_cancel()
        _log.info(f"[{s.id[:8]}] cancelled ({purged} pending conflict(s) dropped)")
        self.emit(EventType.SYNC_CANCELLED, session_id=s.id, purged_conflicts=purged)
        self._release(s)
        await self._persist(statistics=True)
        return s

    def get_sync_status(self, session_id: str) -> SyncSession:
        return self._session(session_id)

    def get_all_sync_sessions(self) -> list[SyncSession]:
        return list(self.sessions.values())

    def get_active_syncs(self) -> list[SyncSession]:
        return [self.sessions[sid] for sid in self.sessions if sid in self.active]

    def get_statistics(self) -> dict[str, Any]:
        return self.stats.overview(
            active_syncs=len(self.active),
            queued_syncs=len(self.waiting),
            pending_conflicts=len(self.pending),
            changelog_entries=len(self.changelog),
            total_sessions=len(self.sessions),
        )

    async def join(self, session_id: str, timeout: float | None = None) -> SyncSession:
        """Wait until the session's pipeline task has settled (finished or parked)."""
        s = self._session(session_id)
        await asyncio.wait_for(s.settled.wait(), timeout)
        return s

    # Manual Resolution API
    def get_pending_conflicts(self, session_id: str | None = None) -> list[PendingResolution]:
        if session_id:
            return self.pending.for_session(session_id)
        return self.pending.list()

    @staticmethod
    def _pick(conflict: Conflict, ref: Any) -> Item:
        if isinstance(ref, Item):
            want_id, want_src = ref.id, ref.source
        elif isinstance(ref, Mapping):
            want_id = str(ref.get("id") or "")
            want_src = str(ref.get("source") or "").strip().lower() or None
        else:
            want_id, want_src = str(ref or ""), None
        for it in conflict.items:
            if it.id == want_id and (want_src is None or it.source == want_src):
                return it
        raise ValueError(f"item {want_id!r} is not part of conflict {conflict.id}")

    def _manual_resolution(self, conflict: Conflict, payload: Mapping[str, Any]) -> Resolution:
        strategy = ResolutionStrategy.parse(_opt(payload, "strategy", default=ResolutionStrategy.MANUAL))
        one = _opt(payload, "selected_item", "selectedItem", "selected_item_id", "selectedItemId")
        many = _opt(payload, "selected_items", "selectedItems", "selected_item_ids", "selectedItemIds")
        reason = str(_opt(payload, "reason", default="") or "")

        selected_item = self._pick(conflict, one) if one is not None else None
        selected_items = [self._pick(conflict, r) for r in many] if many is not None else None
        if strategy is ResolutionStrategy.KEEP_BOTH:
            if selected_item is not None:
                raise ValueError("keep_both takes selected_items, not a single selected_item")
            if selected_items is None:
                selected_items = list(conflict.items)

        if selected_item is None and not selected_items:
            if strategy in (ResolutionStrategy.MANUAL, ResolutionStrategy.KEEP_BOTH):
                raise ValueError("a manual resolution must select an item")
            # a named automated strategy computes the pick
            res = _resolve(strategy, conflict.items, source_priority=self.source_priority)
            if res is None:
                raise ValueError(f"strategy {strategy.value} produced no resolution")
            if reason:
                res.reason = reason
            return res

        return Resolution(
            strategy=strategy,
            selected_item=selected_item,
            selected_items=selected_items,
            reason=reason or "resolved manually",
        )

    async def resolve_conflict_manually(self, conflict_id: str, payload: Mapping[str, Any] | None = None) -> Conflict:
        entry = self.pending.get(conflict_id)
        if entry is None:
            raise ConflictNotFoundError(f"no pending conflict: {conflict_id}")
        conflict = entry.conflict
        resolution = self._manual_resolution(conflict, dict(payload or {}))
        conflict.resolve(resolution)
        self.pending.pop(conflict_id)
        self.stats.record_resolution(manual=True)
        _log.info(f"[{entry.session_id[:8]}] conflict {conflict_id[:8]} resolved manually ({resolution.strategy.value})")
        self.emit(
            EventType.CONFLICT_RESOLVED_MANUALLY,
            session_id=entry.session_id,
            conflict_id=conflict_id,
            strategy=resolution.strategy.value,
            item_ids=resolution.item_ids,
        )

        s = self.sessions.get(entry.session_id)
        if s is None:
            await self._persist(statistics=True)
            return conflict
        if s.status is SyncStatus.SYNCING and s.awaiting_manual:
            if not self.pending.gating_for_session(s.id):
                await self._continue(s)
            else:
                await self._persist(statistics=True)
        elif s.status is SyncStatus.COMPLETED and entry.hint != HINT_MANUAL:
            # late fix for an automated resolution that failed during the run
            s.progress.skipped_items = max(0, s.progress.skipped_items - len(conflict.items))
            await self._apply(s, [conflict])
            await self._persist(statistics=True)
        else:
            await self._persist(statistics=True)
        return conflict

    # Pipeline
    async def _checkpoint(self, s: SyncSession) -> bool:
        if not s.run_gate.is_set():
            _log.debug(f"[{s.id[:8]}] waiting for resume")
            await s.run_gate.wait()
        return not s.status.terminal

    def _progress(self, s: SyncSession) -> None:
        s.progress.recompute()
        self.emit(EventType.SYNC_PROGRESS_UPDATED, session_id=s.id, progress=s.progress.to_dict())

    async def _execute(self, s: SyncSession) -> None:
        try:
            s.platform_data = await collect(
                s,
                client=self.client,
                last_sync=self.last_sync,
                versions=self.versions,
                sync_cfg=self.sync_cfg,
                emitter=self.emitter,
            )
            if not await self._checkpoint(s):
                return
            conflicts = self._detect(s)
            if not await self._checkpoint(s):
                return
            self._resolve_all(s, conflicts)
            if not await self._checkpoint(s):
                return
            gating = self.pending.gating_for_session(s.id)
            if gating:
                s.awaiting_manual = True
                _log.info(f"[{s.id[:8]}] waiting on {len(gating)} manual resolution(s)")
                return
            await self._finish(s)
        except Exception as e:
            await self._fail(s, e)
        finally:
            s.settled.set()

    def _detect(self, s: SyncSession) -> list[Conflict]:
        self.emit(EventType.SYNC_PROGRESS, session_id=s.id, phase="detecting")
        groups = group_by_identity(s.platform_data)
        prog = s.progress
        prog.total_items = sum(len(v) for v in s.platform_data.values())
        conflicts: list[Conflict] = []
        for ident, items in groups.items():
            c = analyze(ident, items, session_id=s.id)
            if c is None:
                prog.processed_items += len(items)
                continue
            conflicts.append(c)
        s.stats.conflicts.extend(conflicts)
        prog.conflict_items = len(conflicts)
        self.stats.record_detected(len(conflicts))
        self._progress(s)
        if conflicts:
            _log.info(f"[{s.id[:8]}] {len(conflicts)} conflict(s) across {len(groups)} group(s)")
            self.emit(
                EventType.CONFLICTS_DETECTED,
                session_id=s.id,
                count=len(conflicts),
                conflicts=[
                    {"id": c.id, "types": sorted(t.value for t in c.types), "severity": c.severity}
                    for c in conflicts
                ],
            )
        return conflicts

    def _resolve_all(self, s: SyncSession, conflicts: list[Conflict]) -> None:
        strategy = s.config.conflict_resolution
        self.emit(EventType.SYNC_PROGRESS, session_id=s.id, phase="resolving", strategy=strategy.value)
        for c in conflicts:
            if strategy is ResolutionStrategy.MANUAL:
                self.pending.add(c, s.id, hint=HINT_MANUAL)
                self.emit(
                    EventType.CONFLICT_REQUIRES_RESOLUTION,
                    session_id=s.id,
                    conflict_id=c.id,
                    severity=c.severity,
                    types=sorted(t.value for t in c.types),
                    items=[minimal(it) for it in c.items],
                )
                continue
            try:
                res = _resolve(strategy, c.items, source_priority=self.source_priority)
                if res is None:
                    raise ValueError(f"strategy {strategy.value} produced no resolution")
                c.resolve(res)
            except Exception as e:
                self.pending.add(c, s.id, hint=HINT_RESOLUTION_FAILED)
                err = s.record_error("resolve", str(e), conflict_id=c.id)
                _log.warn(f"[{s.id[:8]}] could not resolve conflict {c.id[:8]}: {e}")
                self.emit(EventType.ERROR, session_id=s.id, **err)
                continue
            self.stats.record_resolution(manual=False)
            self.emit(
                EventType.CONFLICT_RESOLVED,
                session_id=s.id,
                conflict_id=c.id,
                strategy=res.strategy.value,
                item_ids=res.item_ids,
            )

    async def _apply(self, s: SyncSession, conflicts: Iterable[Conflict] | None = None) -> list[dict[str, Any]]:
        self.emit(EventType.SYNC_PROGRESS, session_id=s.id, phase="applying")
        dry = s.config.dry_run
        changes = apply_conflicts(
            s,
            s.stats.conflicts if conflicts is None else conflicts,
            versions=self.versions,
            emitter=self.emitter,
            enable_versioning=self.enable_versioning,
            dry_run=dry,
        )
        self._progress(s)
        if changes and not dry:
            entry = changelog_entry(s.id, changes)
            self.changelog.append(entry)
            await self._persist(versions=self.enable_versioning, changelog=True)
            self.emit(EventType.CHANGES_LOGGED, session_id=s.id, entry_id=entry["id"], count=len(changes))
        return changes

    async def _continue(self, s: SyncSession) -> None:
        try:
            await self._finish(s, wait=False)
        except Exception as e:
            await self._fail(s, e)

    async def _finish(self, s: SyncSession, *, wait: bool = True) -> None:
        s.awaiting_manual = False
        await self._apply(s)
        if not wait and not s.run_gate.is_set():
            _log.info(f"[{s.id[:8]}] paused after apply; completes on resume")
            return
        if not await self._checkpoint(s):
            return
        await self._complete(s)

    async def _complete(self, s: SyncSession) -> None:
        if s.status is not SyncStatus.SYNCING:
            return
        prog = s.progress
        # conflicts left unresolved by a failing strategy
        for c in s.stats.conflicts:
            if not c.resolved and c.id not in s.applied:
                prog.skipped_items += len(c.items)
        s.status = SyncStatus.COMPLETED
        if prog.total_items:
            prog.recompute()
        else:
            prog.percentage = 100
        s.end_time = now_iso()
        dry = s.config.dry_run
        if not dry and s.start_time:
            for p in s.collected_ok:
                self.last_sync[p] = s.start_time
        self.stats.record_success(s.duration_ms, s.stats.data_transferred)
        self._release(s)
        _log.success(
            f"[{s.id[:8]}] completed in {s.duration_ms} ms: "
            f"{len(s.stats.conflicts)} conflict(s), {len(s.stats.changes)} change(s), {len(s.stats.errors)} error(s)"
        )
        self.emit(
            EventType.SYNC_COMPLETED,
            session_id=s.id,
            duration_ms=s.duration_ms,
            progress=s.progress.to_dict(),
            conflicts=len(s.stats.conflicts),
            changes=len(s.stats.changes),
            errors=len(s.stats.errors),
            dry_run=dry,
        )
        await self._persist(last_sync=not dry, statistics=True)

    async def _fail(self, s: SyncSession, exc: BaseException) -> None:
        if s.status.terminal:
            _log.error(f"[{s.id[:8]}] error after session ended: {exc}")
            return
        s.status = SyncStatus.FAILED
        s.end_time = now_iso()
        s.awaiting_manual = False
        s.error = {"message": str(exc), "type": type(exc).__name__, "timestamp": s.end_time}
        self.pending.purge_session(s.id)
        self.stats.record_failure()
        self._release(s)
        _log.error(f"[{s.id[:8]}] failed: {type(exc).__name__}: {exc}")
        self.emit(EventType.SYNC_FAILED, session_id=s.id, error=dict(s.error))
        await self._persist(statistics=True)

    # Persistence
    async def _persist(
        self,
        *,
        last_sync: bool = False,
        versions: bool = False,
        changelog: bool = False,
        statistics: bool = False,
    ) -> None:
        store = self.state_store
        async with self._persist_lock:
            jobs: list[tuple[Callable[[Any], None], Any]] = []
            if last_sync:
                jobs.append((store.save_last_sync, dict(self.last_sync)))
            if versions:
                jobs.append((store.save_versions, {k: dict(v) for k, v in self.versions.items()}))
            if changelog:
                jobs.append((store.save_changelog, list(self.changelog)))
            if statistics:
                jobs.append((store.save_statistics, self.stats.snapshot()))
            for fn, data in jobs:
                await asyncio.to_thread(fn, data)

    # Maintenance
    async def cleanup_old_data(self, now: Any = None) -> dict[str, int]:
        """Drop changelog entries and finished sessions older than the retention window."""
        now_ts = ts_epoch(now) if now is not None else time.time()
        if now_ts is None:
            raise ValueError(f"invalid timestamp: {now!r}")
        cutoff = now_ts - self.retention_days * _DAY

        def _fresh(entry: Mapping[str, Any]) -> bool:
            ts = ts_epoch(entry.get("timestamp"))
            return ts is None or ts >= cutoff

        before = len(self.changelog)
        self.changelog = [e for e in self.changelog if _fresh(e)]
        dropped_entries = before - len(self.changelog)

        old = [
            sid for sid, s in self.sessions.items()
            if s.status.terminal and (ts_epoch(s.end_time) or now_ts) < cutoff
        ]
        for sid in old:
            self.pending.purge_session(sid)
            del self.sessions[sid]

        if dropped_entries:
            await self._persist(changelog=True)
        summary = {"changelog_entries": dropped_entries, "sessions": len(old)}
        _log.info(f"cleanup: removed {dropped_entries} changelog entr(ies), {len(old)} session(s)")
        self.emit(EventType.CLEANUP_COMPLETED, removed=summary, retention_days=self.retention_days)
        return summary
