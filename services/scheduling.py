# services/scheduling.py
# CrossPhoto - Auto-sync and retention scheduling
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable

from _logging import log as _root_log
from cp_platform.config_base import auto_sync_settings
from cp_platform.id_map import ts_epoch
from cp_platform.orchestrator import Orchestrator

_log = _root_log.child("scheduler")


def _now_ts() -> float:
    return time.time()


def _iso(ts: float) -> str:
    if ts <= 0:
        return ""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def merge_defaults(s: dict[str, Any] | None) -> dict[str, Any]:
    out = auto_sync_settings({"auto_sync": dict(s or {})})
    try:
        out["interval_minutes"] = max(1, int(out.get("interval_minutes") or 30))
    except (TypeError, ValueError):
        out["interval_minutes"] = 30
    try:
        out["cleanup_interval_hours"] = max(1.0, float(out.get("cleanup_interval_hours") or 24))
    except (TypeError, ValueError):
        out["cleanup_interval_hours"] = 24.0
    plats = out.get("platforms") or []
    if isinstance(plats, str):
        plats = [plats]
    out["platforms"] = [str(p).strip().lower() for p in plats if str(p).strip()]
    return out


class AutoSyncScheduler:
    """
    Starts incremental syncs for platforms whose last sync is missing or
    older than the interval, and runs the retention sweep periodically.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        load_config: Callable[[], dict[str, Any]],
        *,
        tick_seconds: float = 30.0,
    ) -> None:
        self.orchestrator = orchestrator
        self.load_config_cb = load_config
        self.tick_seconds = max(0.05, float(tick_seconds))

        self._task: asyncio.Task[None] | None = None
        self._poke = asyncio.Event()
        self._last_cleanup: float = 0.0

        self._status: dict[str, Any] = {
            "running": False,
            "last_tick": 0,
            "last_run_at": 0,
            "last_session_id": "",
            "last_platforms": [],
            "last_cleanup_at": 0,
            "last_error": "",
        }

    def _cfg(self) -> dict[str, Any]:
        cfg = self.load_config_cb() or {}
        return merge_defaults(cfg.get("auto_sync") or {})

    def status(self) -> dict[str, Any]:
        st = dict(self._status)
        st["config"] = self._cfg()
        st["last_cleanup_iso"] = _iso(float(st["last_cleanup_at"] or 0))
        return st

    def _busy_platforms(self) -> set[str]:
        busy: set[str] = set()
        for s in self.orchestrator.get_all_sync_sessions():
            if not s.status.terminal:
                busy.update(s.platforms)
        return busy

    def due_platforms(self, now: float | None = None) -> list[str]:
        sch = self._cfg()
        now_ts = _now_ts() if now is None else float(now)
        window = sch["interval_minutes"] * 60.0
        busy = self._busy_platforms()
        due: list[str] = []
        for p in sch["platforms"]:
            if p in busy:
                continue
            last = ts_epoch(self.orchestrator.last_sync.get(p))
            if last is None or (now_ts - last) >= window:
                due.append(p)
        return due

    async def run_due(self, now: float | None = None) -> str | None:
        sch = self._cfg()
        if not sch.get("enabled"):
            return None
        due = self.due_platforms(now)
        if not due:
            return None
        try:
            sid = await self.orchestrator.start_sync(due, {"type": "incremental"})
        except Exception as e:
            self._status["last_error"] = str(e)
            _log.error(f"auto-sync could not start: {e}")
            return None
        self._status.update(last_run_at=int(_now_ts()), last_session_id=sid, last_platforms=due, last_error="")
        _log.info(f"auto-sync started {sid[:8]} for {', '.join(due)}")
        return sid

    async def cleanup_if_due(self, now: float | None = None) -> dict[str, int] | None:
        sch = self._cfg()
        now_ts = _now_ts() if now is None else float(now)
        if self._last_cleanup and (now_ts - self._last_cleanup) < sch["cleanup_interval_hours"] * 3600.0:
            return None
        self._last_cleanup = now_ts
        self._status["last_cleanup_at"] = int(now_ts)
        return await self.orchestrator.cleanup_old_data(now_ts)

    async def tick(self, now: float | None = None) -> None:
        self._status["last_tick"] = int(_now_ts())
        await self.run_due(now)
        await self.cleanup_if_due(now)

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._poke.clear()
        self._task = asyncio.create_task(self._run_loop(), name="AutoSyncScheduler")
        _log.info("scheduler started")

    async def stop(self) -> None:
        t, self._task = self._task, None
        if t:
            t.cancel()
            try:
                await t
            except asyncio.CancelledError:
                pass
        _log.info("scheduler stopped")

    def refresh(self) -> None:
        self._poke.set()

    async def _run_loop(self) -> None:
        self._status["running"] = True
        try:
            while True:
                try:
                    await self.tick()
                except Exception as e:
                    self._status["last_error"] = str(e)
                    _log.error(f"scheduler tick failed: {e}")
                await self._sleep_or_poke(self.tick_seconds)
        finally:
            self._status["running"] = False

    async def _sleep_or_poke(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._poke.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        self._poke.clear()
