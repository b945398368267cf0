# cp_platform/orchestrator/_logging.py
# one-way event channel for orchestrator.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable

from _logging import log as _root_log

from ..id_map import now_iso
from ._types import EventType

_log = _root_log.child("events")


@dataclass(frozen=True)
class SyncEvent:
    event: EventType
    session_id: str | None = None
    conflict_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"event": self.event.value, "ts": self.ts}
        if self.session_id:
            payload["session_id"] = self.session_id
        if self.conflict_id:
            payload["conflict_id"] = self.conflict_id
        payload.update(self.data)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)


Listener = Callable[[SyncEvent], None]


class Emitter:
    """
    Writers call emit(); readers either register a callback or take a bounded
    queue. emit() never blocks and never raises.
    """

    def __init__(self, cb: Callable[[str], None] | None = None, *, queue_size: int = 256):
        self.cb = cb
        self.queue_size = max(1, int(queue_size))
        self._listeners: list[Listener] = []
        self._queues: list[asyncio.Queue[SyncEvent]] = []

    def subscribe(self, fn: Listener) -> Callable[[], None]:
        self._listeners.append(fn)

        def _unsubscribe() -> None:
            if fn in self._listeners:
                self._listeners.remove(fn)

        return _unsubscribe

    def queue(self) -> asyncio.Queue[SyncEvent]:
        q: asyncio.Queue[SyncEvent] = asyncio.Queue(maxsize=self.queue_size)
        self._queues.append(q)
        return q

    def close_queue(self, q: asyncio.Queue[SyncEvent]) -> None:
        if q in self._queues:
            self._queues.remove(q)

    def emit(
        self,
        event: EventType,
        *,
        session_id: str | None = None,
        conflict_id: str | None = None,
        **data: Any,
    ) -> SyncEvent:
        ev = SyncEvent(event=event, session_id=session_id, conflict_id=conflict_id, data=data)
        for fn in list(self._listeners):
            try:
                fn(ev)
            except Exception as e:
                _log.debug(f"listener failed on {event.value}: {e}")
        for q in list(self._queues):
            if q.full():
                # drop oldest
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            q.put_nowait(ev)
        if self.cb:
            try:
                self.cb(ev.to_json())
            except Exception as e:
                _log.debug(f"progress callback failed on {event.value}: {e}")
        return ev
