# CrossPhoto test scripts
from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path
from typing import Any

import pytest

from conftest import FakeClient, photo, settle
from cp_platform.id_map import version
from cp_platform.models import Item
from cp_platform.orchestrator import (
    ConflictNotFoundError,
    EventType,
    InvalidTransitionError,
    MemoryStore,
    Orchestrator,
    SessionNotFoundError,
    StateStore,
    SyncEvent,
    SyncStatus,
    UnknownStrategyError,
)
from cp_platform.orchestrator import _applier, facade
from cp_platform.orchestrator._collector import EPOCH
from cp_platform.orchestrator._state_store import VERSIONS_KEY


def make_orc(client: FakeClient, *, store: StateStore | None = None, on_progress=None, **sync: Any) -> Orchestrator:
    return Orchestrator(
        {"sync": sync},
        client=client,
        store=store or StateStore(MemoryStore()),
        on_progress=on_progress,
    )


def record(orc: Orchestrator) -> list[SyncEvent]:
    seen: list[SyncEvent] = []
    orc.subscribe(seen.append)
    return seen


def conflicting_client() -> FakeClient:
    return FakeClient(data={
        "google_photos": [photo("gp-1", metadata={"title": "Beach"})],
        "flickr": [photo("fl-1", metadata={"title": "Beach 2024"})],
    })


# Admission

@pytest.mark.asyncio
async def test_concurrency_bound_queues_extra_sessions_and_admits_on_completion() -> None:
    client = FakeClient(data={"a": [photo("a1")], "b": [photo("b1")], "c": [photo("c1")]})
    for p in ("a", "b", "c"):
        client.gate(p)
    orc = make_orc(client, max_concurrent_syncs=2)
    await orc.initialize()

    s1 = await orc.start_sync(["a"])
    s2 = await orc.start_sync(["b"])
    s3 = await orc.start_sync(["c"])
    await settle()

    statuses = [orc.get_sync_status(s).status for s in (s1, s2, s3)]
    assert statuses == [SyncStatus.SYNCING, SyncStatus.SYNCING, SyncStatus.IDLE]
    assert list(orc.waiting) == [s3]
    assert {s.id for s in orc.get_active_syncs()} == {s1, s2}
    assert orc.get_statistics()["queued_syncs"] == 1

    client.gates["a"].set()
    await orc.join(s1, timeout=2)
    assert orc.get_sync_status(s1).status is SyncStatus.COMPLETED
    assert orc.get_sync_status(s3).status is SyncStatus.SYNCING
    assert not orc.waiting

    client.gates["b"].set()
    client.gates["c"].set()
    await orc.join(s2, timeout=2)
    await orc.join(s3, timeout=2)
    assert orc.get_statistics()["successful_syncs"] == 3


@pytest.mark.asyncio
async def test_waiting_sessions_are_admitted_in_arrival_order() -> None:
    client = FakeClient(data={p: [photo(f"{p}1")] for p in ("a", "b", "c")})
    client.gate("a")
    orc = make_orc(client, max_concurrent_syncs=1)
    events = record(orc)

    ids = [await orc.start_sync([p]) for p in ("a", "b", "c")]
    queued = [e.session_id for e in events if e.event is EventType.SYNC_QUEUED]
    assert queued == ids[1:]

    client.gates["a"].set()
    for sid in ids:
        await orc.join(sid, timeout=2)
    started = [e.session_id for e in events if e.event is EventType.SYNC_STARTED]
    assert started == ids


@pytest.mark.asyncio
async def test_invalid_options_raise_before_a_session_exists() -> None:
    orc = make_orc(FakeClient())
    with pytest.raises(UnknownStrategyError):
        await orc.start_sync(["flickr"], {"conflict_resolution": "coin_flip"})
    with pytest.raises(ValueError):
        await orc.start_sync(["flickr"], {"type": "sideways"})
    with pytest.raises(ValueError):
        await orc.start_sync([])
    assert orc.get_all_sync_sessions() == []


# Pipeline

@pytest.mark.asyncio
async def test_source_priority_scenario_picks_google_photos() -> None:
    orc = make_orc(conflicting_client())
    events = record(orc)
    await orc.initialize()

    sid = await orc.start_sync(["flickr", "google_photos"], {"conflict_resolution": "source_priority"})
    s = await orc.join(sid, timeout=2)

    assert s.status is SyncStatus.COMPLETED
    assert s.progress.percentage == 100
    assert len(s.stats.conflicts) == 1
    c = s.stats.conflicts[0]
    assert c.resolution is not None
    assert c.resolution.selected_item.id == "gp-1"
    assert "gp-1" in orc.versions
    assert "fl-1" not in orc.versions
    assert len(orc.changelog) == 1
    assert orc.changelog[0]["changes"][0]["item_ids"] == ["gp-1"]
    assert set(orc.last_sync) == {"flickr", "google_photos"}

    names = [e.event for e in events]
    for ev in (
        EventType.SYNC_STARTED,
        EventType.CONFLICTS_DETECTED,
        EventType.CONFLICT_RESOLVED,
        EventType.CHANGE_APPLIED,
        EventType.CHANGES_LOGGED,
        EventType.SYNC_COMPLETED,
    ):
        assert ev in names
    assert names.index(EventType.SYNC_STARTED) < names.index(EventType.SYNC_COMPLETED)

    stats = orc.get_statistics()
    assert stats["conflicts_detected"] == 1
    assert stats["automated_resolutions"] == 1
    assert stats["total_syncs"] == 1


@pytest.mark.asyncio
async def test_group_without_disagreement_is_processed_not_conflicted() -> None:
    client = FakeClient(data={"flickr": [photo("fl-1"), photo("fl-2", filename="IMG_2.jpg")]})
    orc = make_orc(client)
    sid = await orc.start_sync(["flickr"])
    s = await orc.join(sid, timeout=2)
    assert s.status is SyncStatus.COMPLETED
    assert s.progress.total_items == 2
    assert s.progress.processed_items == 2
    assert s.stats.conflicts == []
    assert s.stats.data_transferred == 2 * 2_048_000


@pytest.mark.asyncio
async def test_keep_both_does_not_advance_versions() -> None:
    orc = make_orc(conflicting_client())
    sid = await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "keep_both"})
    s = await orc.join(sid, timeout=2)

    assert s.status is SyncStatus.COMPLETED
    res = s.stats.conflicts[0].resolution
    assert res is not None and len(res.selected_items) == 2
    assert orc.versions == {}
    assert orc.changelog == []
    assert s.stats.changes == []
    assert s.stats.conflicts[0].id in s.applied


@pytest.mark.asyncio
async def test_collection_failure_is_recorded_and_session_still_completes() -> None:
    client = FakeClient(
        data={"google_photos": [photo("gp-1")]},
        failures={"flickr": RuntimeError("flickr is down")},
    )
    orc = make_orc(client)
    events = record(orc)
    sid = await orc.start_sync(["flickr", "google_photos"])
    s = await orc.join(sid, timeout=2)

    assert s.status is SyncStatus.COMPLETED
    assert s.platform_data["flickr"] == []
    assert [e["phase"] for e in s.stats.errors] == ["collect"]
    assert s.stats.errors[0]["platform"] == "flickr"
    assert "flickr is down" in s.stats.errors[0]["message"]
    assert set(orc.last_sync) == {"google_photos"}
    assert any(e.event is EventType.ERROR and e.data.get("platform") == "flickr" for e in events)


@pytest.mark.asyncio
async def test_structural_error_fails_session_and_admits_next() -> None:
    client = FakeClient(data={"a": [photo("a1")], "b": [photo("b1")]})
    client.gate("a")
    orc = make_orc(client, max_concurrent_syncs=1)
    events = record(orc)

    def boom(_s):
        raise RuntimeError("index exploded")

    orc._detect = boom  # type: ignore[method-assign]
    s1 = await orc.start_sync(["a"])
    s2 = await orc.start_sync(["b"])
    client.gates["a"].set()
    failed = await orc.join(s1, timeout=2)

    assert failed.status is SyncStatus.FAILED
    assert failed.error is not None
    assert failed.error["type"] == "RuntimeError"
    assert failed.error["message"] == "index exploded"
    assert s1 not in orc.active
    assert any(e.event is EventType.SYNC_FAILED and e.session_id == s1 for e in events)

    await orc.join(s2, timeout=2)
    stats = orc.get_statistics()
    assert stats["failed_syncs"] == 2
    assert stats["total_syncs"] == 2


@pytest.mark.asyncio
async def test_failed_automated_resolution_parks_conflict_without_gating(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(*_a, **_k):
        raise ValueError("resolver broke")

    monkeypatch.setattr(facade, "_resolve", broken)
    orc = make_orc(conflicting_client())
    sid = await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "largest_size"})
    s = await orc.join(sid, timeout=2)

    assert s.status is SyncStatus.COMPLETED
    assert [e["phase"] for e in s.stats.errors] == ["resolve"]
    pending = orc.get_pending_conflicts()
    assert len(pending) == 1
    assert pending[0].hint == "resolution_failed"
    assert orc.versions == {}
    assert s.progress.skipped_items == 2
    assert s.progress.percentage == 100

    await orc.resolve_conflict_manually(pending[0].conflict_id, {"selected_item_id": "fl-1"})
    assert "fl-1" in orc.versions
    assert s.progress.skipped_items == 0
    assert s.progress.synced_items == 2
    assert orc.get_pending_conflicts() == []
    assert len(orc.changelog) == 1


@pytest.mark.asyncio
async def test_apply_failure_skips_items_but_completes(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(_item, _now):
        raise OSError("disk full")

    monkeypatch.setattr(_applier, "_version_record", broken)
    orc = make_orc(conflicting_client())
    sid = await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "latest_timestamp"})
    s = await orc.join(sid, timeout=2)

    assert s.status is SyncStatus.COMPLETED
    assert s.progress.skipped_items == 2
    assert [e["phase"] for e in s.stats.errors] == ["apply"]
    assert s.stats.errors[0]["conflict_id"] == s.stats.conflicts[0].id
    assert orc.changelog == []


# Manual resolution

@pytest.mark.asyncio
async def test_manual_conflict_gates_completion_until_resolved() -> None:
    orc = make_orc(conflicting_client())
    events = record(orc)
    sid = await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "manual"})
    s = await orc.join(sid, timeout=2)
    await settle()

    assert s.status is SyncStatus.SYNCING
    assert s.awaiting_manual is True
    pending = orc.get_pending_conflicts()
    assert len(pending) == 1
    assert pending[0].hint == "manual"
    assert any(e.event is EventType.CONFLICT_REQUIRES_RESOLUTION for e in events)
    assert sid in orc.active

    c = await orc.resolve_conflict_manually(pending[0].conflict_id, {"selected_item_id": "gp-1", "reason": "mine"})
    assert c.resolution is not None
    assert c.resolution.reason == "mine"
    assert s.status is SyncStatus.COMPLETED
    assert "gp-1" in orc.versions
    assert sid not in orc.active
    assert orc.get_statistics()["manual_resolutions"] == 1
    assert any(e.event is EventType.CONFLICT_RESOLVED_MANUALLY for e in events)

    with pytest.raises(ConflictNotFoundError):
        await orc.resolve_conflict_manually(c.id, {"selected_item_id": "gp-1"})


@pytest.mark.asyncio
async def test_session_completes_only_after_last_manual_conflict() -> None:
    client = FakeClient(data={
        "google_photos": [photo("gp-1", metadata={"t": 1}), photo("gp-2", filename="IMG_2.jpg", metadata={"t": 1})],
        "flickr": [photo("fl-1", metadata={"t": 2}), photo("fl-2", filename="IMG_2.jpg", metadata={"t": 2})],
    })
    orc = make_orc(client)
    sid = await orc.start_sync(["google_photos", "flickr"])
    s = await orc.join(sid, timeout=2)
    first, second = orc.get_pending_conflicts(sid)

    await orc.resolve_conflict_manually(first.conflict_id, {"strategy": "keep_both"})
    assert s.status is SyncStatus.SYNCING
    await orc.resolve_conflict_manually(second.conflict_id, {"selected_items": [{"id": "fl-2", "source": "flickr"}]})
    assert s.status is SyncStatus.COMPLETED
    assert set(orc.versions) == {"fl-2"}


@pytest.mark.asyncio
async def test_manual_resolution_rejects_foreign_items_and_empty_picks() -> None:
    orc = make_orc(conflicting_client())
    sid = await orc.start_sync(["google_photos", "flickr"])
    await orc.join(sid, timeout=2)
    cid = orc.get_pending_conflicts()[0].conflict_id

    with pytest.raises(ValueError):
        await orc.resolve_conflict_manually(cid, {"selected_item_id": "nope"})
    with pytest.raises(ValueError):
        await orc.resolve_conflict_manually(cid, {})
    assert len(orc.get_pending_conflicts()) == 1

    # a named strategy computes the pick itself
    c = await orc.resolve_conflict_manually(cid, {"strategy": "source_priority"})
    assert c.resolution is not None
    assert c.resolution.selected_item.id == "gp-1"


# Pause / resume / cancel

@pytest.mark.asyncio
async def test_pause_holds_next_phase_until_resume() -> None:
    client = conflicting_client()
    client.gate("google_photos")
    orc = make_orc(client)
    sid = await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "largest_size"})
    await settle()

    s = await orc.pause_sync(sid)
    assert s.status is SyncStatus.PAUSED
    assert s.paused_at
    with pytest.raises(InvalidTransitionError):
        await orc.pause_sync(sid)

    client.gates["google_photos"].set()
    await settle()
    assert set(s.platform_data) == {"google_photos", "flickr"}
    assert s.stats.conflicts == []
    assert s.status is SyncStatus.PAUSED
    assert sid in orc.active

    await orc.resume_sync(sid)
    await orc.join(sid, timeout=2)
    assert s.status is SyncStatus.COMPLETED
    assert s.resumed_at
    with pytest.raises(InvalidTransitionError):
        await orc.resume_sync(sid)


@pytest.mark.asyncio
async def test_resume_continues_a_parked_session_resolved_while_paused() -> None:
    orc = make_orc(conflicting_client())
    sid = await orc.start_sync(["google_photos", "flickr"])
    s = await orc.join(sid, timeout=2)
    await orc.pause_sync(sid)

    cid = orc.get_pending_conflicts()[0].conflict_id
    await orc.resolve_conflict_manually(cid, {"selected_item_id": "fl-1"})
    assert s.status is SyncStatus.PAUSED

    await orc.resume_sync(sid)
    assert s.status is SyncStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_discards_in_flight_results_and_frees_slot() -> None:
    client = FakeClient(data={"a": [photo("a1")], "b": [photo("b1")]})
    client.gate("a")
    orc = make_orc(client, max_concurrent_syncs=1)
    events = record(orc)
    s1 = await orc.start_sync(["a"])
    s2 = await orc.start_sync(["b"])
    await settle()

    s = await orc.cancel_sync(s1)
    assert s.status is SyncStatus.CANCELLED
    assert any(e.event is EventType.SYNC_CANCELLED for e in events)
    await orc.join(s2, timeout=2)
    assert orc.get_sync_status(s2).status is SyncStatus.COMPLETED

    client.gates["a"].set()
    await orc.join(s1, timeout=2)
    assert s.status is SyncStatus.CANCELLED
    assert "a" not in orc.last_sync
    assert orc.get_statistics()["cancelled_syncs"] == 1
    with pytest.raises(InvalidTransitionError):
        await orc.cancel_sync(s1)


@pytest.mark.asyncio
async def test_cancel_queued_and_parked_sessions() -> None:
    orc = make_orc(conflicting_client(), max_concurrent_syncs=1)
    parked = await orc.start_sync(["google_photos", "flickr"])
    queued = await orc.start_sync(["flickr"])
    await orc.join(parked, timeout=2)
    assert orc.get_sync_status(queued).status is SyncStatus.IDLE

    await orc.cancel_sync(queued)
    assert queued not in orc.waiting
    await orc.join(queued, timeout=1)

    await orc.cancel_sync(parked)
    assert orc.get_pending_conflicts() == []
    assert orc.active == set()


@pytest.mark.asyncio
async def test_unknown_session_raises() -> None:
    orc = make_orc(FakeClient())
    with pytest.raises(SessionNotFoundError):
        orc.get_sync_status("missing")
    with pytest.raises(SessionNotFoundError):
        await orc.pause_sync("missing")


# Sync types

@pytest.mark.asyncio
async def test_fetch_modes_follow_sync_type_and_last_sync() -> None:
    client = FakeClient(data={"flickr": [photo("fl-1")]})
    orc = make_orc(client, full_limit=50, incremental_limit=7)
    await orc.initialize()

    await orc.join(await orc.start_sync(["flickr"], {"type": "full"}), timeout=2)
    assert client.calls[-1] == ("flickr", {"since": None, "limit": 50, "include_metadata": True})

    await orc.join(await orc.start_sync(["flickr"], {"type": "incremental", "force_full": True}), timeout=2)
    assert client.calls[-1][1]["since"] is None

    last = orc.last_sync["flickr"]
    await orc.join(await orc.start_sync(["flickr"], {"type": "manual"}), timeout=2)
    assert client.calls[-1][1] == {"since": last, "limit": 7, "include_metadata": True}


@pytest.mark.asyncio
async def test_incremental_starts_from_epoch_without_history() -> None:
    client = FakeClient(data={"flickr": []})
    orc = make_orc(client)
    await orc.join(await orc.start_sync(["flickr"]), timeout=2)
    assert client.calls[0][1]["since"] == EPOCH


@pytest.mark.asyncio
async def test_differential_drops_items_unchanged_since_last_apply() -> None:
    unchanged = photo("fl-1")
    changed = photo("fl-2", filename="IMG_2.jpg")
    known = version(Item.from_mapping(unchanged, source="flickr"))
    store = StateStore(MemoryStore({"versions": {
        "fl-1": known.to_dict(),
        "fl-2": {"hash": "old", "timestamp": "t", "size": 0},
    }}))
    client = FakeClient(data={"flickr": [unchanged, changed]})
    orc = make_orc(client, store=store)
    await orc.initialize()

    s = await orc.join(await orc.start_sync(["flickr"], {"type": "differential"}), timeout=2)
    assert [it.id for it in s.platform_data["flickr"]] == ["fl-2"]
    assert client.calls[0][1]["since"] == EPOCH


@pytest.mark.asyncio
async def test_dry_run_writes_nothing_durable() -> None:
    store = StateStore(MemoryStore())
    orc = make_orc(conflicting_client(), store=store)
    sid = await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "source_priority", "dry_run": True})
    s = await orc.join(sid, timeout=2)

    assert s.status is SyncStatus.COMPLETED
    assert s.stats.changes and all(ch["dry_run"] for ch in s.stats.changes)
    assert orc.versions == {} and orc.changelog == [] and orc.last_sync == {}
    assert store.load_versions() == {}
    assert store.load_last_sync() == {}


@pytest.mark.asyncio
async def test_versioning_can_be_disabled() -> None:
    orc = make_orc(conflicting_client(), enable_versioning=False)
    s = await orc.join(await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "largest_size"}), timeout=2)
    assert s.status is SyncStatus.COMPLETED
    assert orc.versions == {}
    assert len(orc.changelog) == 1


# Persistence & maintenance

@pytest.mark.asyncio
async def test_durable_state_survives_restart(tmp_path: Path) -> None:
    orc = make_orc(conflicting_client(), store=StateStore.at(tmp_path))
    await orc.initialize()
    await orc.join(await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "source_priority"}), timeout=2)

    again = make_orc(FakeClient(), store=StateStore.at(tmp_path))
    events = record(again)
    await again.initialize()
    assert "gp-1" in again.versions
    assert set(again.last_sync) == {"google_photos", "flickr"}
    assert len(again.changelog) == 1
    assert again.get_statistics()["successful_syncs"] == 1
    assert events[0].event is EventType.INITIALIZED


@pytest.mark.asyncio
async def test_cleanup_drops_entries_and_sessions_past_retention() -> None:
    store = StateStore(MemoryStore({"changelog": [
        {"id": "old", "timestamp": "2020-01-01T00:00:00.000Z", "changes": []},
        {"id": "new", "timestamp": "2024-06-01T00:00:00.000Z", "changes": []},
    ]}))
    orc = make_orc(FakeClient(data={"flickr": []}), store=store, changelog_retention_days=30)
    events = record(orc)
    await orc.initialize()
    sid = await orc.start_sync(["flickr"])
    s = await orc.join(sid, timeout=2)
    s.end_time = "2024-01-01T00:00:00.000Z"

    out = await orc.cleanup_old_data("2024-06-10T00:00:00Z")
    assert out == {"changelog_entries": 1, "sessions": 1}
    assert [e["id"] for e in orc.changelog] == ["new"]
    assert [e["id"] for e in store.load_changelog()] == ["new"]
    assert sid not in orc.sessions
    assert events[-1].event is EventType.CLEANUP_COMPLETED


@pytest.mark.asyncio
async def test_shutdown_cancels_outstanding_sessions() -> None:
    client = FakeClient(data={"a": [photo("a1")]})
    client.gate("a")
    orc = make_orc(client)
    events = record(orc)
    sid = await orc.start_sync(["a"])
    await settle()

    await orc.shutdown(grace=0.5)
    assert orc.get_sync_status(sid).status is SyncStatus.CANCELLED
    assert events[-1].event is EventType.SHUTDOWN


# Events

@pytest.mark.asyncio
async def test_progress_callback_and_queue_receive_events() -> None:
    lines: list[str] = []
    orc = make_orc(FakeClient(data={"flickr": [photo("fl-1")]}), on_progress=lines.append)
    q = orc.events()
    sid = await orc.start_sync(["flickr"])
    await orc.join(sid, timeout=2)

    decoded = [json.loads(x) for x in lines]
    assert decoded[0]["event"] == "sync-started"
    assert decoded[-1]["event"] == "sync-completed"
    assert all(d.get("session_id") == sid for d in decoded)
    assert q.qsize() == len(lines)


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_the_session() -> None:
    orc = make_orc(FakeClient(data={"flickr": [photo("fl-1")]}))

    def bad(_ev: SyncEvent) -> None:
        raise RuntimeError("listener bug")

    orc.subscribe(bad)
    s = await orc.join(await orc.start_sync(["flickr"]), timeout=2)
    assert s.status is SyncStatus.COMPLETED


@pytest.mark.asyncio
async def test_statistics_overview_has_live_counts() -> None:
    orc = make_orc(conflicting_client())
    await orc.join(await orc.start_sync(["google_photos", "flickr"]), timeout=2)
    stats = orc.get_statistics()
    assert stats["active_syncs"] == 1
    assert stats["pending_conflicts"] == 1
    assert stats["queued_syncs"] == 0
    assert stats["changelog_entries"] == 0
    assert stats["total_syncs"] == 0
    assert asyncio.iscoroutinefunction(orc.start_sync)


# Pause around apply

class SlowVersionsStore(MemoryStore):
    """Holds the versions write until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def set(self, key: str, value: Any) -> None:
        if key == VERSIONS_KEY:
            self.entered.set()
            self.release.wait(5)
        super().set(key, value)


async def _wait_persisted(orc: Orchestrator) -> None:
    for _ in range(200):
        if not orc._persist_lock.locked():
            break
        await asyncio.sleep(0.01)
    await settle()


@pytest.mark.asyncio
async def test_pause_while_applying_holds_completion_until_resume() -> None:
    kv = SlowVersionsStore()
    orc = make_orc(conflicting_client(), store=StateStore(kv))
    sid = await orc.start_sync(["google_photos", "flickr"], {"conflict_resolution": "latest_timestamp"})
    assert await asyncio.to_thread(kv.entered.wait, 2)

    s = await orc.pause_sync(sid)
    kv.release.set()
    await _wait_persisted(orc)

    assert s.status is SyncStatus.PAUSED
    assert s.end_time is None
    assert sid in orc.active
    assert "google_photos" not in orc.last_sync

    await orc.resume_sync(sid)
    await orc.join(sid, timeout=2)
    assert s.status is SyncStatus.COMPLETED
    assert s.end_time is not None and s.paused_at is not None
    assert s.end_time >= s.paused_at
    assert len(orc.changelog) == 1


@pytest.mark.asyncio
async def test_pause_while_applying_a_manual_decision_completes_on_resume() -> None:
    kv = SlowVersionsStore()
    orc = make_orc(conflicting_client(), store=StateStore(kv))
    sid = await orc.start_sync(["google_photos", "flickr"])
    s = await orc.join(sid, timeout=2)
    cid = orc.get_pending_conflicts()[0].conflict_id

    resolving = asyncio.create_task(orc.resolve_conflict_manually(cid, {"selected_item_id": "gp-1"}))
    assert await asyncio.to_thread(kv.entered.wait, 2)
    await orc.pause_sync(sid)
    kv.release.set()
    await asyncio.wait_for(resolving, timeout=2)

    assert s.status is SyncStatus.PAUSED
    assert s.end_time is None

    await orc.resume_sync(sid)
    assert s.status is SyncStatus.COMPLETED
    assert s.progress.percentage == 100
    assert len(orc.changelog) == 1
    assert sid not in orc.active


@pytest.mark.asyncio
async def test_keep_both_rejects_a_single_selected_item() -> None:
    orc = make_orc(conflicting_client())
    await orc.join(await orc.start_sync(["google_photos", "flickr"]), timeout=2)
    cid = orc.get_pending_conflicts()[0].conflict_id

    with pytest.raises(ValueError):
        await orc.resolve_conflict_manually(cid, {"strategy": "keep_both", "selected_item_id": "gp-1"})
    assert [p.conflict_id for p in orc.get_pending_conflicts()] == [cid]

    c = await orc.resolve_conflict_manually(cid, {"strategy": "keep_both"})
    assert c.resolution is not None
    assert c.resolution.selected_item is None
    assert {it.id for it in c.resolution.selected_items} == {"gp-1", "fl-1"}


@pytest.mark.asyncio
async def test_named_strategy_without_a_pick_raises_when_it_yields_nothing(monkeypatch: pytest.MonkeyPatch) -> None:
    orc = make_orc(conflicting_client())
    await orc.join(await orc.start_sync(["google_photos", "flickr"]), timeout=2)
    cid = orc.get_pending_conflicts()[0].conflict_id

    monkeypatch.setattr(facade, "_resolve", lambda *_a, **_k: None)
    with pytest.raises(ValueError):
        await orc.resolve_conflict_manually(cid, {"strategy": "largest_size"})
    assert orc.get_pending_conflicts()[0].conflict_id == cid
