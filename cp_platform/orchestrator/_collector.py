# cp_platform/orchestrator/_collector.py
# collect phase: per-platform fetch with full/incremental/differential modes.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from _logging import log as _root_log

from ..id_map import now_iso, version as compute_version
from ._logging import Emitter
from ._types import EventType, Item, PlatformClient, SyncSession, SyncType

__all__ = ["EPOCH", "collect", "collect_platform", "fetch_mode"]

EPOCH = "1970-01-01T00:00:00.000Z"

_log = _root_log.child("collect")


def fetch_mode(session: SyncSession) -> str:
    if session.config.force_full or session.type is SyncType.FULL:
        return "full"
    if session.type is SyncType.DIFFERENTIAL:
        return "differential"
    return "incremental"


def _coerce(raw: Any, platform: str) -> Item:
    if isinstance(raw, Item):
        return raw
    if isinstance(raw, Mapping):
        return Item.from_mapping(raw, source=platform)
    raise TypeError(f"unexpected item payload from {platform}: {type(raw).__name__}")


async def collect_platform(
    session: SyncSession,
    platform: str,
    *,
    client: PlatformClient,
    last_sync: Mapping[str, str],
    versions: Mapping[str, Mapping[str, Any]],
    sync_cfg: Mapping[str, Any],
) -> list[Item]:
    mode = fetch_mode(session)
    include_md = bool(sync_cfg.get("include_metadata", True))
    if mode == "full":
        raw = await client.fetch_items(
            platform,
            limit=int(sync_cfg.get("full_limit") or 10000),
            include_metadata=include_md,
        )
    else:
        raw = await client.fetch_items(
            platform,
            since=last_sync.get(platform) or EPOCH,
            limit=int(sync_cfg.get("incremental_limit") or 5000),
            include_metadata=include_md,
        )

    # one instant per fetch so items of the same batch share a version timestamp
    now = now_iso()
    items: list[Item] = []
    for r in raw or ():
        it = _coerce(r, platform)
        items.append(it.with_version(compute_version(it, now)))

    if mode == "differential":
        before = len(items)
        items = [
            it for it in items
            if (versions.get(it.id) or {}).get("hash") != (it.version.hash if it.version else None)
        ]
        _log.debug(f"{platform}: differential kept {len(items)}/{before}")
    return items


async def collect(
    session: SyncSession,
    *,
    client: PlatformClient,
    last_sync: Mapping[str, str],
    versions: Mapping[str, Mapping[str, Any]],
    sync_cfg: Mapping[str, Any],
    emitter: Emitter,
) -> dict[str, list[Item]]:
    """
    Fetch every platform of the session in order.

    A failing platform contributes nothing; its error lands in stats.errors
    and the remaining platforms still run. Results arriving after the
    session went terminal are dropped.
    """
    out: dict[str, list[Item]] = {}
    for platform in session.platforms:
        if session.status.terminal:
            break
        emitter.emit(EventType.SYNC_PROGRESS, session_id=session.id, phase="collecting", platform=platform)
        try:
            items = await collect_platform(
                session, platform,
                client=client, last_sync=last_sync, versions=versions, sync_cfg=sync_cfg,
            )
        except Exception as e:
            out[platform] = []
            err = session.record_error("collect", str(e), platform=platform)
            _log.warn(f"[{session.id[:8]}] {platform}: collection failed: {e}")
            emitter.emit(EventType.ERROR, session_id=session.id, **err)
            continue
        if session.status.terminal:
            break
        out[platform] = items
        session.collected_ok.add(platform)
        session.stats.data_transferred += sum(int(it.size or 0) for it in items)
        _log.info(f"[{session.id[:8]}] {platform}: {len(items)} item(s) ({fetch_mode(session)})")
    return out
