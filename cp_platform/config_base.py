# cp_platform/config_base.py
# CrossPhoto - configuration base
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict

# ------------------------------------------------------------
# Base dir resolution
# ------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """
    Determine the base directory for config and state files.

    Priority:
      1) $CONFIG_BASE if set
      2) /config (when running in container that mounts /config)
      3) Project root (one level up from this package)
    """
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        return Path("/config")

    return Path(__file__).resolve().parents[1]

# Priority list used by the source_priority strategy (first = most trusted).
SOURCE_PRIORITY: tuple[str, ...] = ("google_photos", "flickr", "facebook", "instagram", "500px")

# Default config structure
DEFAULT_CFG: Dict[str, Any] = {
    # --- Sync engine ---------------------------------------------------------
    "sync": {
        "max_concurrent_syncs": 3,                      # Sessions allowed in SYNCING at once; the rest wait FIFO.
        "conflict_resolution": "manual",                # Default strategy when a session does not pick one.
        "enable_versioning": True,                      # Write VersionRecord entries when changes are applied.
        "changelog_retention_days": 90,                 # Retention window for changelog and finished sessions.
        "full_limit": 10000,                            # Item limit for full collection.
        "incremental_limit": 5000,                      # Item limit for incremental/differential collection.
        "include_metadata": True,                       # Ask platforms for the metadata map.
        "source_priority": list(SOURCE_PRIORITY),       # Order used by source_priority (unlisted sources rank last).
        "event_queue_size": 256,                        # Bound for subscriber queues (oldest dropped when full).
    },

    # --- Auto sync -----------------------------------------------------------
    "auto_sync": {
        "enabled": False,                               # Start incremental syncs on a timer.
        "interval_minutes": 30,                         # Minimum age of a platform's last sync before it is due.
        "platforms": [],                                # Platforms considered by the auto-sync loop.
        "cleanup_interval_hours": 24,                   # Retention sweep cadence.
    },

    # --- Platforms -----------------------------------------------------------
    "platforms": {
        "google_photos": {"base_url": "", "access_token": "", "timeout": 15.0, "max_retries": 3},
        "flickr":        {"base_url": "", "access_token": "", "timeout": 15.0, "max_retries": 3},
        "facebook":      {"base_url": "", "access_token": "", "timeout": 15.0, "max_retries": 3},
        "instagram":     {"base_url": "", "access_token": "", "timeout": 15.0, "max_retries": 3},
        "500px":         {"base_url": "", "access_token": "", "timeout": 15.0, "max_retries": 3},
    },

    # --- Runtime -------------------------------------------------------------
    "runtime": {
        "debug": False,                                 # Verbose [DEBUG] lines and debug events.
        "state_dir": "",                                # Durable state directory; empty = CONFIG_BASE()/.cp_state
    },
}

# Factory presets carried over from the original sync service.
PRESETS: Dict[str, Dict[str, Any]] = {
    "default": {
        "sync": {"conflict_resolution": "latest_timestamp"},
        "auto_sync": {"enabled": True, "interval_minutes": 30},
    },
    "high_frequency": {
        "sync": {"max_concurrent_syncs": 5, "conflict_resolution": "manual"},
        "auto_sync": {"enabled": True, "interval_minutes": 5},
    },
    "batch": {
        "sync": {"max_concurrent_syncs": 10, "conflict_resolution": "source_priority"},
        "auto_sync": {"enabled": False},
    },
}

# ------------------------------------------------------------
# File helpers
# ------------------------------------------------------------
def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"

def config_path() -> Path:
    return _cfg_file()

def state_dir(cfg: Dict[str, Any] | None = None) -> Path:
    rt = dict((cfg or {}).get("runtime") or {})
    raw = str(rt.get("state_dir") or "").strip()
    return Path(raw) if raw else CONFIG_BASE() / ".cp_state"

def _read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, dict) else {}

def _write_json_atomic(p: Path, data: Dict[str, Any]) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, p)

def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[assignment]
        else:
            out[k] = v
    return out

def _normalize_sync_block(sync: Dict[str, Any]) -> Dict[str, Any]:
    s = dict(sync or {})
    try:
        s["max_concurrent_syncs"] = max(1, int(s.get("max_concurrent_syncs") or 1))
    except (TypeError, ValueError):
        s["max_concurrent_syncs"] = DEFAULT_CFG["sync"]["max_concurrent_syncs"]
    s["conflict_resolution"] = str(s.get("conflict_resolution") or "manual").strip().lower()
    prio = s.get("source_priority")
    if isinstance(prio, str):
        prio = [prio]
    s["source_priority"] = [str(x).strip().lower() for x in (prio or []) if str(x).strip()]
    return s

# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config() -> Dict[str, Any]:
    """
    Read config.json and merge it over the defaults
    """
    p = _cfg_file()
    user_cfg: Dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = _read_json(p)
        except (OSError, ValueError):
            user_cfg = {}

    cfg = _deep_merge(DEFAULT_CFG, user_cfg)
    cfg["sync"] = _normalize_sync_block(cfg.get("sync") or {})
    return cfg


def save_config(cfg: Dict[str, Any]) -> None:
    """
    Write config.json
    """
    data = dict(cfg or {})
    if isinstance(data.get("sync"), dict):
        data["sync"] = _normalize_sync_block(data["sync"])
    _write_json_atomic(_cfg_file(), data)


def sync_settings(cfg: Dict[str, Any] | None) -> Dict[str, Any]:
    """The sync block of cfg with defaults filled in and values normalized."""
    merged = _deep_merge(DEFAULT_CFG["sync"], dict((cfg or {}).get("sync") or {}))
    return _normalize_sync_block(merged)


def auto_sync_settings(cfg: Dict[str, Any] | None) -> Dict[str, Any]:
    return _deep_merge(DEFAULT_CFG["auto_sync"], dict((cfg or {}).get("auto_sync") or {}))


def preset_config(name: str, base: Dict[str, Any] | None = None) -> Dict[str, Any]:
    key = str(name or "").strip().lower()
    if key not in PRESETS:
        raise KeyError(f"unknown preset: {name}")
    cfg = _deep_merge(base if base is not None else DEFAULT_CFG, PRESETS[key])
    cfg["sync"] = _normalize_sync_block(cfg.get("sync") or {})
    return cfg
