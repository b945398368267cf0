# /cp_platform/id_map.py
# Identity and version hashing for photo items.
# - Cross-source identity key from (filename, size, createdAt, cameraMake, cameraModel).
# - Version fingerprint {hash, timestamp, size} from the descriptive fields.
# - Metadata hash used by the conflict detectors.
# - Minimal projection for logs/events/changelog.
# - Timestamp helpers shared by detectors and strategies.

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from .models import Item, Version

# Order matters: the identity tuple is built in this order.
IDENTITY_FACTORS: Tuple[str, ...] = ("filename", "size", "created_at", "camera_make", "camera_model")

__all__ = [
    "IDENTITY_FACTORS",
    "identity", "identity_factors", "version", "metadata_hash",
    "minimal", "ts_epoch", "item_timestamp", "now_iso",
]

# --- tiny utils ---------------------------------------------------------------

def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()

def _canon_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def ts_epoch(s: Any) -> Optional[float]:
    """ISO-8601 string, epoch seconds or epoch millis -> epoch seconds."""
    if s is None:
        return None
    if isinstance(s, datetime):
        dt = s if s.tzinfo else s.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    if isinstance(s, (int, float)) and not isinstance(s, bool):
        return float(s) / 1000.0 if s >= 1e12 else float(s)
    t = str(s).strip()
    if not t:
        return None
    if t.isdigit():
        n = int(t)
        return n / 1000.0 if len(t) >= 13 else float(n)
    try:
        dt = datetime.fromisoformat(t.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()

def item_timestamp(item: Item) -> Optional[float]:
    """lastModified ?? createdAt, as epoch seconds."""
    return ts_epoch(item.last_modified if item.last_modified else item.created_at)

# --- identity -----------------------------------------------------------------

def identity_factors(item: Item) -> Tuple[str, ...]:
    """Present identity factors in fixed order; absent or empty ones are dropped, not padded."""
    md = item.metadata or {}
    raw = (
        item.filename,
        item.size,
        item.created_at,
        md.get("cameraMake", md.get("camera_make")),
        md.get("cameraModel", md.get("camera_model")),
    )
    return tuple(str(v) for v in raw if v not in (None, "", 0, False))

def identity(item: Item) -> str:
    """Cross-source correlation key. Same present factors -> same key."""
    return _sha256("|".join(identity_factors(item)))

# --- version ------------------------------------------------------------------

def version(item: Item, now: Optional[str] = None) -> Version:
    """
    Content/version fingerprint over (id, url, metadata, lastModified ?? createdAt).
    timestamp is wall-clock at computation time unless `now` is given
    (the collector passes one instant per platform fetch).
    """
    payload = {
        "id": item.id,
        "url": item.url,
        "metadata": dict(item.metadata or {}),
        "lastModified": item.last_modified or item.created_at,
    }
    return Version(
        hash=_sha256(_canon_json(payload)),
        timestamp=now or now_iso(),
        size=int(item.size or 0),
    )

def metadata_hash(item: Item) -> str:
    return _sha256(_canon_json(dict(item.metadata or {})))

# --- Minimal projection (for logs/events/changelog) ---------------------------

def minimal(item: Item | Mapping[str, Any]) -> Dict[str, Any]:
    if isinstance(item, Mapping):
        item = Item.from_mapping(item)
    out: Dict[str, Any] = {
        "id": item.id,
        "source": item.source,
        "filename": item.filename,
        "size": item.size,
    }
    ts = item.last_modified or item.created_at
    if ts:
        out["timestamp"] = ts
    if item.version is not None:
        out["version"] = item.version.hash[:12]
    return out
