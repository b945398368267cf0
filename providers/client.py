# /providers/client.py
# CrossPhoto HTTP platform client (fetchItems over a per-platform REST endpoint)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import asyncio
import threading
from typing import Any, Mapping

import requests

from _logging import log as _root_log
from cp_platform.models import Item

from ._common import PlatformError, build_session, parse_rate_limit, request_with_retries, safe_json

__all__ = ["HttpPlatformClient"]

_log = _root_log.child("platform")

_PAGE_KEYS = ("next_page_token", "nextPageToken", "next_cursor", "cursor")


def _cfg_platforms(cfg: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    raw = cfg.get("platforms") or {}
    return {str(k).strip().lower(): dict(v or {}) for k, v in raw.items() if isinstance(v, Mapping)}


def _items_of(payload: Any) -> tuple[list[Any], str | None]:
    if isinstance(payload, list):
        return payload, None
    if not isinstance(payload, Mapping):
        return [], None
    items = payload.get("items") or payload.get("photos") or payload.get("data") or []
    token = next((str(payload[k]) for k in _PAGE_KEYS if payload.get(k)), None)
    return (list(items) if isinstance(items, list) else []), token


class HttpPlatformClient:
    """
    GET {base_url}/photos with since/limit/include_metadata query params.

    Each platform keeps its own requests.Session; calls run in a worker
    thread so the event loop only sees an awaitable.
    """

    def __init__(self, config: Mapping[str, Any], *, session_factory=build_session):
        self.platforms = _cfg_platforms(config or {})
        self._session_factory = session_factory
        self._sessions: dict[str, requests.Session] = {}
        self._lock = threading.Lock()
        self.rate: dict[str, dict[str, int | None]] = {}

    def _settings(self, platform: str) -> dict[str, Any]:
        p = self.platforms.get(platform)
        if p is None:
            raise PlatformError(platform, "platform is not configured")
        if not str(p.get("base_url") or "").strip():
            raise PlatformError(platform, "missing base_url")
        return p

    def _session(self, platform: str, token: str | None) -> requests.Session:
        with self._lock:
            s = self._sessions.get(platform)
            if s is None:
                s = self._sessions[platform] = self._session_factory(token)
            return s

    def fetch_items_sync(
        self,
        platform: str,
        *,
        since: str | None = None,
        limit: int = 5000,
        include_metadata: bool = True,
    ) -> list[Item]:
        name = str(platform).strip().lower()
        cfg = self._settings(name)
        url = str(cfg["base_url"]).rstrip("/") + "/photos"
        sess = self._session(name, str(cfg.get("access_token") or "") or None)

        out: list[Item] = []
        page: str | None = None
        while len(out) < limit:
            params: dict[str, Any] = {
                "limit": int(limit) - len(out),
                "include_metadata": "true" if include_metadata else "false",
            }
            if since:
                params["since"] = since
            if page:
                params["page_token"] = page
            try:
                resp = request_with_retries(
                    sess, "GET", url,
                    params=params,
                    timeout=float(cfg.get("timeout") or 15.0),
                    max_retries=int(cfg.get("max_retries") or 3),
                )
            except requests.RequestException as e:
                raise PlatformError(name, str(e)) from e
            self.rate[name] = parse_rate_limit(resp.headers)
            if not resp.ok:
                raise PlatformError(name, f"HTTP {resp.status_code}", status=resp.status_code)

            rows, page = _items_of(safe_json(resp))
            for r in rows:
                if isinstance(r, Mapping) and r.get("id") is not None:
                    out.append(Item.from_mapping(r, source=name))
            if not page or not rows:
                break

        _log.debug(f"{name}: fetched {len(out)} item(s) since={since or '-'}")
        return out[:limit]

    async def fetch_items(
        self,
        platform: str,
        *,
        since: str | None = None,
        limit: int = 5000,
        include_metadata: bool = True,
    ) -> list[Item]:
        return await asyncio.to_thread(
            self.fetch_items_sync,
            platform,
            since=since,
            limit=limit,
            include_metadata=include_metadata,
        )

    def close(self) -> None:
        with self._lock:
            for s in self._sessions.values():
                s.close()
            self._sessions.clear()
