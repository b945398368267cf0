# /providers/_common.py
# CrossPhoto common platform HTTP helpers
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
import time
from typing import Any, Mapping

import requests

__VERSION__ = "0.1.0"
__all__ = [
    "PlatformError",
    "build_session",
    "parse_rate_limit",
    "safe_json",
    "request_with_retries",
]

USER_AGENT = "CrossPhoto/0.1"


class PlatformError(RuntimeError):
    def __init__(self, platform: str, message: str, *, status: int | None = None):
        super().__init__(f"{platform}: {message}")
        self.platform = platform
        self.status = status


def build_session(access_token: str | None = None) -> requests.Session:
    s = requests.Session()
    s.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
    if access_token:
        s.headers["Authorization"] = f"Bearer {access_token}"
    return s


def parse_rate_limit(h: Mapping[str, Any]) -> dict[str, int | None]:
    def _i(x: Any) -> int | None:
        try:
            return int(x)
        except (TypeError, ValueError):
            return None

    return {
        "limit": _i(h.get("X-RateLimit-Limit") or h.get("RateLimit-Limit")),
        "remaining": _i(h.get("X-RateLimit-Remaining") or h.get("RateLimit-Remaining")),
        "reset": _i(h.get("X-RateLimit-Reset") or h.get("RateLimit-Reset")),
    }


def safe_json(resp: requests.Response) -> Any:
    try:
        if not (resp.text or "").strip():
            return {}
        ctype = (resp.headers.get("Content-Type") or "").lower()
        if "json" in ctype:
            return resp.json()
        return json.loads(resp.text)
    except ValueError:
        return {}


def request_with_retries(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float = 10.0,
    max_retries: int = 3,
    retry_on: tuple[int, ...] = (429, 500, 502, 503, 504),
    backoff_base: float = 0.5,
    **kwargs: Any,
) -> requests.Response:
    last: Any = None
    attempts = max(1, int(max_retries))
    for i in range(attempts):
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            last = e
            if i < attempts - 1:
                time.sleep(backoff_base * (2**i))
                continue
            break
        if resp.status_code in retry_on and i < attempts - 1:
            wait = backoff_base * (2**i)
            if resp.status_code == 429:
                ra = resp.headers.get("Retry-After")
                try:
                    if ra:
                        wait = max(wait, float(ra))
                except ValueError:
                    pass
            time.sleep(wait)
            last = resp
            continue
        return resp
    if isinstance(last, requests.Response):
        return last
    raise requests.RequestException(f"request failed after retries: {method} {url}") from last
