# cp_platform/orchestrator/_telemetry.py
# aggregate sync statistics for orchestrator.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

COUNTERS: tuple[str, ...] = (
    "total_syncs",
    "successful_syncs",
    "failed_syncs",
    "cancelled_syncs",
    "conflicts_detected",
    "conflicts_resolved",
    "automated_resolutions",
    "manual_resolutions",
    "total_data_transferred",
)


class Stats:
    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = {k: 0 for k in COUNTERS}
        self.data["average_sync_time"] = 0.0
        self.load(data)

    def load(self, data: Mapping[str, Any] | None) -> None:
        for k, v in (data or {}).items():
            if k in COUNTERS:
                try:
                    self.data[k] = int(v)
                except (TypeError, ValueError):
                    continue
            elif k == "average_sync_time":
                try:
                    self.data[k] = float(v)
                except (TypeError, ValueError):
                    continue

    def bump(self, key: str, n: int = 1) -> None:
        self.data[key] = int(self.data.get(key, 0)) + int(n)

    def record_detected(self, n: int) -> None:
        self.bump("conflicts_detected", n)

    def record_resolution(self, *, manual: bool) -> None:
        self.bump("conflicts_resolved")
        self.bump("manual_resolutions" if manual else "automated_resolutions")

    def record_success(self, duration_ms: int | None, transferred: int = 0) -> None:
        self.bump("total_syncs")
        self.bump("successful_syncs")
        self.bump("total_data_transferred", transferred)
        n = int(self.data["successful_syncs"])
        avg = float(self.data.get("average_sync_time") or 0.0)
        # running mean over successful sessions
        self.data["average_sync_time"] = ((avg * (n - 1)) + float(duration_ms or 0)) / n

    def record_failure(self) -> None:
        self.bump("total_syncs")
        self.bump("failed_syncs")

    def record_cancel(self) -> None:
        self.bump("cancelled_syncs")

    def snapshot(self) -> dict[str, Any]:
        return dict(self.data)

    def overview(self, **live: Any) -> dict[str, Any]:
        out = self.snapshot()
        out.update(live)
        return out
