# CrossPhoto test scripts
from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from cp_platform.models import Item  # noqa: E402


@pytest.fixture()
def config_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
    return tmp_path


def photo(item_id: str, **kw: Any) -> dict[str, Any]:
    """A platform payload for the same logical photo unless overridden."""
    base: dict[str, Any] = {
        "id": item_id,
        "filename": "IMG_0001.jpg",
        "size": 2_048_000,
        "createdAt": "2024-05-01T10:00:00Z",
        "url": f"https://cdn.example/{item_id}",
        "metadata": {},
    }
    base.update(kw)
    return base


@dataclass
class FakeClient:
    data: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    gates: dict[str, asyncio.Event] = field(default_factory=dict)
    failures: dict[str, Exception] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def gate(self, platform: str) -> asyncio.Event:
        ev = self.gates.setdefault(platform, asyncio.Event())
        return ev

    async def fetch_items(
        self,
        platform: str,
        *,
        since: str | None = None,
        limit: int = 5000,
        include_metadata: bool = True,
    ) -> list[Item]:
        self.calls.append((platform, {"since": since, "limit": limit, "include_metadata": include_metadata}))
        gate = self.gates.get(platform)
        if gate is not None:
            await gate.wait()
        if platform in self.failures:
            raise self.failures[platform]
        return [Item.from_mapping(x, source=platform) for x in self.data.get(platform, [])]


async def settle(rounds: int = 25) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def fake_client() -> FakeClient:
    return FakeClient()
