# /crossphoto.py
# CrossPhoto - Photo metadata sync and conflict resolution engine
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Callable

import uvicorn
from fastapi import FastAPI, Request

from _logging import log as _root_log
from api import register as register_api
from cp_platform.config_base import CONFIG_BASE, config_path, load_config, state_dir
from cp_platform.orchestrator import Orchestrator, StateStore
from cp_platform.orchestrator._types import PlatformClient
from providers.client import HttpPlatformClient
from services.scheduling import AutoSyncScheduler

__all__ = ["create_app", "main"]

_log = _root_log.child("main")


def create_app(
    load_config_fn: Callable[[], dict[str, Any]] = load_config,
    *,
    client: PlatformClient | None = None,
    store: StateStore | None = None,
    scheduler: bool = True,
    on_progress: Callable[[str], None] | None = None,
) -> FastAPI:
    cfg = load_config_fn()
    orc = Orchestrator(
        cfg,
        client=client or HttpPlatformClient(cfg),
        store=store or StateStore.at(state_dir(cfg)),
        on_progress=on_progress,
    )
    sched = AutoSyncScheduler(orc, load_config_fn) if scheduler else None

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        await orc.initialize()
        if sched is not None:
            await sched.start()
        try:
            yield
        finally:
            if sched is not None:
                await sched.stop()
            await orc.shutdown()
            close = getattr(orc.client, "close", None)
            if callable(close):
                close()

    app = FastAPI(title="CrossPhoto", lifespan=_lifespan)
    app.state.orchestrator = orc
    app.state.scheduler = sched
    register_api(app)

    @app.middleware("http")
    async def cache_headers_for_api(request: Request, call_next):
        resp = await call_next(request)
        if request.url.path.startswith("/api/"):
            resp.headers["Cache-Control"] = "no-store"
        return resp

    @app.get("/api/scheduling/status")
    async def api_scheduling_status() -> dict[str, Any]:
        if sched is None:
            return {"running": False, "enabled": False}
        return sched.status()

    return app


# Entry point
def main(host: str = "0.0.0.0", port: int = 8788) -> None:
    cfg = load_config()
    debug = bool((cfg.get("runtime") or {}).get("debug"))
    print("\nCrossPhoto Engine running:")
    print(f"  Local:   http://127.0.0.1:{port}")
    print(f"  Bind:    {host}:{port}")
    print(f"  Config:  {config_path()} (JSON)")
    print(f"  State:   {state_dir(cfg)}")
    print(f"  Base:    {CONFIG_BASE()}\n")

    uvicorn.run(
        create_app(),
        host=host,
        port=port,
        log_level=("debug" if debug else "warning"),
        access_log=debug,
    )


if __name__ == "__main__":
    main()
