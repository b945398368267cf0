from __future__ import annotations

from fastapi import FastAPI

from .syncAPI import router as sync_router

__all__ = ["sync_router", "register"]


def register(app: FastAPI) -> None:
    app.include_router(sync_router)
