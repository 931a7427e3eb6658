from __future__ import annotations

from fastapi import FastAPI

from .syncAPI import router as sync_router, bind as bind_sync

__all__ = ["register", "create_app", "bind_sync"]


def register(app: FastAPI) -> None:
    app.include_router(sync_router)


def create_app(factory=None) -> FastAPI:
    app = FastAPI(title="ZotMirror", docs_url="/docs", redoc_url=None)
    bind_sync(factory)
    register(app)
    return app
