from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api import syncAPI
from providers.store._mod_MEMORY import MemoryStore
from zm_platform.orchestrator._lock import AbortFlag, SyncLock
from zm_platform.orchestrator._tree import Node
from zm_platform.orchestrator._types import LibraryInfo
from zm_platform.orchestrator.facade import Orchestrator


class OneItemSource:
    def libraries(self) -> list[LibraryInfo]:
        return [LibraryInfo("user:1", "Mine")]

    def fetch_nodes(self, library: str) -> list[Node]:
        return [Node.from_mapping({"key": f"{library}:I1", "kind": "item", "payload": {"title": "Only"}})]


@pytest.fixture()
def client(config_base: Path):
    store = MemoryStore()
    lock, abort = SyncLock(), AbortFlag()

    def factory(on_progress: Any = None) -> Orchestrator:
        return Orchestrator({}, OneItemSource(), store, on_progress=on_progress, lock=lock, abort=abort, state_path=config_base)

    syncAPI.bind(factory)
    app = FastAPI()
    app.include_router(syncAPI.router)
    yield TestClient(app), lock, store
    syncAPI.wait_for_run(5)
    syncAPI.bind(None)


def test_run_then_status(client) -> None:
    c, _, store = client
    r = c.post("/api/sync/run", json={"dry_run": False})
    assert r.status_code == 200 and r.json()["started"] is True

    result = syncAPI.wait_for_run(5)
    assert result and result["ok"] is True
    assert store.find_by_key("user:1", "user:1:I1") is not None

    st = c.get("/api/sync/status").json()
    assert st["running"] is False
    assert st["syncing"] is False
    assert "user:1" in st["last_sync"]
    assert st["last_result"]["ok"] is True

    log = c.get("/api/sync/log").json()["lines"]
    assert any('"event":"run:done"' in line for line in log)


def test_run_without_body_uses_defaults(client) -> None:
    c, _, _ = client
    assert c.post("/api/sync/run").status_code == 200
    assert syncAPI.wait_for_run(5)["dry_run"] is False


def test_run_while_busy_is_409(client) -> None:
    c, lock, _ = client
    assert lock.try_acquire()
    try:
        r = c.post("/api/sync/run", json={})
        assert r.status_code == 409
    finally:
        lock.release()


def test_abort_when_idle(client) -> None:
    c, _, _ = client
    r = c.post("/api/sync/abort")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "requested": False}


def test_unbound_engine_is_503() -> None:
    syncAPI.bind(None)
    app = FastAPI()
    app.include_router(syncAPI.router)
    assert TestClient(app).get("/api/sync/status").status_code == 503
