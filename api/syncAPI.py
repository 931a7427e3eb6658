# api/syncAPI.py
# ZotMirror - sync control API: status, run, abort and the recent event log
from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Callable

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from _logging import log as _log

__all__ = ["router", "bind", "RunIn", "wait_for_run", "LOG_BUFFER"]

router = APIRouter(prefix="/api", tags=["synchronization"])

log = _log.child("API")

# factory(on_progress) -> Orchestrator
OrchestratorFactory = Callable[[Callable[[str], None] | None], Any]

_FACTORY: OrchestratorFactory | None = None
_RUN_LOCK = threading.Lock()
_RUN: dict[str, Any] = {"thread": None, "result": None, "started_at": None, "finished_at": None}

LOG_BUFFER: deque[str] = deque(maxlen=500)


class RunIn(BaseModel):
    libraries: list[str] | None = None
    dry_run: bool = False


def bind(factory: OrchestratorFactory | None) -> None:
    global _FACTORY
    _FACTORY = factory


def _append_log(line: str) -> None:
    LOG_BUFFER.append(line)


def _orc() -> Any | None:
    return _FACTORY(_append_log) if _FACTORY else None


def _is_sync_running() -> bool:
    t = _RUN.get("thread")
    return bool(t and t.is_alive())


def wait_for_run(timeout: float | None = None) -> dict[str, Any] | None:
    t = _RUN.get("thread")
    if t is not None:
        t.join(timeout)
    return _RUN.get("result")


def _run_thread(orc: Any, libraries: list[str] | None, dry_run: bool) -> None:
    try:
        _RUN["result"] = orc.run(libraries=libraries, dry_run=dry_run)
    except Exception as e:
        log.error(f"sync run crashed: {e}")
        _append_log(f"[!] sync crashed: {e}")
        _RUN["result"] = {"ok": False, "error": str(e)}
    finally:
        _RUN["finished_at"] = int(time.time())


def _not_bound() -> JSONResponse:
    return JSONResponse({"ok": False, "error": "sync engine not configured"}, status_code=503)


@router.get("/sync/status")
def api_sync_status() -> Any:
    orc = _orc()
    if orc is None:
        return _not_bound()
    st = orc.status()
    st["running"] = bool(st.get("running")) or _is_sync_running()
    st["last_result"] = _RUN.get("result")
    return st


@router.post("/sync/run")
def api_sync_run(payload: RunIn | None = Body(None)) -> Any:
    body = payload or RunIn()
    orc = _orc()
    if orc is None:
        return _not_bound()
    with _RUN_LOCK:
        if _is_sync_running() or orc.lock.held:
            return JSONResponse({"ok": False, "error": "Sync already running"}, status_code=409)
        LOG_BUFFER.clear()
        _RUN.update(result=None, started_at=int(time.time()), finished_at=None)
        th = threading.Thread(
            target=_run_thread,
            args=(orc, body.libraries, body.dry_run),
            name="zm-sync",
            daemon=True,
        )
        _RUN["thread"] = th
        th.start()
    return {"ok": True, "started": True, "dry_run": body.dry_run, "libraries": body.libraries}


@router.post("/sync/abort")
def api_sync_abort() -> Any:
    orc = _orc()
    if orc is None:
        return _not_bound()
    requested = orc.abort()
    return {"ok": True, "requested": requested}


@router.get("/sync/log")
def api_sync_log(tail: int = 200) -> dict[str, Any]:
    lines = list(LOG_BUFFER)
    n = max(0, int(tail))
    return {"lines": lines[-n:] if n else []}
