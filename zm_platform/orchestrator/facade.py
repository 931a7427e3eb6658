# zm_platform/orchestrator/facade.py
# orchestrator facade: single-flight sync runs over one or more libraries.
from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from _logging import log as _log

from .. import config_base
from ._library import sync_library
from ._lock import ABORT, SYNC_LOCK, AbortFlag, SyncLock
from ._logging import Emitter
from ._progress import ProgressReporter
from ._state_store import StateStore
from ._types import LibraryInfo, LocalStore, RemoteSource, SyncAborted, SyncError

__all__ = ["Orchestrator"]

log = _log.child("SYNC")


class Orchestrator:
    def __init__(
        self,
        config: Mapping[str, Any],
        source: RemoteSource,
        store: LocalStore,
        on_progress: Callable[[str], None] | None = None,
        lock: SyncLock = SYNC_LOCK,
        abort: AbortFlag = ABORT,
        state_path: Path | None = None,
    ) -> None:
        self.cfg: dict[str, Any] = dict(config or {})
        self.source = source
        self.store = store
        self.lock = lock
        self.abort_flag = abort

        rt = dict(self.cfg.get("runtime") or {})
        self.debug = bool(rt.get("debug", False))
        self.batch_size = max(1, int(rt.get("batch_size") or 10))
        self.progress = ProgressReporter(rt.get("progress_weights") or None)

        self.emitter = Emitter(on_progress)
        self.emit = self.emitter.emit
        self.emit_info = self.emitter.info
        self.dbg = lambda *a, **k: self.emitter.dbg(self.debug, *a, **k)

        self.state_store = StateStore(Path(state_path or config_base.CONFIG_BASE()))
        self.dry_run = False

    # Context
    @property
    def context(self) -> Any:
        return SimpleNamespace(
            source=self.source,
            store=self.store,
            state_store=self.state_store,
            progress=self.progress,
            abort=self.abort_flag,
            emit=self.emitter.emit,
            dbg=self.dbg,
            batch_size=self.batch_size,
            dry_run=self.dry_run,
            checkpoint=self._checkpoint,
        )

    def _checkpoint(self) -> None:
        # sync_state.json is for resuming a UI display only
        try:
            self.state_store.update_progress(self.progress.average(), self.progress.snapshot())
        except OSError as e:
            log.warn(f"could not persist progress: {e}")

    def _flush_store(self) -> None:
        flush = getattr(self.store, "flush", None)
        if callable(flush):
            flush()

    # Libraries
    def libraries(self) -> list[LibraryInfo]:
        return list(self.source.libraries())

    def _resolve_libraries(self, wanted: Sequence[str] | None) -> list[LibraryInfo]:
        available = self.libraries()
        by_key = {l.key: l for l in available}
        if wanted:
            return [by_key.get(k) or LibraryInfo(k, k) for k in wanted]

        sync_cfg = dict(self.cfg.get("sync") or {})
        if sync_cfg.get("multiple_libraries"):
            libs = available
        else:
            lib_id = str(sync_cfg.get("library_id") or "").strip()
            if lib_id:
                libs = [by_key.get(lib_id) or LibraryInfo(lib_id, lib_id)]
            else:
                libs = available[:1]
        if not libs:
            raise SyncError("no libraries available")
        return libs

    # Main run
    def run(self, libraries: Sequence[str] | None = None, dry_run: bool = False) -> dict[str, Any]:
        with self.lock.hold() as got:
            if not got:
                log.info("sync already in progress; skipping")
                self.emit("run:skip", reason="busy")
                return {"ok": False, "skipped": True, "reason": "busy"}
            return self._run_locked(libraries, dry_run)

    def _run_locked(self, wanted: Sequence[str] | None, dry_run: bool) -> dict[str, Any]:
        st = self.state_store.load_sync_state()
        if st.get("syncing"):
            # we hold the lock, so nobody else is syncing: left behind by a crashed run
            log.warn("clearing stale syncing flag from an interrupted run")
            self.state_store.clear_syncing()

        self.dry_run = bool(dry_run or (self.cfg.get("sync") or {}).get("dry_run", False))
        results: list[dict[str, Any]] = []
        try:
            try:
                libs = self._resolve_libraries(wanted)
            except Exception as e:
                log.error(f"cannot list libraries: {e}")
                self.emitter.toast(f"Sync failed: {e}", level="error")
                return {"ok": False, "error": str(e), "libraries": []}

            self.progress.reset()
            if not self.dry_run:
                self.state_store.mark_syncing({l.key: l.name for l in libs})
            self.emit("run:start", dry_run=self.dry_run, libraries=[l.key for l in libs])

            for i, lib in enumerate(libs, 1):
                if self.abort_flag.is_set():
                    raise SyncAborted("aborted between libraries")
                self.emit_info(f"[i] Library {i}/{len(libs)}: {lib.name or lib.key}")
                try:
                    res = sync_library(self.context, lib.key, lib.name)
                except SyncAborted:
                    raise
                except Exception as e:
                    log.error(f"{lib.key}: sync failed: {e}")
                    self.emit("library:error", library=lib.key, error=str(e))
                    self.emitter.toast(f"Sync failed for {lib.name or lib.key}: {e}", level="error")
                    res = {"library": lib.key, "name": lib.name or lib.key, "ok": False, "error": str(e)}
                else:
                    self.emit(
                        "library:done",
                        library=lib.key,
                        ops=res.get("ops"),
                        hydrated=res.get("hydrated", 0),
                        errors=res.get("errors", 0),
                    )
                finally:
                    if not self.dry_run:
                        self._flush_store()
                results.append(res)

            ok = all(r.get("ok") for r in results)
            errors = sum(int(r.get("errors") or 0) for r in results)
            self.emit("run:done", ok=ok, libraries=len(results), errors=errors, dry_run=self.dry_run)
            return {
                "ok": ok,
                "dry_run": self.dry_run,
                "errors": errors,
                "progress": self.progress.average(),
                "libraries": results,
            }
        except SyncAborted as e:
            log.warn(f"sync aborted: {e}")
            self.progress.reset()
            self.abort_flag.clear()
            self.emit("run:aborted", reason=str(e))
            self.emitter.toast("Sync aborted", level="warn")
            return {"ok": False, "aborted": True, "libraries": results}
        finally:
            self.dry_run = False
            # a request that arrived after the last checkpoint must not abort the next run
            self.abort_flag.clear()
            if self.state_store.load_sync_state().get("syncing"):
                self.state_store.clear_syncing()

    # Control
    def abort(self) -> bool:
        """Ask the running cycle to stop at its next batch or library boundary. False when idle."""
        if not self.lock.held:
            return False
        self.abort_flag.request()
        return True

    def status(self) -> dict[str, Any]:
        st = self.state_store.load_sync_state()
        st["running"] = self.lock.held
        st["last_sync"] = self.state_store.load_last()
        # only the instance driving the run has live numbers; others report the last checkpoint
        if self.lock.held and self.progress.snapshot():
            st["progress"] = round(self.progress.average(), 4)
        return st
