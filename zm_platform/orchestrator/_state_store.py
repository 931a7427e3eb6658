# zm_platform/orchestrator/_state_store.py
# persisted engine state: shadow snapshots (merge base), last-sync times and the resumable sync flag.
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from collections.abc import Mapping
from typing import Any

from _logging import log as _log

from ..config_base import write_json_atomic
from ._tree import Tree, build

__all__ = ["SHADOW_VERSION", "StateStore", "shadow_filename"]

SHADOW_VERSION = 1

log = _log.child("STATE")


def shadow_filename(library: str) -> str:
    # "user:123" -> "user_123.json"
    safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in str(library))
    return f"{safe}.json"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _empty_sync_state() -> dict[str, Any]:
    return {"syncing": False, "progress": 0.0, "start_time": None, "libraries": {}}


@dataclass
class StateStore:
    base_path: Path

    @property
    def shadow_dir(self) -> Path:
        return self.base_path / "shadow"

    @property
    def last(self) -> Path:
        return self.base_path / "last_sync.json"

    @property
    def sync_state(self) -> Path:
        return self.base_path / "sync_state.json"

    def shadow_path(self, library: str) -> Path:
        return self.shadow_dir / shadow_filename(library)

    def _read(self, p: Path, default: Any) -> Any:
        if not p.exists():
            return default
        try:
            return json.loads(p.read_text("utf-8"))
        except Exception:
            return default

    # --- shadow snapshot ------------------------------------------------------

    def load_shadow(self, library: str) -> Tree | None:
        """Base tree from the last finalized cycle. Missing or unreadable -> None (merge falls back to remote-wins)."""
        p = self.shadow_path(library)
        if not p.exists():
            return None
        try:
            raw = json.loads(p.read_text("utf-8"))
        except Exception as e:
            log.warn(f"shadow snapshot for {library} unreadable, ignoring: {e}")
            return None
        if not isinstance(raw, Mapping) or not isinstance(raw.get("nodes"), list):
            log.warn(f"shadow snapshot for {library} malformed, ignoring")
            return None
        if int(raw.get("version") or 0) != SHADOW_VERSION:
            log.warn(f"shadow snapshot for {library} has version {raw.get('version')!r}, ignoring")
            return None
        tree = build(raw["nodes"])
        for w in tree.warnings:
            log.debug(f"shadow {library}: {w}")
        return tree

    def save_shadow(self, library: str, tree: Tree) -> None:
        write_json_atomic(
            self.shadow_path(library),
            {
                "version": SHADOW_VERSION,
                "timestamp": _now_iso(),
                "library": library,
                "nodes": tree.to_serializable(),
            },
        )

    # --- last sync ------------------------------------------------------------

    def load_last(self) -> dict[str, str]:
        data = self._read(self.last, {})
        return dict(data) if isinstance(data, Mapping) else {}

    def save_last(self, library: str, when: str | None = None) -> str:
        ts = when or _now_iso()
        data = self.load_last()
        data[library] = ts
        write_json_atomic(self.last, data)
        return ts

    # --- sync state -----------------------------------------------------------

    def load_sync_state(self) -> dict[str, Any]:
        data = self._read(self.sync_state, None)
        if not isinstance(data, Mapping):
            return _empty_sync_state()
        out = _empty_sync_state()
        out.update(data)
        if not isinstance(out.get("libraries"), Mapping):
            out["libraries"] = {}
        return out

    def save_sync_state(self, data: Mapping[str, Any]) -> None:
        write_json_atomic(self.sync_state, dict(data))

    def mark_syncing(self, libraries: Mapping[str, str]) -> None:
        self.save_sync_state({
            "syncing": True,
            "progress": 0.0,
            "start_time": int(time.time()),
            "libraries": {k: {"name": n, "progress": 0.0} for k, n in libraries.items()},
        })

    def update_progress(self, progress: float, per_library: Mapping[str, float]) -> None:
        st = self.load_sync_state()
        st["progress"] = round(float(progress), 4)
        libs = dict(st.get("libraries") or {})
        for k, v in per_library.items():
            entry = dict(libs.get(k) or {})
            entry["progress"] = round(float(v), 4)
            libs[k] = entry
        st["libraries"] = libs
        self.save_sync_state(st)

    def clear_syncing(self) -> None:
        st = self.load_sync_state()
        st["syncing"] = False
        st["progress"] = 0.0
        st["start_time"] = None
        self.save_sync_state(st)
