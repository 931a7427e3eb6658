from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from providers.store._mod_MEMORY import MemoryStore
from zm_platform.orchestrator._lock import AbortFlag, SyncLock
from zm_platform.orchestrator._tree import Node, node_from_collection, node_from_item
from zm_platform.orchestrator._types import LibraryInfo
from zm_platform.orchestrator.facade import Orchestrator

USER = "user:1"
GROUP = "group:7"


@dataclass
class FakeSource:
    raw: dict[str, dict[str, list[dict[str, Any]]]]
    names: dict[str, str] = field(default_factory=dict)
    fail: set[str] = field(default_factory=set)
    on_fetch: Any = None
    fetch_calls: list[str] = field(default_factory=list)

    def libraries(self) -> list[LibraryInfo]:
        return [LibraryInfo(k, self.names.get(k, k)) for k in self.raw]

    def fetch_nodes(self, library: str) -> list[Node]:
        self.fetch_calls.append(library)
        if self.on_fetch:
            self.on_fetch(library)
        if library in self.fail:
            raise ConnectionError(f"{library} unreachable")
        data = self.raw[library]
        return [node_from_collection(library, c) for c in data.get("collections", [])] + [
            node_from_item(library, i) for i in data.get("items", [])
        ]


def c(key: str, name: str, parent: str | bool = False) -> dict[str, Any]:
    return {"key": key, "version": 1, "data": {"key": key, "name": name, "parentCollection": parent}}


def i(key: str, title: str, *colls: str, **extra: Any) -> dict[str, Any]:
    return {"key": key, "version": 1, "data": {"key": key, "itemType": "book", "title": title, "collections": list(colls), **extra}}


def library() -> dict[str, list[dict[str, Any]]]:
    return {
        "collections": [c("C1", "Reading"), c("C2", "Archive"), c("S1", "Sub", "C1")],
        "items": [
            i("I1", "Dune", "S1", abstractNote="desert", tags=[{"tag": "scifi"}]),
            i("I2", "Emma", "C2"),
            {"key": "N1", "version": 1, "data": {"key": "N1", "itemType": "note", "parentItem": "I1", "note": "<p>spice</p>"}},
        ],
    }


@pytest.fixture()
def events() -> list[dict[str, Any]]:
    return []


def make(config_base: Path, source: FakeSource, store: MemoryStore, events: list, **cfg: Any) -> Orchestrator:
    config = {"runtime": {"batch_size": 3}, "sync": {"multiple_libraries": True, **cfg}}
    return Orchestrator(
        config,
        source,
        store,
        on_progress=lambda line: events.append(json.loads(line)) if line.startswith("{") else None,
        lock=SyncLock(),
        abort=AbortFlag(),
        state_path=config_base,
    )


def _rec(store: MemoryStore, key: str) -> dict[str, Any]:
    lib = key.rpartition(":")[0]
    return store.get_record(store.find_by_key(lib, key))


def _parent(store: MemoryStore, key: str) -> str | None:
    lib = key.rpartition(":")[0]
    p = store.get_parent(store.find_by_key(lib, key))
    return store.key_of(p) if p else None


def test_first_sync_mirrors_the_library(config_base: Path, store: MemoryStore, events: list) -> None:
    orc = make(config_base, FakeSource({USER: library()}), store, events)
    res = orc.run()

    assert res["ok"] is True
    lib = res["libraries"][0]
    assert lib["ops"]["create"] == 6 and lib["hydrated"] == 3 and lib["errors"] == 0
    assert _parent(store, "user:1:S1") == "user:1:C1"
    assert _parent(store, "user:1:I1") == "user:1:S1"
    assert _parent(store, "user:1:N1") == "user:1:I1"
    assert _rec(store, "user:1:I1")["payload"]["abstractNote"] == "desert"
    assert store.get_label(store.find_by_key(USER, "user:1:N1")) == "spice"

    assert (config_base / "shadow" / "user_1.json").exists()
    assert USER in orc.status()["last_sync"]
    names = [e["event"] for e in events]
    assert names[0] == "run:start" and names[-1] == "run:done"
    assert "library:done" in names
    assert orc.progress.get(USER) == pytest.approx(1.0)


def test_second_identical_sync_is_a_noop(config_base: Path, store: MemoryStore, events: list) -> None:
    orc = make(config_base, FakeSource({USER: library()}), store, events)
    orc.run()
    res = orc.run()
    assert sum(res["libraries"][0]["ops"].values()) == 0


def test_local_annotations_survive_remote_updates(config_base: Path, store: MemoryStore, events: list) -> None:
    remote = library()
    orc = make(config_base, FakeSource({USER: remote}), store, events)
    orc.run()

    # user edits the mirror
    h = store.find_by_key(USER, "user:1:I1")
    rec = store.get_record(h)
    rec["payload"]["abstractNote"] = "my reading notes"
    rec["payload"]["tags"] = [{"tag": "scifi"}, {"tag": "to-read"}]
    store.set_record(h, rec)

    # remote retitles the book and adds a tag
    remote["items"][0]["data"]["title"] = "Dune (1965)"
    remote["items"][0]["data"]["tags"] = [{"tag": "scifi"}, {"tag": "classic"}]
    res = orc.run()

    assert res["ok"]
    payload = _rec(store, "user:1:I1")["payload"]
    assert payload["title"] == "Dune (1965)"
    assert payload["abstractNote"] == "my reading notes"
    assert payload["tags"] == [{"tag": "scifi"}, {"tag": "classic"}, {"tag": "to-read"}]
    assert store.get_label(h) == "Dune (1965)"


def test_moves_and_deletes_follow_remote(config_base: Path, store: MemoryStore, events: list) -> None:
    remote = library()
    orc = make(config_base, FakeSource({USER: remote}), store, events)
    orc.run()

    remote["items"][1]["data"]["collections"] = ["C1"]           # I2: C2 -> C1
    remote["collections"] = [c("C1", "Reading"), c("S1", "Sub", "C1")]  # C2 removed
    remote["items"] = [it for it in remote["items"] if it["key"] != "N1"]
    res = orc.run()

    ops = res["libraries"][0]["ops"]
    assert ops == {"create": 0, "update": 0, "move": 1, "delete": 2}
    assert _parent(store, "user:1:I2") == "user:1:C1"
    assert store.find_by_key(USER, "user:1:C2") is None
    assert store.find_by_key(USER, "user:1:N1") is None


def test_dry_run_touches_nothing(config_base: Path, store: MemoryStore, events: list) -> None:
    orc = make(config_base, FakeSource({USER: library()}), store, events)
    res = orc.run(dry_run=True)

    assert res["ok"] and res["dry_run"]
    assert res["libraries"][0]["ops"]["create"] == 6
    assert len(store) == 0
    assert not (config_base / "shadow").exists()


def test_busy_lock_skips(config_base: Path, store: MemoryStore, events: list) -> None:
    orc = make(config_base, FakeSource({USER: library()}), store, events)
    assert orc.lock.try_acquire()
    try:
        assert orc.run() == {"ok": False, "skipped": True, "reason": "busy"}
    finally:
        orc.lock.release()
    assert orc.run()["ok"]


def test_abort_resets_progress_and_clears_flag(config_base: Path, store: MemoryStore, events: list) -> None:
    src = FakeSource({USER: library(), GROUP: library()})
    orc = make(config_base, src, store, events)
    src.on_fetch = lambda lib: orc.abort()

    res = orc.run()
    assert res["aborted"] is True
    assert orc.progress.snapshot() == {}
    assert not orc.abort_flag.is_set()
    assert not orc.lock.held
    assert orc.state_store.load_sync_state()["syncing"] is False
    assert src.fetch_calls == [USER]
    assert not (config_base / "shadow" / "user_1.json").exists()
    assert "run:aborted" in [e["event"] for e in events]

    # the next run is not pre-aborted
    src.on_fetch = None
    assert orc.run()["ok"]


def test_failed_library_does_not_stop_the_others(config_base: Path, store: MemoryStore, events: list) -> None:
    src = FakeSource({USER: library(), GROUP: library()}, fail={GROUP})
    orc = make(config_base, src, store, events)
    res = orc.run()

    assert res["ok"] is False
    by_lib = {r["library"]: r for r in res["libraries"]}
    assert by_lib[USER]["ok"] and not by_lib[GROUP]["ok"]
    assert "unreachable" in by_lib[GROUP]["error"]
    assert not (config_base / "shadow" / "group_7.json").exists()
    toasts = [e for e in events if e["event"] == "toast"]
    assert toasts and toasts[0]["level"] == "error"


def test_library_selection(config_base: Path, store: MemoryStore, events: list) -> None:
    src = FakeSource({USER: library(), GROUP: library()})
    make(config_base, src, store, events, multiple_libraries=False).run()
    assert src.fetch_calls == [USER]

    src.fetch_calls.clear()
    make(config_base, src, store, events, multiple_libraries=False, library_id=GROUP).run()
    assert src.fetch_calls == [GROUP]

    src.fetch_calls.clear()
    make(config_base, src, store, events).run(libraries=[GROUP])
    assert src.fetch_calls == [GROUP]


def test_stale_syncing_flag_is_cleared(config_base: Path, store: MemoryStore, events: list) -> None:
    (config_base / "sync_state.json").write_text(
        json.dumps({"syncing": True, "progress": 0.4, "start_time": 1, "libraries": {}}), "utf-8"
    )
    orc = make(config_base, FakeSource({USER: library()}), store, events)
    assert orc.run()["ok"]
    assert orc.status()["syncing"] is False


def test_corrupt_shadow_degrades_to_remote_wins(config_base: Path, store: MemoryStore, events: list) -> None:
    remote = library()
    orc = make(config_base, FakeSource({USER: remote}), store, events)
    orc.run()

    h = store.find_by_key(USER, "user:1:I1")
    rec = store.get_record(h)
    rec["payload"]["abstractNote"] = "local"
    store.set_record(h, rec)
    (config_base / "shadow" / "user_1.json").write_text("garbage", "utf-8")

    res = orc.run()
    assert res["ok"] and res["libraries"][0]["has_base"] is False
    assert _rec(store, "user:1:I1")["payload"]["abstractNote"] == "desert"


def test_abort_when_idle_is_refused(config_base: Path, store: MemoryStore, events: list) -> None:
    orc = make(config_base, FakeSource({USER: library()}), store, events)
    assert orc.abort() is False
    assert not orc.abort_flag.is_set()


def test_debug_events_only_when_enabled(config_base: Path, store: MemoryStore, events: list) -> None:
    make(config_base, FakeSource({USER: library()}), store, events).run()
    assert "debug" not in [e["event"] for e in events]

    seen: list[dict[str, Any]] = []
    orc = Orchestrator(
        {"runtime": {"debug": True}},
        FakeSource({GROUP: library()}),
        MemoryStore(),
        on_progress=lambda line: seen.append(json.loads(line)) if line.startswith("{") else None,
        lock=SyncLock(),
        abort=AbortFlag(),
        state_path=config_base,
    )
    orc.run()
    dbg = [e for e in seen if e["event"] == "debug"]
    assert dbg and dbg[0]["library"] == GROUP
