from __future__ import annotations

from pathlib import Path

import pytest

from providers.store._mod_JSONFILE import JSONFileStore
from providers.store._mod_MEMORY import MemoryStore, StoreError

LIB = "user:1"


def _node(store: MemoryStore, key: str, kind: str = "item", parent: str | None = None) -> str:
    h = store.create_handle(LIB, key, kind)
    store.set_record(h, {"key": key, "kind": kind, "payload": {"title": key}})
    store.set_label(h, key)
    store.set_parent(h, parent)
    return h


def test_records_reflect_physical_parent(store: MemoryStore) -> None:
    c = _node(store, "user:1:C", "collection")
    _node(store, "user:1:I", parent=c)
    _node(store, "user:1:U", parent=store.default_container(LIB))

    recs = {r["key"]: r for r in store.records(LIB)}
    assert recs["user:1:I"]["parent_keys"] == ["user:1:C"]
    assert recs["user:1:U"]["parent_keys"] == []
    assert recs["user:1:C"]["parent_keys"] == []
    assert store.records("group:9") == []


def test_remove_takes_the_subtree(store: MemoryStore) -> None:
    c = _node(store, "user:1:C", "collection")
    s = _node(store, "user:1:S", "collection", parent=c)
    _node(store, "user:1:I", parent=s)

    store.remove(c)
    assert store.find_by_key(LIB, "user:1:S") is None
    assert store.find_by_key(LIB, "user:1:I") is None
    assert store.records(LIB) == []
    store.remove(c)  # already gone


def test_set_parent_refuses_cycles(store: MemoryStore) -> None:
    a = _node(store, "user:1:A", "collection")
    b = _node(store, "user:1:B", "collection", parent=a)
    with pytest.raises(StoreError):
        store.set_parent(a, b)


def test_create_handle_reuses_existing_key(store: MemoryStore) -> None:
    h1 = store.create_handle(LIB, "user:1:I", "item")
    assert store.create_handle(LIB, "user:1:I", "note") == h1


def test_records_are_copies(store: MemoryStore) -> None:
    h = _node(store, "user:1:I")
    rec = store.get_record(h)
    rec["payload"]["title"] = "changed"
    assert store.get_record(h)["payload"]["title"] == "user:1:I"


def test_json_file_store_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "mirror.json"
    s1 = JSONFileStore(path)
    c = _node(s1, "user:1:C", "collection")
    _node(s1, "user:1:I", parent=c)
    _node(s1, "user:1:U", parent=s1.default_container(LIB))
    s1.flush()

    s2 = JSONFileStore(path)
    assert sorted(r["key"] for r in s2.records(LIB)) == ["user:1:C", "user:1:I", "user:1:U"]
    assert s2.default_container(LIB) == s1.default_container(LIB)
    assert s2.outline(LIB) == s1.outline(LIB)
    # new handles never collide with loaded ones
    h = s2.create_handle(LIB, "user:1:new", "item")
    assert h not in {c, s1.find_by_key(LIB, "user:1:I")}


def test_json_file_store_rejects_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "mirror.json"
    path.write_text("{oops", "utf-8")
    with pytest.raises(StoreError):
        JSONFileStore(path)
