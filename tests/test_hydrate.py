from __future__ import annotations

from typing import Any

from providers.store._mod_MEMORY import MemoryStore
from zm_platform.orchestrator._applier import node_record
from zm_platform.orchestrator._hydrate import Hydrator, local_payload
from zm_platform.orchestrator._payload import Payload
from zm_platform.orchestrator._tree import Node, build
from zm_platform.orchestrator._types import TouchedNode

LIB = "user:1"


def gk(native: str) -> str:
    return f"{LIB}:{native}"


def leaf(native: str, **payload: Any) -> Node:
    return Node(gk(native), "item", (), 2, Payload.from_mapping(payload))


def seed(store: MemoryStore, node: Node, payload: Any) -> str:
    h = store.create_handle(LIB, node.key, node.kind)
    rec = node.to_mapping()
    rec["payload"] = payload
    store.set_record(h, rec)
    return h


def test_hydrate_merges_and_writes_back(store: MemoryStore) -> None:
    base_node = leaf("I", title="Old", abstractNote="orig", notes=["Shared"])
    remote = leaf("I", title="New", abstractNote="orig", notes=["Shared", "Remote"])
    h = seed(store, base_node, {"title": "Old", "abstractNote": "annotated", "notes": ["Shared", "Local"]})

    hy = Hydrator(store)
    progress: list[float] = []
    assert hy.run([TouchedNode(remote.key, h, remote)], build([base_node]), progress.append) == 1

    rec = store.get_record(h)
    assert rec["payload"] == {"title": "New", "notes": ["Shared", "Remote", "Local"], "abstractNote": "annotated"}
    assert rec["version"] == 2
    assert rec["key"] == gk("I")
    assert store.get_label(h) == "New"
    assert progress == [1.0]


def test_stub_record_takes_remote_even_with_base(store: MemoryStore) -> None:
    remote = leaf("I", title="T", abstractNote="A")
    h = store.create_handle(LIB, remote.key, "item")
    store.set_record(h, node_record(remote, Payload()))

    Hydrator(store).run([TouchedNode(remote.key, h, remote)], build([remote]))
    assert store.get_record(h)["payload"] == {"title": "T", "abstractNote": "A"}


def test_malformed_record_reads_as_no_local() -> None:
    assert local_payload(None) is None
    assert local_payload({"payload": "garbage"}) is None
    assert local_payload({"payload": {}}) is None
    assert local_payload({"payload": {"title": "x"}}) == Payload(title="x")


def test_failure_is_counted_and_others_continue() -> None:
    class Broken(MemoryStore):
        def set_record(self, handle, record):  # type: ignore[override]
            if record.get("key") == gk("bad") and record.get("payload"):
                raise OSError("disk full")
            super().set_record(handle, record)

    store = Broken()
    touched = []
    for n in ("a", "bad", "b"):
        node = leaf(n, title=n)
        h = store.create_handle(LIB, node.key, "item")
        touched.append(TouchedNode(node.key, h, node))

    hy = Hydrator(store, batch_size=2)
    progress: list[float] = []
    assert hy.run(touched, None, progress.append) == 2
    assert hy.errors == 1
    assert hy.failures[0]["key"] == gk("bad")
    assert progress == sorted(progress) and progress[-1] == 1.0
    assert store.get_label(touched[2].handle) == "b"
