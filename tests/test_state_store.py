from __future__ import annotations

import json
from pathlib import Path

from zm_platform.orchestrator._payload import Payload
from zm_platform.orchestrator._state_store import StateStore, shadow_filename
from zm_platform.orchestrator._tree import Node, build


def test_shadow_round_trip(tmp_path: Path) -> None:
    st = StateStore(tmp_path)
    tree = build([Node("user:1:C", "collection", payload=Payload(name="C")), Node("user:1:I", "item", ("user:1:C",), 3, Payload(title="T"))])
    st.save_shadow("user:1", tree)

    raw = json.loads((tmp_path / "shadow" / "user_1.json").read_text("utf-8"))
    assert raw["version"] == 1 and raw["library"] == "user:1" and len(raw["nodes"]) == 2

    back = st.load_shadow("user:1")
    assert back is not None
    assert back.get("user:1:I") == tree.get("user:1:I")
    assert back.primary_parent("user:1:I") == "user:1:C"


def test_missing_or_corrupt_shadow_is_none(tmp_path: Path) -> None:
    st = StateStore(tmp_path)
    assert st.load_shadow("user:1") is None

    st.shadow_dir.mkdir(parents=True)
    st.shadow_path("user:1").write_text("{not json", "utf-8")
    assert st.load_shadow("user:1") is None

    st.shadow_path("user:1").write_text(json.dumps({"version": 99, "nodes": []}), "utf-8")
    assert st.load_shadow("user:1") is None

    st.shadow_path("user:1").write_text(json.dumps({"version": 1, "nodes": "nope"}), "utf-8")
    assert st.load_shadow("user:1") is None


def test_last_sync_per_library(tmp_path: Path) -> None:
    st = StateStore(tmp_path)
    st.save_last("user:1", "2026-01-01T00:00:00+00:00")
    st.save_last("group:2")
    last = st.load_last()
    assert last["user:1"] == "2026-01-01T00:00:00+00:00"
    assert "group:2" in last


def test_sync_state_flag(tmp_path: Path) -> None:
    st = StateStore(tmp_path)
    assert st.load_sync_state()["syncing"] is False

    st.mark_syncing({"user:1": "My Library"})
    st.update_progress(0.5, {"user:1": 0.5})
    s = st.load_sync_state()
    assert s["syncing"] is True
    assert s["libraries"]["user:1"] == {"name": "My Library", "progress": 0.5}

    st.clear_syncing()
    s = st.load_sync_state()
    assert s["syncing"] is False and s["start_time"] is None


def test_shadow_filename_is_path_safe() -> None:
    assert shadow_filename("group:42") == "group_42.json"
    assert "/" not in shadow_filename("user:../../x")
