# /providers/store/_mod_MEMORY.py
# ZotMirror local store: thread-safe in-memory hierarchy of labelled handles with opaque records.
from __future__ import annotations
__all__ = ["MemoryStore", "StoreError", "UNFILED_LABEL"]

import copy
import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from zm_platform.orchestrator._types import Handle, SyncError

UNFILED_LABEL = "Unfiled Items"


class StoreError(SyncError): ...


@dataclass
class _Entry:
    library: str
    key: Optional[str]
    kind: str
    label: str = ""
    parent: Optional[Handle] = None
    record: Optional[Dict[str, Any]] = None
    children: List[Handle] = field(default_factory=list)


class MemoryStore:
    """
    Handles are opaque strings. A handle with parent None sits at the top of its library.
    Each library has one keyless default container holding parentless leaves.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._seq = itertools.count(1)
        self._entries: Dict[Handle, _Entry] = {}
        self._by_key: Dict[Tuple[str, str], Handle] = {}
        self._default: Dict[str, Handle] = {}

    # ── internals ────────────────────────────────────────────────────────────

    def _new_handle(self) -> Handle:
        return f"h{next(self._seq)}"

    def _entry(self, handle: Handle) -> _Entry:
        e = self._entries.get(handle)
        if e is None:
            raise StoreError(f"unknown handle: {handle}")
        return e

    def _detach(self, handle: Handle, e: _Entry) -> None:
        if e.parent is not None:
            p = self._entries.get(e.parent)
            if p is not None and handle in p.children:
                p.children.remove(handle)
        e.parent = None

    # ── LocalStore ────────────────────────────────────────────────────────────

    def create_handle(self, library: str, key: str, kind: str) -> Handle:
        with self._lock:
            existing = self._by_key.get((library, key))
            if existing is not None:
                # a half-finished earlier create; reuse it
                self._entries[existing].kind = kind
                return existing
            h = self._new_handle()
            self._entries[h] = _Entry(library=library, key=key, kind=kind)
            self._by_key[(library, key)] = h
            return h

    def set_label(self, handle: Handle, label: str) -> None:
        with self._lock:
            self._entry(handle).label = str(label or "")

    def get_label(self, handle: Handle) -> str:
        with self._lock:
            return self._entry(handle).label

    def set_parent(self, handle: Handle, parent: Optional[Handle]) -> None:
        with self._lock:
            e = self._entry(handle)
            if parent is not None:
                p = self._entry(parent)
                if p.library != e.library:
                    raise StoreError(f"cannot move {handle} across libraries")
                cur: Optional[Handle] = parent
                while cur is not None:
                    if cur == handle:
                        raise StoreError(f"cannot move {handle} under its own descendant")
                    cur = self._entries[cur].parent
            self._detach(handle, e)
            e.parent = parent
            if parent is not None:
                self._entries[parent].children.append(handle)

    def get_parent(self, handle: Handle) -> Optional[Handle]:
        with self._lock:
            return self._entry(handle).parent

    def remove(self, handle: Handle) -> None:
        with self._lock:
            e = self._entries.get(handle)
            if e is None:
                return
            self._detach(handle, e)
            stack = [handle]
            while stack:
                h = stack.pop()
                cur = self._entries.pop(h, None)
                if cur is None:
                    continue
                stack.extend(cur.children)
                if cur.key is not None:
                    self._by_key.pop((cur.library, cur.key), None)
                if self._default.get(cur.library) == h:
                    del self._default[cur.library]

    def get_record(self, handle: Handle) -> Optional[Dict[str, Any]]:
        with self._lock:
            rec = self._entry(handle).record
            return copy.deepcopy(rec) if rec is not None else None

    def set_record(self, handle: Handle, record: Mapping[str, Any]) -> None:
        with self._lock:
            self._entry(handle).record = copy.deepcopy(dict(record))

    def find_by_key(self, library: str, key: str) -> Optional[Handle]:
        with self._lock:
            return self._by_key.get((library, key))

    def key_of(self, handle: Handle) -> Optional[str]:
        with self._lock:
            e = self._entries.get(handle)
            return e.key if e is not None else None

    def records(self, library: str) -> List[Dict[str, Any]]:
        """Stored node records; parent_keys reflect where each handle physically sits."""
        with self._lock:
            out: List[Dict[str, Any]] = []
            for h, e in self._entries.items():
                if e.library != library or e.key is None or e.record is None:
                    continue
                rec = copy.deepcopy(e.record)
                rec["key"] = e.key
                rec["kind"] = e.kind
                pk = self._entries[e.parent].key if e.parent is not None else None
                rec["parent_keys"] = [pk] if pk else []
                out.append(rec)
            return out

    def default_container(self, library: str) -> Handle:
        with self._lock:
            h = self._default.get(library)
            if h is None:
                h = self._new_handle()
                self._entries[h] = _Entry(library=library, key=None, kind="unfiled", label=UNFILED_LABEL)
                self._default[library] = h
            return h

    # ── inspection ────────────────────────────────────────────────────────────

    def libraries(self) -> List[str]:
        with self._lock:
            return sorted({e.library for e in self._entries.values()})

    def children(self, handle: Handle) -> List[Handle]:
        with self._lock:
            return list(self._entry(handle).children)

    def top_level(self, library: str) -> List[Handle]:
        with self._lock:
            return [h for h, e in self._entries.items() if e.library == library and e.parent is None]

    def outline(self, library: str) -> List[str]:
        """Indented label listing, for the CLI."""
        with self._lock:
            lines: List[str] = []

            def _walk(h: Handle, depth: int) -> None:
                e = self._entries[h]
                lines.append(f"{'  ' * depth}{e.label or e.key or h}")
                for c in e.children:
                    _walk(c, depth + 1)

            for h in self.top_level(library):
                _walk(h, 0)
            return lines

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ── (de)serialization ─────────────────────────────────────────────────────

    def dump(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": [
                    {
                        "handle": h,
                        "library": e.library,
                        "key": e.key,
                        "kind": e.kind,
                        "label": e.label,
                        "parent": e.parent,
                        "record": copy.deepcopy(e.record),
                    }
                    for h, e in self._entries.items()
                ],
                "defaults": dict(self._default),
            }

    def load(self, data: Mapping[str, Any]) -> None:
        entries: Iterable[Mapping[str, Any]] = data.get("entries") or []
        with self._lock:
            self._entries.clear()
            self._by_key.clear()
            self._default = {str(k): str(v) for k, v in dict(data.get("defaults") or {}).items()}
            top = 0
            for raw in entries:
                h = str(raw["handle"])
                e = _Entry(
                    library=str(raw["library"]),
                    key=raw.get("key"),
                    kind=str(raw.get("kind") or "item"),
                    label=str(raw.get("label") or ""),
                    parent=raw.get("parent"),
                    record=raw.get("record"),
                )
                self._entries[h] = e
                if e.key is not None:
                    self._by_key[(e.library, e.key)] = h
                if h[1:].isdigit():
                    top = max(top, int(h[1:]))
            for h, e in self._entries.items():
                if e.parent is not None:
                    if e.parent in self._entries:
                        self._entries[e.parent].children.append(h)
                    else:
                        e.parent = None
            self._seq = itertools.count(top + 1)
