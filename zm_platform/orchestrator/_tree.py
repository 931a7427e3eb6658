# zm_platform/orchestrator/_tree.py
# Immutable in-memory snapshot of one library: nodes indexed by global key, with parent/child linkage.
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any, Literal

from ..keys import make_global_key, split_global_key
from ._payload import Payload

__all__ = [
    "NodeKind", "NODE_KINDS", "CONTAINER_KINDS",
    "Node", "Tree", "build",
    "node_from_collection", "node_from_item", "as_tree",
]

NodeKind = Literal["collection", "item", "note", "attachment"]
NODE_KINDS: tuple[str, ...] = ("collection", "item", "note", "attachment")
CONTAINER_KINDS = frozenset({"collection"})


@dataclass(frozen=True)
class Node:
    key: str
    kind: str = "item"
    parent_keys: tuple[str, ...] = ()
    version: int = 0
    payload: Payload = field(default_factory=Payload)

    @property
    def is_container(self) -> bool:
        return self.kind in CONTAINER_KINDS

    @property
    def primary_parent(self) -> str | None:
        """First entry of parent_keys. For leaves the builder puts the parent item first, then collections."""
        return self.parent_keys[0] if self.parent_keys else None

    @property
    def library(self) -> str:
        return split_global_key(self.key)[0]

    @property
    def native_key(self) -> str:
        return split_global_key(self.key)[1]

    @property
    def label(self) -> str:
        return self.payload.label() or self.native_key

    def replace(self, **changes: Any) -> "Node":
        return dataclasses.replace(self, **changes)

    def to_mapping(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind,
            "parent_keys": list(self.parent_keys),
            "version": self.version,
            "payload": self.payload.to_mapping(),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Node":
        key = str(data.get("key") or "").strip()
        if not key:
            raise ValueError("node without key")
        kind = str(data.get("kind") or "item")
        if kind not in NODE_KINDS:
            raise ValueError(f"unknown node kind: {kind!r}")
        parents = data.get("parent_keys") or ()
        if isinstance(parents, str):
            parents = (parents,)
        try:
            version = int(data.get("version") or 0)
        except (TypeError, ValueError):
            version = 0
        return cls(
            key=key,
            kind=kind,
            parent_keys=tuple(str(p) for p in parents if p),
            version=version,
            payload=Payload.from_mapping(data.get("payload") or {}),
        )


# --- remote record converters ----------------------------------------------

def _data_of(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    d = raw.get("data")
    return d if isinstance(d, Mapping) else raw


def _version_of(raw: Mapping[str, Any], data: Mapping[str, Any]) -> int:
    try:
        return int(raw.get("version") or data.get("version") or 0)
    except (TypeError, ValueError):
        return 0


def node_from_collection(library: str, raw: Mapping[str, Any]) -> Node:
    data = _data_of(raw)
    native = str(data.get("key") or raw.get("key") or "")
    parent = data.get("parentCollection")
    parents: list[str] = []
    # top-level collections report parentCollection: false
    if isinstance(parent, str) and parent:
        parents.append(make_global_key(library, parent))
    return Node(
        key=make_global_key(library, native),
        kind="collection",
        parent_keys=tuple(parents),
        version=_version_of(raw, data),
        payload=Payload.from_mapping(data),
    )


def node_from_item(library: str, raw: Mapping[str, Any]) -> Node:
    data = _data_of(raw)
    native = str(data.get("key") or raw.get("key") or "")
    parents: list[str] = []
    parent_item = data.get("parentItem")
    if isinstance(parent_item, str) and parent_item:
        parents.append(make_global_key(library, parent_item))
    for c in data.get("collections") or ():
        gk = make_global_key(library, str(c))
        if gk not in parents:
            parents.append(gk)

    item_type = data.get("itemType")
    kind = item_type if item_type in ("note", "attachment") else "item"
    return Node(
        key=make_global_key(library, native),
        kind=kind,
        parent_keys=tuple(parents),
        version=_version_of(raw, data),
        payload=Payload.from_mapping(data),
    )


# --- tree ------------------------------------------------------------------

@dataclass(frozen=True)
class Tree:
    by_key: Mapping[str, Node]
    roots: tuple[Node, ...] = ()
    orphans: tuple[Node, ...] = ()
    parents: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    children: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    def get(self, key: str) -> Node | None:
        return self.by_key.get(key)

    def has(self, key: str) -> bool:
        return key in self.by_key

    def __contains__(self, key: object) -> bool:
        return key in self.by_key

    def __len__(self) -> int:
        return len(self.by_key)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.by_key.values())

    def nodes(self) -> list[Node]:
        return list(self.by_key.values())

    def primary_parent(self, key: str) -> str | None:
        ps = self.parents.get(key) or ()
        return ps[0] if ps else None

    def children_of(self, key: str) -> tuple[str, ...]:
        return self.children.get(key, ())

    def walk(self) -> Iterator[Node]:
        """Depth-first, roots then orphans. Each node is yielded once even if the data has parent loops."""
        seen: set[str] = set()
        stack: list[str] = [n.key for n in reversed(self.roots + self.orphans)]
        while stack:
            k = stack.pop()
            if k in seen:
                continue
            seen.add(k)
            node = self.by_key.get(k)
            if node is None:
                continue
            yield node
            stack.extend(c for c in reversed(self.children.get(k, ())) if c not in seen)

    def detached(self) -> list[Node]:
        """Nodes unreachable from roots/orphans (members of reciprocal-parent loops)."""
        seen = {n.key for n in self.walk()}
        return [n for k, n in self.by_key.items() if k not in seen]

    def to_serializable(self) -> list[dict[str, Any]]:
        return [n.to_mapping() for n in self.by_key.values()]

    @classmethod
    def from_serializable(cls, raw: Iterable[Mapping[str, Any]]) -> "Tree":
        return build(raw)


def build(flat: Iterable[Node | Mapping[str, Any]] | None) -> Tree:
    """Index a flat list of nodes, resolve parents and classify roots/orphans. Pure; never raises on bad entries."""
    warnings: list[str] = []
    by_key: dict[str, Node] = {}

    for i, entry in enumerate(flat or ()):
        if isinstance(entry, Node):
            node = entry
        elif isinstance(entry, Mapping):
            try:
                node = Node.from_mapping(entry)
            except ValueError as e:
                warnings.append(f"entry {i} skipped: {e}")
                continue
        else:
            warnings.append(f"entry {i} skipped: unsupported type {type(entry).__name__}")
            continue
        if not node.key:
            warnings.append(f"entry {i} skipped: node without key")
            continue
        if node.key in by_key:
            warnings.append(f"entry {i} skipped: duplicate key {node.key}")
            continue
        by_key[node.key] = node

    parents: dict[str, tuple[str, ...]] = {}
    children: dict[str, list[str]] = {}
    for key, node in by_key.items():
        resolved: list[str] = []
        for p in node.parent_keys:
            if p == key or p in resolved or p not in by_key:
                continue
            resolved.append(p)
        parents[key] = tuple(resolved)
        for p in resolved:
            children.setdefault(p, []).append(key)

    roots: list[Node] = []
    orphans: list[Node] = []
    for key, node in by_key.items():
        if parents[key]:
            continue
        (roots if node.is_container else orphans).append(node)

    return Tree(
        by_key=by_key,
        roots=tuple(roots),
        orphans=tuple(orphans),
        parents=parents,
        children={k: tuple(v) for k, v in children.items()},
        warnings=tuple(warnings),
    )


def as_tree(snapshot: Tree | Sequence[Node | Mapping[str, Any]] | None) -> Tree | None:
    if snapshot is None or isinstance(snapshot, Tree):
        return snapshot
    return build(snapshot)
