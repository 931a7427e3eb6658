# zm_platform/orchestrator/_planner.py
# change detection between two snapshots and the ordered structural plan derived from it.
from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Mapping, Sequence
from typing import Any, Union

from ._tree import Node, Tree, as_tree, build

__all__ = [
    "Move", "ChangeSet", "diff", "changed_fields",
    "CreateOp", "UpdateOp", "MoveOp", "DeleteOp", "PlannedOp",
    "PHASES", "plan", "count_ops",
]

ALL_FIELDS = ("*",)


# --- change set ---------------------------------------------------------------

@dataclass(frozen=True)
class Move:
    node: Node
    old_parent: str | None
    new_parent: str | None

    @property
    def key(self) -> str:
        return self.node.key


@dataclass
class ChangeSet:
    new_collections: list[Node] = field(default_factory=list)
    updated_collections: list[Node] = field(default_factory=list)
    deleted_collections: list[Node] = field(default_factory=list)
    moved_collections: list[Move] = field(default_factory=list)
    new_items: list[Node] = field(default_factory=list)
    updated_items: list[Node] = field(default_factory=list)
    deleted_items: list[Node] = field(default_factory=list)
    moved_items: list[Move] = field(default_factory=list)
    # key -> remote field names that differ ("*" when not derivable)
    changed_fields: dict[str, tuple[str, ...]] = field(default_factory=dict)
    # created key -> primary parent resolved in the next snapshot
    parents: dict[str, str | None] = field(default_factory=dict)
    # deleted container key -> its children in the previous snapshot
    child_keys: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not any(self.counts().values())

    def counts(self) -> dict[str, int]:
        return {
            "new_collections": len(self.new_collections),
            "updated_collections": len(self.updated_collections),
            "deleted_collections": len(self.deleted_collections),
            "moved_collections": len(self.moved_collections),
            "new_items": len(self.new_items),
            "updated_items": len(self.updated_items),
            "deleted_items": len(self.deleted_items),
            "moved_items": len(self.moved_items),
        }

    def created_keys(self) -> set[str]:
        return {n.key for n in self.new_collections + self.new_items}

    def deleted_keys(self) -> set[str]:
        return {n.key for n in self.deleted_collections + self.deleted_items}


def changed_fields(old: Node, new: Node) -> tuple[str, ...]:
    a = old.payload.to_mapping()
    b = new.payload.to_mapping()
    try:
        names = [k for k in b if k not in a or a[k] != b[k]]
        names.extend(k for k in a if k not in b)
    except Exception:
        return ALL_FIELDS
    return tuple(names)


def diff(prev: Tree | Sequence[Node | Mapping[str, Any]] | None, next: Tree) -> ChangeSet:
    """
    Compare two snapshots of the same library.
    - prev None (first sync): everything in next is new.
    - moved: primary parent differs; updated: payload differs. A key may be both.
    - version is not consulted; some remotes do not bump it for every field change.
    """
    nxt = next if isinstance(next, Tree) else build(next)
    old = as_tree(prev)
    cs = ChangeSet()

    if old is None or len(old) == 0:
        for n in nxt:
            (cs.new_collections if n.is_container else cs.new_items).append(n)
            cs.parents[n.key] = nxt.primary_parent(n.key)
        return cs

    for key, n in nxt.by_key.items():
        o = old.get(key)
        if o is None:
            (cs.new_collections if n.is_container else cs.new_items).append(n)
            cs.parents[key] = nxt.primary_parent(key)
            continue

        old_parent = old.primary_parent(key)
        new_parent = nxt.primary_parent(key)
        if old_parent != new_parent:
            mv = Move(node=n, old_parent=old_parent, new_parent=new_parent)
            (cs.moved_collections if n.is_container else cs.moved_items).append(mv)

        if o.payload != n.payload or o.kind != n.kind:
            (cs.updated_collections if n.is_container else cs.updated_items).append(n)
            cs.changed_fields[key] = changed_fields(o, n) or ALL_FIELDS

    for key, o in old.by_key.items():
        if key in nxt:
            continue
        if o.is_container:
            cs.deleted_collections.append(o)
            cs.child_keys[key] = old.children_of(key)
        else:
            cs.deleted_items.append(o)

    return cs


# --- planned operations ---------------------------------------------------------

PHASES: tuple[str, ...] = ("create", "update", "move", "delete")


@dataclass(frozen=True)
class CreateOp:
    key: str
    node: Node
    parent_key: str | None
    phase: str = field(default="create", init=False)


@dataclass(frozen=True)
class UpdateOp:
    key: str
    node: Node
    phase: str = field(default="update", init=False)


@dataclass(frozen=True)
class MoveOp:
    key: str
    new_parent_key: str | None
    phase: str = field(default="move", init=False)


@dataclass(frozen=True)
class DeleteOp:
    key: str
    is_container: bool
    phase: str = field(default="delete", init=False)


PlannedOp = Union[CreateOp, UpdateOp, MoveOp, DeleteOp]


def plan(changes: ChangeSet) -> list[PlannedOp]:
    """
    Turn a change set into ordered ops: creates -> updates -> moves -> deletes.
    Creates keep input order (collections first); the executor resolves parents created in the same plan.
    Leaf deletes precede container deletes; containers with fewer remaining children go first.
    """
    ops: list[PlannedOp] = []

    for n in [*changes.new_collections, *changes.new_items]:
        ops.append(CreateOp(key=n.key, node=n, parent_key=changes.parents.get(n.key, n.primary_parent)))

    for n in [*changes.updated_collections, *changes.updated_items]:
        ops.append(UpdateOp(key=n.key, node=n))

    # only the parent key travels; the handle is resolved at execution time
    for mv in [*changes.moved_collections, *changes.moved_items]:
        ops.append(MoveOp(key=mv.key, new_parent_key=mv.new_parent))

    for n in changes.deleted_items:
        ops.append(DeleteOp(key=n.key, is_container=False))

    gone = changes.deleted_keys()

    def _remaining(n: Node) -> int:
        return sum(1 for c in changes.child_keys.get(n.key, ()) if c not in gone)

    for n in sorted(changes.deleted_collections, key=_remaining):
        ops.append(DeleteOp(key=n.key, is_container=True))

    return ops


def count_ops(ops: Sequence[PlannedOp]) -> dict[str, int]:
    out = {p: 0 for p in PHASES}
    for op in ops:
        out[op.phase] = out.get(op.phase, 0) + 1
    return out
