# zm_platform/orchestrator/_applier.py
# structural executor: applies a planned op list to the local store in bounded concurrent batches.
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from collections.abc import Callable, Iterator, Sequence
from typing import Any

from _logging import log as _log

from ._payload import Payload
from ._planner import CreateOp, DeleteOp, MoveOp, PlannedOp, UpdateOp
from ._tree import Node
from ._types import Handle, LocalStore, SyncAborted, TouchedNode

__all__ = ["BATCH", "StructuralExecutor", "node_record"]

BATCH = 10

log = _log.child("APPLY")


def node_record(node: Node, payload: Payload | None = None) -> dict[str, Any]:
    rec = node.to_mapping()
    if payload is not None:
        rec["payload"] = payload.to_mapping()
    return rec


@dataclass
class _Cached:
    handle: Handle
    parent_key: str | None


#--- Batching ------------------------------------------------------------------
def _create_waves(ops: Sequence[CreateOp]) -> list[list[CreateOp]]:
    # a create whose parent is created in the same plan runs one wave after that parent
    by_key = {op.key: op for op in ops}
    depth: dict[str, int] = {}

    def _depth(key: str) -> int:
        chain: list[str] = []
        cur: str | None = key
        while cur is not None and cur in by_key and cur not in depth and cur not in chain:
            chain.append(cur)
            cur = by_key[cur].parent_key
        base = depth.get(cur, -1) if cur is not None and cur in depth else -1
        for k in reversed(chain):
            base += 1
            depth[k] = base
        return depth[key]

    waves: dict[int, list[CreateOp]] = {}
    for op in ops:
        waves.setdefault(_depth(op.key), []).append(op)
    return [waves[d] for d in sorted(waves)]


def _segments(plan: Sequence[PlannedOp]) -> Iterator[tuple[str, list[PlannedOp]]]:
    # contiguous runs of one phase; batches never straddle two phases
    cur: list[PlannedOp] = []
    phase = ""
    for op in plan:
        if cur and op.phase != phase:
            yield phase, cur
            cur = []
        phase = op.phase
        cur.append(op)
    if cur:
        yield phase, cur


def _chunks(ops: Sequence[PlannedOp], size: int) -> Iterator[list[PlannedOp]]:
    for i in range(0, len(ops), size):
        yield list(ops[i:i + size])


#--- Executor ------------------------------------------------------------------
class StructuralExecutor:
    """
    Runs create/update/move/delete against the local store. Structure and labels only;
    content is merged afterwards by the hydrator for the returned touched leaves.
    """

    def __init__(
        self,
        store: LocalStore,
        library: str,
        *,
        batch_size: int = BATCH,
        should_abort: Callable[[], bool] | None = None,
    ) -> None:
        self.store = store
        self.library = library
        self.batch_size = max(1, int(batch_size or BATCH))
        self.should_abort = should_abort
        self.cache: dict[str, _Cached] = {}
        self.failures: list[dict[str, Any]] = []
        self._unattached: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def errors(self) -> int:
        return len(self.failures)

    def run(
        self,
        plan: Sequence[PlannedOp],
        on_progress: Callable[[float], Any] | None = None,
    ) -> list[TouchedNode]:
        total = len(plan)
        if total == 0:
            if on_progress:
                on_progress(1.0)
            return []

        order = {id(op): i for i, op in enumerate(plan)}
        touched: list[tuple[int, TouchedNode]] = []
        done = 0

        with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="zm-apply") as ex:
            for phase, seg in _segments(plan):
                if phase == "create":
                    batches = [b for wave in _create_waves(seg) for b in _chunks(wave, self.batch_size)]  # type: ignore[arg-type]
                else:
                    batches = list(_chunks(seg, self.batch_size))

                for batch in batches:
                    if self.should_abort and self.should_abort():
                        raise SyncAborted(f"aborted during {phase} ({done}/{total})")
                    futs = {ex.submit(self._apply_one, op): op for op in batch}
                    for fut in as_completed(futs):
                        op = futs[fut]
                        try:
                            t = fut.result()
                        except Exception as e:
                            self._fail(op, e)
                            t = None
                        if t is not None:
                            touched.append((order[id(op)], t))
                        done += 1
                        if on_progress:
                            on_progress(done / total)

                if phase == "create" and self._unattached:
                    self._reattach()

        touched.sort(key=lambda x: x[0])
        return [t for _, t in touched]

    def _fail(self, op: PlannedOp, err: BaseException) -> None:
        with self._lock:
            self.failures.append({"op": op.phase, "key": op.key, "error": str(err)})
        log.error(f"{op.phase} failed for {op.key}: {err}")

    def _apply_one(self, op: PlannedOp) -> TouchedNode | None:
        if isinstance(op, CreateOp):
            h = self._create(op.node, op.parent_key)
            return None if op.node.is_container else TouchedNode(op.key, h, op.node)
        if isinstance(op, UpdateOp):
            h = self._update(op.node)
            if h is None or op.node.is_container:
                return None
            return TouchedNode(op.key, h, op.node)
        if isinstance(op, MoveOp):
            self._move(op.key, op.new_parent_key)
            return None
        if isinstance(op, DeleteOp):
            self._remove(op.key)
            return None
        raise TypeError(f"unknown op: {op!r}")

    #--- cache -------------------------------------------------------------------
    def _remember(self, key: str, handle: Handle, parent_key: str | None) -> None:
        with self._lock:
            self.cache[key] = _Cached(handle, parent_key)

    def resolve(self, key: str) -> Handle | None:
        with self._lock:
            hit = self.cache.get(key)
        if hit is not None:
            return hit.handle
        h = self.store.find_by_key(self.library, key)
        if h is None:
            return None
        parent = self.store.get_parent(h)
        parent_key = self.store.key_of(parent) if parent is not None else None
        self._remember(key, h, parent_key)
        return h

    def _parent_handle(self, parent_key: str | None, *, container: bool) -> tuple[Handle | None, str | None]:
        # (handle to attach under, key recorded as parent); unknown parents fall back to parentless placement
        if parent_key:
            ph = self.resolve(parent_key)
            if ph is not None:
                return ph, parent_key
        return (None if container else self.store.default_container(self.library)), None

    #--- operations ----------------------------------------------------------------
    def _create(self, node: Node, parent_key: str | None) -> Handle:
        h = self.store.create_handle(self.library, node.key, node.kind)
        self.store.set_label(h, node.label)
        # leaves get a stub record; their content arrives with hydration
        self.store.set_record(h, node_record(node, None if node.is_container else Payload()))

        ph, attached = self._parent_handle(parent_key, container=node.is_container)
        self.store.set_parent(h, ph)
        if parent_key and attached is None:
            with self._lock:
                self._unattached[node.key] = parent_key
            log.debug(f"parent {parent_key} not present yet for {node.key}; retrying after creates")
        self._remember(node.key, h, attached)
        return h

    def _reattach(self) -> None:
        with self._lock:
            pending = dict(self._unattached)
            self._unattached.clear()
        for key, parent_key in pending.items():
            try:
                h = self.resolve(key)
                ph = self.resolve(parent_key)
                if h is None or ph is None:
                    log.warn(f"{key}: parent {parent_key} still missing; left parentless")
                    continue
                self.store.set_parent(h, ph)
                self._remember(key, h, parent_key)
            except Exception as e:
                self._fail(MoveOp(key=key, new_parent_key=parent_key), e)

    def _update(self, node: Node) -> Handle | None:
        h = self.resolve(node.key)
        if h is None:
            log.warn(f"update skipped, no local handle for {node.key}")
            return None
        # re-stamps the kind on the existing handle (e.g. item turned into attachment)
        self.store.create_handle(self.library, node.key, node.kind)
        self.store.set_label(h, node.label)
        if node.is_container:
            self.store.set_record(h, node_record(node))
        return h

    def _move(self, key: str, new_parent_key: str | None) -> None:
        h = self.resolve(key)
        if h is None:
            log.warn(f"move skipped, no local handle for {key}")
            return
        with self._lock:
            current = self.cache[key].parent_key
        if current == new_parent_key:
            return
        rec = self.store.get_record(h) or {}
        container = str(rec.get("kind") or "") == "collection"
        ph, attached = self._parent_handle(new_parent_key, container=container)
        self.store.set_parent(h, ph)
        self._remember(key, h, attached)

    def _remove(self, key: str) -> None:
        h = self.resolve(key)
        if h is not None:
            self.store.remove(h)
        with self._lock:
            self.cache.pop(key, None)
