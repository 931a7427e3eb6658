# zm_platform/orchestrator/_hydrate.py
# content stage: three-way merge of every touched leaf, written back to the local store.
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from _logging import log as _log

from ._applier import BATCH, node_record
from ._merge import merge
from ._payload import Payload
from ._tree import Tree
from ._types import LocalStore, SyncAborted, TouchedNode

__all__ = ["Hydrator", "local_payload"]

log = _log.child("HYDRATE")


def local_payload(record: Any) -> Payload | None:
    """Payload stored in a local record; malformed or still-empty (fresh stub) reads as no local payload."""
    if not isinstance(record, Mapping):
        return None
    p = record.get("payload")
    if not isinstance(p, Mapping) or not p:
        return None
    return Payload.from_mapping(p)


class Hydrator:
    def __init__(
        self,
        store: LocalStore,
        *,
        batch_size: int = BATCH,
        should_abort: Callable[[], bool] | None = None,
    ) -> None:
        self.store = store
        self.batch_size = max(1, int(batch_size or BATCH))
        self.should_abort = should_abort
        self.failures: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    @property
    def errors(self) -> int:
        return len(self.failures)

    def run(
        self,
        touched: Sequence[TouchedNode],
        base: Tree | None,
        on_progress: Callable[[float], Any] | None = None,
    ) -> int:
        """Merge and write back each touched leaf. Returns how many were written."""
        total = len(touched)
        if total == 0:
            if on_progress:
                on_progress(1.0)
            return 0

        written = 0
        done = 0
        with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="zm-hydrate") as ex:
            for i in range(0, total, self.batch_size):
                if self.should_abort and self.should_abort():
                    raise SyncAborted(f"aborted during hydrate ({done}/{total})")
                batch = touched[i:i + self.batch_size]
                futs = {ex.submit(self._hydrate_one, t, base): t for t in batch}
                for fut in as_completed(futs):
                    t = futs[fut]
                    try:
                        fut.result()
                        written += 1
                    except Exception as e:
                        with self._lock:
                            self.failures.append({"key": t.key, "error": str(e)})
                        log.error(f"hydrate failed for {t.key}: {e}")
                    done += 1
                    if on_progress:
                        on_progress(done / total)
        return written

    def _hydrate_one(self, t: TouchedNode, base: Tree | None) -> None:
        base_node = base.get(t.key) if base is not None else None
        base_payload = base_node.payload if base_node is not None else None
        local = local_payload(self.store.get_record(t.handle))

        merged = merge(local, t.remote_node.payload, base_payload)
        node = t.remote_node.replace(payload=merged)
        self.store.set_record(t.handle, node_record(node))
        self.store.set_label(t.handle, node.label)
