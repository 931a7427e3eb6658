# zm_platform/orchestrator/_library.py
# one full reconciliation cycle for a single library: index -> diff -> merge -> apply -> hydrate -> finalize.
from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from _logging import log as _log

from ._applier import StructuralExecutor
from ._hydrate import Hydrator
from ._planner import count_ops, diff, plan
from ._tree import Node, Tree, build
from ._types import LocalStore, SyncAborted

__all__ = ["sync_library", "local_tree", "next_shadow"]

log = _log.child("SYNC")


def local_tree(store: LocalStore, library: str) -> Tree:
    """Mirror as it stands now; parent linkage comes from physical placement in the store."""
    return build(store.records(library))


def next_shadow(remote: Tree, base: Tree | None, failed: Iterable[str]) -> Tree:
    # nodes whose content never reached the mirror keep their old base so the next cycle still merges three-way
    failed = set(failed)
    if not failed:
        return remote
    nodes: list[Node] = []
    for n in remote:
        if n.key in failed:
            old = base.get(n.key) if base is not None else None
            if old is not None:
                nodes.append(old)
            continue
        nodes.append(n)
    return build(nodes)


def sync_library(ctx: Any, library: str, name: str = "") -> dict[str, Any]:
    """
    ctx: SimpleNamespace from Orchestrator.context (source, store, state_store, progress,
    abort, emit, dbg, batch_size, dry_run, checkpoint).
    Remote errors propagate; the shadow snapshot is only replaced once finalize is reached.
    """
    emit = ctx.emit
    prog = ctx.progress
    lg = log.bind(library=library)

    def _check(phase: str) -> None:
        if ctx.abort.is_set():
            raise SyncAborted(f"{library}: aborted before {phase}")

    def _progress(phase: str, ratio: float = 1.0) -> None:
        v = prog.update(library, phase, ratio)
        emit("progress", library=library, phase=phase, value=round(v, 4), overall=round(prog.average(), 4))

    def _enter(phase: str) -> None:
        _check(phase)
        emit("phase", library=library, phase=phase)

    prog.track(library)
    emit("library:start", library=library, name=name or library, dry_run=bool(ctx.dry_run))

    # index
    _enter("index")
    remote = build(ctx.source.fetch_nodes(library))
    local = local_tree(ctx.store, library)
    warnings = [*remote.warnings, *(f"local: {w}" for w in local.warnings)]
    for w in warnings:
        lg.warn(w)
    lg.info(f"indexed remote={len(remote)} local={len(local)}")
    _progress("index")
    ctx.checkpoint()

    # diff
    _enter("diff")
    changes = diff(local, remote)
    _progress("diff")

    # merge (plan + base)
    _enter("merge")
    ops = plan(changes)
    base = ctx.state_store.load_shadow(library)
    if base is None:
        ctx.dbg("no usable shadow snapshot; remote wins for every field", library=library)
    _progress("merge")
    ctx.checkpoint()

    summary: dict[str, Any] = {
        "library": library,
        "name": name or library,
        "ok": True,
        "dry_run": bool(ctx.dry_run),
        "changes": changes.counts(),
        "ops": count_ops(ops),
        "touched": 0,
        "hydrated": 0,
        "errors": 0,
        "failures": [],
        "warnings": warnings,
        "has_base": base is not None,
    }

    if ctx.dry_run:
        lg.info(f"dry run: {len(ops)} op(s) planned, nothing applied")
        _progress("finalize")
        return summary

    # apply
    _enter("apply")
    executor = StructuralExecutor(
        ctx.store, library, batch_size=ctx.batch_size, should_abort=ctx.abort.is_set,
    )
    touched = executor.run(ops, lambda r: _progress("apply", r))
    ctx.checkpoint()

    # hydrate
    _enter("hydrate")
    hydrator = Hydrator(ctx.store, batch_size=ctx.batch_size, should_abort=ctx.abort.is_set)
    hydrated = hydrator.run(touched, base, lambda r: _progress("hydrate", r))
    ctx.checkpoint()

    # finalize
    _enter("finalize")
    failed = [f["key"] for f in (*executor.failures, *hydrator.failures)]
    ctx.state_store.save_shadow(library, next_shadow(remote, base, failed))
    summary["last_sync"] = ctx.state_store.save_last(library)
    _progress("finalize")

    summary.update(
        touched=len(touched),
        hydrated=hydrated,
        errors=executor.errors + hydrator.errors,
        failures=[*executor.failures, *hydrator.failures],
    )
    if summary["errors"]:
        lg.warn(f"finished with {summary['errors']} failed operation(s); they are retried next cycle")
    else:
        lg.success(f"synced: {sum(summary['ops'].values())} op(s), {hydrated} hydrated")
    return summary
