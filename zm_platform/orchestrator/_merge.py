# zm_platform/orchestrator/_merge.py
# three-way merge of node content: local mirror vs fresh remote, with the last synced remote as base.
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from ._payload import CHILD, CORE, Payload, policy_of

__all__ = ["merge", "merge_child_content", "canonical"]

_MISSING = object()


def canonical(entry: Any) -> str:
    """Structural identity of a list entry; dicts compare regardless of key order, "1" and 1 stay distinct."""
    return json.dumps(entry, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


def _as_list(v: Any) -> list[Any]:
    if v is None or v is _MISSING:
        return []
    if isinstance(v, (list, tuple)):
        return list(v)
    return [v]


def merge_child_content(local: Any, remote: Any, base: Any) -> list[Any]:
    # remote first, in remote order; then local additions that base never had
    merged: list[Any] = []
    seen: set[str] = set()

    def _add(entry: Any) -> None:
        if entry is None:
            return
        k = canonical(entry)
        if k not in seen:
            seen.add(k)
            merged.append(entry)

    for entry in _as_list(remote):
        _add(entry)

    in_base = {canonical(b) for b in _as_list(base) if b is not None}
    for entry in _as_list(local):
        if entry is not None and canonical(entry) not in in_base:
            _add(entry)
    return merged


def _as_dict(p: Payload | Mapping[str, Any] | None) -> dict[str, Any] | None:
    if p is None:
        return None
    if isinstance(p, Payload):
        return p.to_mapping()
    return Payload.from_mapping(p).to_mapping()


def merge(
    local: Payload | Mapping[str, Any] | None,
    remote: Payload | Mapping[str, Any] | None,
    base: Payload | Mapping[str, Any] | None,
) -> Payload:
    """
    Field policy (see Payload field declarations):
    - core: remote value, always.
    - child (notes/tags): remote list + local entries absent from base, no duplicates.
    - other: remote if it moved away from base; else local; a field neither side had before comes from remote.
    No base at all (first sync, new node, unreadable shadow) or no local content yet: remote wins outright.
    """
    r = _as_dict(remote) or {}
    if base is None or local is None:
        return Payload.from_mapping(r)
    l = _as_dict(local) or {}
    b = _as_dict(base) or {}

    keys = list(r)
    keys.extend(k for k in l if k not in r)

    out: dict[str, Any] = {}
    for k in keys:
        rv = r.get(k, _MISSING)
        lv = l.get(k, _MISSING)
        bv = b.get(k, _MISSING)
        policy = policy_of(k)

        if policy == CORE:
            if rv is not _MISSING:
                out[k] = rv
        elif policy == CHILD:
            merged = merge_child_content(lv, rv, bv)
            if merged or rv is not _MISSING or lv is not _MISSING:
                out[k] = merged
        else:
            if bv is not _MISSING and rv != bv:
                if rv is not _MISSING:
                    out[k] = rv
            elif lv is not _MISSING:
                out[k] = lv
            elif bv is _MISSING and rv is not _MISSING:
                out[k] = rv
    return Payload.from_mapping(out)
