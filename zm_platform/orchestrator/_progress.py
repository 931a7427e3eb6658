# zm_platform/orchestrator/_progress.py
# phase-weighted, never-decreasing progress per library.
from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

__all__ = ["PHASE_ORDER", "DEFAULT_WEIGHTS", "ProgressReporter"]

PHASE_ORDER: tuple[str, ...] = ("index", "diff", "merge", "apply", "hydrate", "finalize")

DEFAULT_WEIGHTS: dict[str, float] = {
    "index": 0.10,
    "diff": 0.10,
    "merge": 0.15,
    "apply": 0.35,
    "hydrate": 0.25,
    "finalize": 0.05,
}


def _clamp(x: Any) -> float:
    try:
        f = float(x)
    except (TypeError, ValueError):
        return 0.0
    if f != f:  # NaN
        return 0.0
    return max(0.0, min(1.0, f))


class ProgressReporter:
    def __init__(self, weights: Mapping[str, float] | None = None) -> None:
        w = dict(DEFAULT_WEIGHTS)
        for k, v in (weights or {}).items():
            if k not in w:
                raise ValueError(f"unknown phase: {k!r}")
            w[k] = float(v)
        total = sum(w.values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"phase weights must sum to 1 (got {total:.4f})")
        self.weights = w
        self._prefix: dict[str, float] = {}
        acc = 0.0
        for p in PHASE_ORDER:
            self._prefix[p] = acc
            acc += w[p]
        self._per_library: dict[str, float] = {}
        self._lock = threading.Lock()

    def prefix_weight(self, phase: str) -> float:
        return self._prefix[phase]

    def update(self, library: str, phase: str, ratio: float) -> float:
        if phase not in self.weights:
            raise ValueError(f"unknown phase: {phase!r}")
        candidate = min(1.0, self._prefix[phase] + self.weights[phase] * _clamp(ratio))
        with self._lock:
            prev = self._per_library.get(library, 0.0)
            value = max(prev, candidate)
            self._per_library[library] = value
            return value

    def track(self, library: str) -> None:
        with self._lock:
            self._per_library.setdefault(library, 0.0)

    def get(self, library: str) -> float:
        with self._lock:
            return self._per_library.get(library, 0.0)

    def average(self) -> float:
        with self._lock:
            vals = list(self._per_library.values())
        return sum(vals) / len(vals) if vals else 0.0

    def reset(self, library: str | None = None) -> None:
        with self._lock:
            if library is None:
                self._per_library.clear()
            else:
                self._per_library.pop(library, None)

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return dict(self._per_library)
