# Public surface of the orchestrator package.
from ._types import LibraryInfo, SyncAborted, SyncError, TouchedNode
from ._payload import Payload
from ._tree import Node, Tree, build
from ._planner import ChangeSet, diff, plan
from ._merge import merge
from ._progress import ProgressReporter
from ._lock import ABORT, SYNC_LOCK, AbortFlag, SyncLock
from .facade import Orchestrator

__all__ = [
    "Orchestrator", "LibraryInfo", "SyncError", "SyncAborted", "TouchedNode",
    "Payload", "Node", "Tree", "build", "ChangeSet", "diff", "plan", "merge",
    "ProgressReporter", "SyncLock", "AbortFlag", "SYNC_LOCK", "ABORT",
]
