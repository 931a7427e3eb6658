# zm_platform/orchestrator/_types.py
# types and protocols for the reconciliation engine.
from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from ._tree import Node

Handle = str


class SyncError(RuntimeError): ...
class SyncAborted(SyncError): ...


@dataclass(frozen=True)
class LibraryInfo:
    key: str            # "user:<id>" | "group:<id>"
    name: str = ""

    @property
    def type(self) -> str:
        return self.key.partition(":")[0]

    @property
    def id(self) -> str:
        return self.key.partition(":")[2]


@dataclass(frozen=True)
class TouchedNode:
    """A leaf created or updated by the structural phase that still needs its content merged."""
    key: str
    handle: Handle
    remote_node: Node


class RemoteSource(Protocol):
    def libraries(self) -> list[LibraryInfo]: ...
    def fetch_nodes(self, library: str) -> list[Node]: ...


class LocalStore(Protocol):
    def create_handle(self, library: str, key: str, kind: str) -> Handle: ...
    def set_label(self, handle: Handle, label: str) -> None: ...
    def get_label(self, handle: Handle) -> str: ...
    def set_parent(self, handle: Handle, parent: Handle | None) -> None: ...
    def get_parent(self, handle: Handle) -> Handle | None: ...
    def remove(self, handle: Handle) -> None: ...
    def get_record(self, handle: Handle) -> Mapping[str, Any] | None: ...
    def set_record(self, handle: Handle, record: Mapping[str, Any]) -> None: ...
    def find_by_key(self, library: str, key: str) -> Handle | None: ...
    def key_of(self, handle: Handle) -> str | None: ...
    def records(self, library: str) -> Iterable[Mapping[str, Any]]: ...
    def default_container(self, library: str) -> Handle: ...
