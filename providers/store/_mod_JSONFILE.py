# /providers/store/_mod_JSONFILE.py
# ZotMirror local store persisted as one JSON document.
from __future__ import annotations
__all__ = ["JSONFileStore", "STORE_VERSION"]

import json
from pathlib import Path
from typing import Union

from _logging import log as _log
from zm_platform.config_base import write_json_atomic

from ._mod_MEMORY import MemoryStore, StoreError

STORE_VERSION = 1

log = _log.child("STORE")


class JSONFileStore(MemoryStore):
    """MemoryStore that loads from and flushes to a JSON file. Writes are atomic (tmp + replace)."""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text("utf-8"))
            except ValueError as e:
                # refusing to start empty: a fresh mirror would discard local annotations
                raise StoreError(f"mirror file {self.path} is not valid JSON: {e}") from e
            if not isinstance(data, dict) or int(data.get("version") or 0) != STORE_VERSION:
                raise StoreError(f"mirror file {self.path} has an unsupported format")
            self.load(data)
            log.debug(f"loaded {len(self)} handle(s) from {self.path}")

    def flush(self) -> None:
        data = self.dump()
        data["version"] = STORE_VERSION
        write_json_atomic(self.path, data)
