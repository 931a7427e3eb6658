# zm_platform/orchestrator/_logging.py
# compact JSON event emitter for sync progress consumers (CLI, API, UI).
from __future__ import annotations

import json
from typing import Any, Callable


class Emitter:
    def __init__(self, cb: Callable[[str], None] | None):
        self.cb = cb

    def emit(self, event: str, **data: Any) -> None:
        if not self.cb:
            return
        payload: dict[str, Any] = {"event": event}
        payload.update(data)
        try:
            self.cb(json.dumps(payload, separators=(",", ":"), default=str))
        except Exception:
            # a broken listener must not break the sync
            pass

    def info(self, line: str) -> None:
        if not self.cb:
            return
        try:
            self.cb(line)
        except Exception:
            pass

    def toast(self, message: str, level: str = "info", **data: Any) -> None:
        self.emit("toast", level=level, message=message, **data)

    def dbg(self, *args: Any, **fields: Any) -> None:
        # dbg(enabled, msg, ...) or dbg(msg, ...)
        if not args:
            return
        if isinstance(args[0], bool):
            if not args[0]:
                return
            args = args[1:]
        if not args:
            return
        msg = " ".join(str(x) for x in args)
        if fields:
            self.emit("debug", msg=msg, **fields)
        else:
            self.info(f"[DEBUG] {msg}")
