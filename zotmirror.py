# zotmirror.py
# ZotMirror entry point: one-shot sync, status, library listing, or the control API under uvicorn.
from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Callable

from _logging import log as _log
from zm_platform.config_base import CONFIG_BASE, load_config, mirror_path

log = _log.child("MAIN")

_STORE: Any = None


def _store(cfg: dict[str, Any]) -> Any:
    # one mirror per process; the API and CLI share it
    global _STORE
    if _STORE is None:
        from providers.store._mod_JSONFILE import JSONFileStore
        _STORE = JSONFileStore(mirror_path(cfg))
    return _STORE


def build_orchestrator(on_progress: Callable[[str], None] | None = None) -> Any:
    from providers.sync._mod_ZOTERO import ZoteroSource
    from zm_platform.orchestrator import Orchestrator

    cfg = load_config()
    return Orchestrator(cfg, ZoteroSource(cfg), _store(cfg), on_progress=on_progress)


def _print_line(line: str) -> None:
    print(line, flush=True)


def cmd_sync(ns: argparse.Namespace) -> int:
    cfg = load_config()
    if ns.auto and not (cfg.get("sync") or {}).get("auto_sync", True):
        log.info("auto sync disabled in config; nothing to do")
        return 0
    orc = build_orchestrator(_print_line if ns.events else None)
    res = orc.run(libraries=ns.library or None, dry_run=ns.dry_run)
    print(json.dumps(res, indent=2, default=str))
    if res.get("skipped"):
        return 2
    return 0 if res.get("ok") else 1


def cmd_status(ns: argparse.Namespace) -> int:
    print(json.dumps(build_orchestrator().status(), indent=2, default=str))
    return 0


def cmd_libraries(ns: argparse.Namespace) -> int:
    for lib in build_orchestrator().libraries():
        print(f"{lib.key}\t{lib.name}")
    return 0


def cmd_serve(ns: argparse.Namespace) -> int:
    import uvicorn
    from api import create_app

    cfg = load_config()
    debug = bool((cfg.get("runtime") or {}).get("debug"))
    print("\nZotMirror control API running:")
    print(f"  Bind:    {ns.host}:{ns.port}")
    print(f"  Config:  {CONFIG_BASE() / 'config.json'} (JSON)")
    print(f"  Mirror:  {mirror_path(cfg)}\n")
    uvicorn.run(
        create_app(build_orchestrator),
        host=ns.host,
        port=ns.port,
        log_level=("debug" if debug else "warning"),
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="zotmirror", description="Mirror Zotero libraries into a local tree")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sync", help="run one sync cycle")
    p.add_argument("--library", action="append", metavar="KEY", help="library key (user:<id> / group:<id>); repeatable")
    p.add_argument("--dry-run", action="store_true", help="plan only, do not touch the mirror")
    p.add_argument("--auto", action="store_true", help="scheduled run; honours sync.auto_sync")
    p.add_argument("--events", action="store_true", help="print progress events as JSON lines")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("status", help="show persisted sync state")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("libraries", help="list the libraries available to the API key")
    p.set_defaults(func=cmd_libraries)

    p = sub.add_parser("serve", help="run the control API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8788)
    p.set_defaults(func=cmd_serve)

    ns = parser.parse_args(argv)
    return int(ns.func(ns) or 0)


if __name__ == "__main__":
    sys.exit(main())
