# zm_platform/config_base.py
from __future__ import annotations

import copy
import json
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Any, Dict

# ------------------------------------------------------------
# Base dir resolution
# ------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """
    Determine the base directory for config and state files.

    Priority:
      1) $CONFIG_BASE if set
      2) /config (when running in a container that mounts /config)
      3) Project root (one level up from this package)
    """
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        return Path("/config")

    return Path(__file__).resolve().parents[1]


# Default config structure
DEFAULT_CFG: Dict[str, Any] = {
    # --- Remote source -------------------------------------------------------
    "zotero": {
        "api_key": "",                                  # Zotero Web API key (required)
        "user_id": "",                                  # Numeric Zotero user id (required)
        "base_url": "https://api.zotero.org",           # API root; override for proxies/tests
        "timeout": 15.0,                                # HTTP timeout (seconds)
        "max_retries": 3,                               # Retry budget for 429/5xx
        "page_size": 100,                               # Items per page (Zotero caps at 100)
    },

    # --- Sync behaviour ------------------------------------------------------
    "sync": {
        "multiple_libraries": False,                    # Sync the user library plus every group library
        "library_id": "",                               # "user:<id>" or "group:<id>"; empty = first available
        "dry_run": False,                               # Plan only; do not touch the local mirror
        "auto_sync": True,                              # Allow `zotmirror sync --auto` runs
    },

    # --- Runtime -------------------------------------------------------------
    "runtime": {
        "debug": False,                                 # Verbose [DEBUG] output
        "batch_size": 10,                               # Concurrent local-store ops per batch
        "progress_weights": {},                         # Optional per-phase override (must sum to 1)
    },

    # --- Local mirror --------------------------------------------------------
    "mirror": {
        "path": "mirror.json",                          # JSON-file mirror, relative to CONFIG_BASE
    },
}


# ------------------------------------------------------------
# Helpers: paths, IO, merging
# ------------------------------------------------------------
def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"


def _read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(p: Path, data: Any) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{threading.get_ident()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)

    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp.replace(p)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _normalize(cfg: Dict[str, Any]) -> Dict[str, Any]:
    rt = cfg.setdefault("runtime", {})
    try:
        rt["batch_size"] = max(1, int(rt.get("batch_size") or 10))
    except Exception:
        rt["batch_size"] = 10
    sync = cfg.setdefault("sync", {})
    sync["library_id"] = str(sync.get("library_id") or "").strip()
    z = cfg.setdefault("zotero", {})
    z["user_id"] = str(z.get("user_id") or "").strip()
    try:
        z["page_size"] = min(100, max(1, int(z.get("page_size") or 100)))
    except Exception:
        z["page_size"] = 100
    return cfg


def mirror_path(cfg: Dict[str, Any]) -> Path:
    raw = str(((cfg.get("mirror") or {}).get("path")) or "mirror.json")
    p = Path(raw)
    return p if p.is_absolute() else CONFIG_BASE() / p


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config() -> Dict[str, Any]:
    """
    Read config.json on top of DEFAULT_CFG. A missing or unreadable file yields the defaults.
    """
    p = _cfg_file()
    user_cfg: Dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = _read_json(p)
        except Exception:
            user_cfg = {}
    return _normalize(_deep_merge(DEFAULT_CFG, user_cfg))


def save_config(cfg: Dict[str, Any]) -> None:
    """
    Write config.json
    """
    write_json_atomic(_cfg_file(), _normalize(copy.deepcopy(dict(cfg or {}))))
