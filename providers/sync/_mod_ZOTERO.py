# /providers/sync/_mod_ZOTERO.py
# ZotMirror remote source: Zotero Web API v3 (libraries, collections, items)
from __future__ import annotations
__VERSION__ = "1.0.0"
__all__ = ["ZoteroSource", "ZoteroError", "ZoteroAuthError"]

from typing import Any, Dict, List, Mapping, Optional

import requests

from _logging import log as _log
from zm_platform.keys import library_key, parse_library_key
from zm_platform.orchestrator._tree import Node, node_from_collection, node_from_item
from zm_platform.orchestrator._types import LibraryInfo, SyncError

from ._mod_common import build_session, label_zotero, request_with_retries, safe_json

# ──────────────────────────────────────────────────────────────────────────────
# errors

class ZoteroError(SyncError): ...
class ZoteroAuthError(ZoteroError): ...

log = _log.child("ZOTERO")

API_VERSION = "3"
DEFAULT_BASE = "https://api.zotero.org"
MAX_PAGE = 100
USER_LIBRARY_NAME = "My Library"

# ──────────────────────────────────────────────────────────────────────────────
# source

def _path_of(library: str) -> str:
    t, i = parse_library_key(library)
    return f"{'users' if t == 'user' else 'groups'}/{i}"


class ZoteroSource:
    """Read-only view of a user's Zotero libraries."""

    def __init__(self, cfg: Mapping[str, Any], ctx: Any = None, session: Optional[requests.Session] = None):
        z = dict((cfg or {}).get("zotero") or cfg or {})
        self.api_key = str(z.get("api_key") or "").strip()
        self.user_id = str(z.get("user_id") or "").strip()
        self.base_url = str(z.get("base_url") or DEFAULT_BASE).rstrip("/")
        self.timeout = float(z.get("timeout") or 15.0)
        self.max_retries = int(z.get("max_retries") or 3)
        self.page_size = min(MAX_PAGE, max(1, int(z.get("page_size") or MAX_PAGE)))
        self.session = session or build_session("ZOTERO", ctx, feature_label=label_zotero)

    # ── http ─────────────────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {
            "Zotero-API-Key": self.api_key,
            "Zotero-API-Version": API_VERSION,
            "User-Agent": f"ZotMirror/{__VERSION__}",
        }

    def _require_auth(self) -> None:
        if not self.api_key or not self.user_id:
            raise ZoteroAuthError("Zotero api_key and user_id must be configured")

    def _get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> requests.Response:
        self._require_auth()
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            r = request_with_retries(
                self.session, "GET", url,
                headers=self._headers(), params=dict(params or {}),
                timeout=self.timeout, max_retries=self.max_retries,
            )
        except requests.RequestException as e:
            raise ZoteroError(f"GET {path}: {e}") from e
        if r.status_code in (401, 403):
            raise ZoteroAuthError(f"GET {path}: HTTP {r.status_code} (check the API key and its permissions)")
        if not r.ok:
            raise ZoteroError(f"GET {path}: HTTP {r.status_code} {(r.text or '')[:200]}")
        return r

    def _paged(self, path: str) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        start = 0
        while True:
            r = self._get(path, {"start": start, "limit": self.page_size})
            page = safe_json(r)
            if not isinstance(page, list):
                raise ZoteroError(f"GET {path}: expected a JSON array")
            out.extend(x for x in page if isinstance(x, dict))
            try:
                total = int(r.headers.get("Total-Results") or -1)
            except ValueError:
                total = -1
            start += len(page)
            if len(page) < self.page_size or (0 <= total <= start):
                break
        return out

    # ── RemoteSource ──────────────────────────────────────────────────────────

    def libraries(self) -> List[LibraryInfo]:
        """User library first, then groups. A failing group listing degrades to the user library."""
        self._require_auth()
        user = library_key("user", self.user_id)
        name = USER_LIBRARY_NAME
        try:
            data = safe_json(self._get(f"users/{self.user_id}"))
            d = (data.get("data") if isinstance(data, dict) else None) or {}
            name = str(d.get("profileName") or d.get("username") or name)
        except ZoteroAuthError:
            raise
        except ZoteroError as e:
            log.debug(f"user profile unavailable: {e}")

        libs = [LibraryInfo(user, name)]
        try:
            for g in self._paged(f"users/{self.user_id}/groups"):
                gd = g.get("data") if isinstance(g.get("data"), dict) else {}
                gid = g.get("id") or gd.get("id")
                if gid is None:
                    continue
                libs.append(LibraryInfo(library_key("group", gid), str(gd.get("name") or g.get("name") or "")))
        except ZoteroError as e:
            log.warn(f"group libraries unavailable, continuing with the user library: {e}")
            return [LibraryInfo(user, name)]
        return libs

    def fetch_nodes(self, library: str) -> List[Node]:
        base = _path_of(library)
        collections = self._paged(f"{base}/collections")
        items = self._paged(f"{base}/items")
        log.debug(f"{library}: {len(collections)} collection(s), {len(items)} item(s)")

        nodes: List[Node] = []
        for raw in collections:
            try:
                nodes.append(node_from_collection(library, raw))
            except ValueError as e:
                log.warn(f"{library}: collection skipped: {e}")
        for raw in items:
            try:
                nodes.append(node_from_item(library, raw))
            except ValueError as e:
                log.warn(f"{library}: item skipped: {e}")
        return nodes
