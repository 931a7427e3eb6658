# /providers/sync/_mod_common.py
# shared HTTP plumbing for remote sources: instrumented session, retries, tolerant JSON.
from __future__ import annotations

import json
import os
import time
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

import requests

__all__ = [
    "HitSession",
    "make_emitter",
    "build_session",
    "backoff_seconds",
    "safe_json",
    "request_with_retries",
    "label_zotero",
]

EmitFn = Callable[[str, Mapping[str, Any]], None]
FeatureLabelFn = Callable[[str, str, Mapping[str, Any]], str]


def make_emitter(ctx: Any) -> EmitFn:
    emit_fn: Callable[..., Any] | None = None
    if ctx is not None and callable(getattr(ctx, "emit", None)):
        emit_fn = getattr(ctx, "emit")
    elif callable(ctx):
        emit_fn = ctx

    def _emit(event: str, payload: Mapping[str, Any]) -> None:
        if not emit_fn:
            return
        try:
            emit_fn(event, **dict(payload))
        except Exception:
            pass

    return _emit


def default_feature_label(provider: str, method: str, url: str, kw: Mapping[str, Any]) -> str:
    p = urlparse(url)
    segs = [s for s in (p.path or "/").split("/") if s]
    head = "/".join(segs[:3]) or "unknown"
    return head.lower()


def label_zotero(method: str, url: str, kw: Mapping[str, Any]) -> str:
    # /users/<id>[/groups|/collections|/items], /groups/<id>/...
    p = urlparse(url)
    segs = [s for s in (p.path or "/").split("/") if s]
    if len(segs) == 2 and segs[0] == "users":
        return "profile"
    if len(segs) >= 3 and segs[0] in ("users", "groups"):
        return segs[2].lower()
    return default_feature_label("ZOTERO", method, url, kw)


class HitSession(requests.Session):
    def __init__(
        self,
        provider: str,
        emit: EmitFn,
        feature_label: FeatureLabelFn | None = None,
        emit_hits: bool | None = None,
    ):
        super().__init__()
        self._provider = provider
        self._emit = emit
        self._label = feature_label or (lambda m, u, kw: default_feature_label(provider, m, u, kw))
        self._emit_hits = bool(os.getenv("ZM_API_HITS")) if emit_hits is None else bool(emit_hits)

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:  # type: ignore[override]
        try:
            return super().request(method, url, **kwargs)
        finally:
            if self._emit_hits:
                try:
                    feature = self._label(method.upper(), url, kwargs)
                except Exception:
                    feature = "unknown"
                self._emit("api:hit", {"provider": self._provider, "feature": feature})


def build_session(
    provider: str,
    ctx: Any = None,
    *,
    feature_label: FeatureLabelFn | None = None,
    emit_hits: bool | None = None,
) -> HitSession:
    return HitSession(provider, make_emitter(ctx), feature_label, emit_hits)


def backoff_seconds(h: Mapping[str, Any]) -> float | None:
    # Zotero sends Backoff (any response) or Retry-After (429/503)
    for name in ("Retry-After", "Backoff"):
        v = h.get(name)
        if v is None:
            continue
        try:
            return max(0.0, float(v))
        except (TypeError, ValueError):
            continue
    return None


def safe_json(resp: requests.Response) -> Any:
    try:
        if not (resp.text or "").strip():
            return {}
        ctype = (resp.headers.get("Content-Type") or "").lower()
        if "json" in ctype:
            return resp.json()
        return json.loads(resp.text)
    except ValueError:
        return {}


def request_with_retries(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float = 10.0,
    max_retries: int = 3,
    retry_on: tuple[int, ...] = (429, 500, 502, 503, 504),
    backoff_base: float = 0.5,
    max_wait: float = 30.0,
    **kwargs: Any,
) -> requests.Response:
    last: Any = None
    tries = max(1, int(max_retries))
    for i in range(tries):
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
            if resp.status_code in retry_on and i < tries - 1:
                wait = backoff_base * (2**i)
                hinted = backoff_seconds(resp.headers)
                if hinted is not None:
                    wait = max(wait, hinted)
                time.sleep(min(wait, max_wait))
                last = resp
                continue
            return resp
        except requests.RequestException as e:
            last = e
            if i < tries - 1:
                time.sleep(backoff_base * (2**i))
    if isinstance(last, requests.Response):
        return last
    raise requests.RequestException(f"request failed after retries: {method} {url}: {last}")
