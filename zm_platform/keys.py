# /zm_platform/keys.py
# Global key handling for nodes mirrored from several libraries.
# - A library is identified as "<type>:<id>" (user:123, group:42).
# - A node's global key is "<library>:<nativeKey>"; unique across libraries.
# - Library ids carry a colon themselves, so splitting always uses the last one.

from __future__ import annotations
from typing import Tuple

__all__ = [
    "LIBRARY_TYPES",
    "library_key", "parse_library_key",
    "make_global_key", "split_global_key", "library_of", "native_of",
    "is_global_key",
]

LIBRARY_TYPES: Tuple[str, ...] = ("user", "group")


def library_key(lib_type: str, lib_id: str | int) -> str:
    t = str(lib_type or "").strip().lower()
    if t not in LIBRARY_TYPES:
        raise ValueError(f"unknown library type: {lib_type!r}")
    i = str(lib_id or "").strip()
    if not i:
        raise ValueError("library id is empty")
    return f"{t}:{i}"


def parse_library_key(key: str) -> Tuple[str, str]:
    t, _, i = str(key or "").partition(":")
    if t not in LIBRARY_TYPES or not i:
        raise ValueError(f"not a library key: {key!r}")
    return t, i


def make_global_key(library: str, native_key: str) -> str:
    native = str(native_key or "").strip()
    if not native:
        raise ValueError("native key is empty")
    return f"{library}:{native}"


def split_global_key(key: str) -> Tuple[str, str]:
    lib, sep, native = str(key or "").rpartition(":")
    if not sep:
        return "", native
    return lib, native


def library_of(key: str) -> str:
    return split_global_key(key)[0]


def native_of(key: str) -> str:
    return split_global_key(key)[1]


def is_global_key(key: str) -> bool:
    lib, native = split_global_key(key)
    if not lib or not native:
        return False
    try:
        parse_library_key(lib)
    except ValueError:
        return False
    return True
