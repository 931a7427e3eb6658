# zm_platform/orchestrator/_payload.py
# Typed payload carried by every node: named bibliographic fields plus an extension map.
from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from collections.abc import Mapping
from typing import Any

__all__ = [
    "CORE", "CHILD", "OTHER",
    "Payload", "policy_of", "FIELD_POLICY", "STRUCTURAL_FIELDS",
]

CORE = "core"      # remote is the system of record
CHILD = "child"    # list of independent entries, union-merged
OTHER = "other"    # three-way: remote change wins, otherwise local survives

# Linkage lives on the Node (parent_keys/version), never in the payload.
STRUCTURAL_FIELDS = frozenset({"collections", "parentItem", "parentCollection", "version"})


def _f(alias: str, policy: str) -> Any:
    return field(default=None, metadata={"alias": alias, "policy": policy})


@dataclass(frozen=True)
class Payload:
    # identity + type
    key: Any = _f("key", CORE)
    item_type: Any = _f("itemType", CORE)
    # primary bibliographic facts
    creators: Any = _f("creators", CORE)
    title: Any = _f("title", CORE)
    name: Any = _f("name", CORE)
    publication_title: Any = _f("publicationTitle", CORE)
    book_title: Any = _f("bookTitle", CORE)
    publisher: Any = _f("publisher", CORE)
    date: Any = _f("date", CORE)
    date_added: Any = _f("dateAdded", CORE)
    date_modified: Any = _f("dateModified", CORE)
    # canonical identifiers
    url: Any = _f("url", CORE)
    doi: Any = _f("DOI", CORE)
    issn: Any = _f("ISSN", CORE)
    isbn: Any = _f("ISBN", CORE)
    # attachment linkage
    link_mode: Any = _f("linkMode", CORE)
    content_type: Any = _f("contentType", CORE)
    filename: Any = _f("filename", CORE)
    path: Any = _f("path", CORE)
    md5: Any = _f("md5", CORE)
    # child content
    notes: Any = _f("notes", CHILD)
    tags: Any = _f("tags", CHILD)
    # free-form
    abstract_note: Any = _f("abstractNote", OTHER)
    extra_field: Any = _f("extra", OTHER)
    relations: Any = _f("relations", OTHER)
    note: Any = _f("note", OTHER)
    # unrecognized remote fields, keyed by their remote name
    extra: Mapping[str, Any] = field(default_factory=dict, metadata={"policy": OTHER})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "Payload":
        if isinstance(data, Payload):
            return data
        named: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for k, v in (data or {}).items():
            k = str(k)
            if k in STRUCTURAL_FIELDS:
                continue
            attr = _ALIAS_TO_ATTR.get(k)
            if attr is not None:
                if v is not None:
                    named[attr] = v
            else:
                extra[k] = v
        return cls(**named, extra=extra)

    def to_mapping(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for attr, alias in _ATTR_TO_ALIAS.items():
            v = getattr(self, attr)
            if v is not None:
                out[alias] = v
        for k, v in self.extra.items():
            out.setdefault(k, v)
        return out

    def get(self, name: str, default: Any = None) -> Any:
        attr = _ALIAS_TO_ATTR.get(name)
        if attr is not None:
            v = getattr(self, attr)
            return default if v is None else v
        return self.extra.get(name, default)

    def __contains__(self, name: object) -> bool:
        attr = _ALIAS_TO_ATTR.get(str(name))
        if attr is not None:
            return getattr(self, attr) is not None
        return name in self.extra

    def __bool__(self) -> bool:
        return bool(self.to_mapping())

    def label(self) -> str:
        for cand in (self.title, self.name):
            if isinstance(cand, str) and cand.strip():
                return cand.strip()
        if isinstance(self.note, str) and self.note.strip():
            text = re.sub(r"<[^>]+>", " ", self.note)
            text = re.sub(r"\s+", " ", text).strip()
            return text[:80]
        return ""


_ATTR_TO_ALIAS: dict[str, str] = {
    f.name: f.metadata["alias"] for f in fields(Payload) if "alias" in f.metadata
}
_ALIAS_TO_ATTR: dict[str, str] = {alias: attr for attr, alias in _ATTR_TO_ALIAS.items()}

# remote name -> policy, for every named field
FIELD_POLICY: dict[str, str] = {
    f.metadata["alias"]: f.metadata["policy"] for f in fields(Payload) if "alias" in f.metadata
}


def policy_of(name: str) -> str:
    # anything outside the named set lives in Payload.extra
    return FIELD_POLICY.get(name, OTHER)
