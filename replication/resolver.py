# replication/resolver.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from replication.constants import REPLICAST_SOURCE_INFO
from replication.identity_map import IdentityMap
from replication.types import AssetRef, EntityRef, PostRef, TermRef

logger = logging.getLogger(__name__)

# What an unresolved reference becomes in an outgoing payload. Never a local id.
UNSET = ""

RemoteId = Union[int, str]


def coerce_id(value: Any) -> Optional[int]:
    """Local id out of an int, a numeric string or an object-ish dict. None if it isn't one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        num = int(value.strip())
        return num if num > 0 else None
    if isinstance(value, Mapping):
        for key in ("ID", "id", "term_id"):
            if key in value:
                return coerce_id(value[key])
    return None


class FieldKind(Enum):
    """Typed custom-field kinds that can carry cross-entity references."""

    TEXT = "text"
    RELATIONSHIP = "relationship"
    GALLERY = "gallery"
    IMAGE = "image"
    TAXONOMY = "taxonomy"

    @classmethod
    def parse(cls, type_name: Any) -> "FieldKind":
        try:
            return cls(str(type_name))
        except ValueError:
            # Anything else carries no references; pass it through untouched.
            return cls.TEXT


# ---------- term trees ----------
_TERM_ID_KEYS = ("term_id", "term_taxonomy_id", "parent", "children", "translations", "id")


@dataclass(frozen=True)
class TermNode:
    """A local term as found in a serialized entity, with its subtree."""

    ref: TermRef
    attributes: Mapping[str, Any] = field(default_factory=dict)
    translations: Mapping[str, int] = field(default_factory=dict)
    children: Tuple["TermNode", ...] = ()

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> Optional["TermNode"]:
        term_id = coerce_id(data.get("term_id", data.get("id")))
        if term_id is None:
            logger.debug("Term without a usable local id, skipping: %r", data)
            return None

        taxonomy = str(data.get("taxonomy") or "category")
        translations = {}
        for lang, tid in (data.get("translations") or {}).items():
            local = coerce_id(tid)
            if local is not None:
                translations[str(lang)] = local

        return cls(
            ref=TermRef(term_id, taxonomy),
            attributes={k: v for k, v in data.items() if k not in _TERM_ID_KEYS},
            translations=translations,
            children=parse_term_tree(data.get("children")),
        )


def parse_term_tree(raw: Any) -> Tuple[TermNode, ...]:
    """Accepts a list of term dicts or a {term_id: term} mapping; keeps order."""
    if not raw:
        return ()
    items: Iterable[Any] = raw.values() if isinstance(raw, Mapping) else raw
    nodes = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        node = TermNode.from_wire(item)
        if node is not None:
            nodes.append(node)
    return tuple(nodes)


@dataclass(frozen=True)
class ResolvedTerm:
    """A term rewritten into one destination's id space."""

    source_id: int
    taxonomy: str
    term_id: RemoteId
    term_taxonomy_id: RemoteId
    parent: RemoteId
    attributes: Mapping[str, Any] = field(default_factory=dict)
    translations: Mapping[str, RemoteId] = field(default_factory=dict)
    children: Tuple["ResolvedTerm", ...] = ()

    def to_wire(self) -> Dict[str, Any]:
        data = dict(self.attributes)
        meta = dict(data.get("meta") or {})
        meta[REPLICAST_SOURCE_INFO] = {"object_id": self.source_id}
        data.update(
            {
                "term_id": self.term_id,
                "term_taxonomy_id": self.term_taxonomy_id,
                "parent": self.parent,
                "taxonomy": self.taxonomy,
                "meta": meta,
                "children": [child.to_wire() for child in self.children],
            }
        )
        if self.translations:
            data["translations"] = dict(self.translations)
        return data

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


# ---------- resolver ----------
class ReferenceResolver:
    """
    Rewrites local references into the id space of one destination.

    A reference to an entity that has no descriptor on the destination resolves
    to UNSET: it simply has not been replicated there yet.
    """

    def __init__(self, identity_map: IdentityMap, destination_id: str):
        self.identity_map = identity_map
        self.destination_id = str(destination_id)

    def lookup(self, ref: Optional[EntityRef], extra: Optional[str] = None) -> RemoteId:
        """
        Base lookup shared by every shape.

        extra: surface `extra_ids[extra]` instead of the remote id.
        """
        if ref is None:
            return UNSET
        desc = self.identity_map.lookup(ref, self.destination_id)
        if desc is None:
            return UNSET
        if extra is not None:
            value = desc.extra_ids.get(extra)
            return UNSET if value in (None, "") else value
        return desc.remote_id

    # --- scalar / list ---
    def resolve_scalar(self, value: Any, make_ref: Callable[[int], EntityRef] = PostRef) -> RemoteId:
        local = coerce_id(value)
        if local is None:
            return UNSET
        return self.lookup(make_ref(local))

    def resolve_list(
        self,
        values: Any,
        make_ref: Callable[[int], EntityRef] = PostRef,
        keep_unresolved: bool = False,
    ) -> List[RemoteId]:
        if not values:
            return []
        if not isinstance(values, (list, tuple)):
            values = [values]

        resolved: List[RemoteId] = []
        for value in values:
            remote = self.resolve_scalar(value, make_ref)
            if remote == UNSET and not keep_unresolved:
                continue
            resolved.append(remote)
        return resolved

    def resolve_translations(
        self,
        translations: Optional[Mapping[str, Any]],
        make_ref: Callable[[int], EntityRef] = PostRef,
    ) -> Dict[str, RemoteId]:
        """{lang: local id} -> {lang: remote id}; languages without a replica are dropped."""
        resolved: Dict[str, RemoteId] = {}
        for lang, value in (translations or {}).items():
            remote = self.resolve_scalar(value, make_ref)
            if remote != UNSET:
                resolved[str(lang)] = remote
        return resolved

    # --- hierarchical ---
    def resolve_terms(self, nodes: Sequence[TermNode]) -> Tuple[ResolvedTerm, ...]:
        """Resolve root terms (and their subtrees) in order."""
        return tuple(self._resolve_node(node, parent_remote=None) for node in nodes)

    def _resolve_node(self, node: TermNode, parent_remote: Optional[RemoteId]) -> ResolvedTerm:
        desc = self.identity_map.lookup(node.ref, self.destination_id)

        if desc is not None:
            term_id: RemoteId = desc.remote_id
            tt_id = desc.extra_ids.get("term_taxonomy_id", UNSET)
        else:
            term_id = UNSET
            tt_id = UNSET

        if parent_remote is None:
            parent: RemoteId = 0  # root
        elif desc is not None and parent_remote != UNSET:
            parent = parent_remote
        else:
            parent = UNSET

        # Children need this node's remote id, and this node needs its finished
        # children: resolve the subtree first, then assemble.
        children = tuple(self._resolve_node(child, parent_remote=term_id) for child in node.children)

        return ResolvedTerm(
            source_id=node.ref.id,
            taxonomy=node.ref.taxonomy,
            term_id=term_id,
            term_taxonomy_id=tt_id if tt_id not in (None, "") else UNSET,
            parent=parent,
            attributes=dict(node.attributes),
            translations=self.resolve_translations(
                node.translations, lambda tid, tax=node.ref.taxonomy: TermRef(tid, tax)
            ),
            children=children,
        )

    # --- typed fields ---
    def resolve_field(self, kind: FieldKind, value: Any, taxonomy: str = "category") -> Any:
        if kind is FieldKind.RELATIONSHIP:
            return self.resolve_list(value, PostRef)
        if kind is FieldKind.GALLERY:
            return self.resolve_list(value, AssetRef)
        if kind is FieldKind.IMAGE:
            return self.resolve_scalar(value, AssetRef)
        if kind is FieldKind.TAXONOMY:
            return self.resolve_list(value, lambda tid: TermRef(tid, taxonomy))
        return value

    def resolve_meta(self, meta: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Resolve typed fields in a `replicast.meta` mapping.

        Typed entries look like {"raw": {"type": ..., "value": ..., "taxonomy"?: ...}, "rendered": ...}
        and leave as a one-element value list. Plain entries pass through.
        """
        resolved: Dict[str, Any] = {}
        for key, entry in (meta or {}).items():
            raw = entry.get("raw") if isinstance(entry, Mapping) else None
            if not isinstance(raw, Mapping):
                resolved[key] = entry
                continue

            kind = FieldKind.parse(raw.get("type"))
            value = self.resolve_field(kind, raw.get("value"), taxonomy=str(raw.get("taxonomy") or "category"))
            resolved[key] = [value]
        return resolved
