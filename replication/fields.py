# replication/fields.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from replication.base import Host
from replication.constants import (
    DEFAULT_TERM_SLUGS,
    POST_TYPE_REST_BASES,
    REPLICAST_OBJECT_INFO,
    REPLICAST_REMOTE_INFO,
    REPLICAST_SOURCE_INFO,
    REPLICAST_TRANSLATIONS,
    TAXONOMY_REST_BASES,
    TAXONOMY_SITE,
)
from replication.resolver import coerce_id
from replication.types import EntityRef, PostRef, ReplicationSettings, TermRef

logger = logging.getLogger(__name__)


def is_protected_meta(key: str) -> bool:
    return key.startswith("_")


def rest_route(entity: EntityRef) -> str:
    if isinstance(entity, TermRef):
        base = TAXONOMY_REST_BASES.get(entity.taxonomy, entity.taxonomy)
    else:
        base = POST_TYPE_REST_BASES.get(entity.object_type, entity.object_type)
    return f"/wp/v2/{base}/{entity.id}"


class ReplicastFields:
    """
    The `replicast` composite field of an entity's REST representation.

    get_fields() is the read side, used when projecting an entity for sending.
    update_fields() is the write side, used when this host is the destination
    and receives the composite from another instance.
    """

    def __init__(self, host: Host, settings: Optional[ReplicationSettings] = None):
        self.host = host
        self.settings = settings or ReplicationSettings()

    # ==================== read ====================
    def get_fields(self, entity: EntityRef, route: Optional[str] = None) -> Dict[str, Any]:
        return {
            "meta": self.get_meta(entity, route),
            "term": self.get_terms(entity),
            "featured_media": self.get_featured_media(entity),
        }

    def get_meta(self, entity: EntityRef, route: Optional[str] = None) -> Dict[str, Any]:
        exposed = set(self.settings.exposed_meta)

        prepared: Dict[str, Any] = {}
        for key, values in (self.host.all_meta(entity.meta_type, entity.id) or {}).items():
            if is_protected_meta(key) and key not in exposed:
                continue

            definition = self.host.field_object(key, entity.id)
            if definition:
                prepared[key] = {"raw": definition, "rendered": values}
            else:
                prepared[key] = values

        prepared[REPLICAST_OBJECT_INFO] = [
            {"object_id": entity.id, "rest_url": route or rest_route(entity)}
        ]
        return prepared

    def get_terms(self, entity: EntityRef) -> List[Dict[str, Any]]:
        """Hierarchical list of the entity's terms (roots first, children nested)."""
        if isinstance(entity, TermRef):
            return []

        suppressed = set(self.settings.suppressed_taxonomies) | {TAXONOMY_SITE}
        taxonomies = [t for t in self.host.taxonomies() if t not in suppressed]
        if not taxonomies:
            return []

        terms = self.host.object_terms(entity.id, taxonomies) or []
        roots = []
        for term in terms:
            if int(term.get("parent") or 0) > 0:
                continue
            if term.get("slug") in DEFAULT_TERM_SLUGS:
                continue
            roots.append(self._term_node(term, terms))
        return roots

    def _term_node(self, term: Mapping[str, Any], terms: List[Mapping[str, Any]]) -> Dict[str, Any]:
        node = dict(term)
        meta: Dict[str, Any] = {}
        source = self.host.get_meta("term", int(term["term_id"]), REPLICAST_SOURCE_INFO)
        if source:
            meta[REPLICAST_SOURCE_INFO] = source
        node["meta"] = meta

        translations = self.host.get_meta("term", int(term["term_id"]), REPLICAST_TRANSLATIONS)
        if translations:
            node["translations"] = translations

        node["children"] = [
            self._term_node(child, terms)
            for child in terms
            if int(child.get("parent") or 0) == int(term["term_id"])
        ]
        return node

    def get_featured_media(self, entity: EntityRef) -> Dict[str, Any]:
        if not isinstance(entity, PostRef):
            return {}
        asset_id = self.host.thumbnail_id(entity.id)
        if not asset_id:
            return {}

        media = dict(self.host.asset_metadata(asset_id) or {})
        media["id"] = asset_id
        media[REPLICAST_OBJECT_INFO] = {"object_id": asset_id, "rest_url": f"/wp/v2/media/{asset_id}"}
        return media

    # ==================== write ====================
    def update_fields(self, values: Mapping[str, Any], entity: EntityRef) -> None:
        if not values:
            return
        if values.get("meta"):
            self.update_meta(values["meta"], entity)
        if values.get("term"):
            self.update_terms(values["term"], entity)
        if values.get("featured_media"):
            self.update_featured_media(values["featured_media"], entity)
        if values.get("translations"):
            self.host.set_meta(entity.meta_type, entity.id, REPLICAST_TRANSLATIONS, dict(values["translations"]))

    def update_meta(self, meta: Mapping[str, Any], entity: EntityRef) -> None:
        # The replica set is local bookkeeping, never accepted from outside
        suppressed = set(self.settings.suppressed_meta) | {REPLICAST_REMOTE_INFO}

        for key, received in meta.items():
            if key in suppressed:
                continue
            self.host.delete_meta(entity.meta_type, entity.id, key)
            for value in received if isinstance(received, list) else [received]:
                self.host.add_meta(entity.meta_type, entity.id, key, value)

    def update_terms(self, terms: Any, entity: EntityRef) -> Dict[str, List[int]]:
        """Insert (or find) each received term locally and assign them to the entity."""
        prepared: Dict[str, List[int]] = {}

        items = terms.values() if isinstance(terms, Mapping) else terms
        for node in items:
            if not isinstance(node, Mapping):
                continue
            if not self.host.taxonomy_exists(str(node.get("taxonomy"))):
                logger.debug("Skipping term %r: unknown taxonomy %r", node.get("name"), node.get("taxonomy"))
                continue
            if coerce_id(node.get("parent")):
                continue
            self._update_term_node(node, 0, prepared)

        for taxonomy, ids in prepared.items():
            self.host.set_object_terms(entity.id, ids, taxonomy)
        return prepared

    def _update_term_node(self, node: Mapping[str, Any], parent_id: int, prepared: Dict[str, List[int]]) -> None:
        taxonomy = str(node.get("taxonomy"))
        term = self.host.insert_term(
            str(node.get("name") or ""),
            taxonomy,
            description=str(node.get("description") or ""),
            parent=parent_id,
        )
        term_id = int(term["term_id"])
        prepared.setdefault(taxonomy, []).append(term_id)

        source = (node.get("meta") or {}).get(REPLICAST_SOURCE_INFO)
        if source:
            self.host.set_meta("term", term_id, REPLICAST_SOURCE_INFO, source)

        for child in node.get("children") or []:
            if isinstance(child, Mapping):
                self._update_term_node(child, term_id, prepared)

    def update_featured_media(self, media: Mapping[str, Any], entity: EntityRef) -> int:
        asset_id = coerce_id(media.get("id"))

        if asset_id is None:
            filename = str(media.get("name") or media.get("file") or f"media-{entity.id}")
            asset_id = self.host.create_placeholder(
                filename.rsplit("/", 1)[-1],
                entity.id,
                dict(media.get("image_meta") or {}),
            )
            logger.info("Created placeholder asset #%s for %s #%s", asset_id, entity.object_type, entity.id)

        if media.get(REPLICAST_OBJECT_INFO):
            self.host.set_meta("post", asset_id, REPLICAST_OBJECT_INFO, media[REPLICAST_OBJECT_INFO])
        if media.get(REPLICAST_SOURCE_INFO):
            self.host.set_meta("post", asset_id, REPLICAST_SOURCE_INFO, media[REPLICAST_SOURCE_INFO])

        self.host.set_thumbnail(entity.id, asset_id)
        return asset_id
