# replication/handlers/post.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Mapping, Optional

from replication.constants import (
    POST_TYPE_REST_BASES,
    REPLICAST_FIELD,
    REPLICAST_SOURCE_INFO,
    TAXONOMY_REST_BASES,
)
from replication.resolver import ReferenceResolver, parse_term_tree
from replication.types import AssetRef, Destination, PostRef, RemoteDescriptor, TermRef

from .base import ProtocolHandler

logger = logging.getLogger(__name__)


def slugify(title: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", title.lower(), flags=re.UNICODE)
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug


def source_object_id(meta: Any) -> Optional[int]:
    """
    Local id recorded in a `_replicast_source_info` entry.

    The entry may come back as a dict, a one-element list (meta arrays) or a
    JSON string, depending on how the other side stored it.
    """
    if not isinstance(meta, Mapping):
        return None
    info: Any = meta.get(REPLICAST_SOURCE_INFO)
    if isinstance(info, list):
        info = info[0] if info else None
    if isinstance(info, str):
        try:
            info = json.loads(info)
        except ValueError:
            return None
    if not isinstance(info, Mapping):
        return None
    try:
        return int(info.get("object_id"))
    except (TypeError, ValueError):
        return None


class PostHandler(ProtocolHandler):
    """Articles, pages and any other post-like content type."""

    @property
    def resource_base(self) -> str:
        return POST_TYPE_REST_BASES.get(self.entity.object_type, self.entity.object_type)

    def prepare_fields(
        self,
        data: Dict[str, Any],
        resolver: ReferenceResolver,
        destination: Destination,
    ) -> Dict[str, Any]:
        # Drafts without a slug would get a random one remotely
        if not data.get("slug") and data.get("status") == "draft":
            title = data.get("title")
            if isinstance(title, Mapping):
                title = title.get("raw") or title.get("rendered")
            if title:
                data["slug"] = slugify(str(title))

        if data.get("featured_media"):
            data["featured_media"] = resolver.resolve_scalar(data["featured_media"], AssetRef)

        composite = data.get(REPLICAST_FIELD)
        if isinstance(composite, dict):
            self._prepare_meta(composite, resolver)
            taxonomies = self._prepare_terms(composite, resolver)
            self._prepare_featured_media(composite, resolver)
            self._prepare_media(composite, resolver)
            if composite.get("translations"):
                composite["translations"] = resolver.resolve_translations(composite["translations"], PostRef)

            # Terms travel inside the composite only
            for taxonomy in taxonomies:
                data.pop(taxonomy, None)
                data.pop(TAXONOMY_REST_BASES.get(taxonomy, taxonomy), None)

        if self.entity.object_type == "page":
            data = self.prepare_page(data)

        return data

    # ---------- pieces ----------
    def prepare_page(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data.get("template"):
            data.pop("template", None)
        return data

    def _prepare_meta(self, composite: Dict[str, Any], resolver: ReferenceResolver) -> None:
        meta = resolver.resolve_meta(composite.get("meta"))
        meta[REPLICAST_SOURCE_INFO] = [self.source_info()]
        composite["meta"] = meta

    def _prepare_terms(self, composite: Dict[str, Any], resolver: ReferenceResolver) -> set:
        nodes = parse_term_tree(composite.get("term"))
        if not nodes:
            composite.pop("term", None)
            return set()

        resolved = resolver.resolve_terms(nodes)
        composite["term"] = [node.to_wire() for node in resolved]
        return {t.taxonomy for root in resolved for t in root.walk()}

    def _prepare_featured_media(self, composite: Dict[str, Any], resolver: ReferenceResolver) -> None:
        media = composite.get("featured_media")
        if not isinstance(media, dict) or not media:
            return
        local = media.get("id")
        media["id"] = resolver.resolve_scalar(local, AssetRef)
        if local not in (None, ""):
            media[REPLICAST_SOURCE_INFO] = {"object_id": local}

    def _prepare_media(self, composite: Dict[str, Any], resolver: ReferenceResolver) -> None:
        media = composite.get("media")
        if not isinstance(media, dict):
            return
        for media_id, entry in media.items():
            if not isinstance(entry, dict):
                continue
            entry["id"] = resolver.resolve_scalar(media_id, AssetRef)
            entry[REPLICAST_SOURCE_INFO] = {"object_id": media_id}

    def source_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"object_id": self.entity.id}
        if self.data.get("link"):
            info["permalink"] = self.data["link"]
        return info

    # ---------- response absorption ----------
    def persist_nested(self, destination: Destination, response: Mapping[str, Any]) -> int:
        """
        Record term descriptors found in a destination's answer.

        The destination echoes the term tree with its own ids, each node still
        carrying the source info we attached. Returns the number of terms written.
        """
        composite = response.get(REPLICAST_FIELD) if isinstance(response, Mapping) else None
        if not isinstance(composite, Mapping):
            return 0

        written = 0
        for node in self._walk_wire_terms(composite.get("term")):
            local_id = source_object_id(node.get("meta"))
            if local_id is None:
                continue
            descriptor = RemoteDescriptor.from_response(node, ("term_taxonomy_id",))
            if descriptor is None:
                continue
            ref = TermRef(local_id, str(node.get("taxonomy") or "category"))
            self.identity_map.put(ref, destination.id, descriptor)
            written += 1

        if written:
            logger.info("Recorded %d term descriptor(s) from %s", written, destination.label)
        return written

    def _walk_wire_terms(self, raw: Any):
        if not raw:
            return
        items = raw.values() if isinstance(raw, Mapping) else raw
        for item in items:
            if not isinstance(item, Mapping):
                continue
            yield item
            yield from self._walk_wire_terms(item.get("children"))
