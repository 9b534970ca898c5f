# stores/json_host.py
from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from typing import Any, Dict, Iterable, List, Optional, Tuple

from replication.constants import POST_TYPE_REST_BASES, TAXONOMY_REST_BASES, TAXONOMY_SITE
from replication.errors import StorageError
from replication.fields import ReplicastFields, rest_route
from replication.types import AssetRef, EntityRef, PostRef, ReplicationSettings, TermRef

logger = logging.getLogger(__name__)

DOCUMENT_SCHEMA_VERSION = 1

# Transparent 1x1 GIF used for placeholder assets
PLACEHOLDER_GIF = bytes.fromhex(
    "47494638396101000100900000ff000000000021f90405100000002c00000000010001000002020401003b"
)

DEFAULT_TAXONOMIES = ("category", "post_tag", TAXONOMY_SITE)


def empty_document() -> Dict[str, Any]:
    return {
        "schema_version": DOCUMENT_SCHEMA_VERSION,
        "taxonomies": list(DEFAULT_TAXONOMIES),
        "posts": {},
        "terms": {},
        "relationships": {},
        "meta": {"post": {}, "term": {}},
        "fields": {},
    }


class JsonHost:
    """
    A host platform kept in one JSON document.

    Layout:
      posts:         {id: {id, type, title, content, status, slug, date, parent,
                           mime_type, file, template, thumbnail, translations}}
      terms:         {term_id: {term_id, term_taxonomy_id, name, slug, description, taxonomy, parent}}
      relationships: {object_id: {taxonomy: [term_id, ...]}}
      meta:          {"post"|"term": {object_id: {key: [value, ...]}}}
      fields:        {object_id: {meta_key: {"type": ..., ...}}}   typed custom fields

    Asset files live next to the document (`file` is relative to it).
    Every mutation is saved immediately, atomically.
    """

    def __init__(self, path: str, settings: Optional[ReplicationSettings] = None):
        self.path = path
        self.base_dir = os.path.dirname(os.path.abspath(path))
        self.settings = settings or ReplicationSettings()
        self.fields = ReplicastFields(self, self.settings)
        self.doc = self.load()

    @classmethod
    def from_document(cls, path: str, document: Dict[str, Any], settings: Optional[ReplicationSettings] = None):
        doc = empty_document()
        doc.update(copy.deepcopy(document))
        host = cls.__new__(cls)
        host.path = path
        host.base_dir = os.path.dirname(os.path.abspath(path))
        host.settings = settings or ReplicationSettings()
        host.fields = ReplicastFields(host, host.settings)
        host.doc = doc
        host.save()
        return host

    # ---------- persistence ----------
    def load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return empty_document()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read host document {self.path}: {e}") from e

        doc = empty_document()
        doc.update(data or {})
        return doc

    def save(self) -> None:
        dirpath = self.base_dir
        try:
            os.makedirs(dirpath, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".replicast.", suffix=".json.tmp", dir=dirpath)
        except OSError as e:
            raise StorageError(f"Cannot write host document {self.path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.doc, f, ensure_ascii=False, indent=2, sort_keys=True)
            os.replace(tmp, self.path)  # atomic on POSIX
        except OSError as e:
            raise StorageError(f"Cannot write host document {self.path}: {e}") from e
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)

    # ---------- records ----------
    def get_post(self, post_id: int) -> Optional[Dict[str, Any]]:
        return self.doc["posts"].get(str(post_id))

    def entity(self, kind: str, object_id: int, taxonomy: Optional[str] = None) -> EntityRef:
        """EntityRef for a stored object; the content type comes from the record."""
        if kind == "term":
            term = self.get_term(object_id)
            return TermRef(int(object_id), taxonomy or (term or {}).get("taxonomy") or "category")
        record = self.get_post(object_id) or {}
        if kind == "attachment" or record.get("type") == "attachment":
            return AssetRef(int(object_id))
        return PostRef(int(object_id), record.get("type") or "post")

    def _next_id(self, table: str) -> int:
        ids = [int(k) for k in self.doc[table]]
        return max(ids, default=0) + 1

    # ==================== MetadataStore ====================
    def _meta_bucket(self, meta_type: str, object_id: int, create: bool = False) -> Dict[str, List[Any]]:
        by_type = self.doc["meta"].setdefault(meta_type, {})
        if create:
            return by_type.setdefault(str(object_id), {})
        return by_type.get(str(object_id), {})

    def get_meta(self, meta_type: str, object_id: int, key: str) -> Any:
        values = self._meta_bucket(meta_type, object_id).get(key)
        return values[0] if values else None

    def set_meta(self, meta_type: str, object_id: int, key: str, value: Any) -> None:
        self._meta_bucket(meta_type, object_id, create=True)[key] = [value]
        self.save()

    def add_meta(self, meta_type: str, object_id: int, key: str, value: Any) -> None:
        self._meta_bucket(meta_type, object_id, create=True).setdefault(key, []).append(value)
        self.save()

    def delete_meta(self, meta_type: str, object_id: int, key: str) -> None:
        bucket = self._meta_bucket(meta_type, object_id)
        if key in bucket:
            del bucket[key]
            self.save()

    def all_meta(self, meta_type: str, object_id: int) -> Dict[str, List[Any]]:
        return copy.deepcopy(self._meta_bucket(meta_type, object_id))

    # ==================== TermStore ====================
    def taxonomies(self) -> List[str]:
        return list(self.doc.get("taxonomies") or [])

    def taxonomy_exists(self, taxonomy: str) -> bool:
        return taxonomy in self.taxonomies()

    def get_term(self, term_id: int) -> Optional[Dict[str, Any]]:
        term = self.doc["terms"].get(str(term_id))
        return dict(term) if term else None

    def object_terms(self, object_id: int, taxonomies: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        wanted = set(taxonomies) if taxonomies is not None else None
        out = []
        for taxonomy, ids in (self.doc["relationships"].get(str(object_id)) or {}).items():
            if wanted is not None and taxonomy not in wanted:
                continue
            for term_id in ids:
                term = self.get_term(term_id)
                if term:
                    out.append(term)
        return out

    def insert_term(self, name: str, taxonomy: str, description: str = "", parent: int = 0) -> Dict[str, Any]:
        for term in self.doc["terms"].values():
            if term["taxonomy"] == taxonomy and term["name"] == name and int(term.get("parent") or 0) == int(parent):
                return dict(term)

        term_id = self._next_id("terms")
        term = {
            "term_id": term_id,
            "term_taxonomy_id": term_id,
            "name": name,
            "slug": name.strip().lower().replace(" ", "-"),
            "description": description,
            "taxonomy": taxonomy,
            "parent": int(parent),
        }
        self.doc["terms"][str(term_id)] = term
        self.save()
        logger.debug("Inserted %s term %r as #%d", taxonomy, name, term_id)
        return dict(term)

    def set_object_terms(self, object_id: int, term_ids: List[int], taxonomy: str) -> None:
        rel = self.doc["relationships"].setdefault(str(object_id), {})
        rel[taxonomy] = [int(t) for t in term_ids]
        self.save()

    # ==================== AssetStore ====================
    def read_asset(self, asset_id: int) -> Tuple[str, bytes]:
        record = self.get_post(asset_id)
        if not record or not record.get("file"):
            raise StorageError(f"Asset #{asset_id} has no file.")
        path = os.path.join(self.base_dir, record["file"])
        try:
            with open(path, "rb") as f:
                return os.path.basename(path), f.read()
        except OSError as e:
            raise StorageError(f"Cannot read asset #{asset_id} ({path}): {e}") from e

    def asset_metadata(self, asset_id: int) -> Dict[str, Any]:
        record = self.get_post(asset_id) or {}
        metadata = dict(record.get("metadata") or {})
        if record.get("file"):
            metadata.setdefault("file", record["file"])
            metadata.setdefault("name", os.path.basename(record["file"]))
        return metadata

    def create_placeholder(self, filename: str, parent_id: int, metadata: Dict[str, Any]) -> int:
        rel_path = os.path.join("uploads", os.path.basename(filename))
        abs_path = os.path.join(self.base_dir, rel_path)
        try:
            os.makedirs(os.path.dirname(abs_path), exist_ok=True)
            with open(abs_path, "wb") as f:
                f.write(PLACEHOLDER_GIF)
        except OSError as e:
            raise StorageError(f"Cannot write placeholder {abs_path}: {e}") from e

        asset_id = self._next_id("posts")
        self.doc["posts"][str(asset_id)] = {
            "id": asset_id,
            "type": "attachment",
            "title": os.path.splitext(os.path.basename(filename))[0],
            "status": "inherit",
            "mime_type": "image/gif",
            "parent": int(parent_id),
            "file": rel_path,
            "metadata": dict(metadata or {}),
        }
        self.save()
        return asset_id

    def thumbnail_id(self, object_id: int) -> Optional[int]:
        record = self.get_post(object_id) or {}
        thumb = record.get("thumbnail")
        return int(thumb) if thumb else None

    def set_thumbnail(self, object_id: int, asset_id: int) -> None:
        record = self.doc["posts"].setdefault(str(object_id), {"id": int(object_id), "type": "post"})
        record["thumbnail"] = int(asset_id)
        self.save()

    # ==================== SiteDirectory ====================
    def destinations_for(self, entity: EntityRef) -> List[str]:
        if isinstance(entity, TermRef):
            # A term goes wherever the content using it goes
            out: List[str] = []
            for object_id, rel in self.doc["relationships"].items():
                if int(entity.id) in (rel.get(entity.taxonomy) or []):
                    for dest_id in self._site_ids(object_id):
                        if dest_id not in out:
                            out.append(dest_id)
            return out
        return self._site_ids(entity.id)

    def _site_ids(self, object_id: Any) -> List[str]:
        rel = self.doc["relationships"].get(str(object_id)) or {}
        return [str(t) for t in rel.get(TAXONOMY_SITE) or []]

    # ==================== FieldDefinitions ====================
    def field_object(self, key: str, object_id: int) -> Optional[Dict[str, Any]]:
        return (self.doc.get("fields") or {}).get(str(object_id), {}).get(key)

    # ==================== Projector ====================
    def project(self, entity: EntityRef) -> Dict[str, Any]:
        if isinstance(entity, TermRef):
            return self._project_term(entity)
        return self._project_post(entity)

    def _project_post(self, entity: EntityRef) -> Dict[str, Any]:
        record = self.get_post(entity.id)
        if record is None:
            raise StorageError(f"{entity.object_type} #{entity.id} does not exist.")

        object_type = record.get("type") or entity.object_type
        data: Dict[str, Any] = {
            "id": entity.id,
            "date": record.get("date") or "",
            "slug": record.get("slug") or "",
            "status": record.get("status") or "publish",
            "type": object_type,
            "link": record.get("link") or "",
            "title": record.get("title") or "",
            "content": record.get("content") or "",
            "excerpt": record.get("excerpt") or "",
            "author": record.get("author") or 1,
            "featured_media": record.get("thumbnail") or 0,
        }
        if record.get("date_gmt"):
            data["date_gmt"] = record["date_gmt"]
        if object_type == "page":
            data["template"] = record.get("template") or ""
        if object_type == "attachment":
            data["mime_type"] = record.get("mime_type") or "application/octet-stream"
            data["post"] = record.get("parent") or 0
            data["alt_text"] = record.get("alt_text") or ""

        for taxonomy, ids in (self.doc["relationships"].get(str(entity.id)) or {}).items():
            if taxonomy == TAXONOMY_SITE:
                continue
            data[TAXONOMY_REST_BASES.get(taxonomy, taxonomy)] = list(ids)

        route = f"/wp/v2/{POST_TYPE_REST_BASES.get(object_type, object_type)}/{entity.id}"
        composite = self.fields.get_fields(entity, route)
        if record.get("translations"):
            composite["translations"] = dict(record["translations"])
        data["replicast"] = composite
        return data

    def _project_term(self, entity: TermRef) -> Dict[str, Any]:
        term = self.get_term(entity.id)
        if term is None:
            raise StorageError(f"Term #{entity.id} does not exist.")

        count = sum(
            1 for rel in self.doc["relationships"].values() if int(entity.id) in (rel.get(term["taxonomy"]) or [])
        )
        return {
            "id": int(term["term_id"]),
            "count": count,
            "description": term.get("description") or "",
            "link": term.get("link") or "",
            "name": term.get("name") or "",
            "slug": term.get("slug") or "",
            "taxonomy": term["taxonomy"],
            "parent": int(term.get("parent") or 0),
            "meta": {},
            "replicast": self.fields.get_fields(entity, rest_route(entity)),
        }
