# replication/base.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from replication.types import EntityRef


class MetadataStore(Protocol):
    """
    Key/value metadata attached to an entity, addressed by (meta_type, object_id).

    A key may hold several values; `get_meta` returns the first one (or None).
    Implementations raise StorageError on I/O failure.
    """

    def get_meta(self, meta_type: str, object_id: int, key: str) -> Any: ...

    def set_meta(self, meta_type: str, object_id: int, key: str, value: Any) -> None: ...

    def add_meta(self, meta_type: str, object_id: int, key: str, value: Any) -> None: ...

    def delete_meta(self, meta_type: str, object_id: int, key: str) -> None: ...

    def all_meta(self, meta_type: str, object_id: int) -> Dict[str, List[Any]]: ...


class TermStore(Protocol):
    """
    Hierarchical category/tag store.

    Terms are plain dicts with at least:
      term_id, term_taxonomy_id, name, slug, description, taxonomy, parent
    """

    def taxonomies(self) -> List[str]: ...

    def taxonomy_exists(self, taxonomy: str) -> bool: ...

    def get_term(self, term_id: int) -> Optional[Dict[str, Any]]: ...

    def object_terms(self, object_id: int, taxonomies: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]: ...

    def insert_term(self, name: str, taxonomy: str, description: str = "", parent: int = 0) -> Dict[str, Any]:
        """Create the term, or return the existing one with the same name under the same parent."""
        ...

    def set_object_terms(self, object_id: int, term_ids: List[int], taxonomy: str) -> None: ...


class AssetStore(Protocol):
    """Binary asset storage plus the post -> featured asset link."""

    def read_asset(self, asset_id: int) -> Tuple[str, bytes]:
        """Return (file name, raw bytes)."""
        ...

    def asset_metadata(self, asset_id: int) -> Dict[str, Any]: ...

    def create_placeholder(self, filename: str, parent_id: int, metadata: Dict[str, Any]) -> int: ...

    def thumbnail_id(self, object_id: int) -> Optional[int]: ...

    def set_thumbnail(self, object_id: int, asset_id: int) -> None: ...


class SiteDirectory(Protocol):
    """Which destinations an entity is currently assigned to (its site terms)."""

    def destinations_for(self, entity: EntityRef) -> List[str]: ...


class Projector(Protocol):
    """
    The host's object-to-wire projection.

    MUST return the canonical REST representation of the entity, including the
    `replicast` composite field (meta / term / featured_media).
    """

    def project(self, entity: EntityRef) -> Dict[str, Any]: ...


class FieldDefinitions(Protocol):
    """Typed custom-field definitions ({"type": ..., "value": ...}); None for plain meta."""

    def field_object(self, key: str, object_id: int) -> Optional[Dict[str, Any]]: ...


class Host(MetadataStore, TermStore, AssetStore, SiteDirectory, Projector, Protocol):
    """Everything the engine consumes from the host platform."""
