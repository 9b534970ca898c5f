# replication/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from replication.constants import (
    DEFAULT_API_PATH,
    DEFAULT_SIGNATURE_ALGO,
    DEFAULT_UPDATE_METHOD,
)


class EntityKind(str, Enum):
    POST = "post"
    TERM = "term"
    ATTACHMENT = "attachment"


@dataclass(frozen=True)
class PostRef:
    """A content item (article, page, ...). `object_type` is the host content type."""

    id: int
    object_type: str = "post"

    @property
    def kind(self) -> EntityKind:
        return EntityKind.POST

    @property
    def meta_type(self) -> str:
        return "post"


@dataclass(frozen=True)
class AssetRef:
    """A binary asset (image, document). Stored alongside posts by the host."""

    id: int

    @property
    def kind(self) -> EntityKind:
        return EntityKind.ATTACHMENT

    @property
    def object_type(self) -> str:
        return "attachment"

    @property
    def meta_type(self) -> str:
        return "post"


@dataclass(frozen=True)
class TermRef:
    """A node of a hierarchical category/tag store."""

    id: int
    taxonomy: str = "category"

    @property
    def kind(self) -> EntityKind:
        return EntityKind.TERM

    @property
    def object_type(self) -> str:
        return self.taxonomy

    @property
    def meta_type(self) -> str:
        return "term"


EntityRef = Union[PostRef, AssetRef, TermRef]


def entity_from_wire(kind: Union[str, EntityKind], object_id: Any, **hints: Any) -> EntityRef:
    """
    Build the right EntityRef variant from a kind tag.

    hints:
      object_type: content type for posts (default "post")
      taxonomy:    taxonomy for terms (default "category")
    """
    kind = EntityKind(kind)
    oid = int(object_id)
    if kind is EntityKind.POST:
        object_type = hints.get("object_type") or "post"
        if object_type == "attachment":
            return AssetRef(oid)
        return PostRef(oid, object_type)
    if kind is EntityKind.ATTACHMENT:
        return AssetRef(oid)
    return TermRef(oid, hints.get("taxonomy") or "category")


@dataclass(frozen=True)
class RemoteDescriptor:
    """
    What one destination knows one of our entities as.

    remote_id: the destination's id for the entity
    status:    last status the destination reported (publish, draft, trash, ...)
    extra_ids: kind-specific secondary ids (e.g. term_taxonomy_id for terms)
    """

    remote_id: Union[int, str]
    status: str = ""
    extra_ids: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.remote_id, "status": self.status}
        if self.extra_ids:
            data["extra_ids"] = dict(self.extra_ids)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RemoteDescriptor":
        return cls(
            remote_id=data["id"],
            status=data.get("status") or "",
            extra_ids=dict(data.get("extra_ids") or {}),
        )

    @classmethod
    def from_response(
        cls,
        data: Mapping[str, Any],
        extra_keys: Iterable[str] = (),
    ) -> Optional["RemoteDescriptor"]:
        """Read a descriptor out of a destination's JSON entity. None if it carries no id."""
        remote_id = data.get("id")
        if remote_id in (None, ""):
            remote_id = data.get("term_id")
        if remote_id in (None, ""):
            return None

        extra = {k: data[k] for k in extra_keys if data.get(k) not in (None, "")}
        return cls(remote_id=remote_id, status=str(data.get("status") or ""), extra_ids=extra)


# destination id -> descriptor
ReplicaSet = Dict[str, RemoteDescriptor]


@dataclass(frozen=True)
class Destination:
    """A remote endpoint taking part in replication."""

    id: str
    base_url: str
    api_key: str
    api_secret: str
    name: str = ""
    api_path: str = DEFAULT_API_PATH
    accepts: FrozenSet[str] = frozenset()
    update_method: str = DEFAULT_UPDATE_METHOD
    signature_algo: str = DEFAULT_SIGNATURE_ALGO

    def is_valid(self) -> bool:
        return bool(self.base_url and self.api_key and self.api_secret)

    def accepts_type(self, object_type: str) -> bool:
        # No explicit list means the destination takes everything
        return not self.accepts or object_type in self.accepts

    @property
    def api_url(self) -> str:
        base = self.base_url.rstrip("/")
        path = self.api_path.strip("/")
        return f"{base}/{path}/" if path else f"{base}/"

    def endpoint(self, resource_base: str, remote_id: Union[int, str, None] = None) -> str:
        url = f"{self.api_url}{resource_base.strip('/')}/"
        if remote_id not in (None, ""):
            url = f"{url}{remote_id}/"
        return url

    @property
    def label(self) -> str:
        return self.name or self.id


@dataclass
class DestinationOutcome:
    """Result of one event on one destination."""

    destination_id: str
    action: str  # create | update | trash | delete | skip | noop
    ok: bool
    message: str = ""
    status_code: Optional[int] = None
    reason: str = ""
    remote_id: Union[int, str, None] = None

    @property
    def notice_type(self) -> str:
        if not self.ok:
            return "error"
        if self.status_code is None or self.status_code in (200, 201):
            return "success"
        return "error"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "destination_id": self.destination_id,
            "action": self.action,
            "ok": self.ok,
            "message": self.message,
            "status_code": self.status_code,
            "reason": self.reason,
            "remote_id": self.remote_id,
            "notice_type": self.notice_type,
        }


@dataclass
class SyncReport:
    """Aggregated per-destination outcome of one save/trash/delete event."""

    entity: EntityRef
    event: str
    outcomes: List[DestinationOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> List[DestinationOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def succeeded(self) -> List[DestinationOutcome]:
        return [o for o in self.outcomes if o.ok]

    def outcome_for(self, destination_id: str) -> Optional[DestinationOutcome]:
        for o in self.outcomes:
            if o.destination_id == str(destination_id):
                return o
        return None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "entity": {
                "kind": self.entity.kind.value,
                "id": self.entity.id,
                "object_type": self.entity.object_type,
            },
            "event": self.event,
            "ok": self.ok,
            "outcomes": [o.as_dict() for o in self.outcomes],
        }


@dataclass
class ReplicationSettings:
    """Engine-wide knobs, usually built from config.yaml -> replication."""

    suppressed_structures: List[str] = field(default_factory=lambda: ["categories", "tags", "_links", "_embedded"])
    suppressed_taxonomies: List[str] = field(default_factory=list)
    exposed_meta: List[str] = field(default_factory=lambda: ["_wp_page_template"])
    suppressed_meta: List[str] = field(default_factory=list)
    force_trash: Dict[str, bool] = field(default_factory=dict)
    dry_run: bool = False
    debug: bool = False

    def force_trash_for(self, object_type: str) -> bool:
        return bool(self.force_trash.get(object_type, False))
