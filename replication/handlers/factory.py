# replication/handlers/factory.py
from __future__ import annotations

from typing import Optional

from replication.base import Host
from replication.identity_map import IdentityMap
from replication.types import AssetRef, EntityRef, PostRef, ReplicationSettings, TermRef
from utils.http import Transport

from .attachment import AttachmentHandler
from .base import ProtocolHandler
from .post import PostHandler
from .term import TermHandler


def handler_for(
    entity: EntityRef,
    host: Host,
    identity_map: IdentityMap,
    transport: Transport,
    settings: Optional[ReplicationSettings] = None,
) -> ProtocolHandler:
    """Pick the protocol handler for an entity kind."""
    common = dict(projector=host, identity_map=identity_map, transport=transport, settings=settings)

    if isinstance(entity, AssetRef):
        return AttachmentHandler(entity, assets=host, **common)
    if isinstance(entity, TermRef):
        return TermHandler(entity, **common)
    if isinstance(entity, PostRef):
        return PostHandler(entity, **common)
    raise TypeError(f"No protocol handler for {type(entity).__name__}")
