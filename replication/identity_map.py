# replication/identity_map.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from replication.base import MetadataStore
from replication.constants import REPLICAST_REMOTE_INFO
from replication.types import EntityRef, RemoteDescriptor, ReplicaSet

logger = logging.getLogger(__name__)


class IdentityMap:
    """
    Durable (entity, destination) -> RemoteDescriptor mapping.

    The whole Replica Set of an entity lives in a single metadata entry:
        { "<destination_id>": {"id": ..., "status": ..., "extra_ids": {...}} }

    Writes are last-write-wins per destination key. Storage failures are not
    retried here; they bubble up to the caller.
    """

    def __init__(self, store: MetadataStore, meta_key: str = REPLICAST_REMOTE_INFO):
        self.store = store
        self.meta_key = meta_key

    # ---------- encode / decode ----------
    @staticmethod
    def encode(replicas: ReplicaSet) -> str:
        payload = {str(dest_id): desc.to_dict() for dest_id, desc in replicas.items()}
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    @staticmethod
    def decode(raw: Any) -> ReplicaSet:
        if raw in (None, "", b""):
            return {}

        data: Any = raw
        if isinstance(raw, (str, bytes)):
            try:
                data = json.loads(raw)
            except ValueError:
                # Corrupt blob? Treat as never replicated.
                logger.warning("Unreadable replica set blob, ignoring: %r", raw[:120])
                return {}

        if not isinstance(data, dict):
            logger.warning("Replica set blob is not a mapping, ignoring: %r", type(data).__name__)
            return {}

        replicas: Dict[str, RemoteDescriptor] = {}
        for dest_id, entry in data.items():
            if not isinstance(entry, dict) or entry.get("id") in (None, ""):
                logger.debug("Skipping malformed descriptor for destination %s: %r", dest_id, entry)
                continue
            replicas[str(dest_id)] = RemoteDescriptor.from_dict(entry)
        return replicas

    # ---------- public ----------
    def get(self, entity: EntityRef) -> ReplicaSet:
        """All descriptors of `entity`; empty when it was never replicated."""
        raw = self.store.get_meta(entity.meta_type, entity.id, self.meta_key)
        return self.decode(raw)

    def lookup(self, entity: EntityRef, destination_id: str) -> Optional[RemoteDescriptor]:
        return self.get(entity).get(str(destination_id))

    def has(self, entity: EntityRef, destination_id: str) -> bool:
        return self.lookup(entity, destination_id) is not None

    def put(
        self,
        entity: EntityRef,
        destination_id: str,
        descriptor: Optional[RemoteDescriptor],
    ) -> ReplicaSet:
        """
        Upsert the descriptor for one destination, or drop it when `descriptor` is None.

        Returns the Replica Set as written.
        """
        dest_id = str(destination_id)
        replicas = self.get(entity)

        if descriptor is None:
            if dest_id not in replicas:
                return replicas
            del replicas[dest_id]
            logger.debug("IdentityMap: cleared %s #%s on %s", entity.object_type, entity.id, dest_id)
        else:
            replicas[dest_id] = descriptor
            logger.debug(
                "IdentityMap: %s #%s on %s -> %s (%s)",
                entity.object_type,
                entity.id,
                dest_id,
                descriptor.remote_id,
                descriptor.status or "-",
            )

        if replicas:
            self.store.set_meta(entity.meta_type, entity.id, self.meta_key, self.encode(replicas))
        else:
            self.store.delete_meta(entity.meta_type, entity.id, self.meta_key)
        return replicas
