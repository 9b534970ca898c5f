# replication/handlers/term.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from replication.constants import REPLICAST_SOURCE_INFO, TAXONOMY_REST_BASES
from replication.resolver import UNSET, ReferenceResolver, coerce_id
from replication.types import Destination, TermRef

from .base import ProtocolHandler

logger = logging.getLogger(__name__)

# Read-only on the destination
_READONLY_FIELDS = ("count", "link", "_links")


class TermHandler(ProtocolHandler):
    """Categories, tags and custom taxonomy terms. Deleting a term is always permanent."""

    extra_id_keys = ("term_taxonomy_id",)

    @property
    def resource_base(self) -> str:
        return TAXONOMY_REST_BASES.get(self.entity.object_type, self.entity.object_type)

    def prepare_fields(
        self,
        data: Dict[str, Any],
        resolver: ReferenceResolver,
        destination: Destination,
    ) -> Dict[str, Any]:
        for key in _READONLY_FIELDS:
            data.pop(key, None)
        data.pop("taxonomy", None)

        parent = data.get("parent")
        if parent not in (None, "", 0, "0"):
            local = coerce_id(parent)
            data["parent"] = UNSET if local is None else resolver.lookup(TermRef(local, self.entity.object_type))
            if data["parent"] == UNSET:
                logger.info(
                    "Parent term #%s of %s #%s is not on %s yet; sending it as a root term.",
                    parent,
                    self.entity.object_type,
                    self.entity.id,
                    destination.label,
                )

        meta = dict(data.get("meta") or {})
        meta[REPLICAST_SOURCE_INFO] = {"object_id": self.entity.id}
        data["meta"] = meta
        return data

    async def handle_delete(self, destination: Destination, force: bool = False) -> Optional[Dict[str, Any]]:
        # Terms have no trash remotely
        return await super().handle_delete(destination, force=True)
