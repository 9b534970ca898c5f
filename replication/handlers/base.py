# replication/handlers/base.py
from __future__ import annotations

import copy
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from replication.base import Projector
from replication.constants import REPLICAST_REQUEST_HEADER
from replication.errors import ConfigurationError, ContractViolation, RemoteError
from replication.identity_map import IdentityMap
from replication.resolver import ReferenceResolver
from replication.signer import sign
from replication.types import Destination, EntityRef, RemoteDescriptor, ReplicationSettings
from utils.http import OutboundRequest, Transport, with_query

logger = logging.getLogger(__name__)


def to_rfc3339(value: str) -> str:
    """'2024-05-01 10:00:00' or '2024-05-01T10:00:00' -> '2024-05-01T10:00:00' (UTC assumed)."""
    text = str(value).strip().replace(" ", "T")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return text
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed.strftime("%Y-%m-%dT%H:%M:%S")


class ProtocolHandler(ABC):
    """
    Per-kind replication strategy for one local entity.

    handle_save() decides create vs update purely from the Identity Map:
    a descriptor for the destination means update, no descriptor means create.
    Both resolve to the destination's JSON answer and record the returned
    id/status; a failed request raises and leaves the Identity Map alone.
    """

    CREATABLE = "POST"
    EDITABLE = "PUT"
    DELETABLE = "DELETE"

    # Secondary ids kept from destination responses
    extra_id_keys: Tuple[str, ...] = ()

    def __init__(
        self,
        entity: EntityRef,
        *,
        projector: Projector,
        identity_map: IdentityMap,
        transport: Transport,
        settings: Optional[ReplicationSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.entity = entity
        self.projector = projector
        self.identity_map = identity_map
        self.transport = transport
        self.settings = settings or ReplicationSettings()
        self.clock = clock
        self._data: Optional[Dict[str, Any]] = None

    # ---------- projection ----------
    @property
    def data(self) -> Dict[str, Any]:
        """Wire projection of the local entity, fetched once per handler."""
        if self._data is None:
            self._data = self.projector.project(self.entity) or {}
        return self._data

    @property
    @abstractmethod
    def resource_base(self) -> str: ...

    def resolver(self, destination: Destination) -> ReferenceResolver:
        return ReferenceResolver(self.identity_map, destination.id)

    def is_replicated(self, destination: Destination) -> bool:
        return self.identity_map.has(self.entity, destination.id)

    # ---------- payload preparation ----------
    def prepare_for_create(self, destination: Destination) -> Dict[str, Any]:
        data = copy.deepcopy(self.data)
        # Server-assigned on the destination
        data.pop("id", None)
        data = self._prepare_common(data, destination)
        return self._suppress_structures(data)

    def prepare_for_update(self, destination: Destination) -> Dict[str, Any]:
        desc = self.identity_map.lookup(self.entity, destination.id)
        if desc is None:
            raise ContractViolation(
                f"Cannot update {self.entity.object_type} #{self.entity.id} on {destination.id}: "
                "it was never created there."
            )
        data = copy.deepcopy(self.data)
        data["id"] = desc.remote_id
        data = self._prepare_common(data, destination)
        return self._suppress_structures(data)

    def prepare_for_delete(self, destination: Destination) -> Dict[str, Any]:
        desc = self.identity_map.lookup(self.entity, destination.id)
        if desc is None:
            raise ContractViolation(
                f"Cannot delete {self.entity.object_type} #{self.entity.id} on {destination.id}: no remote id."
            )
        return {"id": desc.remote_id}

    def _prepare_common(self, data: Dict[str, Any], destination: Destination) -> Dict[str, Any]:
        data.pop("author", None)

        # date_gmt is required for updates and zeroed on deletion remotely
        if not data.get("date_gmt") and data.get("date"):
            data["date_gmt"] = to_rfc3339(data["date"])

        return self.prepare_fields(data, self.resolver(destination), destination)

    def prepare_fields(
        self,
        data: Dict[str, Any],
        resolver: ReferenceResolver,
        destination: Destination,
    ) -> Dict[str, Any]:
        """Kind-specific reference rewriting and adjustments."""
        return data

    def _suppress_structures(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for structure in self.settings.suppressed_structures:
            data.pop(structure, None)
        return data

    # ---------- request building ----------
    def encode_body(
        self,
        method: str,
        destination: Destination,
        data: Dict[str, Any],
    ) -> Tuple[Dict[str, str], Optional[Dict[str, Any]], Optional[bytes]]:
        """(extra headers, json body, raw body). JSON by default."""
        if method == self.DELETABLE:
            return {}, None, None
        return {}, data, None

    def build_request(
        self,
        method: str,
        destination: Destination,
        data: Dict[str, Any],
        query: Optional[Dict[str, Any]] = None,
    ) -> OutboundRequest:
        if not destination.is_valid():
            raise ConfigurationError(
                f"The site with ID {destination.id} is not valid. Check if all the required fields are filled."
            )

        if method != self.CREATABLE and not data.get("id"):
            raise ContractViolation(f"The {method} request cannot be made for a content type without an ID.")

        remote_id = None if method == self.CREATABLE else data["id"]
        url = destination.endpoint(self.resource_base, remote_id)
        headers, json_body, raw_body = self.encode_body(method, destination, data)

        wire_method = method
        if method == self.EDITABLE:
            wire_method = destination.update_method.upper()

        query = dict(query or {})
        timestamp = int(self.clock())
        signature = sign(
            wire_method,
            with_query(url, query),
            timestamp,
            destination.api_secret,
            api_key=destination.api_key,
            algorithm=destination.signature_algo,
        )

        headers.update(
            {
                "X-API-KEY": destination.api_key,
                "X-API-TIMESTAMP": str(timestamp),
                "X-API-SIGNATURE": signature,
                REPLICAST_REQUEST_HEADER: "1",
            }
        )

        if self.settings.debug:
            logger.debug(
                "Doing a request: method=%s endpoint=%s query=%s headers=%s data=%s",
                wire_method,
                url,
                query,
                {k: v for k, v in headers.items() if k != "X-API-SIGNATURE"},
                json_body if json_body is not None else f"<{len(raw_body or b'')} bytes>",
            )

        return OutboundRequest(
            method=wire_method,
            url=url,
            headers=headers,
            query=query,
            json=json_body,
            body=raw_body,
        )

    # ---------- raw verbs ----------
    async def _send(self, request: OutboundRequest, expect_id: bool = False) -> Dict[str, Any]:
        resp = await self.transport.send_async(request)
        data = resp.json()
        data = data if isinstance(data, dict) else {"body": data}
        # A save only counts once the destination id is known
        if expect_id and RemoteDescriptor.from_response(data) is None:
            raise RemoteError(
                resp.status_code,
                "Missing id",
                f"The answer to {self.entity.object_type} #{self.entity.id} carries no id.",
                method=request.method,
                url=request.url,
            )
        return data

    async def post(self, destination: Destination) -> Dict[str, Any]:
        data = self.prepare_for_create(destination)
        return await self._send(self.build_request(self.CREATABLE, destination, data), expect_id=True)

    async def put(self, destination: Destination) -> Dict[str, Any]:
        data = self.prepare_for_update(destination)
        return await self._send(self.build_request(self.EDITABLE, destination, data), expect_id=True)

    async def delete(self, destination: Destination, force: bool = False) -> Dict[str, Any]:
        data = self.prepare_for_delete(destination)
        return await self._send(self.build_request(self.DELETABLE, destination, data, {"force": force}))

    # ---------- handlers ----------
    async def handle_save(self, destination: Destination) -> Dict[str, Any]:
        """Create or update on `destination`; records the returned descriptor."""
        previous = self.identity_map.lookup(self.entity, destination.id)
        if previous is not None:
            logger.info("Updating %s #%s on %s", self.entity.object_type, self.entity.id, destination.label)
            response = await self.put(destination)
        else:
            logger.info("Creating %s #%s on %s", self.entity.object_type, self.entity.id, destination.label)
            response = await self.post(destination)

        descriptor = RemoteDescriptor.from_response(response, self.extra_id_keys)
        if previous is not None:
            # Update replies do not always echo the secondary ids
            descriptor = RemoteDescriptor(
                descriptor.remote_id,
                descriptor.status,
                {**previous.extra_ids, **descriptor.extra_ids},
            )
        self.identity_map.put(self.entity, destination.id, descriptor)
        return response

    def persist_nested(self, destination: Destination, response: Dict[str, Any]) -> int:
        """Record descriptors of nested entities found in a save response. Returns how many."""
        return 0

    async def handle_delete(self, destination: Destination, force: bool = False) -> Optional[Dict[str, Any]]:
        """
        Trash (force=False) or delete (force=True) the replica on `destination`.

        No descriptor means nothing exists remotely: returns None without a request.
        """
        desc = self.identity_map.lookup(self.entity, destination.id)
        if desc is None:
            logger.debug(
                "%s #%s has no replica on %s; nothing to delete.",
                self.entity.object_type,
                self.entity.id,
                destination.label,
            )
            return None

        logger.info(
            "%s %s #%s on %s",
            "Deleting" if force else "Trashing",
            self.entity.object_type,
            self.entity.id,
            destination.label,
        )
        response = await self.delete(destination, force=force)

        if force:
            self.identity_map.put(self.entity, destination.id, None)
        else:
            remote = response.get("previous") if isinstance(response.get("previous"), dict) else response
            status = str(remote.get("status") or "trash")
            self.identity_map.put(
                self.entity,
                destination.id,
                RemoteDescriptor(desc.remote_id, status, desc.extra_ids),
            )
        return response
