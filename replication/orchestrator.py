# replication/orchestrator.py
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Tuple

from replication.base import Host
from replication.errors import ConfigurationError, RemoteError, TransportError
from replication.handlers.base import ProtocolHandler
from replication.handlers.factory import handler_for
from replication.identity_map import IdentityMap
from replication.types import (
    AssetRef,
    Destination,
    DestinationOutcome,
    EntityRef,
    PostRef,
    ReplicationSettings,
    SyncReport,
    TermRef,
)
from utils.http import Transport

logger = logging.getLogger(__name__)

# Per-destination failures; anything else is a bug or a storage problem and propagates.
DESTINATION_ERRORS = (ConfigurationError, RemoteError, TransportError)

EVENTS = ("save", "trash", "delete")


def failure_outcome(destination_id: str, action: str, exc: Exception, prefix: str = "") -> DestinationOutcome:
    message = getattr(exc, "message", None) or str(exc)
    if prefix:
        message = f"{prefix}{message}"
    return DestinationOutcome(
        destination_id=str(destination_id),
        action=action,
        ok=False,
        message=message,
        status_code=getattr(exc, "status_code", None),
        reason=getattr(exc, "reason", "") or type(exc).__name__,
    )


class SyncOrchestrator:
    """
    Runs save / trash / delete events for one entity across its destinations.

    Destinations are processed concurrently; inside one destination the
    featured asset is replicated before the entity that references it.
    Reconciliation only starts once every destination chain has finished.
    """

    def __init__(
        self,
        host: Host,
        destinations: Mapping[str, Destination],
        transport: Transport,
        settings: Optional[ReplicationSettings] = None,
        monitor=None,
        identity_map: Optional[IdentityMap] = None,
    ):
        self.host = host
        self.destinations: Dict[str, Destination] = {str(k): v for k, v in destinations.items()}
        self.transport = transport
        self.settings = settings or ReplicationSettings()
        self.monitor = monitor
        self.identity_map = identity_map or IdentityMap(host)

    # ---------- helpers ----------
    def handler(self, entity: EntityRef) -> ProtocolHandler:
        return handler_for(entity, self.host, self.identity_map, self.transport, self.settings)

    def _assigned(self, entity: EntityRef) -> List[str]:
        return [str(d) for d in (self.host.destinations_for(entity) or [])]

    def _partition(self, entity: EntityRef, dest_ids: List[str]) -> Tuple[List[Destination], List[DestinationOutcome]]:
        """Known destinations that accept the entity, plus outcomes for everything else."""
        targets: List[Destination] = []
        outcomes: List[DestinationOutcome] = []
        for dest_id in dest_ids:
            dest = self.destinations.get(dest_id)
            if dest is None:
                logger.error("Destination %s is not configured; cannot replicate %s #%s.", dest_id, entity.object_type, entity.id)
                outcomes.append(
                    DestinationOutcome(dest_id, "skip", ok=False, message=f"Unknown destination {dest_id}.")
                )
                continue
            if not dest.accepts_type(entity.object_type):
                logger.info("%s does not accept %s; skipping #%s.", dest.label, entity.object_type, entity.id)
                outcomes.append(
                    DestinationOutcome(
                        dest.id, "skip", ok=True, message=f"{dest.label} does not accept {entity.object_type}."
                    )
                )
                continue
            targets.append(dest)
        return targets, outcomes

    def _dependency(self, entity: EntityRef) -> Optional[AssetRef]:
        if not isinstance(entity, PostRef):
            return None
        thumb = self.host.thumbnail_id(entity.id)
        return AssetRef(int(thumb)) if thumb else None

    def _finish(self, report: SyncReport) -> SyncReport:
        level = logging.INFO if report.ok else logging.WARNING
        logger.log(
            level,
            "%s %s #%s: %d ok, %d failed",
            report.event,
            report.entity.object_type,
            report.entity.id,
            len(report.succeeded),
            len(report.failed),
        )
        for outcome in report.failed:
            logger.error(
                "[%s] %s failed: %s (%s %s)",
                outcome.destination_id,
                outcome.action,
                outcome.message,
                outcome.status_code,
                outcome.reason,
            )
        if self.monitor is not None:
            self.monitor.record_report(report)
        return report

    # ---------- per-destination units ----------
    async def _save_one(
        self,
        handler: ProtocolHandler,
        dependency: Optional[ProtocolHandler],
        destination: Destination,
    ) -> DestinationOutcome:
        action = "update" if handler.is_replicated(destination) else "create"

        if self.settings.dry_run:
            logger.info("[dry-run] would %s %s #%s on %s", action, handler.entity.object_type, handler.entity.id, destination.label)
            return DestinationOutcome(destination.id, action, ok=True, message="dry run")

        # The asset must exist remotely before the entity referencing it is sent
        if dependency is not None and destination.accepts_type(dependency.entity.object_type):
            try:
                await dependency.handle_save(destination)
            except DESTINATION_ERRORS as e:
                return failure_outcome(destination.id, action, e, prefix="Featured media: ")

        try:
            response = await handler.handle_save(destination)
        except DESTINATION_ERRORS as e:
            return failure_outcome(destination.id, action, e)

        handler.persist_nested(destination, response)

        return DestinationOutcome(
            destination.id,
            action,
            ok=True,
            message=f"{handler.entity.object_type.capitalize()} {action}d on {destination.label}.",
            remote_id=response.get("id"),
        )

    async def _delete_one(
        self,
        handler: ProtocolHandler,
        destination_id: str,
        force: bool,
    ) -> DestinationOutcome:
        action = "delete" if force or isinstance(handler.entity, TermRef) else "trash"

        destination = self.destinations.get(destination_id)
        if destination is None:
            logger.error("Destination %s is not configured; leaving its replica untouched.", destination_id)
            return DestinationOutcome(destination_id, action, ok=False, message=f"Unknown destination {destination_id}.")

        if not handler.is_replicated(destination):
            return DestinationOutcome(destination.id, "noop", ok=True, message="Not replicated there.")

        if self.settings.dry_run:
            logger.info("[dry-run] would %s %s #%s on %s", action, handler.entity.object_type, handler.entity.id, destination.label)
            return DestinationOutcome(destination.id, action, ok=True, message="dry run")

        try:
            await handler.handle_delete(destination, force=force)
        except DESTINATION_ERRORS as e:
            return failure_outcome(destination.id, action, e)

        return DestinationOutcome(
            destination.id,
            action,
            ok=True,
            message=f"{handler.entity.object_type.capitalize()} {action}d on {destination.label}.",
        )

    # ---------- events ----------
    async def on_save(self, entity: EntityRef) -> SyncReport:
        """Create/update on every assigned destination, then delete from unassigned ones."""
        report = SyncReport(entity, "save")
        assigned = self._assigned(entity)
        targets, report.outcomes = self._partition(entity, assigned)

        handler = self.handler(entity)
        dep_ref = self._dependency(entity)
        dependency = self.handler(dep_ref) if dep_ref is not None else None

        logger.info("Saving %s #%s to %d destination(s)", entity.object_type, entity.id, len(targets))
        results = await asyncio.gather(*(self._save_one(handler, dependency, dest) for dest in targets))
        report.outcomes.extend(results)

        # Reconciliation: replicas on destinations that are no longer assigned
        stale = [dest_id for dest_id in self.identity_map.get(entity) if dest_id not in assigned]
        if stale:
            logger.info("%s #%s was unassigned from %s; deleting there.", entity.object_type, entity.id, stale)
            removed = await asyncio.gather(*(self._delete_one(handler, dest_id, force=True) for dest_id in stale))
            report.outcomes.extend(removed)

        return self._finish(report)

    async def on_trash(self, entity: EntityRef) -> SyncReport:
        report = SyncReport(entity, "trash")
        targets, report.outcomes = self._partition(entity, self._assigned(entity))
        force = self.settings.force_trash_for(entity.object_type)

        handler = self.handler(entity)
        results = await asyncio.gather(*(self._delete_one(handler, dest.id, force=force) for dest in targets))
        report.outcomes.extend(results)
        return self._finish(report)

    async def on_delete(self, entity: EntityRef) -> SyncReport:
        report = SyncReport(entity, "delete")
        dest_ids = self._assigned(entity)
        for dest_id in self.identity_map.get(entity):
            if dest_id not in dest_ids:
                dest_ids.append(dest_id)

        handler = self.handler(entity)
        results = await asyncio.gather(*(self._delete_one(handler, dest_id, force=True) for dest_id in dest_ids))
        report.outcomes.extend(results)
        return self._finish(report)

    async def dispatch(self, event: str, entity: EntityRef) -> SyncReport:
        if event == "save":
            return await self.on_save(entity)
        if event == "trash":
            return await self.on_trash(entity)
        if event == "delete":
            return await self.on_delete(entity)
        raise ValueError(f"Unknown event {event!r}; expected one of {', '.join(EVENTS)}")

    # ---------- blocking wrappers ----------
    def save(self, entity: EntityRef) -> SyncReport:
        return asyncio.run(self.on_save(entity))

    def trash(self, entity: EntityRef) -> SyncReport:
        return asyncio.run(self.on_trash(entity))

    def delete(self, entity: EntityRef) -> SyncReport:
        return asyncio.run(self.on_delete(entity))
