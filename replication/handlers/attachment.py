# replication/handlers/attachment.py
from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Optional, Tuple

from replication.base import AssetStore
from replication.resolver import ReferenceResolver
from replication.types import Destination, PostRef

from .post import PostHandler

logger = logging.getLogger(__name__)


class AttachmentHandler(PostHandler):
    """
    Binary assets. Created by uploading the raw file; updated and deleted as JSON.

    Needs an AssetStore to read the file on create.
    """

    def __init__(self, entity, *, assets: AssetStore, **kwargs):
        super().__init__(entity, **kwargs)
        self.assets = assets

    @property
    def resource_base(self) -> str:
        return "media"

    def prepare_fields(
        self,
        data: Dict[str, Any],
        resolver: ReferenceResolver,
        destination: Destination,
    ) -> Dict[str, Any]:
        data = super().prepare_fields(data, resolver, destination)

        # Attachments "inherit" their parent's status locally; remotely they must publish
        if data.get("status") == "inherit":
            data["status"] = "publish"

        # "Uploaded to" post
        if data.get("post"):
            data["post"] = resolver.resolve_scalar(data["post"], PostRef)

        return data

    def encode_body(
        self,
        method: str,
        destination: Destination,
        data: Dict[str, Any],
    ) -> Tuple[Dict[str, str], Optional[Dict[str, Any]], Optional[bytes]]:
        if method != self.CREATABLE:
            return super().encode_body(method, destination, data)

        filename, content = self.assets.read_asset(self.entity.id)
        headers = {
            "Content-Type": data.get("mime_type") or "application/octet-stream",
            "Content-Disposition": f"attachment; filename={filename}",
            "Content-MD5": hashlib.md5(content).hexdigest(),
        }
        logger.debug("Uploading %s (%d bytes) to %s", filename, len(content), destination.label)
        return headers, None, content
