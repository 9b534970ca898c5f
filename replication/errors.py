# replication/errors.py
from __future__ import annotations

from typing import Optional


class ReplicationError(Exception):
    """Base class for everything the engine raises on purpose."""


class ConfigurationError(ReplicationError):
    """Destination credentials or engine settings are unusable. Never retried."""


class ContractViolation(ReplicationError):
    """The caller asked for something the protocol forbids (e.g. update before create)."""


class StorageError(ReplicationError):
    """The entity metadata store could not be read or written."""


class RemoteError(ReplicationError):
    """A destination answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        reason: str = "",
        message: str = "",
        method: Optional[str] = None,
        url: Optional[str] = None,
    ):
        self.status_code = status_code
        self.reason = reason
        self.message = message or reason
        self.method = method
        self.url = url
        super().__init__(f"{method} {url} -> {status_code} {reason}: {self.message}")


class TransportError(ReplicationError):
    """The request never got an HTTP answer (DNS, refused, timeout, ...)."""

    def __init__(self, message: str, method: Optional[str] = None, url: Optional[str] = None):
        self.message = message
        self.method = method
        self.url = url
        super().__init__(f"{method} {url}: {message}")
