# utils/http.py
from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import requests

from replication.errors import RemoteError, TransportError

log = logging.getLogger(__name__)

# ===== Tunables (overridable from config.yaml -> transport) =====
MAX_TOTAL_RETRIES = 3  # total attempts per request
BASE_BACKOFF = 0.75  # seconds (exponential, with jitter)
MAX_BACKOFF = 30.0  # cap a single sleep
TIMEOUT = 15.0  # per request timeout

USER_AGENT = "Replicast/1.0"

# Retrying a create on 5xx could duplicate the entity remotely.
IDEMPOTENT_METHODS = {"GET", "HEAD", "PUT", "DELETE", "OPTIONS"}


def encode_query(query: Optional[Mapping[str, Any]]) -> str:
    """Query string with booleans spelled true/false (the same text is signed and sent)."""
    if not query:
        return ""
    pairs = []
    for key, value in query.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((key, value))
    return urlencode(pairs)


def with_query(url: str, query: Optional[Mapping[str, Any]]) -> str:
    qs = encode_query(query)
    if not qs:
        return url
    return f"{url}{'&' if '?' in url else '?'}{qs}"


@dataclass
class OutboundRequest:
    """A fully prepared request: either `json` or raw `body` is sent, never both."""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, Any] = field(default_factory=dict)
    json: Optional[Dict[str, Any]] = None
    body: Optional[bytes] = None

    @property
    def full_url(self) -> str:
        return with_query(self.url, self.query)


@dataclass
class TransportResponse:
    status_code: int
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if not self.content:
            return {}
        try:
            return json.loads(self.content)
        except ValueError as e:
            raise RemoteError(self.status_code, self.reason, f"Invalid JSON in response: {e}") from e


def _error_message(resp: TransportResponse) -> str:
    """WP-style error bodies are {"code", "message", "data"}; fall back to raw text."""
    try:
        data = json.loads(resp.content or b"{}")
    except ValueError:
        return resp.content[:200].decode("utf-8", errors="replace")
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return resp.reason


class Transport:
    """
    HTTP transport for outbound replication calls.

    - send(): blocking, with retries for connection errors, 429 and (idempotent) 5xx
    - send_async(): awaitable wrapper running send() on a worker thread

    Non-2xx answers raise RemoteError; no answer at all raises TransportError.
    """

    def __init__(
        self,
        *,
        timeout: float = TIMEOUT,
        max_retries: int = MAX_TOTAL_RETRIES,
        backoff: float = BASE_BACKOFF,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = float(timeout)
        self.max_retries = max(1, int(max_retries))
        self.backoff = float(backoff)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    @classmethod
    def from_config(cls, config: Dict[str, Any], session: Optional[requests.Session] = None) -> "Transport":
        tc = config.get("transport", {}) or {}
        return cls(
            timeout=tc.get("timeout", TIMEOUT),
            max_retries=tc.get("max_retries", MAX_TOTAL_RETRIES),
            backoff=tc.get("backoff", BASE_BACKOFF),
            session=session,
        )

    # ---------- internals ----------
    def _sleep_with_jitter(self, attempt: int, retry_after: Optional[str]) -> None:
        if retry_after:
            try:
                secs = min(MAX_BACKOFF, float(retry_after))
            except ValueError:
                secs = 0.0
        else:
            secs = min(MAX_BACKOFF, self.backoff * (2 ** (attempt - 1)))
            secs += random.uniform(0, secs * 0.25)
        if secs > 0:
            time.sleep(secs)

    def _dispatch(self, request: OutboundRequest) -> TransportResponse:
        kwargs: Dict[str, Any] = {
            "headers": request.headers,
            "timeout": self.timeout,
        }
        if request.query:
            kwargs["params"] = encode_query(request.query)
        if request.body is not None:
            kwargs["data"] = request.body
        elif request.json is not None:
            kwargs["json"] = request.json

        resp = self.session.request(request.method, request.url, **kwargs)
        return TransportResponse(
            status_code=resp.status_code,
            reason=resp.reason or "",
            headers=dict(resp.headers or {}),
            content=resp.content or b"",
        )

    # ---------- public ----------
    def send(self, request: OutboundRequest) -> TransportResponse:
        method = request.method.upper()
        url = request.full_url

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self._dispatch(request)
            except requests.exceptions.RequestException as e:
                log.warning(
                    "%s (%s) for %s %s (attempt %d/%d)",
                    type(e).__name__,
                    e,
                    method,
                    url,
                    attempt,
                    self.max_retries,
                )
                if attempt == self.max_retries:
                    log.error("Exhausted retries for %s %s", method, url)
                    raise TransportError(str(e), method=method, url=url) from e
                self._sleep_with_jitter(attempt, None)
                continue

            if resp.ok:
                log.debug("%s %s -> %d", method, url, resp.status_code)
                return resp

            retryable = resp.status_code == 429 or (
                500 <= resp.status_code < 600 and method in IDEMPOTENT_METHODS
            )
            if retryable and attempt < self.max_retries:
                log.warning(
                    "%d for %s %s (attempt %d/%d). Retry-After=%s",
                    resp.status_code,
                    method,
                    url,
                    attempt,
                    self.max_retries,
                    resp.headers.get("Retry-After"),
                )
                self._sleep_with_jitter(attempt, resp.headers.get("Retry-After"))
                continue

            message = _error_message(resp)
            log.error("%s %s failed: %d %s - %s", method, url, resp.status_code, resp.reason, message)
            raise RemoteError(resp.status_code, resp.reason, message, method=method, url=url)

        raise TransportError("Exhausted retries", method=method, url=url)

    async def send_async(self, request: OutboundRequest) -> TransportResponse:
        return await asyncio.to_thread(self.send, request)

    def close(self) -> None:
        self.session.close()
