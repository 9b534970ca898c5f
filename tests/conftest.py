"""Shared pytest fixtures and configuration

This file contains fixtures that can be used across all test files.
Pytest automatically discovers this file and makes fixtures available.
"""

import itertools
import json
from typing import Any, Callable, Dict, List, Optional

import pytest

from replication.identity_map import IdentityMap
from replication.types import Destination, ReplicationSettings
from stores.json_host import JsonHost
from utils.http import OutboundRequest, TransportResponse

FIXED_TIMESTAMP = 1700000000


# ==================== Test Doubles ====================


class MemoryMetaStore:
    """Dict-backed MetadataStore."""

    def __init__(self):
        self.data: Dict[tuple, List[Any]] = {}

    def get_meta(self, meta_type, object_id, key):
        values = self.data.get((meta_type, int(object_id), key))
        return values[0] if values else None

    def set_meta(self, meta_type, object_id, key, value):
        self.data[(meta_type, int(object_id), key)] = [value]

    def add_meta(self, meta_type, object_id, key, value):
        self.data.setdefault((meta_type, int(object_id), key), []).append(value)

    def delete_meta(self, meta_type, object_id, key):
        self.data.pop((meta_type, int(object_id), key), None)

    def all_meta(self, meta_type, object_id):
        return {k[2]: list(v) for k, v in self.data.items() if k[:2] == (meta_type, int(object_id))}


def json_response(body: Any, status_code: int = 200, reason: str = "OK") -> TransportResponse:
    return TransportResponse(
        status_code=status_code,
        reason=reason,
        headers={"Content-Type": "application/json"},
        content=json.dumps(body).encode("utf-8"),
    )


def _remote_id_from_url(url: str) -> Optional[int]:
    tail = url.rstrip("/").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else None


class FakeTransport:
    """
    Records every request and answers like a destination REST API would.

    `responder(request)` may be replaced to return a TransportResponse or raise.
    """

    def __init__(self, responder: Optional[Callable[[OutboundRequest], TransportResponse]] = None):
        self.requests: List[OutboundRequest] = []
        self._ids = itertools.count(501)
        self.responder = responder or self.default_responder

    def default_responder(self, request: OutboundRequest) -> TransportResponse:
        remote_id = _remote_id_from_url(request.url)
        if request.method == "DELETE":
            if request.query.get("force"):
                return json_response({"deleted": True, "previous": {"id": remote_id, "status": "publish"}})
            return json_response({"id": remote_id, "status": "trash"})
        if remote_id is None:
            return json_response({"id": next(self._ids), "status": "publish"}, 201, "Created")
        return json_response({"id": remote_id, "status": "publish"})

    def send(self, request: OutboundRequest) -> TransportResponse:
        self.requests.append(request)
        return self.responder(request)

    async def send_async(self, request: OutboundRequest) -> TransportResponse:
        return self.send(request)

    def close(self) -> None:
        pass

    def requests_to(self, base_url: str) -> List[OutboundRequest]:
        return [r for r in self.requests if r.url.startswith(base_url)]


# ==================== Engine Fixtures ====================


@pytest.fixture
def memory_store():
    """An empty in-memory metadata store"""
    return MemoryMetaStore()


@pytest.fixture
def destination():
    """Destination 12, a valid mirror site"""
    return Destination(
        id="12",
        name="Mirror",
        base_url="https://mirror.example.com",
        api_key="key-12",
        api_secret="secret-12",
    )


@pytest.fixture
def other_destination():
    """Destination 34, a second valid site"""
    return Destination(
        id="34",
        name="Archive",
        base_url="https://archive.example.com",
        api_key="key-34",
        api_secret="secret-34",
    )


@pytest.fixture
def destinations(destination, other_destination):
    return {destination.id: destination, other_destination.id: other_destination}


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def settings():
    return ReplicationSettings()


# ==================== Host Fixtures ====================


@pytest.fixture
def host_document():
    """
    A small site:
      post 10 "Hello World" in News > Local > Sports, featured asset 20, sent to site 12
      asset 20 photo.jpg uploaded to post 10
      page 30 with an empty template, sent to sites 12 and 34
    """
    return {
        "taxonomies": ["category", "post_tag", "remote_site"],
        "posts": {
            "10": {
                "id": 10,
                "type": "post",
                "title": "Hello World",
                "content": "<p>Body</p>",
                "status": "publish",
                "slug": "hello-world",
                "date": "2024-05-01 10:00:00",
                "link": "https://source.example.com/hello-world/",
                "author": 7,
                "thumbnail": 20,
            },
            "20": {
                "id": 20,
                "type": "attachment",
                "title": "photo",
                "status": "inherit",
                "mime_type": "image/jpeg",
                "parent": 10,
                "file": "uploads/photo.jpg",
                "metadata": {"width": 640, "height": 480},
            },
            "30": {
                "id": 30,
                "type": "page",
                "title": "About",
                "content": "About us",
                "status": "publish",
                "slug": "about",
                "date": "2024-04-01 09:30:00",
                "template": "",
            },
        },
        "terms": {
            "1": {"term_id": 1, "term_taxonomy_id": 1, "name": "Uncategorized", "slug": "uncategorized",
                  "description": "", "taxonomy": "category", "parent": 0},
            "3": {"term_id": 3, "term_taxonomy_id": 3, "name": "News", "slug": "news",
                  "description": "All news", "taxonomy": "category", "parent": 0},
            "4": {"term_id": 4, "term_taxonomy_id": 4, "name": "Local", "slug": "local",
                  "description": "", "taxonomy": "category", "parent": 3},
            "5": {"term_id": 5, "term_taxonomy_id": 5, "name": "Sports", "slug": "sports",
                  "description": "", "taxonomy": "category", "parent": 4},
            "12": {"term_id": 12, "term_taxonomy_id": 12, "name": "Mirror", "slug": "mirror",
                   "description": "", "taxonomy": "remote_site", "parent": 0},
            "34": {"term_id": 34, "term_taxonomy_id": 34, "name": "Archive", "slug": "archive",
                   "description": "", "taxonomy": "remote_site", "parent": 0},
        },
        "relationships": {
            "10": {"category": [1, 3, 4, 5], "remote_site": [12]},
            "30": {"remote_site": [12, 34]},
        },
        "meta": {
            "post": {
                "10": {
                    "subtitle": ["A first post"],
                    "_edit_lock": ["1714557600:1"],
                    "related": [[30]],
                },
                "30": {"_wp_page_template": ["default"]},
            },
            "term": {},
        },
        "fields": {
            "10": {"related": {"type": "relationship", "value": [30]}},
        },
    }


@pytest.fixture
def json_host(tmp_path, host_document, settings):
    """A JsonHost on a temp directory, with the asset file on disk"""
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "photo.jpg").write_bytes(b"\xff\xd8\xff\xe0fake-jpeg-bytes")
    return JsonHost.from_document(str(tmp_path / "replicast.json"), host_document, settings)


@pytest.fixture
def host_identity_map(json_host):
    return IdentityMap(json_host)


# ==================== Pytest Configuration ====================


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
