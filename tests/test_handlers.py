"""Tests for protocol handlers: create/update routing, payload shaping, deletes."""

import hashlib

import pytest

from replication.constants import REPLICAST_REQUEST_HEADER, REPLICAST_SOURCE_INFO
from replication.errors import ConfigurationError, ContractViolation, RemoteError
from replication.handlers.attachment import AttachmentHandler
from replication.handlers.factory import handler_for
from replication.handlers.post import PostHandler, slugify, source_object_id
from replication.handlers.term import TermHandler
from replication.resolver import UNSET
from replication.signer import sign
from replication.types import AssetRef, Destination, PostRef, RemoteDescriptor, TermRef
from tests.conftest import FIXED_TIMESTAMP, FakeTransport, json_response


def make_post_handler(host, imap, transport, entity=PostRef(10), settings=None):
    return PostHandler(
        entity,
        projector=host,
        identity_map=imap,
        transport=transport,
        settings=settings,
        clock=lambda: FIXED_TIMESTAMP,
    )


class TestHelpers:
    def test_slugify(self):
        assert slugify("Hello,  World! 2024") == "hello-world-2024"

    @pytest.mark.parametrize(
        "meta, expected",
        [
            ({REPLICAST_SOURCE_INFO: {"object_id": 3}}, 3),
            ({REPLICAST_SOURCE_INFO: [{"object_id": "4"}]}, 4),
            ({REPLICAST_SOURCE_INFO: '{"object_id": 5}'}, 5),
            ({REPLICAST_SOURCE_INFO: "garbage"}, None),
            ({}, None),
            (None, None),
        ],
    )
    def test_source_object_id(self, meta, expected):
        assert source_object_id(meta) == expected

    def test_factory_dispatch(self, json_host, host_identity_map, fake_transport):
        assert isinstance(handler_for(AssetRef(20), json_host, host_identity_map, fake_transport), AttachmentHandler)
        assert isinstance(handler_for(TermRef(3), json_host, host_identity_map, fake_transport), TermHandler)
        assert type(handler_for(PostRef(30, "page"), json_host, host_identity_map, fake_transport)) is PostHandler


class TestPostPayload:
    """Shaping of the outgoing JSON body"""

    def test_create_strips_server_fields(self, json_host, host_identity_map, fake_transport, destination):
        data = make_post_handler(json_host, host_identity_map, fake_transport).prepare_for_create(destination)

        assert "id" not in data
        assert "author" not in data
        assert "categories" not in data
        assert data["date_gmt"] == "2024-05-01T10:00:00"

    def test_featured_media_unset_until_asset_replicated(self, json_host, host_identity_map, fake_transport, destination):
        handler = make_post_handler(json_host, host_identity_map, fake_transport)
        assert handler.prepare_for_create(destination)["featured_media"] == UNSET

        host_identity_map.put(AssetRef(20), destination.id, RemoteDescriptor(620, "publish"))
        data = handler.prepare_for_create(destination)

        assert data["featured_media"] == 620
        assert data["replicast"]["featured_media"]["id"] == 620
        assert data["replicast"]["featured_media"][REPLICAST_SOURCE_INFO] == {"object_id": 20}

    def test_meta_gets_source_info_and_typed_fields(self, json_host, host_identity_map, fake_transport, destination):
        host_identity_map.put(PostRef(30, "page"), destination.id, RemoteDescriptor(730))
        meta = make_post_handler(json_host, host_identity_map, fake_transport).prepare_for_create(destination)[
            "replicast"
        ]["meta"]

        assert meta[REPLICAST_SOURCE_INFO] == [
            {"object_id": 10, "permalink": "https://source.example.com/hello-world/"}
        ]
        assert meta["subtitle"] == ["A first post"]
        assert meta["related"] == [[730]]
        assert "_edit_lock" not in meta

    def test_term_tree_is_resolved_for_the_destination(self, json_host, host_identity_map, fake_transport, destination):
        host_identity_map.put(TermRef(3), destination.id, RemoteDescriptor(103, extra_ids={"term_taxonomy_id": 203}))
        terms = make_post_handler(json_host, host_identity_map, fake_transport).prepare_for_create(destination)[
            "replicast"
        ]["term"]

        assert len(terms) == 1  # uncategorized never travels
        news = terms[0]
        assert news["term_id"] == 103
        assert news["term_taxonomy_id"] == 203
        assert news["parent"] == 0
        local = news["children"][0]
        assert local["term_id"] == UNSET
        assert local["meta"][REPLICAST_SOURCE_INFO] == {"object_id": 4}
        assert local["children"][0]["name"] == "Sports"

    def test_update_requires_a_descriptor(self, json_host, host_identity_map, fake_transport, destination):
        handler = make_post_handler(json_host, host_identity_map, fake_transport)
        with pytest.raises(ContractViolation):
            handler.prepare_for_update(destination)

    def test_update_carries_remote_id(self, json_host, host_identity_map, fake_transport, destination):
        host_identity_map.put(PostRef(10), destination.id, RemoteDescriptor(501))
        data = make_post_handler(json_host, host_identity_map, fake_transport).prepare_for_update(destination)
        assert data["id"] == 501

    def test_draft_without_slug_gets_one(self, json_host, host_identity_map, fake_transport, destination):
        json_host.doc["posts"]["10"].update({"status": "draft", "slug": ""})
        data = make_post_handler(json_host, host_identity_map, fake_transport).prepare_for_create(destination)
        assert data["slug"] == "hello-world"

    def test_page_drops_empty_template(self, json_host, host_identity_map, fake_transport, destination):
        handler = make_post_handler(json_host, host_identity_map, fake_transport, entity=PostRef(30, "page"))
        data = handler.prepare_for_create(destination)
        assert "template" not in data
        assert handler.resource_base == "pages"

    def test_media_entries_are_resolved(self, memory_store, fake_transport, destination):
        from replication.identity_map import IdentityMap

        class Projection:
            def project(self, entity):
                return {"id": entity.id, "replicast": {"media": {"20": {"file": "a.jpg"}, "21": {"file": "b.jpg"}}}}

        imap = IdentityMap(memory_store)
        imap.put(AssetRef(20), destination.id, RemoteDescriptor(620))
        handler = PostHandler(PostRef(10), projector=Projection(), identity_map=imap, transport=fake_transport)

        media = handler.prepare_for_create(destination)["replicast"]["media"]
        assert media["20"]["id"] == 620
        assert media["21"]["id"] == UNSET


class TestRequests:
    """Request building and signing"""

    def test_headers_and_signature(self, json_host, host_identity_map, fake_transport, destination):
        handler = make_post_handler(json_host, host_identity_map, fake_transport)
        request = handler.build_request("POST", destination, handler.prepare_for_create(destination))

        assert request.url == "https://mirror.example.com/wp-json/wp/v2/posts/"
        assert request.headers["X-API-KEY"] == "key-12"
        assert request.headers["X-API-TIMESTAMP"] == str(FIXED_TIMESTAMP)
        assert request.headers[REPLICAST_REQUEST_HEADER] == "1"
        assert request.headers["X-API-SIGNATURE"] == sign(
            "POST", request.url, FIXED_TIMESTAMP, "secret-12", api_key="key-12"
        )

    def test_delete_signs_the_query_string(self, json_host, host_identity_map, fake_transport, destination):
        handler = make_post_handler(json_host, host_identity_map, fake_transport)
        request = handler.build_request("DELETE", destination, {"id": 501}, {"force": True})

        assert request.json is None
        assert request.full_url == "https://mirror.example.com/wp-json/wp/v2/posts/501/?force=true"
        assert request.headers["X-API-SIGNATURE"] == sign(
            "DELETE", request.full_url, FIXED_TIMESTAMP, "secret-12", api_key="key-12"
        )

    def test_update_uses_destination_update_method(self, json_host, host_identity_map, fake_transport, destination):
        handler = make_post_handler(json_host, host_identity_map, fake_transport)
        assert handler.build_request("PUT", destination, {"id": 501}).method == "POST"

        put_dest = Destination("56", "https://put.example.com", "k", "s", update_method="PUT")
        assert handler.build_request("PUT", put_dest, {"id": 501}).method == "PUT"

    def test_invalid_destination_fails_before_any_request(self, json_host, host_identity_map, fake_transport):
        handler = make_post_handler(json_host, host_identity_map, fake_transport)
        broken = Destination("99", "https://broken.example.com", "key", "")

        with pytest.raises(ConfigurationError):
            handler.build_request("POST", broken, {})
        assert fake_transport.requests == []

    def test_non_create_without_id_is_a_contract_violation(self, json_host, host_identity_map, fake_transport, destination):
        handler = make_post_handler(json_host, host_identity_map, fake_transport)
        with pytest.raises(ContractViolation):
            handler.build_request("DELETE", destination, {})


class TestHandleSave:
    @pytest.mark.asyncio
    async def test_second_save_updates_instead_of_creating(self, json_host, host_identity_map, fake_transport, destination):
        await make_post_handler(json_host, host_identity_map, fake_transport).handle_save(destination)
        await make_post_handler(json_host, host_identity_map, fake_transport).handle_save(destination)

        first, second = fake_transport.requests
        assert first.url.endswith("/posts/")
        assert second.url.endswith("/posts/501/")
        assert host_identity_map.lookup(PostRef(10), destination.id) == RemoteDescriptor(501, "publish")

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_identity_map_alone(self, json_host, host_identity_map, destination):
        def fail(request):
            raise RemoteError(500, "Internal Server Error", "boom", method=request.method, url=request.url)

        handler = make_post_handler(json_host, host_identity_map, FakeTransport(fail))
        with pytest.raises(RemoteError):
            await handler.handle_save(destination)
        assert host_identity_map.get(PostRef(10)) == {}

    @pytest.mark.asyncio
    async def test_answer_without_id_is_a_remote_error(self, json_host, host_identity_map, destination):
        transport = FakeTransport(lambda request: json_response({"status": "publish"}, 201, "Created"))

        with pytest.raises(RemoteError) as excinfo:
            await make_post_handler(json_host, host_identity_map, transport).handle_save(destination)

        assert excinfo.value.status_code == 201
        assert excinfo.value.url.endswith("/posts/")
        assert host_identity_map.get(PostRef(10)) == {}

    def test_persist_nested_records_term_descriptors(self, json_host, host_identity_map, fake_transport, destination):
        response = {
            "id": 501,
            "replicast": {
                "term": [
                    {
                        "term_id": 103,
                        "term_taxonomy_id": 203,
                        "taxonomy": "category",
                        "meta": {REPLICAST_SOURCE_INFO: [{"object_id": 3}]},
                        "children": [
                            {
                                "term_id": 104,
                                "term_taxonomy_id": 204,
                                "taxonomy": "category",
                                "meta": {REPLICAST_SOURCE_INFO: {"object_id": 4}},
                                "children": [],
                            },
                            {"term_id": 999, "taxonomy": "category", "meta": {}},
                        ],
                    }
                ]
            },
        }

        written = make_post_handler(json_host, host_identity_map, fake_transport).persist_nested(destination, response)

        assert written == 2
        assert host_identity_map.lookup(TermRef(3), destination.id) == RemoteDescriptor(
            103, "", {"term_taxonomy_id": 203}
        )
        assert host_identity_map.lookup(TermRef(4), destination.id).remote_id == 104


class TestHandleDelete:
    @pytest.mark.asyncio
    async def test_no_descriptor_is_a_noop(self, json_host, host_identity_map, fake_transport, destination):
        result = await make_post_handler(json_host, host_identity_map, fake_transport).handle_delete(destination)
        assert result is None
        assert fake_transport.requests == []

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_descriptor_with_new_status(self, json_host, host_identity_map, fake_transport, destination):
        host_identity_map.put(PostRef(10), destination.id, RemoteDescriptor(501, "publish"))

        await make_post_handler(json_host, host_identity_map, fake_transport).handle_delete(destination, force=False)

        (request,) = fake_transport.requests
        assert request.method == "DELETE"
        assert request.query == {"force": False}
        assert host_identity_map.lookup(PostRef(10), destination.id) == RemoteDescriptor(501, "trash")

    @pytest.mark.asyncio
    async def test_hard_delete_clears_descriptor(self, json_host, host_identity_map, fake_transport, destination):
        host_identity_map.put(PostRef(10), destination.id, RemoteDescriptor(501, "publish"))

        await make_post_handler(json_host, host_identity_map, fake_transport).handle_delete(destination, force=True)

        assert fake_transport.requests[0].query == {"force": True}
        assert host_identity_map.lookup(PostRef(10), destination.id) is None


class TestAttachmentHandler:
    def _handler(self, host, imap, transport):
        return AttachmentHandler(
            AssetRef(20),
            assets=host,
            projector=host,
            identity_map=imap,
            transport=transport,
            clock=lambda: FIXED_TIMESTAMP,
        )

    @pytest.mark.asyncio
    async def test_create_uploads_raw_bytes(self, json_host, host_identity_map, fake_transport, destination):
        await self._handler(json_host, host_identity_map, fake_transport).handle_save(destination)

        (request,) = fake_transport.requests
        content = b"\xff\xd8\xff\xe0fake-jpeg-bytes"
        assert request.url == "https://mirror.example.com/wp-json/wp/v2/media/"
        assert request.json is None
        assert request.body == content
        assert request.headers["Content-Type"] == "image/jpeg"
        assert request.headers["Content-Disposition"] == "attachment; filename=photo.jpg"
        assert request.headers["Content-MD5"] == hashlib.md5(content).hexdigest()
        assert host_identity_map.has(AssetRef(20), destination.id)

    @pytest.mark.asyncio
    async def test_update_sends_json_with_publish_status(self, json_host, host_identity_map, fake_transport, destination):
        host_identity_map.put(AssetRef(20), destination.id, RemoteDescriptor(620))
        host_identity_map.put(PostRef(10), destination.id, RemoteDescriptor(501))

        await self._handler(json_host, host_identity_map, fake_transport).handle_save(destination)

        (request,) = fake_transport.requests
        assert request.url.endswith("/media/620/")
        assert request.body is None
        assert request.json["status"] == "publish"
        assert request.json["post"] == 501

    def test_unreplicated_parent_post_is_unset(self, json_host, host_identity_map, fake_transport, destination):
        data = self._handler(json_host, host_identity_map, fake_transport).prepare_for_create(destination)
        assert data["post"] == UNSET


class TestTermHandler:
    def _handler(self, host, imap, transport, term_id=4):
        return TermHandler(
            TermRef(term_id, "category"),
            projector=host,
            identity_map=imap,
            transport=transport,
            clock=lambda: FIXED_TIMESTAMP,
        )

    def test_payload(self, json_host, host_identity_map, fake_transport, destination):
        host_identity_map.put(TermRef(3), destination.id, RemoteDescriptor(103))
        handler = self._handler(json_host, host_identity_map, fake_transport)

        data = handler.prepare_for_create(destination)

        assert handler.resource_base == "categories"
        assert data["parent"] == 103
        assert data["meta"][REPLICAST_SOURCE_INFO] == {"object_id": 4}
        assert "count" not in data and "link" not in data

    def test_unreplicated_parent_is_unset(self, json_host, host_identity_map, fake_transport, destination):
        data = self._handler(json_host, host_identity_map, fake_transport).prepare_for_create(destination)
        assert data["parent"] == UNSET

    def test_root_term_keeps_zero_parent(self, json_host, host_identity_map, fake_transport, destination):
        data = self._handler(json_host, host_identity_map, fake_transport, term_id=3).prepare_for_create(destination)
        assert data["parent"] == 0

    @pytest.mark.asyncio
    async def test_save_keeps_term_taxonomy_id(self, json_host, host_identity_map, destination):
        transport = FakeTransport(lambda r: json_response({"id": 104, "term_taxonomy_id": 204, "name": "Local"}))
        await self._handler(json_host, host_identity_map, transport).handle_save(destination)

        desc = host_identity_map.lookup(TermRef(4), destination.id)
        assert desc.remote_id == 104
        assert desc.extra_ids == {"term_taxonomy_id": 204}

    @pytest.mark.asyncio
    async def test_update_keeps_term_taxonomy_id_missing_from_reply(
        self, json_host, host_identity_map, fake_transport, destination
    ):
        host_identity_map.put(TermRef(3), destination.id, RemoteDescriptor(103, "", {"term_taxonomy_id": 203}))

        await self._handler(json_host, host_identity_map, fake_transport, term_id=3).handle_save(destination)

        assert fake_transport.requests[0].url.endswith("/categories/103/")
        assert host_identity_map.lookup(TermRef(3), destination.id) == RemoteDescriptor(
            103, "publish", {"term_taxonomy_id": 203}
        )

    @pytest.mark.asyncio
    async def test_update_takes_new_term_taxonomy_id_from_reply(self, json_host, host_identity_map, destination):
        host_identity_map.put(TermRef(4), destination.id, RemoteDescriptor(104, "", {"term_taxonomy_id": 204}))
        transport = FakeTransport(lambda r: json_response({"id": 104, "term_taxonomy_id": 304}))

        await self._handler(json_host, host_identity_map, transport).handle_save(destination)

        assert host_identity_map.lookup(TermRef(4), destination.id).extra_ids == {"term_taxonomy_id": 304}

    def test_has_no_nested_descriptors(self, json_host, host_identity_map, fake_transport, destination):
        handler = self._handler(json_host, host_identity_map, fake_transport)
        assert handler.persist_nested(destination, {"id": 104, "replicast": {"term": [{"term_id": 9}]}}) == 0
        assert host_identity_map.get(TermRef(4)) == {}

    @pytest.mark.asyncio
    async def test_delete_is_always_permanent(self, json_host, host_identity_map, fake_transport, destination):
        host_identity_map.put(TermRef(4), destination.id, RemoteDescriptor(104))

        await self._handler(json_host, host_identity_map, fake_transport).handle_delete(destination, force=False)

        assert fake_transport.requests[0].query == {"force": True}
        assert host_identity_map.lookup(TermRef(4), destination.id) is None
