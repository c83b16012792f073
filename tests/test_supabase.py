"""Tests for the Supabase collaborators against a mocked HTTP transport."""

import asyncio
import json
import logging

import httpx
import pytest

from bizsite.errors import AuthorizationError, NotFoundError, TransientIOError
from bizsite.supabase import (
    SupabaseAuthProvider,
    SupabaseBlobStore,
    SupabaseDocumentStore,
    _json_path,
)
from bizsite.stores import apply_paths

URL = "https://project.supabase.co"
KEY = "anon-key"


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses, repeat_last=False):
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.repeat_last and len(self.responses) == 1:
            last = self.responses[0]
            response = httpx.Response(last.status_code, headers=last.headers, content=last.content)
        else:
            response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def transport(self):
        return httpx.MockTransport(self)


class FakePostgrest:
    """Async handler serving one table plus the patch_document function."""

    def __init__(self, rows):
        self.rows = rows

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        # Let concurrent requests interleave.
        await asyncio.sleep(0)
        if request.url.path == "/rest/v1/rpc/patch_document":
            body = json.loads(request.content)
            document = self.rows.get(body["doc_id"])
            if document is None:
                return httpx.Response(200, json=False)
            apply_paths(document, body["paths"])
            return httpx.Response(200, json=True)
        doc_id = request.url.params["id"].removeprefix("eq.")
        rows = [{"data": self.rows[doc_id]}] if doc_id in self.rows else []
        return httpx.Response(200, json=rows)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class TestDocumentStore:

    def test_get(self):
        recorder = Recorder(httpx.Response(200, json=[{"data": {"businessId": "le-bistro"}}]))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        assert asyncio.run(store.get("businesses", "le-bistro")) == {"businessId": "le-bistro"}

        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/businesses"
        assert request.url.params["id"] == "eq.le-bistro"
        assert request.headers["apikey"] == KEY
        assert request.headers["authorization"] == f"Bearer {KEY}"

    def test_get_missing(self):
        recorder = Recorder(httpx.Response(200, json=[]))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        assert asyncio.run(store.get("businesses", "ghost")) is None

    def test_set_is_an_upsert(self):
        recorder = Recorder(httpx.Response(201))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        asyncio.run(store.set("users", "u-1", {"businessId": "le-bistro"}))
        request = recorder.requests[0]
        assert request.method == "POST"
        assert "merge-duplicates" in request.headers["prefer"]
        assert json.loads(request.content) == {"id": "u-1", "data": {"businessId": "le-bistro"}}

    def test_update_patches_paths_server_side(self):
        recorder = Recorder(httpx.Response(200, json=True))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        asyncio.run(store.update("businesses", "le-bistro", {"hero": {"title": "New"}, "updatedAt": "now"}))

        [request] = recorder.requests
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/rpc/patch_document"
        assert json.loads(request.content) == {
            "collection": "businesses",
            "doc_id": "le-bistro",
            "paths": {"hero": {"title": "New"}, "updatedAt": "now"},
        }

    def test_update_missing_document(self):
        recorder = Recorder(httpx.Response(200, json=False))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        with pytest.raises(NotFoundError):
            asyncio.run(store.update("businesses", "ghost", {"hero": {}}))
        assert len(recorder.requests) == 1

    def test_concurrent_section_saves_both_land(self):
        server = FakePostgrest({"le-bistro": {
            "businessId": "le-bistro",
            "hero": {"title": "Old"},
            "basicInfo": {"name": "Old"},
        }})
        store = SupabaseDocumentStore(URL, KEY, transport=httpx.MockTransport(server))

        async def save_both():
            await asyncio.gather(
                store.update("businesses", "le-bistro", {"hero": {"title": "New hero"}}),
                store.update("businesses", "le-bistro", {"basicInfo": {"name": "Le Bistro"}}),
            )
            return await store.get("businesses", "le-bistro")

        document = asyncio.run(save_both())
        assert document["hero"] == {"title": "New hero"}
        assert document["basicInfo"] == {"name": "Le Bistro"}
        assert document["businessId"] == "le-bistro"

    def test_query_filters_on_json_paths(self):
        recorder = Recorder(httpx.Response(200, json=[{"data": {"ownerId": "u-1"}}]))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        assert asyncio.run(store.query("businesses", {"ownerId": "u-1"})) == [{"ownerId": "u-1"}]
        assert recorder.requests[0].url.params["data->>ownerId"] == "eq.u-1"

    def test_json_path(self):
        assert _json_path("ownerId") == "data->>ownerId"
        assert _json_path("widgets.calendly.url") == "data->widgets->calendly->>url"

    def test_server_error_is_transient(self):
        recorder = Recorder(httpx.Response(500, text="boom"))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        with pytest.raises(TransientIOError):
            asyncio.run(store.get("businesses", "le-bistro"))

    def test_connection_error_is_transient(self):
        recorder = Recorder(httpx.ConnectError("unreachable"))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        with pytest.raises(TransientIOError):
            asyncio.run(store.get("businesses", "le-bistro"))

    def test_refused_is_an_authorization_error(self):
        recorder = Recorder(httpx.Response(401))
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport)
        with pytest.raises(AuthorizationError):
            asyncio.run(store.get("businesses", "le-bistro"))


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

def _row(document):
    return httpx.Response(200, json=[{"data": document}])


class TestSubscribe:

    def test_survives_a_failed_first_read(self):
        recorder = Recorder(httpx.Response(503), _row({"v": 1}), _row({"v": 2}), repeat_last=True)
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport, poll_interval=0)

        async def watch():
            seen = []
            subscription = store.subscribe("businesses", "le-bistro", seen.append)
            for _ in range(200):
                if seen:
                    break
                await asyncio.sleep(0.01)
            subscription.cancel()
            return seen

        assert asyncio.run(watch()) == [{"v": 2}]
        assert len(recorder.requests) >= 3

    def test_refused_reads_keep_polling(self):
        recorder = Recorder(_row({"v": 1}), httpx.Response(401), _row({"v": 2}), repeat_last=True)
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport, poll_interval=0)

        async def watch():
            seen = []
            subscription = store.subscribe("businesses", "le-bistro", seen.append)
            for _ in range(200):
                if seen:
                    break
                await asyncio.sleep(0.01)
            subscription.cancel()
            return seen

        assert asyncio.run(watch()) == [{"v": 2}]

    def test_crashed_listener_is_logged(self, caplog):
        recorder = Recorder(_row({"v": 1}), _row({"v": 2}), repeat_last=True)
        store = SupabaseDocumentStore(URL, KEY, transport=recorder.transport, poll_interval=0)

        def listener(document):
            raise RuntimeError("listener failed")

        def stopped():
            return any("stopped" in record.getMessage() for record in caplog.records)

        async def watch():
            store.subscribe("businesses", "le-bistro", listener)
            for _ in range(200):
                if stopped():
                    break
                await asyncio.sleep(0.01)

        caplog.set_level(logging.ERROR, logger="bizsite.supabase")
        asyncio.run(watch())
        [record] = [r for r in caplog.records if "stopped" in r.getMessage()]
        assert record.levelno == logging.ERROR
        assert "listener failed" in record.getMessage()
        assert "businesses/le-bistro" in record.getMessage()


# ---------------------------------------------------------------------------
# Blobs
# ---------------------------------------------------------------------------

class TestBlobStore:

    def test_upload_returns_an_opaque_ref(self):
        recorder = Recorder(httpx.Response(200, json={"Key": "business-images/x"}))
        blobs = SupabaseBlobStore(URL, KEY, "business-images", transport=recorder.transport)
        ref = asyncio.run(blobs.upload("businesses/le-bistro/hero/1_front.jpg", b"img", "image/jpeg"))
        assert ref == "supabase://business-images/businesses/le-bistro/hero/1_front.jpg"

        request = recorder.requests[0]
        assert request.url.path == "/storage/v1/object/business-images/businesses/le-bistro/hero/1_front.jpg"
        assert request.headers["content-type"] == "image/jpeg"
        assert request.headers["x-upsert"] == "false"
        assert request.content == b"img"

    def test_resolve_signs_the_ref(self):
        recorder = Recorder(httpx.Response(200, json={"signedURL": "/object/sign/business-images/a.jpg?token=t"}))
        blobs = SupabaseBlobStore(URL, KEY, "business-images", transport=recorder.transport)
        url = asyncio.run(blobs.resolve("supabase://business-images/a.jpg"))
        assert url == f"{URL}/storage/v1/object/sign/business-images/a.jpg?token=t"
        assert json.loads(recorder.requests[0].content) == {"expiresIn": 3600}

    def test_resolve_foreign_ref(self):
        blobs = SupabaseBlobStore(URL, KEY, "business-images", transport=Recorder().transport)
        with pytest.raises(NotFoundError):
            asyncio.run(blobs.resolve("memory://a.jpg"))

    def test_resolve_missing_object(self):
        recorder = Recorder(httpx.Response(404, json={"error": "not_found"}))
        blobs = SupabaseBlobStore(URL, KEY, "business-images", transport=recorder.transport)
        with pytest.raises(TransientIOError):
            asyncio.run(blobs.resolve("supabase://business-images/gone.jpg"))

    def test_delete_failure_is_only_logged(self):
        recorder = Recorder(httpx.Response(500))
        blobs = SupabaseBlobStore(URL, KEY, "business-images", transport=recorder.transport)
        asyncio.run(blobs.delete("supabase://business-images/a.jpg"))
        assert recorder.requests[0].method == "DELETE"


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class TestAuthProvider:

    def test_sign_in_opens_a_session(self):
        recorder = Recorder(httpx.Response(200, json={
            "access_token": "jwt-1",
            "user": {"id": "u-1", "email": "chef@example.com"},
        }))
        auth = SupabaseAuthProvider(URL, KEY, transport=recorder.transport)
        seen = []
        auth.on_identity_change(seen.append)

        session = asyncio.run(auth.sign_in("chef@example.com", "secret"))
        assert session.token == "jwt-1"
        assert auth.current_identity().uid == "u-1"
        assert seen[-1].email == "chef@example.com"
        assert recorder.requests[0].url.params["grant_type"] == "password"

    def test_bad_credentials(self):
        recorder = Recorder(httpx.Response(400, json={"error": "invalid_grant"}))
        auth = SupabaseAuthProvider(URL, KEY, transport=recorder.transport)
        with pytest.raises(AuthorizationError):
            asyncio.run(auth.sign_in("chef@example.com", "wrong"))
        assert auth.current_identity() is None

    def test_sign_out(self):
        recorder = Recorder(
            httpx.Response(200, json={"access_token": "jwt-1", "user": {"id": "u-1"}}),
            httpx.Response(204),
        )
        auth = SupabaseAuthProvider(URL, KEY, transport=recorder.transport)
        asyncio.run(auth.sign_in("chef@example.com", "secret"))
        asyncio.run(auth.sign_out())
        assert auth.current_identity() is None
        assert recorder.requests[1].headers["authorization"] == "Bearer jwt-1"

    def test_verify_token(self):
        recorder = Recorder(
            httpx.Response(200, json={"id": "u-1", "email": "chef@example.com"}),
            httpx.Response(401),
        )
        auth = SupabaseAuthProvider(URL, KEY, transport=recorder.transport)
        assert asyncio.run(auth.verify_token("jwt-1")).uid == "u-1"
        assert asyncio.run(auth.verify_token("expired")) is None
