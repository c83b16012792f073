"""Supabase-backed collaborators over plain HTTP (PostgREST, Storage, GoTrue).

Each collection is a table with an ``id`` text primary key and a ``data``
jsonb column holding the document:

    create table businesses (id text primary key, data jsonb not null);

Path updates run server-side so concurrent saves of different sections never
overwrite each other. The database needs this function, which locks the row
and applies every dotted path with ``jsonb_set``:

    create or replace function patch_document(collection text, doc_id text, paths jsonb)
    returns boolean language plpgsql as $$
    declare
      doc jsonb;
      entry record;
      keys text[];
    begin
      execute format('select data from %I where id = $1 for update', collection)
        into doc using doc_id;
      if doc is null then
        return false;
      end if;
      for entry in select key, value from jsonb_each(paths) loop
        keys := string_to_array(entry.key, '.');
        for depth in 1 .. array_length(keys, 1) - 1 loop
          if jsonb_typeof(doc #> keys[1:depth]) is distinct from 'object' then
            doc := jsonb_set(doc, keys[1:depth], '{}'::jsonb, true);
          end if;
        end loop;
        doc := jsonb_set(doc, keys, entry.value, true);
      end loop;
      execute format('update %I set data = $1 where id = $2', collection) using doc, doc_id;
      return true;
    end;
    $$;
"""

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from .errors import AuthorizationError, NotFoundError, TransientIOError
from .stores import Identity, Session, Subscription

logger = logging.getLogger(__name__)


class _SupabaseHTTP:
    def __init__(self, url: str, key: str, transport: httpx.AsyncBaseTransport | None = None, timeout: float = 30.0):
        self.url = url.rstrip("/")
        self.key = key
        self._transport = transport
        self._timeout = timeout

    def _headers(self, token: str | None = None) -> dict:
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {token or self.key}",
        }

    async def _request(self, method: str, path: str, token: str | None = None, **kwargs) -> httpx.Response:
        headers = {**self._headers(token), **kwargs.pop("headers", {})}
        try:
            async with httpx.AsyncClient(
                base_url=self.url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise TransientIOError(f"{method} {path} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthorizationError(f"{method} {path} was refused ({response.status_code})")
        if response.status_code >= 400:
            raise TransientIOError(f"{method} {path} returned {response.status_code}: {response.text[:200]}")
        return response


def _json_path(path: str) -> str:
    """'widgets.calendly.url' -> 'data->widgets->calendly->>url'."""
    *parents, leaf = path.split(".")
    return "->".join(["data", *parents]) + "->>" + leaf


class SupabaseDocumentStore(_SupabaseHTTP):
    """Document store over PostgREST. Subscriptions poll every ``poll_interval`` seconds."""

    patch_function = "patch_document"

    def __init__(self, url: str, key: str, transport=None, timeout: float = 30.0, poll_interval: float = 10.0):
        super().__init__(url, key, transport, timeout)
        self.poll_interval = poll_interval

    async def get(self, collection: str, doc_id: str) -> dict | None:
        response = await self._request(
            "GET", f"/rest/v1/{collection}", params={"id": f"eq.{doc_id}", "select": "data"}
        )
        rows = response.json()
        return rows[0]["data"] if rows else None

    async def set(self, collection: str, doc_id: str, document: dict) -> None:
        await self._request(
            "POST",
            f"/rest/v1/{collection}",
            json={"id": doc_id, "data": document},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def update(self, collection: str, doc_id: str, paths: dict[str, Any]) -> None:
        response = await self._request(
            "POST",
            f"/rest/v1/rpc/{self.patch_function}",
            json={"collection": collection, "doc_id": doc_id, "paths": paths},
        )
        if response.json() is not True:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")

    async def query(self, collection: str, filters: dict[str, Any]) -> list[dict]:
        params = {"select": "data", "order": "id"}
        for path, value in filters.items():
            params[_json_path(path)] = f"eq.{value}"
        response = await self._request("GET", f"/rest/v1/{collection}", params=params)
        return [row["data"] for row in response.json()]

    def subscribe(self, collection: str, doc_id: str, on_change) -> Subscription:
        unset = object()

        async def poll():
            last = unset
            while True:
                try:
                    current = await self.get(collection, doc_id)
                except (TransientIOError, AuthorizationError) as e:
                    logger.warning("Polling %s/%s failed: %s", collection, doc_id, e)
                else:
                    if last is not unset and current != last:
                        on_change(current)
                    last = current
                await asyncio.sleep(self.poll_interval)

        def stopped(task: asyncio.Task):
            if not task.cancelled() and task.exception() is not None:
                logger.error("Subscription to %s/%s stopped: %r", collection, doc_id, task.exception())

        task = asyncio.get_running_loop().create_task(poll())
        task.add_done_callback(stopped)
        return Subscription(cancel=task.cancel)


class SupabaseBlobStore(_SupabaseHTTP):
    """Storage bucket; refs look like ``supabase://<bucket>/<path>``."""

    scheme = "supabase://"

    def __init__(self, url: str, key: str, bucket: str, transport=None, timeout: float = 60.0, signed_url_ttl: int = 3600):
        super().__init__(url, key, transport, timeout)
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl

    def _split(self, ref: str) -> tuple[str, str]:
        if not ref.startswith(self.scheme):
            raise NotFoundError(f"not a storage reference: {ref}")
        bucket, _, path = ref[len(self.scheme):].partition("/")
        return bucket, path

    async def upload(self, path: str, content: bytes, content_type: str) -> str:
        await self._request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{quote(path)}",
            content=content,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        return f"{self.scheme}{self.bucket}/{path}"

    async def resolve(self, ref: str) -> str:
        bucket, path = self._split(ref)
        response = await self._request(
            "POST",
            f"/storage/v1/object/sign/{bucket}/{quote(path)}",
            json={"expiresIn": self.signed_url_ttl},
        )
        signed = response.json().get("signedURL")
        if not signed:
            raise NotFoundError(f"no signed URL returned for {ref}")
        return f"{self.url}/storage/v1{signed}"

    async def delete(self, ref: str) -> None:
        bucket, path = self._split(ref)
        try:
            await self._request("DELETE", f"/storage/v1/object/{bucket}", json={"prefixes": [path]})
        except TransientIOError as e:
            logger.warning("Could not delete %s: %s", ref, e)


class SupabaseAuthProvider(_SupabaseHTTP):
    """Email/password auth against GoTrue."""

    def __init__(self, url: str, key: str, transport=None, timeout: float = 30.0):
        super().__init__(url, key, transport, timeout)
        self._session: Session | None = None
        self._callbacks: list = []

    def current_identity(self) -> Identity | None:
        return self._session.identity if self._session else None

    async def sign_in(self, email: str, password: str) -> Session:
        try:
            response = await self._request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        except TransientIOError as e:
            raise AuthorizationError("invalid email or password") from e
        return self._open_session(response.json())

    async def sign_up(self, email: str, password: str) -> Session:
        response = await self._request(
            "POST", "/auth/v1/signup", json={"email": email, "password": password}
        )
        return self._open_session(response.json())

    async def sign_out(self) -> None:
        if self._session and self._session.token:
            await self._request("POST", "/auth/v1/logout", token=self._session.token)
        self._session = None
        self._emit(None)

    def on_identity_change(self, callback) -> Subscription:
        self._callbacks.append(callback)
        return Subscription(cancel=lambda: self._callbacks.remove(callback))

    async def verify_token(self, token: str) -> Identity | None:
        try:
            response = await self._request("GET", "/auth/v1/user", token=token)
        except AuthorizationError:
            return None
        user = response.json()
        return Identity(uid=user["id"], email=user.get("email", ""))

    def _open_session(self, payload: dict) -> Session:
        user = payload.get("user") or payload
        identity = Identity(uid=user["id"], email=user.get("email", ""))
        self._session = Session(identity=identity, token=payload.get("access_token", ""))
        self._emit(identity)
        return self._session

    def _emit(self, identity: Identity | None) -> None:
        for callback in list(self._callbacks):
            callback(identity)
