"""Collaborator interfaces (document store, blob store, auth) and in-memory versions.

The in-memory collaborators back the test suite and offline CLI runs; the
Supabase-backed ones live in supabase.py. Both implement the same protocols.
"""

import copy
import hashlib
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from .errors import AuthorizationError, NotFoundError


# ---------------------------------------------------------------------------
# Document paths
# ---------------------------------------------------------------------------

def get_path(document: dict, path: str) -> Any:
    """Read a dotted path ("widgets.calendly.url"); None when absent."""
    node: Any = document
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def apply_paths(document: dict, paths: dict[str, Any]) -> dict:
    """Merge-patch a document in place: each dotted path replaces one subtree."""
    for path, value in paths.items():
        *parents, leaf = path.split(".")
        node = document
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = copy.deepcopy(value)
    return document


def matches(document: dict, filters: dict[str, Any]) -> bool:
    return all(get_path(document, path) == value for path, value in filters.items())


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@dataclass
class Subscription:
    cancel: Callable[[], None]


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> dict | None: ...

    async def set(self, collection: str, doc_id: str, document: dict) -> None: ...

    async def update(self, collection: str, doc_id: str, paths: dict[str, Any]) -> None: ...

    async def query(self, collection: str, filters: dict[str, Any]) -> list[dict]: ...

    def subscribe(
        self, collection: str, doc_id: str, on_change: Callable[[dict | None], None]
    ) -> Subscription: ...


class BlobStore(Protocol):
    async def upload(self, path: str, content: bytes, content_type: str) -> str: ...

    async def resolve(self, ref: str) -> str: ...

    async def delete(self, ref: str) -> None: ...


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str = ""


@dataclass(frozen=True)
class Session:
    identity: Identity
    token: str


class AuthProvider(Protocol):
    def current_identity(self) -> Identity | None: ...

    async def sign_in(self, email: str, password: str) -> Session: ...

    async def sign_up(self, email: str, password: str) -> Session: ...

    async def sign_out(self) -> None: ...

    def on_identity_change(self, callback: Callable[[Identity | None], None]) -> Subscription: ...

    async def verify_token(self, token: str) -> Identity | None: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class MemoryDocumentStore:
    """Dict-backed document store. Documents are copied in and out."""

    def __init__(self, seed: dict[str, dict[str, dict]] | None = None):
        self._collections: dict[str, dict[str, dict]] = copy.deepcopy(seed or {})
        self._listeners: dict[tuple[str, str], list[Callable]] = {}

    async def get(self, collection: str, doc_id: str) -> dict | None:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def set(self, collection: str, doc_id: str, document: dict) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(document)
        self._notify(collection, doc_id)

    async def update(self, collection: str, doc_id: str, paths: dict[str, Any]) -> None:
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        apply_paths(document, paths)
        self._notify(collection, doc_id)

    async def query(self, collection: str, filters: dict[str, Any]) -> list[dict]:
        return [
            copy.deepcopy(document)
            for _, document in sorted(self._collections.get(collection, {}).items())
            if matches(document, filters)
        ]

    def subscribe(self, collection: str, doc_id: str, on_change) -> Subscription:
        key = (collection, doc_id)
        self._listeners.setdefault(key, []).append(on_change)

        def cancel():
            listeners = self._listeners.get(key, [])
            if on_change in listeners:
                listeners.remove(on_change)

        return Subscription(cancel=cancel)

    def _notify(self, collection: str, doc_id: str) -> None:
        document = self._collections.get(collection, {}).get(doc_id)
        for listener in list(self._listeners.get((collection, doc_id), [])):
            listener(copy.deepcopy(document) if document is not None else None)


class MemoryBlobStore:
    """Keeps uploads in memory; refs look like ``memory://<path>``."""

    scheme = "memory://"

    def __init__(self, base_url: str = "https://blobs.invalid"):
        self.base_url = base_url.rstrip("/")
        self.blobs: dict[str, tuple[bytes, str]] = {}

    async def upload(self, path: str, content: bytes, content_type: str) -> str:
        self.blobs[path] = (content, content_type)
        return f"{self.scheme}{path}"

    async def resolve(self, ref: str) -> str:
        if not ref.startswith(self.scheme):
            raise NotFoundError(f"not a memory blob reference: {ref}")
        path = ref[len(self.scheme):]
        if path not in self.blobs:
            raise NotFoundError(f"blob {path} does not exist")
        return f"{self.base_url}/{path}"

    async def delete(self, ref: str) -> None:
        self.blobs.pop(ref[len(self.scheme):], None)


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


class MemoryAuthProvider:
    """Email/password accounts held in memory, with bearer tokens."""

    def __init__(self):
        self._accounts: dict[str, tuple[Identity, str]] = {}
        self._tokens: dict[str, Identity] = {}
        self._current: Identity | None = None
        self._callbacks: list[Callable] = []

    def current_identity(self) -> Identity | None:
        return self._current

    async def sign_up(self, email: str, password: str) -> Session:
        email = email.strip().lower()
        if email in self._accounts:
            raise AuthorizationError(f"an account already exists for {email}")
        identity = Identity(uid=uuid.uuid4().hex, email=email)
        self._accounts[email] = (identity, _hash_password(password))
        return self._open_session(identity)

    async def sign_in(self, email: str, password: str) -> Session:
        account = self._accounts.get(email.strip().lower())
        if account is None or account[1] != _hash_password(password):
            raise AuthorizationError("invalid email or password")
        return self._open_session(account[0])

    async def sign_out(self) -> None:
        self._tokens = {t: i for t, i in self._tokens.items() if i != self._current}
        self._set_current(None)

    def on_identity_change(self, callback) -> Subscription:
        self._callbacks.append(callback)
        return Subscription(cancel=lambda: self._callbacks.remove(callback))

    async def verify_token(self, token: str) -> Identity | None:
        return self._tokens.get(token)

    def _open_session(self, identity: Identity) -> Session:
        token = uuid.uuid4().hex
        self._tokens[token] = identity
        self._set_current(identity)
        return Session(identity=identity, token=token)

    def _set_current(self, identity: Identity | None) -> None:
        self._current = identity
        for callback in list(self._callbacks):
            callback(identity)

