"""Persistence of business profiles over an injected DocumentStore."""

import logging
import uuid
from datetime import datetime, timezone

from .cache import TTLCache
from .errors import AuthorizationError, NotFoundError, ValidationError
from .models import BusinessProfile
from .stores import DocumentStore, Identity, Subscription
from .validation import validate_business_id, validate_contact

logger = logging.getLogger(__name__)

BUSINESSES = "businesses"
USERS = "users"
MESSAGES = "messages"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ProfileRepository:
    """
    Reads and section-scoped writes of BusinessProfile documents.

    Reads go through an optional TTLCache; a successful write through this
    repository invalidates the cached entry straight away. Other processes'
    writes only show up once the entry expires.
    """

    def __init__(self, store: DocumentStore, cache: TTLCache | None = None, clock=_now_utc):
        self.store = store
        self.cache = cache
        self._clock = clock

    @staticmethod
    def _cache_key(business_id: str) -> str:
        return f"profile:{business_id}"

    async def get(self, business_id: str) -> BusinessProfile:
        key = self._cache_key(business_id)
        document = self.cache.get(key) if self.cache else None
        if document is None:
            document = await self.store.get(BUSINESSES, business_id)
            if document is None:
                raise NotFoundError(f"No business profile for {business_id!r}")
            if self.cache:
                self.cache.set(key, document)
        return BusinessProfile.from_document(document)

    async def find_by_owner(self, owner_id: str) -> BusinessProfile | None:
        documents = await self.store.query(BUSINESSES, {"ownerId": owner_id})
        if not documents:
            return None
        if len(documents) > 1:
            logger.warning("Owner %s has %d businesses, using the first", owner_id, len(documents))
        return BusinessProfile.from_document(documents[0])

    async def exists(self, business_id: str) -> bool:
        return await self.store.get(BUSINESSES, business_id) is not None

    async def create(self, profile: BusinessProfile, email: str = "") -> BusinessProfile:
        validate_business_id(profile.business_id)
        if await self.exists(profile.business_id):
            raise ValidationError("businessId", [f"{profile.business_id!r} is already taken"])

        await self.store.set(BUSINESSES, profile.business_id, profile.to_document())
        await self.store.set(USERS, profile.owner_id, {
            "email": email,
            "businessId": profile.business_id,
            "businessType": profile.business_type,
            "createdAt": profile.created_at.isoformat(),
        })
        logger.info("Created %s profile %s", profile.business_type, profile.business_id)
        return profile

    async def save_section(
        self,
        business_id: str,
        identity: Identity | None,
        path: str,
        value,
    ) -> datetime:
        """
        Merge-patch one section at ``path`` and refresh ``updatedAt``.

        Ownership is checked against the stored document, not the cache.
        Returns the new ``updatedAt``.
        """
        if identity is None:
            raise AuthorizationError("Sign in to edit this business")
        document = await self.store.get(BUSINESSES, business_id)
        if document is None:
            raise NotFoundError(f"No business profile for {business_id!r}")
        if document.get("ownerId") != identity.uid:
            raise AuthorizationError(f"{identity.email or identity.uid} does not own {business_id}")

        now = self._clock()
        await self.store.update(BUSINESSES, business_id, {path: value, "updatedAt": now.isoformat()})
        if self.cache:
            self.cache.invalidate(self._cache_key(business_id))
        logger.info("Saved %s for %s", path, business_id)
        return now

    def subscribe(self, business_id: str, on_change) -> Subscription:
        """Call ``on_change(profile or None)`` whenever the stored document changes."""

        def _changed(document):
            if self.cache:
                self.cache.invalidate(self._cache_key(business_id))
            on_change(BusinessProfile.from_document(document) if document else None)

        return self.store.subscribe(BUSINESSES, business_id, _changed)

    async def save_message(self, business_id: str, payload: dict) -> str:
        """Store a contact-form message for the business owner. Returns its id."""
        message = validate_contact(payload)

        if not await self.exists(business_id):
            raise NotFoundError(f"No business profile for {business_id!r}")

        message_id = uuid.uuid4().hex
        await self.store.set(MESSAGES, message_id, {
            **message,
            "businessId": business_id,
            "createdAt": self._clock().isoformat(),
            "read": False,
        })
        return message_id
