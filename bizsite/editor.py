"""Dashboard-side editing session: form state, section-scoped saves, image uploads."""

import copy
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .catalog import DEFAULT_CATALOG
from .errors import AuthorizationError, BizsiteError, NotFoundError, ValidationError
from .models import BusinessProfile, new_profile
from .validation import NormalizedSection, validate_business_id, validate_section

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"})
MAX_IMAGE_BYTES = 5 * 1024 * 1024
NOTICE_SECONDS = 5.0

_PENDING_PREFIX = "pending-upload:"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Upload:
    filename: str
    content: bytes
    content_type: str


@dataclass
class Notice:
    kind: str  # "success", "warning" or "error"
    message: str
    shown_at: float
    ttl: float = NOTICE_SECONDS

    def expired(self, now: float) -> bool:
        return now - self.shown_at >= self.ttl


def _set_field(document, path: str, value) -> None:
    """Set ``categories.0.items.1.imageRef``-style paths; list indexes are digits."""
    *parents, leaf = path.split(".")
    node = document
    for part in parents:
        node = node[int(part)] if isinstance(node, list) else node[part]
    if isinstance(node, list):
        node[int(leaf)] = value
    elif isinstance(node, dict):
        node[leaf] = value
    else:
        raise TypeError(path)


def _safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("_") or "image"


class ProfileEditor:
    """
    One owner's editing session over their business profile.

    ``unsaved_changes`` gates the "leave without saving?" prompt. A successful
    save resets it even when other sections still hold edits; those remain
    listed in ``pending_sections``.
    """

    def __init__(
        self,
        repository,
        blob_store,
        auth,
        catalog=DEFAULT_CATALOG,
        clock=_now_utc,
        monotonic=time.monotonic,
    ):
        self.repository = repository
        self.blob_store = blob_store
        self.auth = auth
        self.catalog = catalog
        self._clock = clock
        self._monotonic = monotonic
        self.profile: BusinessProfile | None = None
        self.unsaved_changes = False
        self.pending_sections: set[str] = set()
        self._drafts: dict[str, object] = {}
        self._notices: list[Notice] = []

    # -- session ------------------------------------------------------------

    def _identity(self):
        identity = self.auth.current_identity()
        if identity is None:
            raise AuthorizationError("Sign in to manage your business")
        return identity

    def _require_profile(self) -> BusinessProfile:
        if self.profile is None:
            raise NotFoundError("No business loaded for this account")
        return self.profile

    def _reset(self) -> None:
        self.unsaved_changes = False
        self.pending_sections.clear()
        self._drafts.clear()

    async def register(self, business_id: str, business_type: str) -> BusinessProfile:
        """Create the profile for the signed-in owner with every section empty."""
        identity = self._identity()
        validate_business_id(business_id)
        if business_type not in self.catalog:
            raise ValidationError("businessType", [f"unknown business type {business_type!r}"])
        profile = new_profile(business_id, business_type, identity.uid, now=self._clock(), catalog=self.catalog)
        try:
            await self.repository.create(profile, email=identity.email)
        except BizsiteError as e:
            self._notify("error", str(e))
            raise
        self.profile = profile
        self._reset()
        self._notify("success", f"{business_id} is ready")
        return profile

    async def load(self) -> BusinessProfile | None:
        identity = self._identity()
        self.profile = await self.repository.find_by_owner(identity.uid)
        self._reset()
        if self.profile is None:
            self._notify("error", "No business found for this account")
        return self.profile

    # -- form state ---------------------------------------------------------

    def editable_sections(self) -> list[str]:
        profile = self._require_profile()
        entry = self.catalog.lookup(profile.business_type)
        return [
            "basicInfo",
            "hero",
            "gallery",
            *entry.nav_sections,
            *(f"widgets.{kind}" for kind in sorted(entry.widget_kinds)),
        ]

    def form_state(self) -> dict:
        """Section documents as the form shows them, unsaved drafts included."""
        profile = self._require_profile()
        entry = self.catalog.lookup(profile.business_type)
        sections = {}
        for key in self.editable_sections():
            if key in self._drafts:
                sections[key] = copy.deepcopy(self._drafts[key])
            else:
                sections[key] = profile.section_document(key)
        return {
            "businessId": profile.business_id,
            "businessType": profile.business_type,
            "displayName": entry.display_name,
            "updatedAt": profile.updated_at.isoformat(),
            "unsavedChanges": self.unsaved_changes,
            "pendingSections": sorted(self.pending_sections),
            "sections": sections,
        }

    def edit(self, section_key: str, payload) -> None:
        if section_key not in self.editable_sections():
            raise ValidationError(section_key, ["not an editable section for this business"])
        self._drafts[section_key] = copy.deepcopy(payload)
        self.pending_sections.add(section_key)
        self.unsaved_changes = True

    # -- saving -------------------------------------------------------------

    async def submit(
        self,
        section_key: str,
        payload=None,
        uploads: dict[str, Upload] | None = None,
    ) -> NormalizedSection:
        """
        Validate, upload new images, then merge-patch one section.

        ``uploads`` maps a field path inside the section payload
        (``"imageRef"``, ``"categories.0.items.1.imageRef"``) to a new image.
        Images that were replaced are left in the blob store.
        """
        profile = self._require_profile()
        if section_key not in self.editable_sections():
            error = ValidationError(section_key, ["not an editable section for this business"])
            self._notify("error", str(error))
            raise error
        if payload is None:
            payload = self._drafts.get(section_key, profile.section_document(section_key))
        payload = copy.deepcopy(payload)
        uploads = uploads or {}

        try:
            identity = self._identity()
            self._check_uploads(section_key, payload, uploads)
            normalized = validate_section(section_key, payload, profile.business_type, self.catalog)

            for path, upload in uploads.items():
                ref = await self._upload(profile.business_id, section_key, upload)
                _set_field(normalized.value, path, ref)

            updated_at = await self.repository.save_section(
                profile.business_id, identity, normalized.path, normalized.value
            )
        except BizsiteError as e:
            self._notify("error", str(e))
            raise

        profile.apply_section(section_key, normalized.value)
        profile.updated_at = updated_at
        self._drafts.pop(section_key, None)
        self.pending_sections.discard(section_key)
        self.unsaved_changes = False

        self._notify("success", "Saved")
        for warning in normalized.warnings:
            self._notify("warning", warning)
        return normalized

    def _check_uploads(self, section_key: str, payload, uploads: dict[str, Upload]) -> None:
        problems = []
        for path, upload in uploads.items():
            if upload.content_type not in ALLOWED_IMAGE_TYPES:
                problems.append(f"{upload.filename}: {upload.content_type} images are not accepted")
            if len(upload.content) > MAX_IMAGE_BYTES:
                problems.append(f"{upload.filename}: larger than 5 MB")
            try:
                # Stand-in ref so validation sees the image as present.
                _set_field(payload, path, f"{_PENDING_PREFIX}{upload.filename}")
            except (KeyError, IndexError, TypeError, ValueError):
                problems.append(f"{path}: no such image field")
        if problems:
            raise ValidationError(section_key, problems)

    async def _upload(self, business_id: str, section_key: str, upload: Upload) -> str:
        stamp = int(self._clock().timestamp() * 1000)
        folder = section_key.replace(".", "-")
        path = f"businesses/{business_id}/{folder}/{stamp}_{_safe_filename(upload.filename)}"
        ref = await self.blob_store.upload(path, upload.content, upload.content_type)
        logger.info("Uploaded %s (%d bytes)", path, len(upload.content))
        return ref

    # -- notices ------------------------------------------------------------

    def _notify(self, kind: str, message: str) -> None:
        self._notices.append(Notice(kind, message, self._monotonic()))

    def notices(self) -> list[Notice]:
        """Notices still on screen; each disappears after NOTICE_SECONDS."""
        now = self._monotonic()
        self._notices = [notice for notice in self._notices if not notice.expired(now)]
        return list(self._notices)

    def preview_url(self) -> str:
        return f"/sites/{self._require_profile().business_id}/"
