"""Settings from the environment (.env supported) and service wiring."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .cache import TTLCache
from .catalog import DEFAULT_CATALOG
from .errors import ConfigurationError
from .generator import TEMPLATES_DIR, SiteGenerator
from .renderer import ClientRenderer
from .repository import ProfileRepository
from .stores import MemoryAuthProvider, MemoryBlobStore, MemoryDocumentStore
from .supabase import SupabaseAuthProvider, SupabaseBlobStore, SupabaseDocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_bucket: str = "business-images"
    output_dir: Path = Path("generated-sites")
    templates_dir: Path = TEMPLATES_DIR
    cache_ttl: float = 300.0
    currency: str = "€"
    log_level: str = "INFO"

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        try:
            cache_ttl = float(os.getenv("BIZSITE_CACHE_TTL", "300"))
        except ValueError:
            raise ConfigurationError("BIZSITE_CACHE_TTL must be a number of seconds") from None
        return cls(
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_KEY", ""),
            supabase_bucket=os.getenv("SUPABASE_BUCKET", "business-images"),
            output_dir=Path(os.getenv("BIZSITE_OUTPUT_DIR", "generated-sites")),
            templates_dir=Path(os.getenv("BIZSITE_TEMPLATES_DIR") or TEMPLATES_DIR),
            cache_ttl=cache_ttl,
            currency=os.getenv("BIZSITE_CURRENCY", "€"),
            log_level=os.getenv("BIZSITE_LOG_LEVEL", "INFO").upper(),
        )


@dataclass
class Services:
    settings: Settings
    store: object
    blobs: object
    auth: object
    repository: ProfileRepository
    renderer: ClientRenderer
    generator: SiteGenerator
    catalog: object = DEFAULT_CATALOG


def build_services(settings: Settings, store=None, blobs=None, auth=None, catalog=DEFAULT_CATALOG) -> Services:
    """Wire collaborators; explicit ones win over what the settings pick."""
    if settings.uses_supabase:
        store = store or SupabaseDocumentStore(settings.supabase_url, settings.supabase_key)
        blobs = blobs or SupabaseBlobStore(settings.supabase_url, settings.supabase_key, settings.supabase_bucket)
        auth = auth or SupabaseAuthProvider(settings.supabase_url, settings.supabase_key)
    elif store is None or blobs is None or auth is None:
        logger.warning("SUPABASE_URL/SUPABASE_KEY not set, using in-memory storage")
        store = store or MemoryDocumentStore()
        blobs = blobs or MemoryBlobStore()
        auth = auth or MemoryAuthProvider()

    repository = ProfileRepository(store, cache=TTLCache(settings.cache_ttl))
    renderer = ClientRenderer(
        catalog=catalog,
        blob_store=blobs,
        image_cache=TTLCache(settings.cache_ttl),
        currency=settings.currency,
    )
    generator = SiteGenerator(
        templates_dir=settings.templates_dir,
        catalog=catalog,
        repository=repository,
        renderer=renderer,
    )
    return Services(
        settings=settings,
        store=store,
        blobs=blobs,
        auth=auth,
        repository=repository,
        renderer=renderer,
        generator=generator,
        catalog=catalog,
    )
