"""Orchestration: business id + type -> profile -> generated site directory."""

import asyncio
import json
from pathlib import Path

from .config import Settings, build_services
from .errors import ConfigurationError
from .generator import ManifestResult, SiteGenerator
from .models import BusinessProfile
from .validation import validate_business_id


def load_profile_file(path: Path) -> BusinessProfile:
    """Read a stored profile document (JSON) for offline generation."""
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read profile file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ConfigurationError(f"{path} must contain a profile object")
    return BusinessProfile.from_document(document)


async def generate_site(
    business_id: str,
    business_type: str,
    output_dir: Path | None = None,
    profile_path: Path | None = None,
    templates_dir: Path | None = None,
    settings: Settings | None = None,
    services=None,
    on_progress: callable = None,
) -> ManifestResult:
    """
    Generate the static site for one business.

    Steps:
        1. Check the business id and resolve settings/services
        2. Load the profile (from --profile, else from the document store)
        3. Build pages, theme and manifest into the output directory

    Args:
        business_id: Business to generate
        business_type: Catalog key (restaurant, hairdresser, independent, retail)
        output_dir: Target directory (default: <BIZSITE_OUTPUT_DIR>/site-<id>)
        profile_path: Optional JSON profile document, bypasses the store
        templates_dir: Optional template set replacing the packaged one
        on_progress: Optional callback(step: str) for progress updates

    Returns:
        ManifestResult describing the written files
    """
    def _progress(msg: str):
        if on_progress:
            on_progress(msg)

    validate_business_id(business_id)
    settings = settings or Settings.from_env()
    services = services or build_services(settings)

    generator = services.generator
    if templates_dir is not None:
        generator = SiteGenerator(
            templates_dir=templates_dir,
            catalog=services.catalog,
            repository=services.repository,
            renderer=services.renderer,
        )

    profile = None
    if profile_path is not None:
        _progress(f"Reading {profile_path}...")
        profile = load_profile_file(profile_path)
        if profile.business_id != business_id:
            raise ConfigurationError(
                f"{profile_path} holds {profile.business_id!r}, not {business_id!r}"
            )

    if output_dir is None:
        output_dir = settings.output_dir / f"site-{business_id}"

    return await generator.generate(
        business_id,
        business_type,
        Path(output_dir),
        profile=profile,
        on_progress=on_progress,
    )


def generate_site_sync(
    business_id: str,
    business_type: str,
    output_dir: Path | None = None,
    **kwargs,
) -> ManifestResult:
    """Synchronous wrapper for generate_site."""
    return asyncio.run(generate_site(business_id, business_type, output_dir, **kwargs))
