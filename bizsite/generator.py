"""Static site generation: templates + catalog entry (+ profile) -> directory of files."""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .catalog import BOOKING_PAGES, DEFAULT_CATALOG, PAGE_TITLES, page_file
from .errors import ConfigurationError, DegradedRenderError, GenerationError, NotFoundError
from .models import BusinessProfile
from .widgets import validate_registry

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
SITE_VERSION = "1.0.0"
SITE_DIRS = ("css", "js", "assets/images", "config")

TOKEN_RE = re.compile(r"\{\{([A-Z_]+)\}\}")
WIDGET_MARKER_RE = re.compile(r"<!--\s*WIDGET:([a-z_]+)\s*-->")
THEME_PROPERTIES = {
    "primary": "--primary-color",
    "secondary": "--secondary-color",
    "accent": "--accent-color",
}

# Copied as-is (after token substitution for text files).
STATIC_FILES = ("js/site.js", "assets/images/placeholder.svg")
TEXT_SUFFIXES = (".js", ".css", ".html")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def site_tokens(business_id: str, entry) -> dict[str, str]:
    return {
        "BUSINESS_ID": business_id,
        "BUSINESS_TYPE": entry.business_type,
        "DISPLAY_NAME": entry.display_name,
        "HEADER_ICON": entry.header_icon,
        "PRIMARY_COLOR": entry.theme.primary,
        "SECONDARY_COLOR": entry.theme.secondary,
        "ACCENT_COLOR": entry.theme.accent,
    }


@dataclass
class ManifestResult:
    output_dir: Path
    manifest: dict
    files: list[str] = field(default_factory=list)
    degraded_pages: list[str] = field(default_factory=list)
    prerendered: bool = False


def substitute_tokens(text: str, tokens: dict[str, str]) -> str:
    """Replace ``{{NAME}}`` in one pass; unknown tokens stay as written."""
    return TOKEN_RE.sub(lambda m: tokens.get(m.group(1), m.group(0)), text)


def apply_theme(css: str, theme) -> str:
    """Rewrite the three theme custom-property declarations."""
    values = theme.as_dict()
    for name, prop in THEME_PROPERTIES.items():
        css = re.sub(
            rf"({re.escape(prop)}\s*:\s*)[^;]+;",
            lambda m, value=values[name]: f"{m.group(1)}{value};",
            css,
        )
    return css


class SiteGenerator:
    """
    Materialize one business site into ``output_dir``.

    The output directory is owned by the generator: every managed file is
    rewritten on each run. Runs against the same directory must not overlap.
    """

    def __init__(
        self,
        templates_dir: Path | None = None,
        catalog=DEFAULT_CATALOG,
        repository=None,
        renderer=None,
        clock=_now_utc,
        widgets=None,
    ):
        self.templates_dir = Path(templates_dir) if templates_dir else TEMPLATES_DIR
        self.catalog = catalog
        self.repository = repository
        self.renderer = renderer
        self._clock = clock
        self.widgets = validate_registry(catalog, widgets)

    async def generate(
        self,
        business_id: str,
        business_type: str,
        output_dir: Path,
        profile: BusinessProfile | None = None,
        on_progress=None,
    ) -> ManifestResult:
        def _progress(msg: str):
            if on_progress:
                on_progress(msg)

        # Step 1: catalog entry (unknown type is fatal)
        entry = self.catalog.lookup(business_type)
        output_dir = Path(output_dir)

        if profile is None and self.repository is not None:
            _progress("Loading business profile...")
            try:
                profile = await self.repository.get(business_id)
            except NotFoundError:
                logger.warning("No profile for %s yet, pages will render at request time", business_id)
        if profile is not None and profile.business_type != business_type:
            raise ConfigurationError(
                f"{business_id} is a {profile.business_type} business, not {business_type}"
            )

        # Step 2: directory tree
        _progress(f"Creating {output_dir}...")
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            for name in SITE_DIRS:
                (output_dir / name).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise GenerationError(f"Cannot create {output_dir}: {e}") from e

        result = ManifestResult(
            output_dir=output_dir,
            manifest={},
            prerendered=profile is not None and self.renderer is not None,
        )

        # Steps 3-5: pages
        for page_key in entry.pages:
            _progress(f"Building {page_file(page_key)}...")
            html = self.build_page(business_id, entry, page_key, profile, result.degraded_pages)
            if profile is not None and self.renderer is not None:
                html = await self.renderer.render(html, profile, page_key)
            self._write(output_dir / page_file(page_key), html, result)

        # Step 6: theme, then the other managed files
        _progress("Applying theme...")
        for name in ("css/style.css", *STATIC_FILES):
            self._write(output_dir / name, self.build_asset(business_id, entry, name), result)

        # Step 7: manifest
        result.manifest = {
            "businessId": business_id,
            "businessType": business_type,
            "theme": entry.theme.as_dict(),
            "widgetKinds": sorted(entry.widget_kinds),
            "pages": [page_file(key) for key in entry.pages],
            "generatedAt": self._clock().isoformat(),
            "version": SITE_VERSION,
        }
        self._write(
            output_dir / "config" / "site-config.json",
            json.dumps(result.manifest, indent=2, ensure_ascii=False) + "\n",
            result,
        )
        result.files.sort()
        logger.info(
            "Generated %s (%d files, %d degraded pages)",
            output_dir, len(result.files), len(result.degraded_pages),
        )
        return result

    # -- templates ----------------------------------------------------------

    def build_page(
        self,
        business_id: str,
        entry,
        page_key: str,
        profile: BusinessProfile | None = None,
        degraded: list[str] | None = None,
    ) -> str:
        """Page shell with tokens substituted and booking widgets injected."""
        html = self._page_template(page_key, degraded)
        html = substitute_tokens(html, {
            **site_tokens(business_id, entry),
            "PAGE_KEY": page_key,
            "PAGE_TITLE": PAGE_TITLES.get(page_key, page_key.title()),
        })
        if page_key in BOOKING_PAGES:
            html = self._inject_widgets(html, entry, profile)
        return html

    def build_asset(self, business_id: str, entry, name: str) -> bytes:
        """A managed non-page file (stylesheet, script, image) as served to browsers."""
        if name == "css/style.css":
            return apply_theme(self._read_template(name), entry.theme).encode("utf-8")
        if name not in STATIC_FILES:
            raise NotFoundError(f"{name} is not part of a generated site")
        source = self.templates_dir / name
        if source.suffix in TEXT_SUFFIXES:
            return substitute_tokens(self._read_template(name), site_tokens(business_id, entry)).encode("utf-8")
        try:
            return source.read_bytes()
        except OSError as e:
            raise GenerationError(f"Cannot read template {name}: {e}") from e

    def _read_template(self, name: str) -> str:
        try:
            return (self.templates_dir / name).read_text(encoding="utf-8")
        except OSError as e:
            raise GenerationError(f"Cannot read template {name}: {e}") from e

    def _page_template(self, page_key: str, degraded: list[str] | None) -> str:
        path = self.templates_dir / "pages" / page_file(page_key)
        if not path.is_file():
            logger.warning(
                "%s", DegradedRenderError(f"no template for page {page_key!r}, using the placeholder page")
            )
            if degraded is not None:
                degraded.append(page_key)
            return self._read_template("placeholder.html")
        return self._read_template(f"pages/{page_file(page_key)}")

    def _inject_widgets(self, html: str, entry, profile: BusinessProfile | None) -> str:
        def replace(match):
            kind = match.group(1)
            if kind not in entry.widget_kinds or profile is None:
                return ""
            widget = profile.widgets.get(kind)
            if widget is None or not widget.enabled:
                return ""
            return self.widgets[kind].embed_markup()

        return WIDGET_MARKER_RE.sub(replace, html)

    # -- output -------------------------------------------------------------

    def _write(self, path: Path, content: str | bytes, result: ManifestResult) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            raise GenerationError(f"Cannot write {path}: {e}") from e
        result.files.append(path.relative_to(result.output_dir).as_posix())

