"""Third-party booking widgets: embed markup per widget kind.

The vendors' scripts are opaque; this module only knows how to mount them.
"""

from dataclasses import dataclass
from html import escape

from .errors import ConfigurationError
from .models import WidgetConfig


@dataclass(frozen=True)
class WidgetRenderer:
    kind: str
    title: str
    script_url: str
    loading_text: str = "Loading the booking system..."

    @property
    def container_id(self) -> str:
        return f"{self.kind}-widget"

    def embed_markup(self) -> str:
        """Script tag plus an empty mount container, injected at build time."""
        return (
            f'<script src="{escape(self.script_url)}" async></script>\n'
            f'<div id="{self.container_id}" class="widget-container" data-widget="{self.kind}">'
            f'<div class="widget-loading">{escape(self.loading_text)}</div>'
            f"</div>"
        )

    def content_html(self, widget: WidgetConfig) -> str:
        """Markup placed inside the mount container for a configured widget."""
        code = (widget.fields.get("widgetCode") or "").strip()
        if code:
            # Vendor-supplied snippet, inserted as-is.
            return code
        return f'<p class="widget-pending">{escape(self.title)} is being set up.</p>'


@dataclass(frozen=True)
class GloriaFoodWidget(WidgetRenderer):
    def content_html(self, widget: WidgetConfig) -> str:
        if (widget.fields.get("widgetCode") or "").strip():
            return super().content_html(widget)
        restaurant_id = escape(widget.fields.get("restaurantId", ""))
        return (
            f'<span class="glf-button" data-glf-ruid="{restaurant_id}">'
            f"See menu &amp; order</span>"
        )


@dataclass(frozen=True)
class CalendlyWidget(WidgetRenderer):
    def content_html(self, widget: WidgetConfig) -> str:
        url = (widget.fields.get("url") or "").strip()
        if not url:
            return super().content_html(widget)
        return (
            f'<div class="calendly-inline-widget" data-url="{escape(url)}" '
            f'style="min-width:320px;height:630px;"></div>'
        )


WIDGET_RENDERERS = {
    renderer.kind: renderer
    for renderer in (
        GloriaFoodWidget(
            kind="gloriafood",
            title="Online ordering",
            script_url="https://www.gloriafood.com/ordering-widget/js/onlineordering.min.js",
            loading_text="Loading the ordering system...",
        ),
        WidgetRenderer(
            kind="fresha",
            title="Online booking",
            script_url="https://widget.fresha.com/widget.js",
        ),
        CalendlyWidget(
            kind="calendly",
            title="Appointment scheduling",
            script_url="https://assets.calendly.com/assets/external/widget.js",
        ),
    )
}


def validate_registry(catalog, registry=None) -> dict:
    """Fail fast when a catalog entry names a widget kind nobody can render."""
    registry = WIDGET_RENDERERS if registry is None else registry
    for entry in catalog:
        missing = sorted(entry.widget_kinds - set(registry))
        if missing:
            raise ConfigurationError(
                f"No widget renderer for {', '.join(missing)} (business type {entry.business_type})"
            )
    return registry
