"""Render a BusinessProfile into a page shell with BeautifulSoup.

Used at request time (web.py) and by the generator when it pre-renders a
site. Rendering only touches known mount points (``#nav-menu``,
``#page-content`` ...), so re-rendering an already rendered page with the
same profile yields the same document.
"""

import logging
from datetime import datetime
from typing import ClassVar

from bs4 import BeautifulSoup

from .cache import TTLCache
from .catalog import (
    BOOKING_PAGES,
    DEFAULT_CATALOG,
    LISTING_PAGES,
    PAGE_TITLES,
    WEEKDAYS,
    page_file,
)
from .errors import BizsiteError, DegradedRenderError, NotFoundError
from .hours import format_hours, is_currently_open, parse_hours
from .models import BusinessProfile
from .widgets import validate_registry

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "assets/images/placeholder.svg"
PREVIEW_ITEMS = 3

NOT_AVAILABLE = {
    "menu": "The menu is not available yet.",
    "services": "Services are not available yet.",
    "products": "Products are not available yet.",
}


def page_key_for_path(path: str) -> str:
    """'/' -> 'home', '/sites/x/menu.html' -> 'menu'."""
    name = path.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    if name.endswith(".html"):
        name = name[: -len(".html")]
    if name in ("", "index"):
        return "home"
    return name


class ImageResolver:
    """
    Turns opaque image refs into URLs, once per ref per page load.

    An optional shared TTLCache carries successful resolutions across page
    loads. Failures fall back to the placeholder image and are only logged.
    """

    def __init__(self, blob_store=None, shared_cache: TTLCache | None = None, placeholder: str = PLACEHOLDER_IMAGE):
        self.blob_store = blob_store
        self.shared_cache = shared_cache
        self.placeholder = placeholder
        self._resolved: dict[str, str] = {}

    async def resolve(self, ref: str | None) -> str:
        if not ref:
            return self.placeholder
        if ref in self._resolved:
            return self._resolved[ref]

        if ref.startswith(("http://", "https://")):
            url = ref
        else:
            url = self.shared_cache.get(f"image:{ref}") if self.shared_cache else None
            if url is None:
                url = await self._fetch(ref)

        self._resolved[ref] = url
        return url

    async def _fetch(self, ref: str) -> str:
        if self.blob_store is None:
            logger.warning("%s", DegradedRenderError(f"no blob store to resolve image {ref}"))
            return self.placeholder
        try:
            url = await self.blob_store.resolve(ref)
        except BizsiteError as e:
            logger.warning("%s", DegradedRenderError(f"image {ref} unavailable: {e}"))
            return self.placeholder
        if self.shared_cache:
            self.shared_cache.set(f"image:{ref}", url)
        return url


# ---------------------------------------------------------------------------
# Item views
# ---------------------------------------------------------------------------

class ItemView:
    """How one item variant is laid out. ``details`` yields (css suffix, tag, text)."""

    css: ClassVar[str]

    def label(self, item) -> str:
        return item.name

    def details(self, item, currency: str) -> list[tuple[str, str, str]]:
        return [("description", "p", item.description)]


def _format_price(price: str, currency: str) -> str:
    price = price.strip()
    if not price or price.endswith(currency):
        return price
    return f"{price}{currency}"


class MenuItemView(ItemView):
    css = "menu-item"

    def details(self, item, currency):
        return [
            ("description", "p", item.description),
            ("price", "span", _format_price(item.price, currency)),
        ]


class ServiceItemView(ItemView):
    css = "service-item"

    def details(self, item, currency):
        return [
            ("description", "p", item.description),
            ("price", "span", _format_price(item.price, currency)),
            ("duration", "span", item.duration),
        ]


class ProductItemView(MenuItemView):
    css = "product-item"


class TeamMemberView(ItemView):
    css = "team-member"

    def details(self, item, currency):
        return [("speciality", "p", item.speciality), ("bio", "p", item.bio)]


class TestimonialView(ItemView):
    css = "testimonial"

    def label(self, item) -> str:
        return item.author or "Anonymous"

    def details(self, item, currency):
        stars = "★" * max(0, min(int(item.rating or 0), 5))
        return [("text", "blockquote", item.text), ("rating", "span", stars)]


ITEM_VIEWS = {
    "menu": MenuItemView(),
    "service": ServiceItemView(),
    "product": ProductItemView(),
    "member": TeamMemberView(),
    "testimonial": TestimonialView(),
}


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------

def _el(soup, name: str, /, text: str | None = None, css: str | None = None, **attrs):
    if css:
        attrs["class"] = css
    tag = soup.new_tag(name, attrs=attrs)
    if text is not None:
        tag.string = text
    return tag


def _mount(soup, element_id: str):
    """Return the mount point, creating it at the end of <main> when missing."""
    tag = soup.find(id=element_id)
    if tag is None:
        tag = _el(soup, "section", id=element_id)
        parent = soup.find("main") or soup.body or soup
        parent.append(tag)
    tag.clear()
    return tag


def _append_lines(soup, parent, text: str) -> None:
    for index, line in enumerate(text.splitlines()):
        if index:
            parent.append(soup.new_tag("br"))
        parent.append(line)


class ClientRenderer:
    """Fills a page shell from a profile snapshot."""

    def __init__(
        self,
        catalog=DEFAULT_CATALOG,
        blob_store=None,
        image_cache: TTLCache | None = None,
        currency: str = "€",
        widgets=None,
    ):
        self.catalog = catalog
        self.blob_store = blob_store
        self.image_cache = image_cache
        self.currency = currency
        self.widgets = validate_registry(catalog, widgets)

    async def render(
        self,
        html: str,
        profile: BusinessProfile,
        page_key: str,
        now: datetime | None = None,
    ) -> str:
        entry = self.catalog.lookup(profile.business_type)
        if page_key not in entry.pages:
            raise NotFoundError(f"{profile.business_type} sites have no {page_key!r} page")

        soup = BeautifulSoup(html, "html.parser")
        images = ImageResolver(self.blob_store, self.image_cache)

        self._render_nav(soup, entry, page_key)
        self._render_identity(soup, entry, profile, page_key)
        self._render_footer(soup, profile)
        self._render_open_status(soup, profile, now)

        if page_key == "home":
            await self._render_home(soup, entry, profile, images)
        elif page_key in LISTING_PAGES:
            await self._render_listing(soup, entry, profile, page_key, images)
        elif page_key == "contact":
            self._render_contact(soup, profile)
        elif page_key in BOOKING_PAGES:
            self._render_booking(soup, entry, profile)
        return str(soup)

    # -- shared blocks ------------------------------------------------------

    def _render_nav(self, soup, entry, page_key: str) -> None:
        nav = soup.find(id="nav-menu")
        if nav is None:
            return
        nav.clear()
        for key in entry.pages:
            link = _el(soup, "a", PAGE_TITLES[key], href=page_file(key))
            if key == page_key:
                link["class"] = "active"
            li = soup.new_tag("li")
            li.append(link)
            nav.append(li)

    def _render_identity(self, soup, entry, profile, page_key: str) -> None:
        name = profile.basic_info.name or entry.display_name
        heading = soup.find(id="business-name")
        if heading is not None:
            heading.string = name
        if soup.title is not None:
            soup.title.string = f"{PAGE_TITLES[page_key]} - {name}"

    def _render_footer(self, soup, profile) -> None:
        footer = soup.find(id="footer-content")
        if footer is None:
            return
        footer.clear()
        info = profile.basic_info

        block = _el(soup, "div", css="footer-info")
        block.append(_el(soup, "h3", info.name))
        if info.description:
            block.append(_el(soup, "p", info.description))
        footer.append(block)

        contact = _el(soup, "div", css="footer-contact")
        if info.address:
            line = _el(soup, "p", css="footer-address")
            _append_lines(soup, line, info.address)
            contact.append(line)
        if info.phone:
            line = _el(soup, "p", css="footer-phone")
            line.append(_el(soup, "a", info.phone, href=f"tel:{info.phone}"))
            contact.append(line)
        if info.email:
            line = _el(soup, "p", css="footer-email")
            line.append(_el(soup, "a", info.email, href=f"mailto:{info.email}"))
            contact.append(line)
        footer.append(contact)

    def _render_open_status(self, soup, profile, now: datetime | None) -> None:
        badge = soup.find(id="open-status")
        if badge is None:
            return
        badge.clear()
        badge["class"] = "open-status"
        if now is None:
            return
        hours = profile.basic_info.hours
        state = is_currently_open(hours, now)
        if state is None:
            today = hours.get(WEEKDAYS[now.weekday()], "")
            if today and parse_hours(today) is None:
                logger.warning(
                    "%s", DegradedRenderError(f"{profile.business_id}: cannot parse hours {today!r}")
                )
            return
        badge["class"] = "open-status open" if state else "open-status closed"
        badge.string = "Open now" if state else "Closed now"

    # -- items --------------------------------------------------------------

    async def _item(self, soup, item, images: ImageResolver):
        view = ITEM_VIEWS[item.kind]
        card = _el(soup, "div", css=view.css)
        if item.image_ref:
            card.append(_el(
                soup,
                "img",
                css=f"{view.css}-image",
                src=await images.resolve(item.image_ref),
                alt=view.label(item),
                loading="lazy",
            ))
        body = _el(soup, "div", css=f"{view.css}-content")
        body.append(_el(soup, "h4", view.label(item), css=f"{view.css}-name"))
        for suffix, tag, text in view.details(item, self.currency):
            if text:
                body.append(_el(soup, tag, text, css=f"{view.css}-{suffix}"))
        card.append(body)
        return card

    async def _item_group(self, soup, title: str, items, images, level: str = "h3"):
        group = _el(soup, "div", css="content-group")
        group.append(_el(soup, level, title))
        grid = _el(soup, "div", css="content-items")
        for item in items:
            grid.append(await self._item(soup, item, images))
        group.append(grid)
        return group

    # -- pages --------------------------------------------------------------

    async def _render_home(self, soup, entry, profile, images: ImageResolver) -> None:
        hero = profile.hero
        section = _mount(soup, "hero-section")
        section["class"] = "hero-section"
        if "style" in section.attrs:
            del section["style"]
        if hero.title or hero.image_ref:
            content = _el(soup, "div", css="hero-content")
            if hero.title:
                content.append(_el(soup, "h1", hero.title, css="hero-title"))
            if hero.subtitle:
                content.append(_el(soup, "p", hero.subtitle, css="hero-subtitle"))
            if hero.cta_text:
                content.append(_el(
                    soup, "a", hero.cta_text, css="hero-cta btn-primary", href=page_file(entry.cta_page)
                ))
            if hero.image_ref:
                section["style"] = f"background-image: url('{await images.resolve(hero.image_ref)}')"
                section["class"] = "hero-section hero-with-bg"
            section.append(content)

        gallery = _mount(soup, "gallery-section")
        if profile.gallery:
            gallery.append(_el(soup, "h2", "Gallery"))
            grid = _el(soup, "div", css="gallery-grid")
            for image in profile.gallery:
                cell = _el(soup, "div", css="gallery-item")
                cell.append(_el(
                    soup, "img", src=await images.resolve(image.image_ref), alt=image.alt_text, loading="lazy"
                ))
                if image.caption:
                    cell.append(_el(soup, "p", image.caption, css="gallery-caption"))
                grid.append(cell)
            gallery.append(grid)

        preview = _mount(soup, "preview-container")
        found = profile.first_populated_section()
        if found is None:
            return
        spec, content_section = found
        if spec.layout == "items":
            title, items = spec.title, content_section.items
        else:
            category = next(c for c in content_section.categories if c.items)
            title, items = category.name, category.items

        block = _el(soup, "section", css="preview-section")
        header = _el(soup, "div", css="preview-header")
        header.append(_el(soup, "h2", title))
        header.append(_el(soup, "a", "See all", css="btn-secondary", href=page_file(spec.page)))
        block.append(header)
        grid = _el(soup, "div", css="preview-items")
        for item in items[:PREVIEW_ITEMS]:
            grid.append(await self._item(soup, item, images))
        block.append(grid)
        preview.append(block)

    async def _render_listing(self, soup, entry, profile, page_key: str, images) -> None:
        page = soup.find(id="page-content")
        if page is None:
            return
        page.clear()
        container = _el(soup, "div", css=f"{page_key}-container")

        for spec in entry.sections_for_page(page_key):
            section = profile.sections.get(spec.key)
            if not section.populated:
                continue
            block = _el(soup, "section", css=f"content-section {spec.key}-section", id=f"section-{spec.key}")
            if spec.layout == "text":
                block.append(_el(soup, "h2", spec.title))
                for paragraph in section.content.split("\n\n"):
                    if paragraph.strip():
                        block.append(_el(soup, "p", paragraph.strip()))
            elif spec.layout == "items":
                block.append(await self._item_group(soup, spec.title, section.items, images, level="h2"))
            else:
                block.append(_el(soup, "h2", spec.title))
                for category in section.categories:
                    if category.items:
                        block.append(await self._item_group(soup, category.name, category.items, images))
            container.append(block)

        if not container.contents:
            container = _el(soup, "div", css="no-content")
            container.append(_el(soup, "p", NOT_AVAILABLE.get(page_key, "Nothing to show yet.")))
        page.append(container)

    def _render_contact(self, soup, profile) -> None:
        page = soup.find(id="page-content")
        if page is None:
            return
        page.clear()
        info = profile.basic_info
        container = _el(soup, "div", css="contact-container")

        details = _el(soup, "div", css="contact-info")
        details.append(_el(soup, "h2", "Contact us"))
        if info.address:
            item = _el(soup, "div", css="contact-item contact-address")
            item.append(_el(soup, "h3", "Address"))
            text = soup.new_tag("p")
            _append_lines(soup, text, info.address)
            item.append(text)
            details.append(item)
        if info.phone:
            item = _el(soup, "div", css="contact-item contact-phone")
            item.append(_el(soup, "h3", "Phone"))
            item.append(_el(soup, "a", info.phone, href=f"tel:{info.phone}"))
            details.append(item)
        if info.email:
            item = _el(soup, "div", css="contact-item contact-email")
            item.append(_el(soup, "h3", "Email"))
            item.append(_el(soup, "a", info.email, href=f"mailto:{info.email}"))
            details.append(item)
        rows = format_hours(info.hours)
        if rows:
            item = _el(soup, "div", css="contact-item opening-hours")
            item.append(_el(soup, "h3", "Opening hours"))
            for label, text in rows:
                row = _el(soup, "div", css="hour-item")
                row.append(_el(soup, "span", f"{label}:", css="day"))
                row.append(_el(soup, "span", text, css="hours"))
                item.append(row)
            details.append(item)
        container.append(details)

        form_block = _el(soup, "div", css="contact-form")
        form_block.append(_el(soup, "h3", "Send us a message"))
        form = _el(soup, "form", id="contact-form", method="post", action=f"/sites/{profile.business_id}/contact")
        for name, kind, placeholder, required in (
            ("name", "text", "Your name", True),
            ("email", "email", "Your email", True),
            ("phone", "tel", "Your phone", False),
        ):
            group = _el(soup, "div", css="form-group")
            field = _el(soup, "input", type=kind, name=name, placeholder=placeholder)
            if required:
                field["required"] = ""
            group.append(field)
            form.append(group)
        group = _el(soup, "div", css="form-group")
        group.append(_el(soup, "textarea", "", name="message", rows="5", placeholder="Your message", required=""))
        form.append(group)
        form.append(_el(soup, "button", "Send", css="btn-primary", type="submit"))
        form_block.append(form)
        container.append(form_block)
        page.append(container)

    def _render_booking(self, soup, entry, profile) -> None:
        page = soup.find(id="page-content")
        if page is None:
            return
        page.clear()
        container = _el(soup, "div", css="booking-container")
        container.append(_el(soup, "h2", entry.booking_title or PAGE_TITLES["appointment"]))
        page.append(container)

        widget = profile.enabled_widget(entry.widget_kinds)
        mounts = soup.select("div.widget-container[data-widget]")
        keep = None
        if widget is not None:
            keep = next((m for m in mounts if m.get("data-widget") == widget.kind), None)
        for mount in mounts:
            if mount is not keep:
                mount.decompose()

        if widget is None:
            container.append(_el(soup, "p", "Online booking is coming soon.", css="coming-soon"))
            return

        renderer = self.widgets[widget.kind]
        if keep is None:
            if soup.find("script", src=renderer.script_url) is None:
                container.append(_el(soup, "script", "", src=renderer.script_url, **{"async": ""}))
            keep = _el(soup, "div", css="widget-container", id=renderer.container_id, **{"data-widget": widget.kind})
            container.append(keep)
        keep.clear()
        keep.append(BeautifulSoup(renderer.content_html(widget), "html.parser"))
