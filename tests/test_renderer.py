"""Tests for ClientRenderer and image resolution."""

import asyncio
from datetime import datetime

import pytest
from bs4 import BeautifulSoup

from bizsite.cache import TTLCache
from bizsite.catalog import DEFAULT_CATALOG
from bizsite.errors import NotFoundError
from bizsite.generator import SiteGenerator
from bizsite.models import new_profile
from bizsite.renderer import PLACEHOLDER_IMAGE, ClientRenderer, ImageResolver, page_key_for_path

from conftest import FIXED_NOW, CountingBlobStore


def _render(renderer, profile, page_key, now=None):
    entry = DEFAULT_CATALOG.lookup(profile.business_type)
    shell = SiteGenerator().build_page(profile.business_id, entry, page_key, profile)
    html = asyncio.run(renderer.render(shell, profile, page_key, now=now))
    return BeautifulSoup(html, "html.parser")


def _profile(business_id, business_type, **sections):
    profile = new_profile(business_id, business_type, "owner-1", now=FIXED_NOW)
    for key, value in sections.items():
        profile.apply_section(key, value)
    return profile


class TestPageKeys:

    @pytest.mark.parametrize("path, key", [
        ("/", "home"),
        ("", "home"),
        ("/sites/le-bistro/index.html", "home"),
        ("/sites/le-bistro/menu.html", "menu"),
        ("/sites/le-bistro/contact.html?ref=nav", "contact"),
        ("appointment", "appointment"),
    ])
    def test_page_key_for_path(self, path, key):
        assert page_key_for_path(path) == key


# ---------------------------------------------------------------------------
# Shared blocks
# ---------------------------------------------------------------------------

class TestSharedBlocks:

    def test_nav_marks_the_current_page(self, renderer, bistro):
        soup = _render(renderer, bistro, "menu")
        links = soup.select("#nav-menu a")
        assert [a["href"] for a in links] == ["index.html", "menu.html", "reservation.html", "contact.html"]
        assert [a.get_text() for a in soup.select("#nav-menu a.active")] == ["Menu"]

    def test_business_name_and_title(self, renderer, bistro):
        soup = _render(renderer, bistro, "contact")
        assert soup.find(id="business-name").get_text() == "Le Bistro"
        assert soup.title.get_text() == "Contact - Le Bistro"

    def test_footer(self, renderer, bistro):
        soup = _render(renderer, bistro, "home")
        footer = soup.find(id="footer-content")
        assert footer.h3.get_text() == "Le Bistro"
        assert footer.select_one(".footer-phone a")["href"] == "tel:01 23 45 67 89"

    def test_open_now(self, renderer, bistro):
        soup = _render(renderer, bistro, "home", now=datetime(2024, 1, 1, 10, 30))
        badge = soup.find(id="open-status")
        assert badge.get_text() == "Open now"
        assert "open" in badge["class"]

    def test_closed_now(self, renderer, bistro):
        soup = _render(renderer, bistro, "home", now=datetime(2024, 1, 1, 13, 0))
        assert soup.find(id="open-status").get_text() == "Closed now"

    def test_unknown_hours_show_nothing(self, renderer):
        profile = _profile("le-bistro", "restaurant", basicInfo={"hours": {"monday": "ask us"}})
        soup = _render(renderer, profile, "home", now=datetime(2024, 1, 1, 10, 30))
        badge = soup.find(id="open-status")
        assert badge.get_text() == ""
        assert badge["class"] == ["open-status"]

    def test_page_not_in_catalog(self, renderer, bistro):
        with pytest.raises(NotFoundError):
            asyncio.run(renderer.render("<html></html>", bistro, "products"))


# ---------------------------------------------------------------------------
# Listing pages
# ---------------------------------------------------------------------------

class TestListing:

    def test_menu_items_with_price(self, renderer, bistro):
        soup = _render(renderer, bistro, "menu")
        item = soup.select_one(".menu-container .menu-item")
        assert item.select_one(".menu-item-name").get_text() == "Soupe"
        assert item.select_one(".menu-item-price").get_text() == "6€"

    def test_empty_categories_are_skipped(self, renderer):
        profile = _profile("le-bistro", "restaurant", mainMenu={
            "enabled": True,
            "categories": [
                {"name": "Starters", "items": []},
                {"name": "Mains", "items": [{"name": "Steak frites", "price": "18€"}]},
            ],
        })
        soup = _render(renderer, profile, "menu")
        headings = [h.get_text() for h in soup.select("#section-mainMenu h3")]
        assert headings == ["Mains"]
        assert soup.select_one(".menu-item-price").get_text() == "18€"

    def test_disabled_section_is_hidden(self, renderer):
        profile = _profile("le-bistro", "restaurant", dailyMenu={"enabled": False, "items": [{"name": "Soupe"}]})
        soup = _render(renderer, profile, "menu")
        assert soup.select_one(".no-content").get_text() == "The menu is not available yet."

    def test_services_page_for_coach(self, renderer):
        profile = _profile(
            "coach-anna", "independent",
            testimonials={"enabled": True, "items": [{"author": "Marc", "text": "Great", "rating": 4}]},
            about={"enabled": True, "content": "First paragraph.\n\nSecond paragraph."},
        )
        soup = _render(renderer, profile, "services")
        assert soup.select_one(".testimonial-rating").get_text() == "★★★★"
        assert [p.get_text() for p in soup.select("#section-about p")] == ["First paragraph.", "Second paragraph."]

    def test_missing_image_uses_placeholder(self, renderer):
        profile = _profile("le-bistro", "restaurant", dailyMenu={
            "enabled": True,
            "items": [{"name": "Soupe", "imageRef": "memory://businesses/le-bistro/gone.jpg"}],
        })
        soup = _render(renderer, profile, "menu")
        assert soup.select_one(".menu-item-image")["src"] == PLACEHOLDER_IMAGE

    def test_render_is_idempotent(self, renderer, bistro):
        entry = DEFAULT_CATALOG.lookup("restaurant")
        shell = SiteGenerator().build_page("le-bistro", entry, "menu", bistro)
        once = asyncio.run(renderer.render(shell, bistro, "menu"))
        twice = asyncio.run(renderer.render(once, bistro, "menu"))
        assert once == twice


# ---------------------------------------------------------------------------
# Home, contact, booking
# ---------------------------------------------------------------------------

class TestHome:

    def test_hero_and_preview(self, renderer, bistro):
        bistro.apply_section("hero", {"title": "Welcome", "ctaText": "Book a table"})
        soup = _render(renderer, bistro, "home")
        assert soup.select_one(".hero-title").get_text() == "Welcome"
        assert soup.select_one(".hero-cta")["href"] == "reservation.html"
        preview = soup.select_one(".preview-section")
        assert preview.h2.get_text() == "Today's menu"
        assert preview.select_one("a")["href"] == "menu.html"

    def test_preview_shows_three_items(self, renderer):
        profile = _profile("shop-one", "retail", products={
            "enabled": True,
            "categories": [{"name": "Mugs", "items": [{"name": f"Mug {n}"} for n in range(5)]}],
        })
        soup = _render(renderer, profile, "home")
        assert len(soup.select(".preview-items .product-item")) == 3

    def test_hero_background_image(self, blobs):
        path = "businesses/le-bistro/hero/front.jpg"
        asyncio.run(blobs.upload(path, b"img", "image/jpeg"))
        profile = _profile("le-bistro", "restaurant", hero={"title": "Hi", "imageRef": f"memory://{path}"})
        soup = _render(ClientRenderer(blob_store=blobs), profile, "home")
        section = soup.find(id="hero-section")
        assert f"https://blobs.invalid/{path}" in section["style"]


class TestContact:

    def test_contact_form_posts_to_the_site(self, renderer, bistro):
        soup = _render(renderer, bistro, "contact")
        form = soup.find(id="contact-form")
        assert form["action"] == "/sites/le-bistro/contact"
        assert form["method"] == "post"
        assert {field["name"] for field in form.select("input, textarea")} == {"name", "email", "phone", "message"}

    def test_opening_hours_rows(self, renderer, bistro):
        soup = _render(renderer, bistro, "contact")
        days = [span.get_text() for span in soup.select(".opening-hours .day")]
        assert days == ["Monday:", "Sunday:"]


class TestBooking:

    def test_coming_soon_without_widget(self, renderer, bistro):
        soup = _render(renderer, bistro, "reservation")
        assert soup.select_one(".coming-soon").get_text() == "Online booking is coming soon."
        assert soup.select("div.widget-container") == []

    def test_calendly_widget(self, renderer):
        profile = _profile("coach-anna", "independent", **{
            "widgets.calendly": {"enabled": True, "url": "https://calendly.com/anna"},
        })
        soup = _render(renderer, profile, "appointment")
        containers = soup.select("div.widget-container")
        assert len(containers) == 1
        assert containers[0]["data-widget"] == "calendly"
        inline = containers[0].select_one(".calendly-inline-widget")
        assert inline["data-url"] == "https://calendly.com/anna"
        assert len(soup.select('script[src="https://assets.calendly.com/assets/external/widget.js"]')) == 1

    def test_widget_without_injected_container(self, renderer):
        profile = _profile("le-bistro", "restaurant", **{
            "widgets.gloriafood": {"enabled": True, "restaurantId": "r-42"},
        })
        html = "<html><body><main><div id='page-content'></div></main></body></html>"
        soup = BeautifulSoup(asyncio.run(renderer.render(html, profile, "reservation")), "html.parser")
        assert soup.select_one("#gloriafood-widget .glf-button")["data-glf-ruid"] == "r-42"


class TestImageResolver:

    def test_resolves_each_ref_once_per_page(self):
        blobs = CountingBlobStore()
        asyncio.run(blobs.upload("a.jpg", b"a", "image/jpeg"))
        resolver = ImageResolver(blobs)
        first = asyncio.run(resolver.resolve("memory://a.jpg"))
        second = asyncio.run(resolver.resolve("memory://a.jpg"))
        assert first == second == "https://blobs.invalid/a.jpg"
        assert blobs.resolve_calls == 1

    def test_shared_cache_spans_page_loads(self):
        blobs = CountingBlobStore()
        asyncio.run(blobs.upload("a.jpg", b"a", "image/jpeg"))
        cache = TTLCache(300)
        asyncio.run(ImageResolver(blobs, cache).resolve("memory://a.jpg"))
        asyncio.run(ImageResolver(blobs, cache).resolve("memory://a.jpg"))
        assert blobs.resolve_calls == 1

    def test_failures_are_not_cached(self):
        blobs = CountingBlobStore()
        cache = TTLCache(300)
        assert asyncio.run(ImageResolver(blobs, cache).resolve("memory://late.jpg")) == PLACEHOLDER_IMAGE
        asyncio.run(blobs.upload("late.jpg", b"a", "image/jpeg"))
        assert asyncio.run(ImageResolver(blobs, cache).resolve("memory://late.jpg")) == "https://blobs.invalid/late.jpg"

    def test_absolute_urls_pass_through(self):
        blobs = CountingBlobStore()
        url = "https://cdn.example.com/a.jpg"
        assert asyncio.run(ImageResolver(blobs).resolve(url)) == url
        assert blobs.resolve_calls == 0
