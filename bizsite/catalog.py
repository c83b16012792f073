"""Static registry of business types: pages, content sections, widgets, theme."""

from dataclasses import dataclass
from types import MappingProxyType

from .errors import ConfigurationError


BUSINESS_TYPES = ("restaurant", "hairdresser", "independent", "retail")

WIDGET_KINDS = frozenset({"gloriafood", "fresha", "calendly"})

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

BOOKING_PAGES = frozenset({"reservation", "appointment"})
LISTING_PAGES = frozenset({"menu", "services", "products"})

PAGE_FILES = MappingProxyType({
    "home": "index.html",
    "menu": "menu.html",
    "services": "services.html",
    "products": "products.html",
    "reservation": "reservation.html",
    "appointment": "appointment.html",
    "contact": "contact.html",
})

PAGE_TITLES = MappingProxyType({
    "home": "Home",
    "menu": "Menu",
    "services": "Services",
    "products": "Products",
    "reservation": "Book a table",
    "appointment": "Appointments",
    "contact": "Contact",
})


@dataclass(frozen=True)
class Theme:
    primary: str
    secondary: str
    accent: str

    def as_dict(self) -> dict:
        return {"primary": self.primary, "secondary": self.secondary, "accent": self.accent}


@dataclass(frozen=True)
class SectionSpec:
    key: str
    title: str
    layout: str  # "items", "categories" or "text"
    item_kind: str | None  # "menu", "service", "product", "member", "testimonial"
    page: str


SECTION_SPECS = MappingProxyType({
    "dailyMenu": SectionSpec("dailyMenu", "Today's menu", "items", "menu", "menu"),
    "mainMenu": SectionSpec("mainMenu", "Main menu", "categories", "menu", "menu"),
    "drinksMenu": SectionSpec("drinksMenu", "Drinks", "categories", "menu", "menu"),
    "services": SectionSpec("services", "Our services", "categories", "service", "services"),
    "team": SectionSpec("team", "Our team", "items", "member", "services"),
    "testimonials": SectionSpec("testimonials", "Testimonials", "items", "testimonial", "services"),
    "about": SectionSpec("about", "About", "text", None, "services"),
    "products": SectionSpec("products", "Our products", "categories", "product", "products"),
})


@dataclass(frozen=True)
class CatalogEntry:
    business_type: str
    display_name: str
    pages: tuple[str, ...]
    nav_sections: tuple[str, ...]
    widget_kinds: frozenset
    theme: Theme
    header_icon: str
    cta_page: str
    booking_title: str = ""

    @property
    def booking_page(self) -> str | None:
        for page in self.pages:
            if page in BOOKING_PAGES:
                return page
        return None

    def allows_section(self, section_key: str) -> bool:
        return section_key in self.nav_sections

    def sections_for_page(self, page_key: str) -> list[SectionSpec]:
        return [
            SECTION_SPECS[key]
            for key in self.nav_sections
            if SECTION_SPECS[key].page == page_key
        ]


_ENTRIES = MappingProxyType({
    "restaurant": CatalogEntry(
        business_type="restaurant",
        display_name="Restaurant",
        pages=("home", "menu", "reservation", "contact"),
        nav_sections=("dailyMenu", "mainMenu", "drinksMenu"),
        widget_kinds=frozenset({"gloriafood"}),
        theme=Theme("#d4842c", "#2c1810", "#ff6b35"),
        header_icon="🍽️",
        cta_page="reservation",
        booking_title="Book a table",
    ),
    "hairdresser": CatalogEntry(
        business_type="hairdresser",
        display_name="Hair salon",
        pages=("home", "services", "appointment", "contact"),
        nav_sections=("services", "team"),
        widget_kinds=frozenset({"fresha"}),
        theme=Theme("#e91e63", "#1a1a1a", "#ffc107"),
        header_icon="✂️",
        cta_page="appointment",
        booking_title="Book an appointment",
    ),
    "independent": CatalogEntry(
        business_type="independent",
        display_name="Coach / Consultant",
        pages=("home", "services", "appointment", "contact"),
        nav_sections=("services", "testimonials", "about"),
        widget_kinds=frozenset({"calendly"}),
        theme=Theme("#4caf50", "#2e7d32", "#ff9800"),
        header_icon="🎯",
        cta_page="appointment",
        booking_title="Book an appointment",
    ),
    "retail": CatalogEntry(
        business_type="retail",
        display_name="Shop",
        pages=("home", "products", "contact"),
        nav_sections=("products",),
        widget_kinds=frozenset(),
        theme=Theme("#2196f3", "#1976d2", "#ff5722"),
        header_icon="🏪",
        cta_page="products",
    ),
})


class BusinessTypeCatalog:
    """Read-only lookup over the catalog entries."""

    def __init__(self, entries=None):
        self._entries = MappingProxyType(dict(entries if entries is not None else _ENTRIES))

    def lookup(self, business_type: str) -> CatalogEntry:
        entry = self._entries.get(business_type)
        if entry is None:
            known = ", ".join(self._entries)
            raise ConfigurationError(
                f"Unsupported business type: {business_type!r} (expected one of: {known})"
            )
        return entry

    def types(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def __iter__(self):
        return iter(self._entries.values())

    def __contains__(self, business_type: str) -> bool:
        return business_type in self._entries


DEFAULT_CATALOG = BusinessTypeCatalog()


def page_file(page_key: str) -> str:
    """'home' -> 'index.html', 'menu' -> 'menu.html'."""
    return PAGE_FILES.get(page_key, f"{page_key}.html")
