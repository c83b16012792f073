"""BusinessProfile dataclasses: the content document for one tenant business.

The stored document uses camelCase keys (``basicInfo``, ``dailyMenu`` ...);
attributes are snake_case. Content sections form a tagged union keyed by
business type: each ``*Sections`` class lists exactly the sections its type
may carry.
"""

import copy
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import ClassVar

from .catalog import DEFAULT_CATALOG, SECTION_SPECS, WEEKDAYS, SectionSpec
from .errors import ConfigurationError

# Kind-specific widget fields and their empty defaults.
WIDGET_FIELDS = {
    "gloriafood": ("restaurantId", "widgetCode"),
    "fresha": ("salonId", "widgetCode"),
    "calendly": ("url",),
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _snake(key: str) -> str:
    return re.sub(r"([A-Z])", lambda m: "_" + m.group(1).lower(), key)


def _flag(value) -> bool:
    # Documents written by hand or older clients may carry "false"/"0" strings.
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return _now_utc()


class _Record:
    """Flat record <-> camelCase document mapping."""

    def to_document(self) -> dict:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_document(cls, data: dict | None):
        data = data or {}
        kwargs = {}
        for f in fields(cls):
            key = _camel(f.name)
            if data.get(key) is not None:
                # Copy containers so records never alias the source document.
                kwargs[f.name] = copy.deepcopy(data[key])
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Common sections
# ---------------------------------------------------------------------------

def _empty_hours() -> dict[str, str]:
    return {day: "" for day in WEEKDAYS}


@dataclass
class BasicInfo(_Record):
    name: str = ""
    description: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    hours: dict[str, str] = field(default_factory=_empty_hours)

    def to_document(self) -> dict:
        doc = super().to_document()
        doc["hours"] = {day: self.hours.get(day, "") for day in WEEKDAYS}
        return doc


@dataclass
class Hero(_Record):
    title: str = ""
    subtitle: str = ""
    cta_text: str = "Learn more"
    image_ref: str | None = None


@dataclass
class GalleryImage(_Record):
    image_ref: str = ""
    alt_text: str = ""
    caption: str = ""


# ---------------------------------------------------------------------------
# Item variants
# ---------------------------------------------------------------------------

@dataclass
class MenuItem(_Record):
    kind: ClassVar[str] = "menu"
    name: str = ""
    description: str = ""
    price: str = ""
    image_ref: str | None = None


@dataclass
class ServiceItem(_Record):
    kind: ClassVar[str] = "service"
    name: str = ""
    description: str = ""
    price: str = ""
    duration: str = ""
    image_ref: str | None = None


@dataclass
class ProductItem(_Record):
    kind: ClassVar[str] = "product"
    name: str = ""
    description: str = ""
    price: str = ""
    image_ref: str | None = None


@dataclass
class TeamMember(_Record):
    kind: ClassVar[str] = "member"
    name: str = ""
    speciality: str = ""
    bio: str = ""
    image_ref: str | None = None


@dataclass
class Testimonial(_Record):
    kind: ClassVar[str] = "testimonial"
    author: str = ""
    text: str = ""
    rating: int | None = None
    image_ref: str | None = None


ITEM_TYPES = {cls.kind: cls for cls in (MenuItem, ServiceItem, ProductItem, TeamMember, Testimonial)}


# ---------------------------------------------------------------------------
# Section layouts
# ---------------------------------------------------------------------------

@dataclass
class ItemSection:
    enabled: bool = False
    items: list = field(default_factory=list)

    @property
    def populated(self) -> bool:
        return self.enabled and bool(self.items)

    def to_document(self) -> dict:
        return {"enabled": self.enabled, "items": [item.to_document() for item in self.items]}

    @classmethod
    def from_document(cls, data: dict | None, item_type) -> "ItemSection":
        data = data or {}
        return cls(
            enabled=_flag(data.get("enabled")),
            items=[item_type.from_document(item) for item in data.get("items") or []],
        )


@dataclass
class Category:
    name: str = ""
    items: list = field(default_factory=list)

    def to_document(self) -> dict:
        return {"name": self.name, "items": [item.to_document() for item in self.items]}


@dataclass
class CategorizedSection:
    enabled: bool = False
    categories: list[Category] = field(default_factory=list)

    @property
    def populated(self) -> bool:
        return self.enabled and any(category.items for category in self.categories)

    def to_document(self) -> dict:
        return {
            "enabled": self.enabled,
            "categories": [category.to_document() for category in self.categories],
        }

    @classmethod
    def from_document(cls, data: dict | None, item_type) -> "CategorizedSection":
        data = data or {}
        categories = [
            Category(
                name=str(raw.get("name") or ""),
                items=[item_type.from_document(item) for item in raw.get("items") or []],
            )
            for raw in data.get("categories") or []
        ]
        return cls(enabled=_flag(data.get("enabled")), categories=categories)


@dataclass
class TextSection:
    enabled: bool = False
    content: str = ""

    @property
    def populated(self) -> bool:
        return self.enabled and bool(self.content.strip())

    def to_document(self) -> dict:
        return {"enabled": self.enabled, "content": self.content}

    @classmethod
    def from_document(cls, data: dict | None, item_type=None) -> "TextSection":
        data = data or {}
        return cls(enabled=_flag(data.get("enabled")), content=str(data.get("content") or ""))


_LAYOUTS = {"items": ItemSection, "categories": CategorizedSection, "text": TextSection}


def section_from_document(spec: SectionSpec, data: dict | None):
    item_type = ITEM_TYPES.get(spec.item_kind) if spec.item_kind else None
    return _LAYOUTS[spec.layout].from_document(data, item_type)


# ---------------------------------------------------------------------------
# Per-type section sets (tagged union)
# ---------------------------------------------------------------------------

class _SectionSet:
    business_type: ClassVar[str]

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(_camel(f.name) for f in fields(cls))

    def get(self, key: str):
        if key not in self.keys():
            raise KeyError(key)
        return getattr(self, _snake(key))

    def replace(self, key: str, section) -> None:
        if key not in self.keys():
            raise KeyError(key)
        setattr(self, _snake(key), section)

    def items(self):
        for key in self.keys():
            yield SECTION_SPECS[key], self.get(key)

    def to_document(self) -> dict:
        return {key: self.get(key).to_document() for key in self.keys()}

    @classmethod
    def from_document(cls, doc: dict):
        return cls(**{
            _snake(key): section_from_document(SECTION_SPECS[key], doc.get(key))
            for key in cls.keys()
        })


@dataclass
class RestaurantSections(_SectionSet):
    business_type: ClassVar[str] = "restaurant"
    daily_menu: ItemSection = field(default_factory=ItemSection)
    main_menu: CategorizedSection = field(default_factory=CategorizedSection)
    drinks_menu: CategorizedSection = field(default_factory=CategorizedSection)


@dataclass
class HairdresserSections(_SectionSet):
    business_type: ClassVar[str] = "hairdresser"
    services: CategorizedSection = field(default_factory=CategorizedSection)
    team: ItemSection = field(default_factory=ItemSection)


@dataclass
class IndependentSections(_SectionSet):
    business_type: ClassVar[str] = "independent"
    services: CategorizedSection = field(default_factory=CategorizedSection)
    testimonials: ItemSection = field(default_factory=ItemSection)
    about: TextSection = field(default_factory=TextSection)


@dataclass
class RetailSections(_SectionSet):
    business_type: ClassVar[str] = "retail"
    products: CategorizedSection = field(default_factory=CategorizedSection)


SECTION_VARIANTS = {
    cls.business_type: cls
    for cls in (RestaurantSections, HairdresserSections, IndependentSections, RetailSections)
}


def sections_for(business_type: str):
    try:
        return SECTION_VARIANTS[business_type]
    except KeyError:
        raise ConfigurationError(f"Unsupported business type: {business_type!r}") from None


# ---------------------------------------------------------------------------
# Widgets
# ---------------------------------------------------------------------------

@dataclass
class WidgetConfig:
    kind: str
    enabled: bool = False
    fields: dict[str, str] = field(default_factory=dict)

    def to_document(self) -> dict:
        return {"enabled": self.enabled, **self.fields}

    @classmethod
    def from_document(cls, kind: str, data: dict | None) -> "WidgetConfig":
        data = data or {}
        values = {name: "" for name in WIDGET_FIELDS.get(kind, ())}
        values.update({k: v for k, v in data.items() if k != "enabled"})
        return cls(kind=kind, enabled=_flag(data.get("enabled")), fields=values)


# ---------------------------------------------------------------------------
# The profile document
# ---------------------------------------------------------------------------

@dataclass
class BusinessProfile:
    business_id: str
    business_type: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    basic_info: BasicInfo = field(default_factory=BasicInfo)
    hero: Hero = field(default_factory=Hero)
    gallery: list[GalleryImage] = field(default_factory=list)
    sections: _SectionSet | None = None
    widgets: dict[str, WidgetConfig] = field(default_factory=dict)

    def __post_init__(self):
        if self.sections is None:
            self.sections = sections_for(self.business_type)()

    def section(self, key: str):
        """Return the live object behind a section key (``widgets.<kind>`` included)."""
        if key == "basicInfo":
            return self.basic_info
        if key == "hero":
            return self.hero
        if key == "gallery":
            return self.gallery
        if key.startswith("widgets."):
            kind = key.split(".", 1)[1]
            return self.widgets.get(kind) or WidgetConfig.from_document(kind, None)
        return self.sections.get(key)

    def section_document(self, key: str):
        value = self.section(key)
        if key == "gallery":
            return [image.to_document() for image in value]
        return value.to_document()

    def apply_section(self, key: str, value) -> None:
        """Replace one section in memory from its (normalized) document form."""
        if key == "basicInfo":
            self.basic_info = BasicInfo.from_document(value)
        elif key == "hero":
            self.hero = Hero.from_document(value)
        elif key == "gallery":
            self.gallery = [GalleryImage.from_document(image) for image in value or []]
        elif key.startswith("widgets."):
            kind = key.split(".", 1)[1]
            self.widgets[kind] = WidgetConfig.from_document(kind, value)
        else:
            self.sections.replace(key, section_from_document(SECTION_SPECS[key], value))

    def first_populated_section(self):
        """First listing section with content, used for the home page preview."""
        for spec, section in self.sections.items():
            if spec.layout != "text" and section.populated:
                return spec, section
        return None

    def enabled_widget(self, kinds) -> WidgetConfig | None:
        for kind in sorted(kinds):
            widget = self.widgets.get(kind)
            if widget and widget.enabled:
                return widget
        return None

    def to_document(self) -> dict:
        return {
            "businessId": self.business_id,
            "businessType": self.business_type,
            "ownerId": self.owner_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "basicInfo": self.basic_info.to_document(),
            "hero": self.hero.to_document(),
            "gallery": [image.to_document() for image in self.gallery],
            **self.sections.to_document(),
            "widgets": {kind: widget.to_document() for kind, widget in self.widgets.items()},
        }

    @classmethod
    def from_document(cls, doc: dict) -> "BusinessProfile":
        business_type = doc.get("businessType", "")
        variant = sections_for(business_type)
        widgets = {
            kind: WidgetConfig.from_document(kind, data)
            for kind, data in (doc.get("widgets") or {}).items()
        }
        return cls(
            business_id=doc.get("businessId", ""),
            business_type=business_type,
            owner_id=doc.get("ownerId", ""),
            created_at=_parse_timestamp(doc.get("createdAt")),
            updated_at=_parse_timestamp(doc.get("updatedAt")),
            basic_info=BasicInfo.from_document(doc.get("basicInfo")),
            hero=Hero.from_document(doc.get("hero")),
            gallery=[GalleryImage.from_document(image) for image in doc.get("gallery") or []],
            sections=variant.from_document(doc),
            widgets=widgets,
        )


def new_profile(
    business_id: str,
    business_type: str,
    owner_id: str,
    now: datetime | None = None,
    catalog=DEFAULT_CATALOG,
) -> BusinessProfile:
    """Default-empty profile for a freshly registered business."""
    entry = catalog.lookup(business_type)
    now = now or _now_utc()
    return BusinessProfile(
        business_id=business_id,
        business_type=business_type,
        owner_id=owner_id,
        created_at=now,
        updated_at=now,
        sections=sections_for(business_type)(),
        widgets={
            kind: WidgetConfig.from_document(kind, None)
            for kind in sorted(entry.widget_kinds)
        },
    )
