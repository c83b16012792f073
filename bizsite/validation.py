"""Per-section payload validation and normalization.

Every editable section has a pydantic form below. ``validate_section`` runs
the payload through the form for its key and hands back the normalized
camelCase document, or raises ``errors.ValidationError`` listing what is wrong.
"""

import re
from dataclasses import dataclass, field
from typing import ClassVar, Generic, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationInfo,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .catalog import DEFAULT_CATALOG, SECTION_SPECS, WEEKDAYS, SectionSpec
from .errors import ValidationError
from .hours import is_parseable

BUSINESS_ID_RE = re.compile(r"^[a-z0-9_-]{3,50}$")


@dataclass
class NormalizedSection:
    key: str
    value: object
    warnings: list[str] = field(default_factory=list)

    @property
    def path(self) -> str:
        """Document path the section is stored under."""
        return self.key


def validate_business_id(business_id: str) -> str:
    if not isinstance(business_id, str) or not BUSINESS_ID_RE.match(business_id):
        raise ValidationError(
            "businessId",
            ["must be 3-50 characters of lowercase letters, digits, '-' or '_'"],
        )
    return business_id


def _blank_to_none(value):
    if isinstance(value, str):
        return value.strip() or None
    return value


class _Form(BaseModel):
    """Base for section forms: camelCase keys, trimmed text."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


# ---------------------------------------------------------------------------
# Common sections
# ---------------------------------------------------------------------------

class BasicInfo(_Form):
    name: str = Field("", max_length=100)
    description: str = Field("", max_length=500)
    address: str = Field("", max_length=300)
    phone: str = ""
    email: EmailStr | None = None
    hours: dict[str, str | None] = Field(default_factory=dict)

    @field_validator("email", mode="before")
    @classmethod
    def _optional_email(cls, value):
        return _blank_to_none(value)

    @field_validator("hours")
    @classmethod
    def _every_weekday(cls, hours, info: ValidationInfo):
        unknown = sorted(set(hours) - set(WEEKDAYS))
        if unknown:
            raise ValueError("unknown weekday keys: " + ", ".join(unknown))
        warnings = (info.context or {}).get("warnings")
        normalized = {}
        for day in WEEKDAYS:
            text = (hours.get(day) or "").strip()
            if text and not is_parseable(text) and warnings is not None:
                warnings.append(f"hours.{day} is not in a recognised format and is shown as written")
            normalized[day] = text
        return normalized

    @field_serializer("email")
    def _email_text(self, email):
        return email or ""


class Hero(_Form):
    title: str = ""
    subtitle: str = ""
    cta_text: str = ""
    image_ref: str | None = None

    @field_validator("image_ref", mode="before")
    @classmethod
    def _optional_image(cls, value):
        return _blank_to_none(value)


class GalleryImage(_Form):
    image_ref: str = ""
    alt_text: str = ""
    caption: str = ""

    @model_validator(mode="after")
    def _has_image(self):
        if not self.image_ref:
            raise ValueError("image is required")
        return self


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

class _Item(_Form):
    label: ClassVar[str] = "name"

    @field_validator("image_ref", mode="before", check_fields=False)
    @classmethod
    def _optional_image(cls, value):
        return _blank_to_none(value)

    @model_validator(mode="after")
    def _labelled(self):
        if not getattr(self, self.label):
            raise ValueError(f"needs a {self.label}")
        return self


class MenuItem(_Item):
    name: str = ""
    description: str = ""
    price: str = ""
    image_ref: str | None = None


class ServiceItem(_Item):
    name: str = ""
    description: str = ""
    price: str = ""
    duration: str = ""
    image_ref: str | None = None


class ProductItem(_Item):
    name: str = ""
    description: str = ""
    price: str = ""
    image_ref: str | None = None


class TeamMember(_Item):
    name: str = ""
    speciality: str = ""
    bio: str = ""
    image_ref: str | None = None


class Testimonial(_Item):
    label: ClassVar[str] = "text"

    author: str = ""
    text: str = ""
    rating: int | None = Field(None, ge=0, le=5)
    image_ref: str | None = None

    @field_validator("rating", mode="before")
    @classmethod
    def _optional_rating(cls, value):
        return _blank_to_none(value)


ITEM_FORMS = {
    "menu": MenuItem,
    "service": ServiceItem,
    "product": ProductItem,
    "member": TeamMember,
    "testimonial": Testimonial,
}

ItemT = TypeVar("ItemT", bound=_Item)


# ---------------------------------------------------------------------------
# Section layouts
# ---------------------------------------------------------------------------

class ItemSection(_Form, Generic[ItemT]):
    enabled: bool = False
    items: list[ItemT] = Field(default_factory=list)


class Category(_Form, Generic[ItemT]):
    name: str = Field(min_length=1)
    items: list[ItemT] = Field(default_factory=list)


class CategorizedSection(_Form, Generic[ItemT]):
    enabled: bool = False
    categories: list[Category[ItemT]] = Field(default_factory=list)

    @field_validator("categories")
    @classmethod
    def _unique_names(cls, categories):
        # Case-sensitive: "Wines" and "wines" are two categories.
        seen = set()
        for category in categories:
            if category.name in seen:
                raise ValueError(f"duplicate category name: {category.name!r}")
            seen.add(category.name)
        return categories


class TextSection(_Form):
    enabled: bool = False
    content: str = ""


def _content_form(spec: SectionSpec):
    if spec.layout == "text":
        return TextSection
    layout = ItemSection if spec.layout == "items" else CategorizedSection
    return layout[ITEM_FORMS[spec.item_kind]]


# ---------------------------------------------------------------------------
# Widgets
# ---------------------------------------------------------------------------

class _Widget(_Form):
    required: ClassVar[str]

    enabled: bool = False

    @model_validator(mode="after")
    def _complete_when_enabled(self):
        if self.enabled and not getattr(self, self.required):
            alias = type(self).model_fields[self.required].alias
            raise ValueError(f"{alias} is required when the widget is enabled")
        return self


class GloriaFoodWidget(_Widget):
    required: ClassVar[str] = "restaurant_id"

    restaurant_id: str = ""
    widget_code: str = ""


class FreshaWidget(_Widget):
    required: ClassVar[str] = "salon_id"

    salon_id: str = ""
    widget_code: str = ""


class CalendlyWidget(_Widget):
    required: ClassVar[str] = "url"

    url: HttpUrl | None = None

    @field_validator("url", mode="before")
    @classmethod
    def _optional_url(cls, value):
        return _blank_to_none(value)

    @field_serializer("url")
    def _url_text(self, url):
        return str(url) if url is not None else ""


WIDGET_FORMS = {
    "gloriafood": GloriaFoodWidget,
    "fresha": FreshaWidget,
    "calendly": CalendlyWidget,
}


# ---------------------------------------------------------------------------
# Contact form
# ---------------------------------------------------------------------------

class ContactMessage(_Form):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = ""
    message: str = Field(min_length=1)


_GALLERY = TypeAdapter(list[GalleryImage])


def _problems(error: PydanticValidationError) -> list[str]:
    problems = []
    for detail in error.errors():
        where = ".".join(str(part) for part in detail["loc"])
        message = detail["msg"].removeprefix("Value error, ")
        problems.append(f"{where}: {message}" if where else message)
    return problems


def _validated(section: str, validate, payload, context=None):
    try:
        return validate(payload, context=context)
    except PydanticValidationError as e:
        raise ValidationError(section, _problems(e)) from None


def _normalized(key: str, form, payload) -> NormalizedSection:
    warnings = []
    model = _validated(key, form.model_validate, payload, context={"warnings": warnings})
    return NormalizedSection(key, model.model_dump(mode="json", by_alias=True), warnings)


def validate_contact(payload) -> dict:
    """Validate a public contact-form submission; returns name/email/phone/message."""
    message = _validated("contact", ContactMessage.model_validate, payload)
    return message.model_dump(mode="json")


def validate_section(
    section_key: str,
    payload,
    business_type: str,
    catalog=DEFAULT_CATALOG,
) -> NormalizedSection:
    """
    Validate one section payload for a business type.

    Returns the normalized section on success; raises ValidationError for a
    malformed payload or a section the business type may not carry, and
    ConfigurationError for an unknown business type.
    """
    entry = catalog.lookup(business_type)

    if section_key == "basicInfo":
        return _normalized(section_key, BasicInfo, payload)
    if section_key == "hero":
        return _normalized(section_key, Hero, payload)
    if section_key == "gallery":
        images = _validated(section_key, _GALLERY.validate_python, payload)
        return NormalizedSection(section_key, _GALLERY.dump_python(images, mode="json", by_alias=True))
    if section_key.startswith("widgets."):
        kind = section_key.split(".", 1)[1]
        if kind not in entry.widget_kinds:
            raise ValidationError(section_key, [f"widget {kind!r} is not available for {business_type}"])
        return _normalized(section_key, WIDGET_FORMS[kind], payload)
    if section_key in SECTION_SPECS and entry.allows_section(section_key):
        return _normalized(section_key, _content_form(SECTION_SPECS[section_key]), payload)
    raise ValidationError(section_key, [f"section {section_key!r} is not available for {business_type}"])
