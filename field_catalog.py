# field_catalog.py
"""
Registry of the columns an invoice items table can show.

Built-in fields are fixed at import time. Custom fields are derived from the
user's active custom-field list every time a catalog is requested; only their
keys (and widths) are ever persisted, inside the print settings document.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Iterable, Optional, Union

PLACEHOLDER = "—"  # em dash
CUSTOM_FIELD_PREFIX = "customField_"
CUSTOM_CATEGORY = "custom"
CUSTOM_MIN_WIDTH = 5
CUSTOM_MAX_WIDTH = 25


# -----------------------------
# Field keys
# -----------------------------
@dataclass(frozen=True)
class BuiltinKey:
    name: str

    def encode(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.encode()


@dataclass(frozen=True)
class CustomKey:
    field_id: str

    def encode(self) -> str:
        return f"{CUSTOM_FIELD_PREFIX}{self.field_id}"

    def __str__(self) -> str:
        return self.encode()


FieldKey = Union[BuiltinKey, CustomKey]


def parse_field_key(raw: str) -> FieldKey:
    """Decode the string form used in stored settings and JSON payloads."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"Invalid field key: {raw!r}")
    raw = raw.strip()
    if raw.startswith(CUSTOM_FIELD_PREFIX) and len(raw) > len(CUSTOM_FIELD_PREFIX):
        return CustomKey(raw[len(CUSTOM_FIELD_PREFIX):])
    return BuiltinKey(raw)


# -----------------------------
# Value helpers
# -----------------------------
def _read(obj: Any, name: str, default: Any = None) -> Any:
    # Items and custom-field rows arrive either as ORM objects or plain dicts
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _to_decimal(x: Any) -> Decimal:
    try:
        return Decimal(str(x)) if x not in (None, "") else Decimal("0")
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def format_amount(x: Any) -> str:
    q = _to_decimal(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{q:,.2f}"


def format_currency(x: Any) -> str:
    return f"Rs. {format_amount(x)}"


def format_quantity(x: Any) -> str:
    q = _to_decimal(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{q:.2f}"


def format_text(x: Any) -> str:
    s = "" if x is None else str(x).strip()
    return s or PLACEHOLDER


def _text(attr: str) -> Callable[[Any, int], str]:
    return lambda item, index: format_text(_read(item, attr))


def _currency(attr: str) -> Callable[[Any, int], str]:
    return lambda item, index: format_currency(_read(item, attr))


def _quantity(attr: str) -> Callable[[Any, int], str]:
    return lambda item, index: format_quantity(_read(item, attr))


def custom_value(item: Any, field_id: str) -> str:
    for entry in _read(item, "custom_field_values", None) or []:
        if str(_read(entry, "custom_field_id")) == str(field_id):
            return format_text(_read(entry, "value"))
    return PLACEHOLDER


# -----------------------------
# Descriptors
# -----------------------------
@dataclass(frozen=True)
class CategoryDescriptor:
    key: str
    label: str
    order: int

    def to_dict(self) -> dict:
        return {"key": self.key, "label": self.label, "order": self.order}


@dataclass(frozen=True)
class FieldDescriptor:
    key: FieldKey
    label: str
    category: str
    min_width: int
    max_width: int
    extract: Callable[[Any, int], str] = field(compare=False, repr=False)
    required: bool = False
    description: str = ""
    field_type: Optional[str] = None

    @property
    def is_custom(self) -> bool:
        return isinstance(self.key, CustomKey)

    @property
    def default_width(self) -> int:
        return (self.min_width + self.max_width) // 2

    def get_value(self, item: Any, index: int) -> str:
        return self.extract(item, index)

    def accepts_width(self, width: int) -> bool:
        return self.min_width <= width <= self.max_width

    def to_dict(self) -> dict:
        out = {
            "key": self.key.encode(),
            "label": self.label,
            "description": self.description,
            "category": self.category,
            "minWidth": self.min_width,
            "maxWidth": self.max_width,
            "defaultWidth": self.default_width,
            "required": self.required,
            "isCustom": self.is_custom,
        }
        if self.field_type:
            out["fieldType"] = self.field_type
        return out


CATEGORIES: tuple[CategoryDescriptor, ...] = (
    CategoryDescriptor("basic", "Basic Information", 1),
    CategoryDescriptor("pricing", "Pricing & Totals", 2),
    CategoryDescriptor("tax", "Tax Details", 3),
    CategoryDescriptor("sro", "SRO Details", 4),
)
CUSTOM_CATEGORY_DESCRIPTOR = CategoryDescriptor(CUSTOM_CATEGORY, "Custom Fields", 99)


def _builtin(name, label, category, lo, hi, extract, *, required=False, description=""):
    return FieldDescriptor(
        key=BuiltinKey(name),
        label=label,
        category=category,
        min_width=lo,
        max_width=hi,
        extract=extract,
        required=required,
        description=description,
    )


BUILTIN_FIELDS: tuple[FieldDescriptor, ...] = (
    # basic
    _builtin("hsCode", "HS Code", "basic", 6, 15, _text("hs_code"),
             description="Harmonized System code of the product"),
    _builtin("productDescription", "Description", "basic", 10, 40, _text("product_description"),
             required=True, description="Product or service description"),
    _builtin("quantity", "Qty", "basic", 5, 20, _quantity("quantity"),
             description="Quantity sold"),
    _builtin("uoM", "UoM", "basic", 5, 15, _text("uom"),
             description="Unit of measurement"),
    _builtin("rate", "Rate", "basic", 5, 12, _text("rate"),
             description="Sales tax rate"),
    # pricing
    _builtin("valueSalesExcludingST", "Value (Excl. ST)", "pricing", 8, 18, _currency("value_sales_excluding_st"),
             description="Value of sales excluding sales tax"),
    _builtin("fixedNotifiedValueOrRetailPrice", "Retail Price", "pricing", 8, 15,
             _currency("fixed_notified_value_or_retail_price"),
             description="Fixed notified value or retail price"),
    _builtin("discount", "Discount", "pricing", 6, 12, _currency("discount")),
    _builtin("totalValues", "Total", "pricing", 8, 18, _currency("total_values"),
             description="Line total including taxes"),
    # tax
    _builtin("salesTaxApplicable", "Sales Tax", "tax", 8, 15, _currency("sales_tax_applicable")),
    _builtin("salesTaxWithheldAtSource", "ST Withheld", "tax", 8, 15, _currency("sales_tax_withheld_at_source"),
             description="Sales tax withheld at source"),
    _builtin("extraTax", "Extra Tax", "tax", 6, 12, _text("extra_tax")),
    _builtin("furtherTax", "Further Tax", "tax", 6, 12, _currency("further_tax")),
    _builtin("fedPayable", "FED Payable", "tax", 6, 12, _currency("fed_payable"),
             description="Federal excise duty payable"),
    # sro
    _builtin("saleType", "Sale Type", "sro", 8, 20, _text("sale_type")),
    _builtin("sroScheduleNo", "SRO Schedule", "sro", 6, 14, _text("sro_schedule_no")),
    _builtin("sroItemSerialNo", "SRO Item", "sro", 6, 12, _text("sro_item_serial_no")),
)


def custom_descriptor(custom_field: Any) -> FieldDescriptor:
    field_id = str(_read(custom_field, "id"))
    name = _read(custom_field, "field_name") or _read(custom_field, "fieldName") or field_id
    field_type = _read(custom_field, "field_type") or _read(custom_field, "fieldType") or "text"
    return FieldDescriptor(
        key=CustomKey(field_id),
        label=str(name),
        category=CUSTOM_CATEGORY,
        min_width=CUSTOM_MIN_WIDTH,
        max_width=CUSTOM_MAX_WIDTH,
        extract=lambda item, index: custom_value(item, field_id),
        description=f"Custom {field_type} field",
        field_type=str(field_type),
    )


# -----------------------------
# Catalog
# -----------------------------
@dataclass(frozen=True)
class Catalog:
    builtins: tuple[FieldDescriptor, ...]
    custom_fields: tuple[FieldDescriptor, ...]
    categories: tuple[CategoryDescriptor, ...]

    def fields(self) -> tuple[FieldDescriptor, ...]:
        return self.builtins + self.custom_fields

    def get(self, key: FieldKey) -> Optional[FieldDescriptor]:
        for d in self.fields():
            if d.key == key:
                return d
        return None

    def __contains__(self, key: FieldKey) -> bool:
        return self.get(key) is not None

    def required_keys(self) -> list[FieldKey]:
        return [d.key for d in self.fields() if d.required]

    def grouped(self) -> list[tuple[CategoryDescriptor, list[FieldDescriptor]]]:
        """Fields grouped by category, in category display order."""
        return [
            (c, [d for d in self.fields() if d.category == c.key])
            for c in sorted(self.categories, key=lambda c: c.order)
        ]

    def to_dict(self) -> dict:
        return {
            "fields": [d.to_dict() for d in self.builtins],
            "customFields": [d.to_dict() for d in self.custom_fields],
            "categories": [c.to_dict() for c in sorted(self.categories, key=lambda c: c.order)],
        }


def get_catalog(custom_fields: Iterable[Any] = ()) -> Catalog:
    """Catalog for one user; custom_fields must already be filtered to active ones."""
    customs = tuple(custom_descriptor(cf) for cf in (custom_fields or ()))
    categories = CATEGORIES + ((CUSTOM_CATEGORY_DESCRIPTOR,) if customs else ())
    return Catalog(builtins=BUILTIN_FIELDS, custom_fields=customs, categories=categories)
