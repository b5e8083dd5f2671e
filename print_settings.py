# print_settings.py
"""
Print settings document and the rules that keep it printable.

A document lists the visible item columns (ordered), a width percentage per
column and a few display options. Every operation here returns a new
document; drafts are only written through SettingsStore.save().
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from field_catalog import BuiltinKey, Catalog, FieldDescriptor, FieldKey, parse_field_key
from field_ordering import DragSession, is_permutation

logger = logging.getLogger(__name__)

FONT_SIZES = ("small", "medium", "large")
DEFAULT_WIDTH_RANGE = (95, 105)


# -----------------------------
# Errors
# -----------------------------
class PrintSettingsError(Exception):
    pass


class InvalidSettings(PrintSettingsError, ValueError):
    pass


class OutOfRangeWidth(PrintSettingsError, ValueError):
    def __init__(self, key: FieldKey, width: Any, min_width: int, max_width: int):
        self.key = key
        self.width = width
        self.min_width = min_width
        self.max_width = max_width
        super().__init__(
            f"Width {width}% for '{key.encode()}' is outside {min_width}-{max_width}%"
        )


class PersistenceFailure(PrintSettingsError):
    """The settings store could not load, save or delete. Safe to retry."""


# -----------------------------
# Document
# -----------------------------
@dataclass
class SettingsDocument:
    visible_fields: list[FieldKey] = field(default_factory=list)
    column_widths: dict[FieldKey, int] = field(default_factory=dict)
    font_size: str = "small"
    table_borders: bool = True
    show_item_numbers: bool = True

    def copy(self) -> "SettingsDocument":
        return replace(self, visible_fields=list(self.visible_fields), column_widths=dict(self.column_widths))

    def width_of(self, key: FieldKey) -> int:
        return self.column_widths.get(key, 0)

    def to_dict(self) -> dict:
        """Serialized form (string keys) used for storage and JSON responses."""
        return {
            "visibleFields": [k.encode() for k in self.visible_fields],
            "columnWidths": {k.encode(): w for k, w in self.column_widths.items()},
            "fontSize": self.font_size,
            "tableBorders": self.table_borders,
            "showItemNumbers": self.show_item_numbers,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SettingsDocument":
        if not isinstance(data, dict):
            raise InvalidSettings("Print settings must be an object")

        raw_fields = data.get("visibleFields", [])
        if not isinstance(raw_fields, list):
            raise InvalidSettings("visibleFields must be a list of field keys")
        try:
            visible = [parse_field_key(k) for k in raw_fields]
        except ValueError as e:
            raise InvalidSettings(str(e)) from e
        if len(set(visible)) != len(visible):
            raise InvalidSettings("visibleFields contains duplicate keys")

        raw_widths = data.get("columnWidths", {})
        if not isinstance(raw_widths, dict):
            raise InvalidSettings("columnWidths must be an object")
        widths: dict[FieldKey, int] = {}
        for raw_key, raw_width in raw_widths.items():
            try:
                key = parse_field_key(raw_key)
            except ValueError as e:
                raise InvalidSettings(str(e)) from e
            widths[key] = _coerce_width(key, raw_width)

        font_size = data.get("fontSize", "small")
        if font_size not in FONT_SIZES:
            raise InvalidSettings(f"fontSize must be one of {', '.join(FONT_SIZES)}")

        flags = {}
        for name in ("tableBorders", "showItemNumbers"):
            value = data.get(name, True)
            if not isinstance(value, bool):
                raise InvalidSettings(f"{name} must be a boolean")
            flags[name] = value

        return cls(
            visible_fields=visible,
            column_widths=widths,
            font_size=font_size,
            table_borders=flags["tableBorders"],
            show_item_numbers=flags["showItemNumbers"],
        )


def _coerce_width(key: FieldKey, raw: Any) -> int:
    if isinstance(raw, bool):
        raise InvalidSettings(f"Width for '{key.encode()}' must be an integer")
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if not isinstance(raw, int):
        raise InvalidSettings(f"Width for '{key.encode()}' must be an integer")
    return raw


DEFAULT_COLUMNS = (
    ("hsCode", 10),
    ("productDescription", 28),
    ("quantity", 8),
    ("uoM", 8),
    ("rate", 8),
    ("valueSalesExcludingST", 13),
    ("salesTaxApplicable", 12),
    ("totalValues", 13),
)


def default_settings() -> SettingsDocument:
    """Fallback used whenever a user has no stored document. Never persisted."""
    return SettingsDocument(
        visible_fields=[BuiltinKey(name) for name, _ in DEFAULT_COLUMNS],
        column_widths={BuiltinKey(name): width for name, width in DEFAULT_COLUMNS},
        font_size="small",
        table_borders=True,
        show_item_numbers=True,
    )


# -----------------------------
# Constraint validation
# -----------------------------
def reconcile(doc: SettingsDocument, catalog: Catalog) -> SettingsDocument:
    """
    Fill gaps left by catalog changes: append missing required fields and give
    every visible field without a width its midpoint default. Never drops or
    reorders what the user chose.
    """
    out = doc.copy()
    for key in catalog.required_keys():
        if key not in out.visible_fields:
            logger.debug("Adding required field %s to print settings", key.encode())
            out.visible_fields.append(key)
    for key in out.visible_fields:
        if key in out.column_widths:
            continue
        descriptor = catalog.get(key)
        if descriptor is not None:
            out.column_widths[key] = descriptor.default_width
    return out


def toggle_field(doc: SettingsDocument, key: FieldKey, descriptor: FieldDescriptor) -> SettingsDocument:
    if descriptor.required:
        return doc.copy()
    out = doc.copy()
    if key in out.visible_fields:
        out.visible_fields.remove(key)
        out.column_widths.pop(key, None)
    else:
        out.visible_fields.append(key)
        out.column_widths[key] = descriptor.default_width
    return out


def set_width(
    doc: SettingsDocument,
    key: FieldKey,
    width: int,
    descriptor: FieldDescriptor,
    clamp: bool = False,
) -> SettingsDocument:
    width = _coerce_width(key, width)
    if not descriptor.accepts_width(width):
        if not clamp:
            raise OutOfRangeWidth(key, width, descriptor.min_width, descriptor.max_width)
        width = max(descriptor.min_width, min(descriptor.max_width, width))
    out = doc.copy()
    out.column_widths[key] = width
    return out


def total_width(doc: SettingsDocument) -> int:
    return sum(doc.width_of(k) for k in doc.visible_fields)


@dataclass(frozen=True)
class WidthHealth:
    status: str  # "ok" | "warn"
    total: int
    lower: int
    upper: int

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def message(self) -> Optional[str]:
        if self.ok:
            return None
        return (
            f"Column widths add up to {self.total}%. "
            f"Recommended total is {self.lower}-{self.upper}%."
        )


def width_health(total: int, lower: int = DEFAULT_WIDTH_RANGE[0], upper: int = DEFAULT_WIDTH_RANGE[1]) -> WidthHealth:
    status = "ok" if lower <= total <= upper else "warn"
    return WidthHealth(status=status, total=total, lower=lower, upper=upper)


def validate_for_save(doc: SettingsDocument, catalog: Catalog) -> SettingsDocument:
    """
    Reconcile, then reject any width outside its field's bounds. Keys the
    catalog no longer knows (deleted custom fields) stay visible but lose
    their width, so reconcile gives them the midpoint if they come back.
    Width entries for hidden fields are dropped.
    """
    out = reconcile(doc, catalog)
    for key in out.visible_fields:
        descriptor = catalog.get(key)
        if descriptor is None:
            continue
        width = out.column_widths[key]
        if not descriptor.accepts_width(width):
            raise OutOfRangeWidth(key, width, descriptor.min_width, descriptor.max_width)
    out.column_widths = {
        k: out.column_widths[k]
        for k in out.visible_fields
        if k in out.column_widths and k in catalog
    }
    return out


# -----------------------------
# Editing session
# -----------------------------
class PrintSettingsEditor:
    """
    One editing session over an in-memory draft. Nothing reaches the store
    until save(); a failed save leaves the draft untouched for a retry.
    """

    def __init__(self, store, catalog: Catalog, width_range: tuple[int, int] = DEFAULT_WIDTH_RANGE):
        self.store = store
        self.catalog = catalog
        self.width_range = width_range
        self.draft: Optional[SettingsDocument] = None
        self.has_stored_settings = False

    def open(self) -> SettingsDocument:
        stored = self.store.load()
        self.has_stored_settings = stored is not None
        self.draft = reconcile(stored if stored is not None else default_settings(), self.catalog)
        return self.draft

    def _require_draft(self) -> SettingsDocument:
        if self.draft is None:
            raise PrintSettingsError("Editing session is not open")
        return self.draft

    def _descriptor(self, key: FieldKey) -> FieldDescriptor:
        descriptor = self.catalog.get(key)
        if descriptor is None:
            raise InvalidSettings(f"Unknown field '{key.encode()}'")
        return descriptor

    def toggle(self, key: FieldKey) -> SettingsDocument:
        self.draft = toggle_field(self._require_draft(), key, self._descriptor(key))
        return self.draft

    def set_width(self, key: FieldKey, width: int, clamp: bool = False) -> SettingsDocument:
        self.draft = set_width(self._require_draft(), key, width, self._descriptor(key), clamp=clamp)
        return self.draft

    def set_display(
        self,
        font_size: Optional[str] = None,
        table_borders: Optional[bool] = None,
        show_item_numbers: Optional[bool] = None,
    ) -> SettingsDocument:
        draft = self._require_draft().copy()
        if font_size is not None:
            if font_size not in FONT_SIZES:
                raise InvalidSettings(f"fontSize must be one of {', '.join(FONT_SIZES)}")
            draft.font_size = font_size
        if table_borders is not None:
            draft.table_borders = bool(table_borders)
        if show_item_numbers is not None:
            draft.show_item_numbers = bool(show_item_numbers)
        self.draft = draft
        return self.draft

    def start_reordering(self) -> DragSession:
        return DragSession(self._require_draft().visible_fields)

    def apply_order(self, order: list[FieldKey]) -> SettingsDocument:
        draft = self._require_draft()
        if not is_permutation(draft.visible_fields, order):
            raise InvalidSettings("New order must contain exactly the visible fields")
        self.draft = replace(draft.copy(), visible_fields=list(order))
        return self.draft

    def total_width(self) -> int:
        return total_width(self._require_draft())

    def health(self) -> WidthHealth:
        return width_health(self.total_width(), *self.width_range)

    def save(self) -> tuple[SettingsDocument, WidthHealth]:
        doc = validate_for_save(self._require_draft(), self.catalog)
        saved = self.store.save(doc)
        self.draft = saved.copy()
        self.has_stored_settings = True
        return saved, width_health(total_width(saved), *self.width_range)

    def reset(self) -> SettingsDocument:
        self.store.delete()
        self.has_stored_settings = False
        self.draft = reconcile(default_settings(), self.catalog)
        return self.draft

    def cancel(self) -> None:
        self.draft = None
