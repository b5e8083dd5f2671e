# render_projection.py
"""
The one mapping from (settings, catalog, item) to table cells.

The HTML preview and the PDF renderer both draw a ProjectedTable and nothing
else; which columns appear, in what order and how wide is decided here only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from field_catalog import BuiltinKey, Catalog, FieldKey
from print_settings import SettingsDocument

logger = logging.getLogger(__name__)

HEADER_ROW = object()  # sentinel item: project() returns labels instead of values

ITEM_NUMBER_KEY = BuiltinKey("itemNumber")
ITEM_NUMBER_LABEL = "#"
ITEM_NUMBER_WIDTH = 4


@dataclass(frozen=True)
class Column:
    key: FieldKey
    label: str
    value: str
    width_percent: int

    def to_dict(self) -> dict:
        return {
            "key": self.key.encode(),
            "label": self.label,
            "value": self.value,
            "widthPercent": self.width_percent,
        }


def project(doc: SettingsDocument, catalog: Catalog, item: Any, index: int = 0) -> list[Column]:
    columns = []
    for key in doc.visible_fields:
        descriptor = catalog.get(key)
        if descriptor is None:
            logger.debug("Skipping unknown print column %s", key.encode())
            continue
        value = descriptor.label if item is HEADER_ROW else descriptor.get_value(item, index)
        columns.append(Column(key, descriptor.label, value, doc.width_of(key)))
    return columns


def project_header(doc: SettingsDocument, catalog: Catalog) -> list[Column]:
    return project(doc, catalog, HEADER_ROW)


@dataclass(frozen=True)
class ProjectedTable:
    header: list[Column]
    rows: list[list[Column]]
    font_size: str
    table_borders: bool

    @property
    def keys(self) -> list[FieldKey]:
        return [c.key for c in self.header]

    @property
    def widths(self) -> list[int]:
        return [c.width_percent for c in self.header]

    @property
    def total_width(self) -> int:
        return sum(self.widths)

    def layout_percentages(self) -> list[float]:
        """
        Widths as a share of the table width. Totals up to 100% are used as
        they are (the table is simply narrower); larger totals are scaled
        down so the table never runs off the page.
        """
        total = self.total_width
        if total <= 100 or total == 0:
            return [float(w) for w in self.widths]
        return [w * 100.0 / total for w in self.widths]

    def to_dict(self) -> dict:
        return {
            "header": [c.to_dict() for c in self.header],
            "rows": [[c.to_dict() for c in row] for row in self.rows],
            "fontSize": self.font_size,
            "tableBorders": self.table_borders,
            "totalWidth": self.total_width,
        }


def _item_number(value: str) -> Column:
    return Column(ITEM_NUMBER_KEY, ITEM_NUMBER_LABEL, value, ITEM_NUMBER_WIDTH)


def project_table(doc: SettingsDocument, catalog: Catalog, items: Iterable[Any]) -> ProjectedTable:
    header = project_header(doc, catalog)
    rows = [project(doc, catalog, item, i) for i, item in enumerate(items)]
    if doc.show_item_numbers:
        header = [_item_number(ITEM_NUMBER_LABEL)] + header
        rows = [[_item_number(str(i + 1))] + row for i, row in enumerate(rows)]
    return ProjectedTable(header=header, rows=rows, font_size=doc.font_size, table_borders=doc.table_borders)


def sample_items(catalog: Catalog) -> list[dict]:
    """Placeholder rows for previewing a draft layout without an invoice."""
    custom_values = [
        {"custom_field_id": d.key.field_id, "value": f"Sample {d.label}"}
        for d in catalog.custom_fields
    ]
    base = {
        "hs_code": "8471.3010",
        "uom": "Numbers, pieces, units",
        "rate": "18%",
        "extra_tax": "",
        "sale_type": "Goods at standard rate (default)",
        "sro_schedule_no": "",
        "sro_item_serial_no": "",
        "custom_field_values": custom_values,
    }
    return [
        {**base, "product_description": "Laptop computer", "quantity": 2,
         "value_sales_excluding_st": 150000, "sales_tax_applicable": 27000, "total_values": 177000,
         "fixed_notified_value_or_retail_price": 0, "sales_tax_withheld_at_source": 0,
         "further_tax": 0, "fed_payable": 0, "discount": 0},
        {**base, "product_description": "Wireless mouse", "quantity": 5,
         "value_sales_excluding_st": 7500, "sales_tax_applicable": 1350, "total_values": 8850,
         "fixed_notified_value_or_retail_price": 0, "sales_tax_withheld_at_source": 0,
         "further_tax": 0, "fed_payable": 0, "discount": 0},
        {**base, "product_description": "USB-C docking station", "quantity": 1,
         "value_sales_excluding_st": 22000, "sales_tax_applicable": 3960, "total_values": 25960,
         "fixed_notified_value_or_retail_price": 0, "sales_tax_withheld_at_source": 0,
         "further_tax": 0, "fed_payable": 0, "discount": 500},
    ]
