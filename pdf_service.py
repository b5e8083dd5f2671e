# pdf_service.py
import io
import logging
import os
import re
from datetime import datetime
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from config import Config
from field_catalog import format_currency
from models import Invoice
from render_projection import ITEM_NUMBER_KEY, ProjectedTable, project_table
from settings_store import load_layout

logger = logging.getLogger(__name__)

PAGE_W, PAGE_H = A4
MARGIN = 30

# Body/header point sizes per fontSize option
FONT_POINTS = {"small": 7, "medium": 8, "large": 9}

W_GRID = 0.5
HEADER_BG = colors.HexColor("#F5F5F5")
RULE = colors.HexColor("#CCCCCC")


def _safe_filename(name: str) -> str:
    # strip characters not allowed on Windows/mac paths
    return re.sub(r'[\\/*?:"<>|]', "", (name or "")).strip() or "Invoice"


def _na(value) -> str:
    s = "" if value is None else str(value).strip()
    return s or "N/A"


def _invoice_date_label(raw: str) -> str:
    s = (raw or "").strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%d-%m-%Y", "%m/%d/%Y"):
        try:
            return datetime.strptime(s, fmt).strftime("%B %d, %Y")
        except ValueError:
            pass
    return _na(s)


# -----------------------------
# Items table
# -----------------------------
def build_items_table(table: ProjectedTable, content_width: float) -> Table:
    """
    Turn a projected table into a ReportLab Table. Column choice, order and
    widths come from the projection; only fonts, padding and rules are set here.
    """
    size = FONT_POINTS.get(table.font_size, FONT_POINTS["small"])
    head_style = ParagraphStyle("th", fontName="Helvetica-Bold", fontSize=size, leading=size * 1.3)
    cell_style = ParagraphStyle("td", fontName="Helvetica", fontSize=size, leading=size * 1.3)

    def cell(text, style):
        return Paragraph(escape(text), style)

    data = [[cell(c.value.upper(), head_style) for c in table.header]]
    for row in table.rows:
        data.append([cell(c.value, cell_style) for c in row])

    col_widths = [content_width * pct / 100.0 for pct in table.layout_percentages()]
    t = Table(data, colWidths=col_widths, repeatRows=1, hAlign="LEFT")

    ts = TableStyle()
    ts.add("BACKGROUND", (0, 0), (-1, 0), HEADER_BG)
    ts.add("VALIGN", (0, 0), (-1, -1), "TOP")
    ts.add("LEFTPADDING", (0, 0), (-1, -1), 3)
    ts.add("RIGHTPADDING", (0, 0), (-1, -1), 3)
    ts.add("TOPPADDING", (0, 0), (-1, -1), 4)
    ts.add("BOTTOMPADDING", (0, 0), (-1, -1), 4)
    if table.table_borders:
        ts.add("GRID", (0, 0), (-1, -1), W_GRID, colors.black)
    else:
        ts.add("LINEABOVE", (0, 0), (-1, 0), 1.5, colors.black)
        ts.add("LINEBELOW", (0, 0), (-1, 0), 1, colors.black)
        if len(data) > 1:
            ts.add("LINEBELOW", (0, 1), (-1, -1), 0.5, RULE)
    if table.header and table.header[0].key == ITEM_NUMBER_KEY:
        ts.add("ALIGN", (0, 0), (0, -1), "CENTER")
    t.setStyle(ts)
    return t


# -----------------------------
# Document sections
# -----------------------------
SECTION = ParagraphStyle("section", fontName="Helvetica-Bold", fontSize=11, leading=14, spaceAfter=4)
LABEL = ParagraphStyle("label", fontName="Helvetica", fontSize=8, leading=10, textColor=colors.HexColor("#666666"))
VALUE = ParagraphStyle("value", fontName="Helvetica-Bold", fontSize=9, leading=11)
TOTAL = ParagraphStyle("total", fontName="Helvetica", fontSize=10, leading=13, alignment=2)
GRAND = ParagraphStyle("grand", fontName="Helvetica-Bold", fontSize=12, leading=15, alignment=2)
FOOT = ParagraphStyle("foot", fontName="Helvetica", fontSize=9, leading=11, textColor=colors.HexColor("#666666"))


def _info_block(title: str, pairs: list[tuple[str, str]], width: float) -> list:
    """Two-column label/value grid under an uppercase section title."""
    cells = [
        [Paragraph(escape(label), LABEL), Paragraph(escape(value), VALUE)]
        for label, value in pairs
    ]
    # Lay pairs out left/right: [l1 v1 | l2 v2]
    rows = []
    for i in range(0, len(cells), 2):
        left = cells[i]
        right = cells[i + 1] if i + 1 < len(cells) else ["", ""]
        rows.append([left[0], left[1], right[0], right[1]])
    grid = Table(rows, colWidths=[width * 0.18, width * 0.32, width * 0.18, width * 0.32], hAlign="LEFT")
    grid.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]))
    return [Paragraph(escape(title.upper()), SECTION), grid, Spacer(1, 8)]


def _totals_block(inv: Invoice, width: float) -> Table:
    rows = [
        ("Subtotal (Excl. Tax):", format_currency(inv.subtotal()), TOTAL),
        ("Sales Tax:", format_currency(inv.sales_tax_total()), TOTAL),
    ]
    if inv.discount_total() > 0:
        rows.append(("Discount:", f"- {format_currency(inv.discount_total())}", TOTAL))
    if inv.fed_total() > 0:
        rows.append(("FED Payable:", format_currency(inv.fed_total()), TOTAL))
    rows.append(("GRAND TOTAL:", format_currency(inv.grand_total()), GRAND))

    data = [[Paragraph(escape(label), style), Paragraph(escape(value), style)] for label, value, style in rows]
    t = Table(data, colWidths=[width - 130, 130], hAlign="RIGHT")
    t.setStyle(TableStyle([
        ("LINEABOVE", (0, 0), (-1, 0), 1.5, colors.black),
        ("LINEABOVE", (0, -1), (-1, -1), 1.5, colors.black),
        ("TOPPADDING", (0, -1), (-1, -1), 6),
    ]))
    return t


def _story(inv: Invoice, table: ProjectedTable, generated_dt: datetime) -> list:
    content_w = PAGE_W - 2 * MARGIN
    seller = inv.user
    buyer = inv.buyer
    story = []

    story += _info_block("Invoice Information", [
        ("FBR Invoice Number", _na(inv.fbr_invoice_number)),
        ("Invoice Date", _invoice_date_label(inv.invoice_date)),
        ("Reference Number", _na(inv.invoice_ref_no)),
        ("Invoice Type", _na(inv.invoice_type)),
    ], content_w)
    story += _info_block("Seller Information", [
        ("Business Name", _na(getattr(seller, "business_name", None))),
        ("Province", _na(getattr(seller, "province", None))),
        ("NTN/CNIC", _na(getattr(seller, "ntncnic", None))),
        ("Address", _na(getattr(seller, "address", None))),
    ], content_w)
    story += _info_block("Buyer Information", [
        ("Business Name", _na(getattr(buyer, "business_name", None))),
        ("Province", _na(getattr(buyer, "province", None))),
        ("NTN/CNIC", _na(getattr(buyer, "ntncnic", None))),
        ("Registration Type", _na(getattr(buyer, "registration_type", None))),
        ("Address", _na(getattr(buyer, "address", None))),
    ], content_w)

    story.append(Paragraph("INVOICE ITEMS", SECTION))
    story.append(build_items_table(table, content_w))
    story.append(Spacer(1, 12))
    story.append(_totals_block(inv, content_w))
    story.append(Spacer(1, 20))

    story.append(Paragraph(escape(f"Invoice generated by {Config.PDF_FOOTER_BRAND}"), FOOT))
    story.append(Paragraph(escape(f"Generated: {generated_dt.strftime('%m/%d/%y, %I:%M %p')}"), FOOT))
    return story


def _render(target, inv: Invoice, table: ProjectedTable, generated_dt: datetime) -> None:
    doc = SimpleDocTemplate(
        target,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=f"Invoice - {inv.display_number()}",
    )
    doc.build(_story(inv, table, generated_dt))


def invoice_items_table(session, inv: Invoice, layout=None) -> ProjectedTable:
    """The projected items table for an invoice, under its owner's print settings."""
    doc, catalog = layout if layout is not None else load_layout(session, inv.user_id)
    return project_table(doc, catalog, inv.items)


def _get_invoice(session, invoice_id: int) -> Invoice:
    inv = session.get(Invoice, invoice_id)
    if not inv:
        raise ValueError(f"Invoice not found: id={invoice_id}")
    return inv


def render_invoice_pdf(session, invoice_id: int) -> bytes:
    """Render an invoice PDF in memory."""
    inv = _get_invoice(session, invoice_id)
    table = invoice_items_table(session, inv)
    buf = io.BytesIO()
    _render(buf, inv, table, datetime.now())
    logger.info("Rendered PDF for invoice id=%s (%d columns, %d rows)", inv.id, len(table.header), len(table.rows))
    return buf.getvalue()


def generate_and_store_pdf(session, invoice_id: int, layout=None) -> str:
    """
    Generates (or regenerates) a PDF for the given invoice_id.
    Saves under EXPORTS_DIR/<year>/ and updates invoice.pdf_path + invoice.pdf_generated_at.

    layout: an already loaded (settings, catalog) pair, for callers rendering
    many invoices of one owner.

    Returns: absolute pdf path on disk.
    """
    inv = _get_invoice(session, invoice_id)
    table = invoice_items_table(session, inv, layout)

    generated_dt = datetime.now()
    year = (inv.invoice_date or "")[:4]
    if not (year.isdigit() and len(year) == 4):
        year = generated_dt.strftime("%Y")

    year_dir = os.path.join(Config.EXPORTS_DIR, year)
    os.makedirs(year_dir, exist_ok=True)
    pdf_filename = f"{_safe_filename(inv.display_number())}.pdf"
    pdf_path = os.path.abspath(os.path.join(year_dir, pdf_filename))

    _render(pdf_path, inv, table, generated_dt)

    # Update DB record
    inv.pdf_path = pdf_path
    # UTC, comparable with InvoicePrintSettings.updated_at
    inv.pdf_generated_at = datetime.utcnow()
    session.add(inv)
    session.commit()

    logger.info("Stored PDF for invoice id=%s at %s", inv.id, pdf_path)
    return pdf_path
