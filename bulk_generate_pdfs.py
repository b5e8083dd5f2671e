# bulk_generate_pdfs.py
import argparse
import os
from itertools import groupby
from pathlib import Path

from config import Config
from models import Base, make_engine, make_session_factory, Invoice
from pdf_service import generate_and_store_pdf
from print_settings import total_width, width_health
from settings_store import SettingsStore, load_layout


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bulk generate invoice PDFs with each owner's print settings.")
    parser.add_argument("--year", type=str, default="", help="Only invoices dated in a given year (YYYY).")
    parser.add_argument("--user-id", type=int, default=None, help="Only one user's invoices.")
    parser.add_argument("--all", action="store_true",
                        help="Regenerate every PDF, even when it is newer than the owner's print settings.")
    return parser


def _layout_summary(doc, catalog) -> str:
    shown = [k for k in doc.visible_fields if k in catalog]
    health = width_health(total_width(doc), Config.WIDTH_SUM_MIN, Config.WIDTH_SUM_MAX)
    line = f"{len(shown)} columns, {health.total}% wide, font={doc.font_size}"
    if len(shown) != len(doc.visible_fields):
        line += f", {len(doc.visible_fields) - len(shown)} deleted field(s) skipped"
    if not health.ok:
        line += "  ⚠ width total outside recommended range"
    return line


def _pdf_reason(inv: Invoice, settings_updated_at, regenerate_all: bool):
    """Why this invoice needs a (new) PDF, or None when the stored one is current."""
    if regenerate_all:
        return "forced"
    if not inv.pdf_path or not os.path.exists(inv.pdf_path):
        return "missing"
    if settings_updated_at and (inv.pdf_generated_at is None or inv.pdf_generated_at < settings_updated_at):
        return "layout changed"
    return None


def run(argv, session_factory, out=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    target_year = (args.year or "").strip()
    if target_year and not (target_year.isdigit() and len(target_year) == 4):
        parser.error("Year must be 4 digits, e.g. --year 2025")

    Path(Config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)

    with session_factory() as s:
        q = s.query(Invoice).order_by(Invoice.user_id.asc(), Invoice.created_at.asc(), Invoice.id.asc())
        if target_year:
            q = q.filter(Invoice.invoice_date.startswith(target_year))
        if args.user_id is not None:
            q = q.filter(Invoice.user_id == args.user_id)
        invoices = q.all()

        if not invoices:
            print("No invoices found for the given filter.", file=out)
            return 0

        total = len(invoices)
        position = generated = skipped = failed = 0

        for user_id, owned in groupby(invoices, key=lambda inv: inv.user_id):
            layout = load_layout(s, user_id)
            settings_updated_at = SettingsStore(s, user_id).updated_at()
            print(f"User {user_id}: {_layout_summary(*layout)}", file=out)

            for inv in owned:
                position += 1
                label = inv.display_number()
                try:
                    reason = _pdf_reason(inv, settings_updated_at, args.all)
                    if reason is None:
                        skipped += 1
                        print(f"[{position}/{total}] SKIP  {label} (PDF is current)", file=out)
                        continue

                    path = generate_and_store_pdf(s, inv.id, layout=layout)
                    generated += 1
                    print(f"[{position}/{total}] DONE  {label} ({reason}) -> {path}", file=out)

                except Exception as e:
                    s.rollback()
                    failed += 1
                    print(f"[{position}/{total}] FAIL  {label}  ({e})", file=out)

        print("\n✅ Bulk PDF generation complete.", file=out)
        print(f"Generated: {generated}", file=out)
        print(f"Skipped:   {skipped}", file=out)
        print(f"Failed:    {failed}", file=out)
        print(f"Exports:   {Config.EXPORTS_DIR}", file=out)
    return 1 if failed else 0


def main():
    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)
    raise SystemExit(run(None, make_session_factory(engine)))


if __name__ == "__main__":
    main()
