# print_settings_cli.py
import argparse

from config import Config
from field_catalog import get_catalog, parse_field_key
from models import Base, make_engine, make_session_factory, active_custom_fields
from print_settings import PrintSettingsEditor, PrintSettingsError
from settings_store import SettingsStore


def _print_settings(editor: PrintSettingsEditor, out) -> None:
    doc = editor.draft
    source = "saved" if editor.has_stored_settings else "defaults"
    print(f"Print settings ({source}): font={doc.font_size} borders={doc.table_borders} "
          f"item_numbers={doc.show_item_numbers}", file=out)
    for pos, key in enumerate(doc.visible_fields, start=1):
        d = editor.catalog.get(key)
        label = d.label if d else "(deleted field)"
        bounds = f"[{d.min_width}-{d.max_width}]" if d else ""
        print(f"  {pos:>2}. {key.encode():<36} {label:<20} {doc.width_of(key):>3}% {bounds}", file=out)
    health = editor.health()
    print(f"Total width: {health.total}%" + (f"  ⚠ {health.message}" if not health.ok else "  ✓"), file=out)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect or edit a user's invoice print settings.")
    parser.add_argument("--user-id", type=int, required=True)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("show", help="Show the current column layout.")
    sub.add_parser("fields", help="List every available field.")

    p = sub.add_parser("toggle", help="Show or hide a field.")
    p.add_argument("key")

    p = sub.add_parser("width", help="Set a column width (percent).")
    p.add_argument("key")
    p.add_argument("width", type=int)
    p.add_argument("--clamp", action="store_true", help="Clamp to the field's bounds instead of failing.")

    p = sub.add_parser("move", help="Move a column from one position to another (1-based).")
    p.add_argument("from_pos", type=int)
    p.add_argument("to_pos", type=int)

    p = sub.add_parser("display", help="Change display options.")
    p.add_argument("--font-size", choices=("small", "medium", "large"))
    p.add_argument("--borders", dest="borders", action="store_true", default=None)
    p.add_argument("--no-borders", dest="borders", action="store_false")
    p.add_argument("--item-numbers", dest="item_numbers", action="store_true", default=None)
    p.add_argument("--no-item-numbers", dest="item_numbers", action="store_false")

    sub.add_parser("reset", help="Delete saved settings and go back to the defaults.")
    return parser


def run(argv, session_factory, out=None) -> int:
    args = build_parser().parse_args(argv)

    with session_factory() as s:
        catalog = get_catalog(active_custom_fields(s, args.user_id))
        editor = PrintSettingsEditor(
            SettingsStore(s, args.user_id),
            catalog,
            width_range=(Config.WIDTH_SUM_MIN, Config.WIDTH_SUM_MAX),
        )
        editor.open()

        try:
            if args.command == "show":
                _print_settings(editor, out)
                return 0

            if args.command == "fields":
                for category, fields in catalog.grouped():
                    print(f"{category.label}:", file=out)
                    for d in fields:
                        flag = " (required)" if d.required else ""
                        print(f"  {d.key.encode():<36} {d.label:<20} {d.min_width}-{d.max_width}%{flag}", file=out)
                return 0

            if args.command == "reset":
                editor.reset()
                _print_settings(editor, out)
                return 0

            if args.command == "toggle":
                editor.toggle(parse_field_key(args.key))
            elif args.command == "width":
                editor.set_width(parse_field_key(args.key), args.width, clamp=args.clamp)
            elif args.command == "move":
                drag = editor.start_reordering()
                editor.apply_order(drag.move(args.from_pos - 1, args.to_pos - 1))
            elif args.command == "display":
                editor.set_display(
                    font_size=args.font_size,
                    table_borders=args.borders,
                    show_item_numbers=args.item_numbers,
                )

            editor.save()
            _print_settings(editor, out)
            return 0

        except (PrintSettingsError, ValueError, IndexError) as e:
            print(f"Error: {e}", file=out)
            return 1


def main():
    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)
    raise SystemExit(run(None, make_session_factory(engine)))


if __name__ == "__main__":
    main()
