# app.py
import io
import logging
import os
from pathlib import Path

from flask import (
    Flask, render_template, request, jsonify, send_file, abort
)
from flask_login import (
    LoginManager, UserMixin, login_user, logout_user,
    login_required, current_user
)
from sqlalchemy.orm import selectinload

from config import Config
from field_catalog import format_currency, get_catalog
from models import (
    Base, make_engine, make_session_factory, active_custom_fields, ensure_sqlite_dir,
    User, CustomField, Invoice, InvoiceItem
)
from pdf_service import generate_and_store_pdf, invoice_items_table, render_invoice_pdf
from print_settings import (
    InvalidSettings, OutOfRangeWidth, PersistenceFailure, PrintSettingsError,
    SettingsDocument, default_settings, reconcile, total_width, validate_for_save, width_health
)
from render_projection import project_table, sample_items
from settings_store import SettingsStore

logger = logging.getLogger(__name__)

login_manager = LoginManager()

FIELD_TYPES = ("text", "number", "date", "textarea")


# -----------------------------
# Flask-Login user wrapper
# -----------------------------
class AppUser(UserMixin):
    def __init__(self, user_id: int, username: str):
        self.id = str(user_id)
        self.username = username


# -----------------------------
# Helpers
# -----------------------------
def _current_user_id_int() -> int:
    try:
        return int(current_user.get_id())
    except (TypeError, ValueError):
        return -1


def _ok(data, status: int = 200, **extra):
    body = {"status": "success", "data": data}
    body.update({k: v for k, v in extra.items() if v is not None})
    return jsonify(body), status


def _error(message: str, status: int, **extra):
    body = {"status": "error", "message": message}
    body.update(extra)
    return jsonify(body), status


def _json_object():
    """The JSON body as a dict: {} when there is none, None when it is not an object."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def _bool_arg(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


def _ensure_dirs(app):
    ensure_sqlite_dir(app.config["SQLALCHEMY_DATABASE_URI"])
    Path(app.config["EXPORTS_DIR"]).mkdir(parents=True, exist_ok=True)


def _custom_field_dict(cf: CustomField) -> dict:
    return {
        "id": cf.id,
        "fieldName": cf.field_name,
        "fieldType": cf.field_type,
        "isActive": cf.is_active,
        "createdAt": cf.created_at.isoformat() if cf.created_at else None,
    }


def _invoice_owned_or_404(session, invoice_id: int) -> Invoice:
    inv = (
        session.query(Invoice)
        .options(
            selectinload(Invoice.items).selectinload(InvoiceItem.custom_field_values),
            selectinload(Invoice.user),
            selectinload(Invoice.buyer),
        )
        .filter(Invoice.id == invoice_id, Invoice.user_id == _current_user_id_int())
        .first()
    )
    if not inv:
        abort(404)
    return inv


# -----------------------------
# App factory
# -----------------------------
def create_app(overrides: dict | None = None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    _ensure_dirs(app)

    app.jinja_env.filters["currency"] = format_currency
    login_manager.init_app(app)

    engine = make_engine(app.config["SQLALCHEMY_DATABASE_URI"], echo=app.config["SQLALCHEMY_ECHO"])
    Base.metadata.create_all(engine)

    SessionLocal = make_session_factory(engine)
    app.extensions["session_factory"] = SessionLocal

    def db_session():
        return SessionLocal()

    width_range = (app.config["WIDTH_SUM_MIN"], app.config["WIDTH_SUM_MAX"])

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            uid = int(user_id)
        except (TypeError, ValueError):
            return None
        with db_session() as s:
            u = s.get(User, uid)
            if not u:
                return None
            return AppUser(u.id, u.username)

    @login_manager.request_loader
    def load_user_from_request(req):
        # API clients: Authorization: Bearer <api_token>
        auth = req.headers.get("Authorization") or ""
        if not auth.lower().startswith("bearer "):
            return None
        token = auth[7:].strip()
        if not token:
            return None
        with db_session() as s:
            u = s.query(User).filter(User.api_token == token).first()
            if not u:
                return None
            return AppUser(u.id, u.username)

    @login_manager.unauthorized_handler
    def unauthorized():
        return _error("Authentication required", 401)

    # -----------------------------
    # Error mapping
    # -----------------------------
    @app.errorhandler(PrintSettingsError)
    def handle_print_settings_error(e):
        if isinstance(e, OutOfRangeWidth):
            return _error(
                str(e), 400,
                field=e.key.encode(), minWidth=e.min_width, maxWidth=e.max_width,
            )
        if isinstance(e, InvalidSettings):
            return _error(str(e), 400)
        if isinstance(e, PersistenceFailure):
            return _error(str(e), 503)
        return _error(str(e), 500)

    # -----------------------------
    # Session login (browser)
    # -----------------------------
    @app.route("/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True)
        if payload is None:
            payload = request.form
        elif not isinstance(payload, dict):
            return _error("Request body must be a JSON object", 400)
        token = (payload.get("apiToken") or "").strip()
        with db_session() as s:
            u = s.query(User).filter(User.api_token == token).first() if token else None
            if not u:
                return _error("Invalid API token", 401)
            login_user(AppUser(u.id, u.username))
        return _ok({"username": u.username})

    @app.route("/logout", methods=["POST"])
    @login_required
    def logout():
        logout_user()
        return _ok(None)

    # -----------------------------
    # Print settings
    # -----------------------------
    @app.route("/v1/invoice-print-settings", methods=["GET"])
    @login_required
    def print_settings_get():
        with db_session() as s:
            stored = SettingsStore(s, _current_user_id_int()).load()
        return _ok({
            "printSettings": stored.to_dict() if stored is not None else None,
            "defaultSettings": default_settings().to_dict(),
        })

    @app.route("/v1/invoice-print-settings", methods=["POST"])
    @login_required
    def print_settings_save():
        doc = SettingsDocument.from_dict(request.get_json(silent=True))
        uid = _current_user_id_int()
        with db_session() as s:
            catalog = get_catalog(active_custom_fields(s, uid))
            doc = validate_for_save(doc, catalog)
            saved = SettingsStore(s, uid).save(doc)

        health = width_health(total_width(saved), *width_range)
        if not health.ok:
            logger.info("Print settings saved with width warning for user=%s: %s%%", uid, health.total)
        return _ok(
            {"printSettings": saved.to_dict(), "totalWidth": health.total},
            warning=health.message,
        )

    @app.route("/v1/invoice-print-settings", methods=["DELETE"])
    @login_required
    def print_settings_reset():
        with db_session() as s:
            SettingsStore(s, _current_user_id_int()).delete()
        return _ok({"defaultSettings": default_settings().to_dict()})

    @app.route("/v1/invoice-print-settings/available-fields", methods=["GET"])
    @login_required
    def print_settings_available_fields():
        with db_session() as s:
            catalog = get_catalog(active_custom_fields(s, _current_user_id_int()))
        return _ok(catalog.to_dict())

    @app.route("/v1/invoice-print-settings/preview", methods=["POST"])
    @login_required
    def print_settings_preview():
        """Sample table for an unsaved draft (or the current settings when no body is sent)."""
        payload = request.get_json(silent=True)
        uid = _current_user_id_int()
        with db_session() as s:
            catalog = get_catalog(active_custom_fields(s, uid))
            if payload is not None:
                draft = SettingsDocument.from_dict(payload)
            else:
                draft = SettingsStore(s, uid).load() or default_settings()
        draft = reconcile(draft, catalog)
        table = project_table(draft, catalog, sample_items(catalog))
        health = width_health(total_width(draft), *width_range)
        return _ok(table.to_dict(), warning=health.message)

    # -----------------------------
    # Custom fields
    # -----------------------------
    @app.route("/v1/custom-fields", methods=["GET"])
    @login_required
    def custom_fields_list():
        uid = _current_user_id_int()
        with db_session() as s:
            if _bool_arg("includeInactive"):
                fields = (
                    s.query(CustomField)
                    .filter(CustomField.user_id == uid)
                    .order_by(CustomField.created_at.asc(), CustomField.id.asc())
                    .all()
                )
            else:
                fields = active_custom_fields(s, uid)
            out = [_custom_field_dict(cf) for cf in fields]
        return _ok({"customFields": out}, results=len(out))

    @app.route("/v1/custom-fields", methods=["POST"])
    @login_required
    def custom_fields_create():
        payload = _json_object()
        if payload is None:
            return _error("Request body must be a JSON object", 400)
        name = (payload.get("fieldName") or "").strip()
        field_type = (payload.get("fieldType") or "text").strip()
        if not name:
            return _error("fieldName is required", 400)
        if field_type not in FIELD_TYPES:
            return _error(f"fieldType must be one of {', '.join(FIELD_TYPES)}", 400)

        with db_session() as s:
            cf = CustomField(user_id=_current_user_id_int(), field_name=name, field_type=field_type)
            s.add(cf)
            s.commit()
            out = _custom_field_dict(cf)
        logger.info("Created custom field %s (%s)", out["id"], name)
        return _ok({"customField": out}, 201)

    @app.route("/v1/custom-fields/<field_id>", methods=["PUT"])
    @login_required
    def custom_fields_update(field_id):
        payload = _json_object()
        if payload is None:
            return _error("Request body must be a JSON object", 400)
        with db_session() as s:
            cf = s.get(CustomField, field_id)
            if not cf or cf.user_id != _current_user_id_int():
                abort(404)
            if "fieldName" in payload:
                name = (payload.get("fieldName") or "").strip()
                if not name:
                    return _error("fieldName is required", 400)
                cf.field_name = name
            if "fieldType" in payload:
                if payload["fieldType"] not in FIELD_TYPES:
                    return _error(f"fieldType must be one of {', '.join(FIELD_TYPES)}", 400)
                cf.field_type = payload["fieldType"]
            if "isActive" in payload:
                cf.is_active = bool(payload["isActive"])
            s.commit()
            out = _custom_field_dict(cf)
        return _ok({"customField": out})

    @app.route("/v1/custom-fields/<field_id>", methods=["DELETE"])
    @login_required
    def custom_fields_delete(field_id):
        with db_session() as s:
            cf = s.get(CustomField, field_id)
            if not cf or cf.user_id != _current_user_id_int():
                abort(404)
            if _bool_arg("hardDelete"):
                s.delete(cf)
            else:
                cf.is_active = False
            s.commit()
        # Print settings referencing this field keep the key; rendering skips it
        return _ok(None)

    # -----------------------------
    # Invoice preview / PDF (scoped)
    # -----------------------------
    @app.route("/invoices/<int:invoice_id>/preview")
    @login_required
    def invoice_preview(invoice_id):
        with db_session() as s:
            inv = _invoice_owned_or_404(s, invoice_id)
            table = invoice_items_table(s, inv)
            return render_template("invoice_preview.html", inv=inv, table=table)

    @app.route("/invoices/<int:invoice_id>/items-table")
    @login_required
    def invoice_items_json(invoice_id):
        with db_session() as s:
            inv = _invoice_owned_or_404(s, invoice_id)
            table = invoice_items_table(s, inv)
        return _ok(table.to_dict())

    @app.route("/invoices/<int:invoice_id>/pdf")
    @login_required
    def invoice_pdf(invoice_id):
        with db_session() as s:
            inv = _invoice_owned_or_404(s, invoice_id)
            pdf_bytes = render_invoice_pdf(s, inv.id)
            filename = f"invoice-{inv.display_number()}.pdf"
        return send_file(
            io.BytesIO(pdf_bytes),
            as_attachment=_bool_arg("download"),
            download_name=filename,
            mimetype="application/pdf",
        )

    @app.route("/invoices/<int:invoice_id>/pdf/generate", methods=["POST"])
    @login_required
    def invoice_pdf_generate(invoice_id):
        with db_session() as s:
            _invoice_owned_or_404(s, invoice_id)
            path = generate_and_store_pdf(s, invoice_id)
        return _ok({"pdfPath": path})

    @app.route("/invoices/<int:invoice_id>/pdf/download")
    @login_required
    def invoice_pdf_download(invoice_id):
        with db_session() as s:
            inv = _invoice_owned_or_404(s, invoice_id)
            if not inv.pdf_path or not os.path.exists(inv.pdf_path):
                return _error("PDF not found. Generate it first.", 404)

            return send_file(
                inv.pdf_path,
                as_attachment=True,
                download_name=os.path.basename(inv.pdf_path),
                mimetype="application/pdf"
            )

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
