from __future__ import annotations

import io

import pytest
from pypdf import PdfReader

from app import create_app
from models import CustomField, Invoice


@pytest.fixture()
def session(app_session):
    # user/invoice fixtures write into the app's database
    return app_session


def _save(client, auth, payload):
    return client.post("/v1/invoice-print-settings", json=payload, headers=auth)


# -----------------------------
# Auth
# -----------------------------
def test_requires_authentication(client):
    r = client.get("/v1/invoice-print-settings")
    assert r.status_code == 401
    assert r.get_json()["status"] == "error"


def test_bad_token_is_rejected(client, user):
    r = client.get("/v1/invoice-print-settings", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


def test_session_login_with_api_token(client, user):
    assert client.post("/login", json={"apiToken": "wrong"}).status_code == 401
    r = client.post("/login", json={"apiToken": "test-token"})
    assert r.status_code == 200
    assert client.get("/v1/invoice-print-settings").status_code == 200
    client.post("/logout")
    assert client.get("/v1/invoice-print-settings").status_code == 401


# -----------------------------
# Print settings
# -----------------------------
def test_get_returns_null_and_defaults_when_nothing_saved(client, auth, user):
    data = client.get("/v1/invoice-print-settings", headers=auth).get_json()["data"]
    assert data["printSettings"] is None
    assert data["defaultSettings"]["visibleFields"][1] == "productDescription"
    assert sum(data["defaultSettings"]["columnWidths"].values()) == 100


def test_save_then_get(client, auth, user):
    payload = {
        "visibleFields": ["productDescription", "quantity"],
        "columnWidths": {"productDescription": 40, "quantity": 10},
        "fontSize": "medium",
        "tableBorders": False,
        "showItemNumbers": True,
    }
    r = _save(client, auth, payload)
    assert r.status_code == 200
    body = r.get_json()
    assert body["data"]["totalWidth"] == 50
    assert "50%" in body["warning"]

    stored = client.get("/v1/invoice-print-settings", headers=auth).get_json()["data"]["printSettings"]
    assert stored == payload


def test_save_without_warning_when_total_is_healthy(client, auth, user):
    defaults = client.get("/v1/invoice-print-settings", headers=auth).get_json()["data"]["defaultSettings"]
    body = _save(client, auth, defaults).get_json()
    assert "warning" not in body
    assert body["data"]["totalWidth"] == 100


def test_save_appends_missing_required_field(client, auth, user):
    r = _save(client, auth, {"visibleFields": ["quantity"], "columnWidths": {"quantity": 10}})
    saved = r.get_json()["data"]["printSettings"]
    assert saved["visibleFields"] == ["quantity", "productDescription"]
    assert saved["columnWidths"]["productDescription"] == 25


def test_save_rejects_out_of_range_width(client, auth, user):
    r = _save(client, auth, {
        "visibleFields": ["productDescription", "quantity"],
        "columnWidths": {"productDescription": 40, "quantity": 30},
    })
    assert r.status_code == 400
    body = r.get_json()
    assert body["field"] == "quantity"
    assert (body["minWidth"], body["maxWidth"]) == (5, 20)
    assert client.get("/v1/invoice-print-settings", headers=auth).get_json()["data"]["printSettings"] is None


@pytest.mark.parametrize("payload", [
    {"visibleFields": "quantity"},
    {"fontSize": "tiny"},
    {"columnWidths": {"quantity": "wide"}},
])
def test_save_rejects_malformed_documents(client, auth, user, payload):
    assert _save(client, auth, payload).status_code == 400


def test_reset_deletes_saved_settings(client, auth, user):
    _save(client, auth, {"visibleFields": ["productDescription"], "columnWidths": {"productDescription": 40}})
    r = client.delete("/v1/invoice-print-settings", headers=auth)
    assert r.status_code == 200
    assert r.get_json()["data"]["defaultSettings"]["fontSize"] == "small"
    assert client.get("/v1/invoice-print-settings", headers=auth).get_json()["data"]["printSettings"] is None


def test_available_fields_include_active_custom_fields(client, auth, custom_field):
    data = client.get("/v1/invoice-print-settings/available-fields", headers=auth).get_json()["data"]
    assert len(data["fields"]) == 17
    assert [f["key"] for f in data["customFields"]] == ["customField_abc123"]
    assert data["categories"][-1]["key"] == "custom"


def test_preview_projects_a_draft_without_saving(client, auth, custom_field):
    r = client.post("/v1/invoice-print-settings/preview", headers=auth, json={
        "visibleFields": ["customField_abc123", "productDescription"],
        "columnWidths": {"customField_abc123": 10, "productDescription": 30},
        "showItemNumbers": False,
    })
    data = r.get_json()
    assert [c["key"] for c in data["data"]["header"]] == ["customField_abc123", "productDescription"]
    assert data["data"]["rows"][0][0]["value"] == "Sample Batch No"
    assert "warning" in data
    assert client.get("/v1/invoice-print-settings", headers=auth).get_json()["data"]["printSettings"] is None


# -----------------------------
# Custom fields
# -----------------------------
def test_custom_field_lifecycle(client, auth, user, app_session):
    r = client.post("/v1/custom-fields", headers=auth, json={"fieldName": "Lot", "fieldType": "number"})
    assert r.status_code == 201
    field_id = r.get_json()["data"]["customField"]["id"]

    r = client.put(f"/v1/custom-fields/{field_id}", headers=auth, json={"fieldName": "Lot No"})
    assert r.get_json()["data"]["customField"]["fieldName"] == "Lot No"

    listed = client.get("/v1/custom-fields", headers=auth).get_json()
    assert listed["results"] == 1

    assert client.delete(f"/v1/custom-fields/{field_id}", headers=auth).status_code == 200
    assert client.get("/v1/custom-fields", headers=auth).get_json()["results"] == 0
    inactive = client.get("/v1/custom-fields?includeInactive=1", headers=auth).get_json()["data"]["customFields"]
    assert inactive[0]["isActive"] is False

    client.delete(f"/v1/custom-fields/{field_id}?hardDelete=1", headers=auth)
    app_session.expire_all()
    assert app_session.get(CustomField, field_id) is None


def test_custom_field_validation(client, auth, user):
    assert client.post("/v1/custom-fields", headers=auth, json={"fieldName": " "}).status_code == 400
    assert client.post("/v1/custom-fields", headers=auth, json={"fieldName": "X", "fieldType": "blob"}).status_code == 400
    assert client.put("/v1/custom-fields/missing", headers=auth, json={}).status_code == 404


def test_deleting_custom_field_keeps_saved_key_but_drops_column(client, auth, invoice):
    _save(client, auth, {
        "visibleFields": ["productDescription", "customField_abc123"],
        "columnWidths": {"productDescription": 40, "customField_abc123": 15},
    })
    client.delete("/v1/custom-fields/abc123", headers=auth)

    stored = client.get("/v1/invoice-print-settings", headers=auth).get_json()["data"]["printSettings"]
    assert "customField_abc123" in stored["visibleFields"]

    table = client.get(f"/invoices/{invoice.id}/items-table", headers=auth).get_json()["data"]
    assert [c["key"] for c in table["header"]] == ["itemNumber", "productDescription"]


# -----------------------------
# Invoice preview / PDF
# -----------------------------
def test_html_preview_and_pdf_share_columns(client, auth, invoice):
    _save(client, auth, {
        "visibleFields": ["customField_abc123", "productDescription", "totalValues"],
        "columnWidths": {"customField_abc123": 15, "productDescription": 40, "totalValues": 18},
        "showItemNumbers": False,
    })
    html = client.get(f"/invoices/{invoice.id}/preview", headers=auth).get_data(as_text=True)
    assert 'data-key="customField_abc123"' in html
    assert 'data-key="hsCode"' not in html
    assert "B-77" in html
    assert "Rs. 178,356.71" in html

    r = client.get(f"/invoices/{invoice.id}/pdf", headers=auth)
    assert r.mimetype == "application/pdf"
    text = PdfReader(io.BytesIO(r.data)).pages[0].extract_text()
    assert "BATCH NO" in text and "B-77" in text
    assert "HS CODE" not in text


def test_invoice_of_another_user_is_not_found(client, auth, invoice, app_session):
    other = Invoice(user_id=invoice.user_id + 1, invoice_date="2025-01-01")
    app_session.add(other)
    app_session.commit()
    assert client.get(f"/invoices/{other.id}/preview", headers=auth).status_code == 404
    assert client.get(f"/invoices/{other.id}/pdf", headers=auth).status_code == 404


def test_generate_then_download_pdf(client, auth, invoice):
    assert client.get(f"/invoices/{invoice.id}/pdf/download", headers=auth).status_code == 404

    r = client.post(f"/invoices/{invoice.id}/pdf/generate", headers=auth)
    assert r.status_code == 200
    assert r.get_json()["data"]["pdfPath"].endswith("FBR-2025-0001.pdf")

    r = client.get(f"/invoices/{invoice.id}/pdf/download", headers=auth)
    assert r.status_code == 200
    assert r.data.startswith(b"%PDF")
    assert "attachment" in r.headers["Content-Disposition"]


def test_orphan_width_is_not_stored_and_resets_when_field_returns(client, auth, custom_field):
    client.delete("/v1/custom-fields/abc123", headers=auth)
    r = _save(client, auth, {
        "visibleFields": ["productDescription", "customField_abc123"],
        "columnWidths": {"productDescription": 30, "customField_abc123": -500},
    })
    assert r.status_code == 200
    saved = r.get_json()["data"]["printSettings"]
    assert saved["visibleFields"] == ["productDescription", "customField_abc123"]
    assert saved["columnWidths"] == {"productDescription": 30}

    client.put("/v1/custom-fields/abc123", headers=auth, json={"isActive": True})
    data = client.post("/v1/invoice-print-settings/preview", headers=auth).get_json()["data"]
    widths = {c["key"]: c["widthPercent"] for c in data["header"]}
    assert widths["customField_abc123"] == 15


def test_preview_of_empty_draft_does_not_fall_back_to_saved(client, auth, user):
    _save(client, auth, {
        "visibleFields": ["hsCode", "productDescription"],
        "columnWidths": {"hsCode": 10, "productDescription": 40},
    })
    data = client.post("/v1/invoice-print-settings/preview", headers=auth, json={}).get_json()["data"]
    assert [c["key"] for c in data["header"]] == ["itemNumber", "productDescription"]
    assert data["header"][1]["widthPercent"] == 25

    assert client.post("/v1/invoice-print-settings/preview", headers=auth, json=[]).status_code == 400


@pytest.mark.parametrize("method, path", [
    ("post", "/v1/custom-fields"),
    ("put", "/v1/custom-fields/abc123"),
    ("post", "/login"),
])
def test_non_object_json_body_is_a_bad_request(client, auth, custom_field, method, path):
    r = getattr(client, method)(path, headers=auth, json=["fieldName", "Lot"])
    assert r.status_code == 400
    assert r.get_json()["status"] == "error"


def test_sqlite_folder_is_created_next_to_the_database(tmp_path, monkeypatch):
    elsewhere = tmp_path / "cwd"
    elsewhere.mkdir()
    monkeypatch.chdir(elsewhere)
    db_file = tmp_path / "data" / "instance" / "app.db"

    create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_file.as_posix()}",
        "EXPORTS_DIR": (tmp_path / "exports").as_posix(),
        "LOG_LEVEL": "WARNING",
    })
    assert db_file.exists()
    assert not (elsewhere / "instance").exists()
