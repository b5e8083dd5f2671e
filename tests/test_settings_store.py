from __future__ import annotations

import pytest
from sqlalchemy.exc import SQLAlchemyError

from field_catalog import BuiltinKey, CustomKey
from models import CustomField, InvoicePrintSettings
from print_settings import PersistenceFailure, SettingsDocument, default_settings
from settings_store import SettingsStore, load_layout

DESC = BuiltinKey("productDescription")
QTY = BuiltinKey("quantity")


def test_load_returns_none_when_nothing_stored(session, user):
    assert SettingsStore(session, user.id).load() is None


def test_save_is_an_upsert(session, user):
    store = SettingsStore(session, user.id)
    store.save(SettingsDocument(visible_fields=[DESC], column_widths={DESC: 40}))
    store.save(SettingsDocument(visible_fields=[DESC, QTY], column_widths={DESC: 30, QTY: 10}, font_size="large"))

    assert session.query(InvoicePrintSettings).filter_by(user_id=user.id).count() == 1
    loaded = store.load()
    assert loaded.visible_fields == [DESC, QTY]
    assert loaded.column_widths == {DESC: 30, QTY: 10}
    assert loaded.font_size == "large"


def test_stored_row_uses_encoded_keys(session, user):
    SettingsStore(session, user.id).save(
        SettingsDocument(visible_fields=[DESC, CustomKey("abc123")], column_widths={DESC: 30, CustomKey("abc123"): 10})
    )
    row = session.query(InvoicePrintSettings).filter_by(user_id=user.id).one()
    assert row.visible_fields == ["productDescription", "customField_abc123"]
    assert row.column_widths == {"productDescription": 30, "customField_abc123": 10}


def test_delete_resets_to_defaults(session, user):
    store = SettingsStore(session, user.id)
    store.save(SettingsDocument(visible_fields=[DESC], column_widths={DESC: 40}))
    store.delete()
    assert store.load() is None

    doc, _ = load_layout(session, user.id)
    assert doc == default_settings()


def test_delete_without_row_is_harmless(session, user):
    SettingsStore(session, user.id).delete()


def test_corrupt_row_is_treated_as_missing(session, user):
    session.add(InvoicePrintSettings(user_id=user.id, visible_fields="not a list", column_widths={}))
    session.commit()
    assert SettingsStore(session, user.id).load() is None


def test_failed_commit_raises_persistence_failure(session, user, monkeypatch):
    store = SettingsStore(session, user.id)

    def broken_commit():
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(session, "commit", broken_commit)
    with pytest.raises(PersistenceFailure):
        store.save(default_settings())

    monkeypatch.undo()
    assert store.load() is None


def test_settings_are_per_user(session, user):
    SettingsStore(session, user.id).save(SettingsDocument(visible_fields=[DESC], column_widths={DESC: 40}))
    assert SettingsStore(session, user.id + 1).load() is None


def test_load_layout_reconciles_against_active_custom_fields(session, user):
    session.add(CustomField(id="lot1", user_id=user.id, field_name="Lot", field_type="text"))
    session.add(CustomField(id="old1", user_id=user.id, field_name="Old", field_type="text", is_active=False))
    session.commit()
    SettingsStore(session, user.id).save(
        SettingsDocument(visible_fields=[QTY, CustomKey("lot1")], column_widths={QTY: 10})
    )

    doc, catalog = load_layout(session, user.id)
    assert [d.key for d in catalog.custom_fields] == [CustomKey("lot1")]
    assert doc.visible_fields == [QTY, CustomKey("lot1"), DESC]
    assert doc.column_widths[CustomKey("lot1")] == 15
