# settings_store.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from field_catalog import Catalog, get_catalog
from models import InvoicePrintSettings, active_custom_fields
from print_settings import (
    InvalidSettings,
    PersistenceFailure,
    SettingsDocument,
    default_settings,
    reconcile,
)

logger = logging.getLogger(__name__)


class SettingsStore:
    """
    Persistence for one user's print settings row.
    save() is an upsert of the whole document; delete() resets to defaults.
    """

    def __init__(self, session, user_id: int):
        self.session = session
        self.user_id = user_id

    def _row(self) -> Optional[InvoicePrintSettings]:
        return self.session.execute(
            select(InvoicePrintSettings).where(InvoicePrintSettings.user_id == self.user_id)
        ).scalar_one_or_none()

    def load(self) -> Optional[SettingsDocument]:
        try:
            row = self._row()
        except SQLAlchemyError as e:
            logger.exception("Loading print settings failed for user=%s", self.user_id)
            raise PersistenceFailure("Could not load print settings") from e
        if row is None:
            return None
        try:
            return SettingsDocument.from_dict({
                "visibleFields": row.visible_fields or [],
                "columnWidths": row.column_widths or {},
                "fontSize": row.font_size,
                "tableBorders": row.table_borders,
                "showItemNumbers": row.show_item_numbers,
            })
        except InvalidSettings:
            # Corrupt row: behave as if nothing is stored
            logger.warning("Ignoring unreadable print settings for user=%s", self.user_id)
            return None

    def save(self, doc: SettingsDocument) -> SettingsDocument:
        data = doc.to_dict()
        try:
            row = self._row()
            if row is None:
                row = InvoicePrintSettings(user_id=self.user_id)
                self.session.add(row)
            row.visible_fields = data["visibleFields"]
            row.column_widths = data["columnWidths"]
            row.font_size = data["fontSize"]
            row.table_borders = data["tableBorders"]
            row.show_item_numbers = data["showItemNumbers"]
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Saving print settings failed for user=%s", self.user_id)
            raise PersistenceFailure("Could not save print settings") from e
        logger.info("Saved print settings for user=%s (%d columns)", self.user_id, len(doc.visible_fields))
        return doc.copy()

    def updated_at(self) -> Optional[datetime]:
        """When the stored document last changed (UTC); None when nothing is stored."""
        try:
            row = self._row()
        except SQLAlchemyError as e:
            logger.exception("Loading print settings failed for user=%s", self.user_id)
            raise PersistenceFailure("Could not load print settings") from e
        return row.updated_at if row is not None else None

    def delete(self) -> None:
        try:
            row = self._row()
            if row is not None:
                self.session.delete(row)
                self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("Resetting print settings failed for user=%s", self.user_id)
            raise PersistenceFailure("Could not reset print settings") from e
        logger.info("Reset print settings for user=%s", self.user_id)


def load_layout(session, user_id: int) -> tuple[SettingsDocument, Catalog]:
    """
    The settings and catalog used to render a user's invoices: the stored
    document (or the defaults), reconciled against the current catalog.
    """
    catalog = get_catalog(active_custom_fields(session, user_id))
    stored = SettingsStore(session, user_id).load()
    doc = reconcile(stored if stored is not None else default_settings(), catalog)
    return doc, catalog
