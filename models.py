# models.py
from __future__ import annotations

import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    create_engine,
    String,
    Integer,
    Float,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    sessionmaker,
)

# -----------------------------
# SQLAlchemy base
# -----------------------------
class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


# -----------------------------
# Tables
# -----------------------------
class User(Base):
    """
    Seller account. Business fields are printed in the PDF seller block.
    api_token identifies API clients (Authorization: Bearer <token>).
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False, index=True)
    api_token: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True, index=True)

    business_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    ntncnic: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    province: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    address: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Buyer(Base):
    __tablename__ = "buyers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    ntncnic: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    business_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    province: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    address: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    registration_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Unregistered")


class CustomField(Base):
    """
    User-defined invoice item column. Deleting is a soft delete (is_active=False)
    so stored values survive; print settings may still reference the key.
    """
    __tablename__ = "custom_fields"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    field_type: Mapped[str] = mapped_column(String(16), nullable=False, default="text")  # text | number | date | textarea
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("buyers.id", ondelete="SET NULL"), nullable=True)

    invoice_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Sale Invoice")
    invoice_date: Mapped[str] = mapped_column(String(32), nullable=False, default="")  # YYYY-MM-DD
    invoice_ref_no: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    fbr_invoice_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    is_test_environment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Stored PDF (file path on disk)
    pdf_path: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    pdf_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship()
    buyer: Mapped[Optional["Buyer"]] = relationship()
    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    # Convenience totals (computed, not stored)
    def subtotal(self) -> float:
        return round(sum((i.value_sales_excluding_st or 0.0) for i in self.items), 2)

    def sales_tax_total(self) -> float:
        return round(sum((i.sales_tax_applicable or 0.0) for i in self.items), 2)

    def discount_total(self) -> float:
        return round(sum((i.discount or 0.0) for i in self.items), 2)

    def fed_total(self) -> float:
        return round(sum((i.fed_payable or 0.0) for i in self.items), 2)

    def grand_total(self) -> float:
        return round(self.subtotal() + self.sales_tax_total() - self.discount_total() + self.fed_total(), 2)

    def display_number(self) -> str:
        return self.fbr_invoice_number or self.invoice_ref_no or f"DRAFT-{self.id}"


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)

    hs_code: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    product_description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    rate: Mapped[str] = mapped_column(String(32), nullable=False, default="")  # e.g. "18%"
    uom: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_values: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    value_sales_excluding_st: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fixed_notified_value_or_retail_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sales_tax_applicable: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sales_tax_withheld_at_source: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    extra_tax: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    further_tax: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fed_payable: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sale_type: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    sro_schedule_no: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    sro_item_serial_no: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    invoice: Mapped["Invoice"] = relationship(back_populates="items")
    custom_field_values: Mapped[list["InvoiceItemCustomValue"]] = relationship(
        cascade="all, delete-orphan",
        order_by="InvoiceItemCustomValue.id",
    )


class InvoiceItemCustomValue(Base):
    __tablename__ = "invoice_item_custom_values"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("invoice_items.id", ondelete="CASCADE"), nullable=False, index=True)
    # No FK: values outlive hard-deleted custom fields
    custom_field_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    value: Mapped[str] = mapped_column(String(500), nullable=False, default="")


class InvoicePrintSettings(Base):
    """
    One row per user. Stores the settings document in its serialized form
    (field keys as strings). Missing row means "use the defaults".
    """
    __tablename__ = "invoice_print_settings"
    __table_args__ = (UniqueConstraint("user_id", name="uq_invoice_print_settings_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    visible_fields: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    column_widths: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    font_size: Mapped[str] = mapped_column(String(16), nullable=False, default="small")
    table_borders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    show_item_numbers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# -----------------------------
# Engine / Session factory
# -----------------------------
def make_engine(db_url: str, echo: bool = False):
    """
    Create SQLAlchemy engine.
    In-memory SQLite gets a StaticPool so every session sees the same database.
    """
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        from sqlalchemy.pool import StaticPool

        return create_engine(
            db_url,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(db_url, echo=echo, future=True)


def ensure_sqlite_dir(db_url: str) -> None:
    """Create the folder holding a file-backed SQLite database, wherever the URL points."""
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def active_custom_fields(session, user_id: int) -> list[CustomField]:
    """The custom-field provider: a user's active fields, oldest first."""
    return (
        session.query(CustomField)
        .filter(CustomField.user_id == user_id, CustomField.is_active.is_(True))
        .order_by(CustomField.created_at.asc(), CustomField.id.asc())
        .all()
    )
