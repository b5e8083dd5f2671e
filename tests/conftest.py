from __future__ import annotations

import pytest

from app import create_app
from config import Config
from models import (
    Buyer, CustomField, Invoice, InvoiceItem, InvoiceItemCustomValue, User,
    make_engine, make_session_factory, Base,
)

API_TOKEN = "test-token"


@pytest.fixture()
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    return make_session_factory(engine)


@pytest.fixture()
def session(session_factory):
    with session_factory() as s:
        yield s


@pytest.fixture()
def user(session) -> User:
    u = User(
        username="seller",
        api_token=API_TOKEN,
        business_name="Saad Traders",
        ntncnic="1234567",
        province="Punjab",
        address="12 Mall Road, Lahore",
    )
    session.add(u)
    session.commit()
    return u


@pytest.fixture()
def custom_field(session, user) -> CustomField:
    cf = CustomField(id="abc123", user_id=user.id, field_name="Batch No", field_type="text")
    session.add(cf)
    session.commit()
    return cf


@pytest.fixture()
def invoice(session, user, custom_field) -> Invoice:
    buyer = Buyer(
        user_id=user.id,
        ntncnic="7654321",
        business_name="Khan Electronics",
        province="Sindh",
        address="Shop 4, Saddar, Karachi",
        registration_type="Registered",
    )
    session.add(buyer)
    session.flush()

    inv = Invoice(
        user_id=user.id,
        buyer_id=buyer.id,
        invoice_type="Sale Invoice",
        invoice_date="2025-03-14",
        invoice_ref_no="REF-001",
        fbr_invoice_number="FBR-2025-0001",
    )
    first = InvoiceItem(
        hs_code="8471.3010",
        product_description="Laptop computer",
        rate="18%",
        uom="Numbers, pieces, units",
        quantity=2,
        value_sales_excluding_st=150000,
        sales_tax_applicable=27000,
        total_values=177000,
    )
    first.custom_field_values.append(InvoiceItemCustomValue(custom_field_id=custom_field.id, value="B-77"))
    second = InvoiceItem(
        hs_code="8471.6060",
        product_description="Wireless mouse",
        rate="18%",
        uom="Numbers, pieces, units",
        quantity=1.5,
        value_sales_excluding_st=1234.5,
        sales_tax_applicable=222.21,
        total_values=1456.71,
        discount=100,
    )
    inv.items.extend([first, second])
    session.add(inv)
    session.commit()
    return inv


@pytest.fixture()
def app(tmp_path, monkeypatch):
    exports = tmp_path / "exports"
    monkeypatch.setattr(Config, "EXPORTS_DIR", exports.as_posix())
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "EXPORTS_DIR": exports.as_posix(),
        "LOG_LEVEL": "WARNING",
    })
    return app


@pytest.fixture()
def app_session(app):
    with app.extensions["session_factory"]() as s:
        yield s


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def auth():
    return {"Authorization": f"Bearer {API_TOKEN}"}
