"""
Pytest fixtures for the billing backend tests.

Provides the app bound to in-memory SQLite, a clean database per test,
a small restaurant catalog, and identity header helpers.
"""

import pytest

from billing import create_app
from billing.extensions import db
from billing.models import (
    CompanyProfile,
    Customer,
    MenuItem,
    MenuItemIngredient,
    Product,
    Supplier,
)
from billing.services import company_service, inventory_service
from billing.services.concurrency import run_in_transaction
from billing.models.inventory import MOVEMENT_PURCHASE


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SELLER_STATE': 'Karnataka',
        'DEFAULT_TAX_RATE_BPS': 500,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def company(db_session):
    """Seller in Karnataka, 5% default GST, standard payment methods."""
    company_service.seed_payment_methods()
    profile = CompanyProfile(
        company_name="Spice Route",
        state="Karnataka",
        default_tax_rate_bps=500,
        tax_name="GST",
        enable_tax=True,
    )
    db_session.add(profile)
    db_session.commit()
    return profile


@pytest.fixture(scope='function')
def paneer(db_session):
    """Raw material tracked in grams."""
    product = Product(
        sku="RM-PANEER",
        name="Paneer",
        unit="g",
        type="raw_material",
        unit_price_cents=0,
        tax_rate_bps=500,
        reorder_level=500,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def capsicum(db_session):
    product = Product(
        sku="RM-CAPSICUM",
        name="Capsicum",
        unit="g",
        type="raw_material",
        unit_price_cents=0,
        tax_rate_bps=500,
        reorder_level=0,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def water_bottle(db_session):
    """Sellable product, 18% GST."""
    product = Product(
        sku="BEV-WATER-1L",
        name="Mineral Water 1L",
        unit="piece",
        type="product",
        hsn_code="2201",
        unit_price_cents=2000,
        tax_rate_bps=1800,
        reorder_level=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def paneer_tikka(db_session, company, paneer, capsicum):
    """Recipe dish: 200 g paneer + 50 g capsicum per portion, company default rate."""
    item = MenuItem(name="Paneer Tikka", category="Starters", price_cents=25000, tax_rate_bps=None)
    item.ingredients.append(MenuItemIngredient(product_id=paneer.id, quantity_required=200))
    item.ingredients.append(MenuItemIngredient(product_id=capsicum.id, quantity_required=50))
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def bottled_water(db_session, company, water_bottle):
    """Menu item mapped onto the water product (sold, not consumed)."""
    item = MenuItem(
        name="Bottled Water",
        category="Beverages",
        price_cents=3000,
        tax_rate_bps=1800,
        product_id=water_bottle.id,
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def local_customer(db_session):
    customer = Customer(name="Asha Rao", phone="9800000001", state="Karnataka")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def outstation_customer(db_session):
    customer = Customer(name="Vikram Shah", phone="9800000002", state="Maharashtra", gstin="27ABCDE1234F1Z5")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Fresh Dairy Co", phone="080-5550100", state="Karnataka")
    db_session.add(supplier)
    db_session.commit()
    return supplier


def stock_up(product_id: int, quantity: int) -> None:
    """Helper to receive opening stock through the ledger."""
    run_in_transaction(
        lambda: inventory_service.record_movement(product_id, MOVEMENT_PURCHASE, quantity, note="opening stock")
    )


def identity_headers(role: str = "sales_person", user_id: int = 1) -> dict:
    """Helper to create gateway identity headers."""
    return {'X-User-Id': str(user_id), 'X-User-Role': role}
