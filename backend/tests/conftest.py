"""
Pytest fixtures for tillpoint backend tests.

Provides test database setup, a small catalog (one fixed product and one
customizable template), registers, cashiers and a test client.
"""

import pytest
from tillpoint import create_app
from tillpoint.extensions import db
from tillpoint.models import (
    Cashier,
    CashRegister,
    Consumable,
    Product,
    ProductVariant,
    TemplateRecipe,
    TemplateZone,
    ZoneType,
)
from tillpoint.services import cash_session_service, catalog_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POS_TAX_RATE_BPS': 1900,
        'POS_ORDER_PREFIX': 'POS',
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


@pytest.fixture(scope='function')
def cashier(db_session):
    cashier = Cashier(name="Ana", email="ana@example.com", is_active=True)
    db_session.add(cashier)
    db_session.commit()
    return cashier


@pytest.fixture(scope='function')
def other_cashier(db_session):
    cashier = Cashier(name="Luis", email="luis@example.com", is_active=True)
    db_session.add(cashier)
    db_session.commit()
    return cashier


@pytest.fixture(scope='function')
def register(db_session):
    register = CashRegister(code="CAJA-01", name="Front Counter", location="Main Floor", is_active=True)
    db_session.add(register)
    db_session.commit()
    return register


@pytest.fixture(scope='function')
def other_register(db_session):
    register = CashRegister(code="CAJA-02", name="Back Counter", is_active=True)
    db_session.add(register)
    db_session.commit()
    return register


@pytest.fixture(scope='function')
def open_session(db_session, register, cashier):
    """OPEN session with a 50000 opening float."""
    return cash_session_service.open_session(register.id, cashier.id, 50000)


@pytest.fixture(scope='function')
def shirt(db_session):
    """Fixed product variant: price 20000, stock 2."""
    product = Product(name="Basic Tee", is_template=False, is_active=True)
    db_session.add(product)
    db_session.flush()
    variant = ProductVariant(
        product_id=product.id,
        sku="TEE-BLK-M",
        barcode="7701234567890",
        color="Black",
        size="M",
        price_cents=20000,
        stock=2,
        is_active=True,
    )
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def custom_tee(db_session):
    """
    Template variant priced 30000 with zones:
    - Front (dtf, 8000, required)
    - Back (dtf, 6000)
    - Left sleeve (embroidery, 4000)
    - Pocket (embroidery, 3000, blocked)

    Recipe per unit: 1 blank tee, 2 film sheets.
    """
    dtf = ZoneType(slug="dtf", name="DTF print")
    embroidery = ZoneType(slug="embroidery", name="Embroidery")
    product = Product(name="Custom Tee", is_template=True, is_active=True)
    db_session.add_all([dtf, embroidery, product])
    db_session.flush()

    db_session.add_all([
        TemplateZone(product_id=product.id, zone_type_id=dtf.id, name="Front", price_cents=8000,
                     is_required=True, sort_order=1),
        TemplateZone(product_id=product.id, zone_type_id=dtf.id, name="Back", price_cents=6000, sort_order=2),
        TemplateZone(product_id=product.id, zone_type_id=embroidery.id, name="Left sleeve", price_cents=4000,
                     sort_order=3),
        TemplateZone(product_id=product.id, zone_type_id=embroidery.id, name="Pocket", price_cents=3000,
                     is_blocked=True, sort_order=4),
    ])

    variant = ProductVariant(
        product_id=product.id,
        sku="CUSTOM-TEE-WHT-L",
        barcode="7709990001112",
        color="White",
        size="L",
        price_cents=30000,
        stock=0,
        is_active=True,
    )
    blank = Consumable(code="BLANK-WHT-L", name="Blank tee white L", unit="unit", stock=5)
    film = Consumable(code="DTF-FILM", name="DTF film sheet", unit="sheet", stock=10)
    db_session.add_all([variant, blank, film])
    db_session.flush()

    db_session.add_all([
        TemplateRecipe(variant_id=variant.id, consumable_id=blank.id, quantity=1),
        TemplateRecipe(variant_id=variant.id, consumable_id=film.id, quantity=2),
    ])
    db_session.commit()
    return variant


def zone_ids(variant, *names):
    """Template zone ids by name, in the order given."""
    by_name = {z.name: z.id for z in variant.product.zones}
    return [by_name[n] for n in names]


def unit_for(variant):
    return catalog_service.get_unit(variant.id)
