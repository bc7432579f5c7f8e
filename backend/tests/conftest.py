"""
Pytest fixtures for pharmapos backend tests.

Provides test database setup, branch/product fixtures, and test client.
"""

from datetime import date

import pytest
from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.models import Branch, Product, ProductBatch


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
        app.extensions["scan_sessions"].reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    """Create the main branch."""
    branch = Branch(name="Parami Main", code="MAIN")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Parami North", code="NORTH")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def paracetamol(db_session, branch):
    """
    Paracetamol with stock_level=150 and a single batch B001 of 100.

    The 50 unit gap is deliberate: aggregate and batch quantities drift.
    """
    product = Product(
        branch_id=branch.id,
        sku="8850123456789",
        gtin="08850123456789",
        name_en="Paracetamol 500mg",
        generic_name="Paracetamol",
        category="Analgesics",
        price_cents=500,
        unit="STRIP",
        stock_level=150,
        min_stock_level=50,
    )
    db_session.add(product)
    db_session.flush()
    db_session.add(ProductBatch(
        product_id=product.id,
        batch_number="B001",
        quantity=100,
        expiry_date=date(2025, 12, 31),
        cost_price_cents=300,
    ))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def amoxicillin(db_session, branch):
    """Prescription product without a GTIN (resolved by SKU only)."""
    product = Product(
        branch_id=branch.id,
        sku="AMOX-250",
        gtin=None,
        name_en="Amoxicillin 250mg",
        category="Antibiotics",
        price_cents=1500,
        unit="BOX",
        stock_level=20,
        min_stock_level=30,
        requires_prescription=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


def reload(model, pk):
    """Re-read a row, discarding anything cached in the session."""
    db.session.expire_all()
    return db.session.get(model, pk)


def batches_of(product_id: int) -> dict:
    db.session.expire_all()
    rows = db.session.query(ProductBatch).filter_by(product_id=product_id).all()
    return {b.batch_number: b for b in rows}


def operator_headers(name: str = "Aye Aye") -> dict:
    """Helper to create operator attribution headers."""
    return {'X-Operator-Name': name}
