"""
Pytest fixtures for branchstock backend tests.

Provides the in-memory test app, per-test table truncation, branch/product
factories and a file-backed app for threaded concurrency tests.
"""

from datetime import timedelta

import pytest

from branchstock import create_app
from branchstock.extensions import db
from branchstock.models import Branch, Product
from branchstock.services import inventory_service
from branchstock.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'STOCK_RETRY_BACKOFF': 0.0,
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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch_a(db_session):
    branch = Branch(code="NORTH", name="North Branch", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b(db_session):
    branch = Branch(code="SOUTH", name="South Branch", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory for products; opening stock is loaded through an INITIAL movement
    so the ledger always explains current_stock.
    """
    def _make(branch, code="SKU-001", *, stock=0, cost=1000, price=2000, threshold=5, occurred_at=None):
        product = Product(
            branch_id=branch.id,
            code=code,
            name=f"Product {code}",
            unit_cost_cents=cost,
            unit_price_cents=price,
            reorder_threshold=threshold,
            is_active=True,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            inventory_service.register_initial_stock(
                product_id=product.id,
                quantity=stock,
                occurred_at=occurred_at,
            )
        return product

    return _make


@pytest.fixture
def days_ago():
    """Business timestamps in the past, for window-based analytics."""
    now = utcnow()

    def _days_ago(days: float):
        return now - timedelta(days=days)

    return _days_ago


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """File-backed SQLite app; threads each open their own connection."""
    db_path = tmp_path / "concurrency.db"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'STOCK_RETRY_ATTEMPTS': 50,
        'STOCK_RETRY_BACKOFF': 0.001,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
