"""
Pytest fixtures for stock ledger backend tests.

Provides test database setup, customer/product/order factories, and test client.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.ids import new_id
from stockledger.services import customer_service, inventory_service, settlement_service
from stockledger.services.settlement_service import OrderLineRequest, OrderRequest


JAN_1 = datetime(2024, 1, 1)
JAN_2 = datetime(2024, 1, 2)
JAN_15 = datetime(2024, 1, 15)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_CONFLICT_RETRY_BACKOFF': 0,
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
def customer(db_session):
    """Create a customer to place orders for."""
    return customer_service.create_customer("Maria", "Santos", "maria@example.com")


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory: make_product(batches=[(qty, unit_cost, purchase_date, supplier)], selling_price=...).

    Goes through inventory_service.create_product so opening stock gets its
    INITIAL_STOCK movements like real data.
    """
    def _make(batches=(), selling_price="100.00", name=None, sku=None):
        initial = [
            inventory_service.InitialBatch(
                quantity=b[0],
                unit_cost=Decimal(str(b[1])),
                purchase_date=b[2] if len(b) > 2 else JAN_1,
                supplier_name=b[3] if len(b) > 3 else "Acme",
            )
            for b in batches
        ]
        suffix = new_id()[:8]
        return inventory_service.create_product(
            name or f"Product {suffix}",
            sku or f"SKU-{suffix}",
            selling_price,
            initial_batches=initial,
        )

    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory: make_order(customer, [(product, qty), ...], **order fields) -> order id."""
    def _make(customer, lines, **kwargs):
        items = []
        for line in lines:
            product, qty = line[0], line[1]
            discount = Decimal(str(line[2])) if len(line) > 2 else Decimal("0")
            items.append(OrderLineRequest(product_id=product.id, quantity=qty, discount=discount))
        kwargs.setdefault("order_date", JAN_15)
        return settlement_service.settle_order(OrderRequest(customer_id=customer.id, items=items, **kwargs))

    return _make
