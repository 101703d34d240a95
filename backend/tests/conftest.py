"""
Pytest fixtures for RRFC inventory ledger tests.

Provides test database setup, seeded catalog records, and a purchase helper.
"""

from datetime import date

import pytest

from rrfc import create_app
from rrfc.extensions import db
from rrfc.services import batch_service, catalog_service, ledger_service
from rrfc.services.ledger_service import TransactionDraft


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ITEM_LOCK_TIMEOUT_SECONDS': 2.0,
        'LOCK_BACKOFF_BASE': 0.01,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def admin(db_session):
    return catalog_service.create_user(email="admin@rrfc.local", role="admin", display_name="Admin")


@pytest.fixture(scope='function')
def manager(db_session):
    return catalog_service.create_user(email="manager@rrfc.local", role="manager")


@pytest.fixture(scope='function')
def clerk(db_session):
    """Plain 'user' role: may append, may not correct."""
    return catalog_service.create_user(email="clerk@rrfc.local", role="user")


@pytest.fixture(scope='function')
def vendor(db_session):
    return catalog_service.create_vendor(vendor_id="VEND-001", vendor_name="Riverside Supply")


@pytest.fixture(scope='function')
def item(db_session):
    return catalog_service.create_item(
        item_id="ITEM-001",
        item_type="Apparel",
        category="Shirts",
        name="Crew Tee",
        color="Navy",
        size="M",
        material="Cotton",
    )


@pytest.fixture(scope='function')
def other_item(db_session):
    return catalog_service.create_item(item_id="ITEM-002", item_type="Apparel", name="Hoodie")


@pytest.fixture(scope='function')
def batch(db_session, vendor):
    return batch_service.open_batch(vendor.id, date(2025, 1, 15), notes="January intake").batch


@pytest.fixture(scope='function')
def purchase(db_session, batch):
    """Append a Purchase into the shared batch: purchase(item_id, qty, price, shipping=0)."""

    def _purchase(item_id, quantity, unit_price, shipping=0, *, actor_id=None):
        return ledger_service.append(
            TransactionDraft(
                transaction_type="Purchase",
                item_id=item_id,
                quantity=quantity,
                unit_price=unit_price,
                shipping=shipping,
                batch_id=batch.id,
            ),
            actor_id=actor_id,
        )

    return _purchase
