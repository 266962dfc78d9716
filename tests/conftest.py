# tests/conftest.py
"""
Pytest configuration and shared fixtures.

The environment is pinned before any ``primepickz`` import so Config picks
up a throwaway SQLite database and no live Meta, Resend or Stripe settings.
"""

import os
import tempfile
from decimal import Decimal

_TEST_DB_DIR = tempfile.mkdtemp(prefix="primepickz-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["SYNC_ENABLED"] = "true"
os.environ["META_ACCESS_TOKEN"] = ""
os.environ["META_CATALOG_ID"] = ""
os.environ["META_BUSINESS_ID"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["CRON_SECRET"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "admin-pass"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"

import pytest

from primepickz.config import Config
from primepickz.database import Base, SessionLocal, engine, init_db
from primepickz.models import Product
from primepickz.observability.metrics import reset_metrics
from primepickz.services.auth_service import generate_token, login_rate_limiter
from primepickz.services.meta_catalog_client import MetaApiResponse


class StubMetaClient:
    """In-memory stand-in for MetaCatalogClient."""

    def __init__(self, configured=True):
        self.configured = configured
        self.upsert_response = MetaApiResponse(success=True, data={"id": "meta-1"})
        self.delete_response = MetaApiResponse(success=True, data={"success": True})
        self.list_response = MetaApiResponse(success=True, data={"products": [], "has_more": False})
        self.verify_response = MetaApiResponse(success=True, data={"id": "cat-1", "name": "Main"})
        self.upserts = []
        self.deletes = []

    def validate_config(self):
        if self.configured:
            return True, []
        return False, ["META_ACCESS_TOKEN", "META_CATALOG_ID", "META_BUSINESS_ID"]

    def upsert_product(self, product):
        self.upserts.append(product)
        return self.upsert_response

    def delete_product(self, retailer_id):
        self.deletes.append(retailer_id)
        return self.delete_response

    def list_all_products(self, limit=250):
        return self.list_response

    def verify_catalog_access(self):
        return self.verify_response


class StubAlerting:
    def __init__(self):
        self.alerts = []
        self.summaries = []

    def send_sync_alert(self, alert):
        self.alerts.append(alert)
        return True

    def send_daily_sync_summary(self, summary):
        self.summaries.append(summary)
        return True


@pytest.fixture(scope="session")
def test_db():
    """Create the schema once for the whole session."""
    init_db()
    return engine, SessionLocal


@pytest.fixture
def db_session(test_db):
    """Fresh session per test; every table is emptied afterwards."""
    _, session_factory = test_db
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


@pytest.fixture(autouse=True)
def _reset_process_state():
    reset_metrics()
    login_rate_limiter.reset()
    yield


@pytest.fixture
def stub_client():
    return StubMetaClient()


@pytest.fixture
def stub_alerts():
    return StubAlerting()


@pytest.fixture
def make_product(db_session):
    def _make(**overrides):
        values = {
            "name": "Wireless Earbuds",
            "description": "Noise cancelling earbuds with charging case",
            "price": Decimal("49.99"),
            "category": "electronics",
            "image_url": "https://cdn.primepickz.com/earbuds.jpg",
            "in_stock": True,
            "stock_count": 10,
        }
        values.update(overrides)
        product = Product(**values)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def client(test_db):
    from primepickz.main import app

    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    token = generate_token("admin", Config.ADMIN_USERNAME, "admin")
    return {"Authorization": f"Bearer {token}"}
