"""
conftest.py: shared pytest fixtures for the fabric inventory test suite.

Every test runs against a fresh in-memory SQLite database. The Shopify API
and the RabbitMQ bus are replaced by in-process fakes, so no network or
broker is needed.
"""

import os

# Must be set before fabric_inventory.config is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EVENT_BUS_ENABLED"] = "0"
os.environ["SHOPIFY_WEBHOOK_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fabric_inventory.database import Base, get_db
from fabric_inventory.exceptions import ShopifyError
from fabric_inventory.messaging.bus import get_event_bus
from fabric_inventory.models import Fabric
from fabric_inventory.settings import CostSettings
from fabric_inventory.shopify import get_shopify_client


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class RecordingBus:
    """Event publisher that keeps every event in memory."""

    def __init__(self):
        self.events = []

    def publish(self, routing_key, message):
        self.events.append((routing_key, message))

    def of(self, routing_key):
        return [message for key, message in self.events if key == routing_key]


class FakeShopifyClient:
    """
    Stand-in for ShopifyClient.

    requirements: product id -> raw metafield value
    failing:      product ids whose lookup raises ShopifyError
    """

    def __init__(self):
        self.requirements = {}
        self.failing = set()
        self.products = []
        self.orders = []
        self.webhooks = []
        self.requirement_calls = []

    def fetch_product_requirement(self, product_id):
        self.requirement_calls.append(product_id)
        if product_id in self.failing:
            raise ShopifyError(f"product {product_id} unavailable")
        return self.requirements.get(product_id)

    def fetch_products(self):
        return list(self.products)

    def fetch_orders(self, first=50):
        return self.orders[:first]

    def register_order_webhook(self, callback_url):
        if not callback_url.startswith("https://"):
            raise ShopifyError("Address protocol http:// is not supported")
        webhook = {"id": f"gid://shopify/WebhookSubscription/{len(self.webhooks) + 1}",
                   "topic": "ORDERS_CREATE",
                   "endpoint": {"callbackUrl": callback_url}}
        self.webhooks.append(webhook)
        return webhook

    def list_webhooks(self):
        return list(self.webhooks)

    def delete_webhook(self, webhook_id):
        self.webhooks = [w for w in self.webhooks if w["id"] != webhook_id]
        return webhook_id


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_fabric(db):
    """Insert a fabric directly, bypassing the lower-casing in add_fabric."""
    def _make(name, cost_per_meter=50.0, available_meters=100.0):
        fabric = Fabric(name=name, cost_per_meter=cost_per_meter, available_meters=available_meters)
        db.add(fabric)
        db.commit()
        db.refresh(fabric)
        return fabric
    return _make


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def shopify():
    return FakeShopifyClient()


@pytest.fixture
def cost_settings():
    """Defaults: print surcharge 25/m, low stock under 10m."""
    return CostSettings(print_cost_per_meter=25.0, low_stock_threshold=10.0)


@pytest.fixture
def client(session_factory, bus, shopify):
    from fabric_inventory.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_bus] = lambda: bus
    app.dependency_overrides[get_shopify_client] = lambda: shopify
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
