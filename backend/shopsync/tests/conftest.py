"""Pytest configuration for shopsync tests

WHAT: Shared fixtures for service, worker and HTTP endpoint tests
WHY: Every test gets an isolated in-memory database, explicit settings and
     pre-committed tenant/shop rows (the ledger and full sync commit and
     roll back on their own, so fixture rows must already be durable)
REFERENCES:
    - shopsync/main.py: FastAPI application
    - shopsync/database.py: Database configuration
    - shopsync/deps.py: Settings and dependency providers
"""

import os
import sys
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure backend is in path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment
# Must be URL-safe base64-encoded 32-byte string (shopsync.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-shopify-secret")
os.environ.setdefault("INTERNAL_API_TOKEN", "test-internal-token")

SHOPIFY_SECRET = "test-shopify-secret"
INTERNAL_TOKEN = "test-internal-token"
SHOP_DOMAIN = "acme.myshopify.com"
OTHER_SHOP_DOMAIN = "globex.myshopify.com"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine."""
    # StaticPool: TestClient runs the app in another thread, it must see the same DB
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from shopsync.models import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    """Create test database session."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Settings Fixtures
# ============================================================================

@pytest.fixture
def settings():
    """Explicit settings, independent of any local .env file."""
    from shopsync.deps import Settings

    return Settings(
        _env_file=None,
        SHOPIFY_API_KEY="test-api-key",
        SHOPIFY_API_SECRET=SHOPIFY_SECRET,
        INTERNAL_API_TOKEN=INTERNAL_TOKEN,
        WEBHOOK_HMAC_BYPASS=False,
        DEV_FAKE_SHOPIFY=False,
        WEBHOOK_QUEUE_MODE="inline",
        QUEUE_BACKEND="memory",
    )


@pytest.fixture
def verifier():
    from shopsync.services.hmac_verifier import WebhookVerifier

    return WebhookVerifier(SHOPIFY_SECRET)


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def tenant(test_db_session):
    """Create test tenant."""
    from shopsync.models import Tenant

    tenant = Tenant(name="Acme Corp")
    test_db_session.add(tenant)
    test_db_session.commit()
    test_db_session.refresh(tenant)
    return tenant


@pytest.fixture
def other_tenant(test_db_session):
    """Create second test tenant (for isolation tests)."""
    from shopsync.models import Tenant

    tenant = Tenant(name="Globex")
    test_db_session.add(tenant)
    test_db_session.commit()
    test_db_session.refresh(tenant)
    return tenant


def _make_connection(db, tenant_id, shop_domain, token="shpat_test_token"):
    from shopsync.models import InstallStateEnum, ShopConnection
    from shopsync.security import encrypt_secret

    connection = ShopConnection(
        tenant_id=tenant_id,
        shop_domain=shop_domain,
        access_token_enc=encrypt_secret(token, context=f"shopify:{shop_domain}") if token else None,
        scopes="read_orders,read_products,read_customers",
        install_state=InstallStateEnum.active,
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


@pytest.fixture
def shop_connection(test_db_session, tenant):
    """Active connection for `tenant` with an encrypted access token."""
    return _make_connection(test_db_session, tenant.id, SHOP_DOMAIN)


@pytest.fixture
def other_shop_connection(test_db_session, other_tenant):
    return _make_connection(test_db_session, other_tenant.id, OTHER_SHOP_DOMAIN)


@pytest.fixture
def make_connection(test_db_session):
    """Factory for extra connections: make_connection(tenant_id, shop_domain, token=...)."""
    def _factory(tenant_id, shop_domain, token="shpat_test_token"):
        return _make_connection(test_db_session, tenant_id, shop_domain, token=token)
    return _factory


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session, settings):
    """Create FastAPI test application."""
    from shopsync.database import get_db
    from shopsync.deps import get_settings
    from shopsync.main import create_app

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_settings] = lambda: settings

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)


# ============================================================================
# Notes
# ============================================================================
#
# USAGE:
#
# # Webhook test
# def test_order_webhook(client, shop_connection, verifier):
#     body = json.dumps({"id": 1, "total_price": "10.00"}).encode()
#     response = client.post(
#         "/webhooks/shopify",
#         content=body,
#         headers={"X-Shopify-Hmac-Sha256": verifier.compute(body), ...},
#     )
#     assert response.status_code == 200
#
# # Settings tweaks
# def test_queue_mode(app, settings):
#     settings.WEBHOOK_QUEUE_MODE = "queue"
#
# ============================================================================
