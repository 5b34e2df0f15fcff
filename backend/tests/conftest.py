"""
Pytest fixtures for marketplace backend tests.

Provides the app on an in-memory database, per-test table wipe, user and
product factories, auth headers and signed-webhook helpers.
"""

import hashlib
import hmac
import itertools
import json
import time
from decimal import Decimal

import bcrypt
import httpx
import pytest

from farmmarket import create_app
from farmmarket.extensions import db
from farmmarket.models import Product, User
from farmmarket.models.catalog import PRODUCT_AVAILABLE
from farmmarket.services import order_service, session_service

DEFAULT_PASSWORD = "Secret123!"

MIDTRANS_SERVER_KEY = "SB-Mid-server-test"
XENDIT_WEBHOOK_TOKEN = "xendit-callback-token"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PLATFORM_COMMISSION_RATE': Decimal("0.05"),
        'FRONTEND_URL': "http://localhost:5173",
        'DEFAULT_PAYMENT_GATEWAY': "midtrans",
        'MIDTRANS_SERVER_KEY': MIDTRANS_SERVER_KEY,
        'XENDIT_SECRET_KEY': "xnd_development_test",
        'XENDIT_WEBHOOK_TOKEN': XENDIT_WEBHOOK_TOKEN,
        'STRIPE_SECRET_KEY': "sk_test_123",
        'STRIPE_WEBHOOK_SECRET': STRIPE_WEBHOOK_SECRET,
        'WHATSAPP_API_URL': "",
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        app.config.pop('GATEWAY_HTTP_TRANSPORT', None)
        app.config.pop('WHATSAPP_HTTP_TRANSPORT', None)


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt hash of DEFAULT_PASSWORD, computed once (cost 12 is slow)."""
    return bcrypt.hashpw(DEFAULT_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    counter = itertools.count(1)

    def _make(role="retailer", **kwargs):
        n = next(counter)
        fields = {
            "email": f"{role}{n}@example.com",
            "full_name": f"{role.title()} {n}",
            "business_name": f"Shop {n}" if role == "retailer" else None,
            "is_verified": True,
            "is_active": True,
        }
        fields.update(kwargs)
        user = User(role=role, password_hash=password_hash, **fields)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def farmer(make_user):
    return make_user("farmer", phone="+6281200000001")


@pytest.fixture(scope='function')
def retailer(make_user):
    return make_user("retailer", phone="+6281200000002")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin")


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(farmer, quantity="10", price="1000", **kwargs):
        fields = {
            "name": "Tomatoes",
            "unit": "kg",
            "status": PRODUCT_AVAILABLE,
        }
        fields.update(kwargs)
        product = Product(
            farmer_id=farmer.id,
            quantity=Decimal(quantity),
            price=Decimal(price),
            **fields,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(farmer, make_product):
    return make_product(farmer)


@pytest.fixture(scope='function')
def make_order(db_session):
    def _make(retailer, product, quantity=3, address="Jl. Pasar Baru 10, Bandung"):
        return order_service.create_order(retailer.id, product.id, quantity, address)

    return _make


def auth_headers_for(user) -> dict:
    """Helper to create Authorization headers for a user."""
    _, token = session_service.create_session(user.id, user_agent="pytest", ip_address="127.0.0.1")
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def farmer_headers(farmer):
    return auth_headers_for(farmer)


@pytest.fixture(scope='function')
def retailer_headers(retailer):
    return auth_headers_for(retailer)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers_for(admin)


# =============================================================================
# GATEWAY HELPERS
# =============================================================================

@pytest.fixture(scope='function')
def gateway_transport(app):
    """
    Route outbound gateway HTTP to a handler the test controls.

    Usage: gateway_transport(lambda request: httpx.Response(201, json={...}))
    Returns the list of captured requests.
    """
    captured = []

    def _install(handler):
        def _wrapped(request):
            captured.append(request)
            return handler(request)
        app.config['GATEWAY_HTTP_TRANSPORT'] = httpx.MockTransport(_wrapped)
        return captured

    return _install


def midtrans_notification(transaction_id, status, gross_amount="3000.00", status_code="200", **extra):
    """Midtrans notification body with a valid signature_key; returns raw bytes."""
    payload = {
        "order_id": str(transaction_id),
        "status_code": status_code,
        "gross_amount": gross_amount,
        "transaction_status": status,
        "transaction_id": f"mid-{transaction_id}",
    }
    payload.update(extra)
    raw = f"{payload['order_id']}{status_code}{gross_amount}{MIDTRANS_SERVER_KEY}"
    payload["signature_key"] = hashlib.sha512(raw.encode("utf-8")).hexdigest()
    return json.dumps(payload).encode("utf-8")


def xendit_signature(raw: bytes) -> str:
    return hashlib.sha256(raw + XENDIT_WEBHOOK_TOKEN.encode("utf-8")).hexdigest()


def stripe_signature_header(raw: bytes, timestamp: int | None = None, secret: str = STRIPE_WEBHOOK_SECRET) -> str:
    """Stripe-Signature header as Stripe's servers compute it."""
    if timestamp is None:
        timestamp = int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + raw
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"
