# tests/conftest.py
"""
Shared fixtures: a throw-away SQLite file database, seeded catalogue,
coupons and affiliates, a Flask test client and stubbed PayPal transport.
"""

import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

# The engine is created at import time, so the database must be chosen first
_TEST_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'storefront_test.db')}"
os.environ.setdefault("STRUCTURED_LOGS_ENABLED", "false")

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from storefront.config import Config
from storefront.database import Base, engine, SessionLocal
from storefront.models import (
    Affiliate,
    AffiliateStatus,
    Coupon,
    CouponStatus,
    DiscountType,
    PayoutMethod,
    Product,
    ProductVariant,
    User,
    VariantKind,
)
from storefront.observability import reset_metrics
from storefront.services.payment_service import PayPalClient, PaymentVerifier

ADDRESS = {
    "name": "Jamie Rivera",
    "street": "12 Kennel Lane",
    "city": "Portland",
    "state": "OR",
    "zip": "97201",
    "country": "US",
}


class StubPayPalConfig(Config):
    PAYPAL_CLIENT_ID = "test-client"
    PAYPAL_CLIENT_SECRET = "test-secret"
    PAYPAL_API_URL = "https://paypal.test"
    PAYPAL_TIMEOUT_SECONDS = 2.0


class StubResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class StubHttpSession:
    """Stands in for ``requests.Session``; routes are matched on URL suffix."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    def _dispatch(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        for (route_method, suffix), outcome in self.routes.items():
            if route_method == method and url.endswith(suffix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return StubResponse(404, {"message": "not found"})

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)


def paypal_order(status="COMPLETED", amount="18.00"):
    return {
        "id": "PAYPAL-ORDER-1",
        "status": status,
        "purchase_units": [{"amount": {"currency_code": "USD", "value": amount}}],
    }


def token_route(status_code=200):
    payload = {"access_token": "token-123"} if status_code == 200 else {"error": "invalid_client"}
    return {("POST", "/v1/oauth2/token"): StubResponse(status_code, payload)}


@pytest.fixture(autouse=True)
def reset_schema():
    """Every test starts from an empty schema and empty metrics."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def customer(db_session):
    user = User(email="customer@example.com", full_name="Casey Customer", role="customer")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin_user(db_session):
    user = User(email="admin@example.com", full_name="Avery Admin", role="admin")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def products(db_session):
    """Product A (10.00, plenty of stock), a scarce product and a sized harness."""
    product_a = Product(name="Chew Toy", slug="chew-toy", price=Decimal("10.00"), stock=20)
    scarce = Product(name="Cat Tower", slug="cat-tower", price=Decimal("45.50"), stock=3)
    harness = Product(name="Dog Harness", slug="dog-harness", price=Decimal("25.00"), stock=50)
    harness.variants = [
        ProductVariant(kind=VariantKind.SIZE, name="S", stock=2),
        ProductVariant(kind=VariantKind.SIZE, name="L", stock=4, price_override=Decimal("28.00")),
        ProductVariant(kind=VariantKind.COLOR, name="Red", stock=6),
    ]
    db_session.add_all([product_a, scarce, harness])
    db_session.commit()
    return {"toy": product_a, "scarce": scarce, "harness": harness}


@pytest.fixture
def coupons(db_session):
    now = datetime.now(timezone.utc)
    entries = {
        "save10": Coupon(
            code="SAVE10",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
            min_purchase=Decimal("0"),
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
        ),
        "capped": Coupon(
            code="HALFOFF",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("50"),
            max_discount=Decimal("5.00"),
            valid_from=now - timedelta(days=1),
        ),
        "fixed": Coupon(
            code="FIVER",
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("5.00"),
            min_purchase=Decimal("30.00"),
            valid_from=now - timedelta(days=1),
        ),
        "expired": Coupon(
            code="OLDNEWS",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("20"),
            valid_from=now - timedelta(days=60),
            valid_until=now - timedelta(days=30),
        ),
        "exhausted": Coupon(
            code="ONCE",
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("3.00"),
            usage_limit=1,
            used_count=1,
            valid_from=now - timedelta(days=1),
        ),
        "single_use": Coupon(
            code="LASTONE",
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("1.00"),
            usage_limit=1,
            used_count=0,
            valid_from=now - timedelta(days=1),
        ),
        "inactive": Coupon(
            code="PAUSED",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
            status=CouponStatus.INACTIVE,
            valid_from=now - timedelta(days=1),
        ),
    }
    db_session.add_all(entries.values())
    db_session.commit()
    return entries


def _affiliate_for(db_session, email, code, status):
    owner = User(email=email, full_name=code.title(), role="customer")
    db_session.add(owner)
    db_session.flush()
    affiliate = Affiliate(
        userID=owner.userID,
        affiliate_code=code,
        status=status,
        country="US",
        address="1 Referral Road",
        phone_number="555-0100",
        traffic_source="instagram",
        payment_method=PayoutMethod.PAYPAL,
        paypal_email=email,
    )
    db_session.add(affiliate)
    db_session.commit()
    return affiliate


@pytest.fixture
def approved_affiliate(db_session):
    return _affiliate_for(db_session, "partner@example.com", "PAWSOME", AffiliateStatus.APPROVED)


@pytest.fixture
def pending_affiliate(db_session):
    return _affiliate_for(db_session, "newbie@example.com", "NEWPUP", AffiliateStatus.PENDING)


@pytest.fixture
def paypal_verifier():
    """Build a PaymentVerifier whose PayPal transport is a StubHttpSession."""

    def _build(routes=None, config=StubPayPalConfig):
        http = StubHttpSession(routes)
        client = PayPalClient(config, http=http)
        return PaymentVerifier(client, config=config), http

    return _build


@pytest.fixture
def checkout_payload(products):
    def _build(**overrides):
        payload = {
            "items": [{"product_id": products["toy"].productID, "quantity": 2}],
            "email": "buyer@example.com",
            "shipping_address": dict(ADDRESS),
            "billing_address": dict(ADDRESS),
            "courier": "UPS Ground",
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def app():
    from storefront.main import app as flask_app

    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    with app.test_client() as test_client:
        yield test_client


def login(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
