"""Pytest fixtures for checkout tests."""

import os

os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["MPESA_VALIDATE_CALLBACKS"] = "false"

from datetime import timedelta

import fakeredis
import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from eshop.api.deps import get_db, get_gateway
from eshop.checkout.pricing import PricingRules
from eshop.core.config import settings
from eshop.db.models import Coupon, Product, utcnow
from eshop.db.session import Base
from eshop.kafka import producer
from eshop.notifications import mailer
from eshop.payments.mpesa import MpesaError
from eshop.store import cart_store

CUSTOMER = "jane@example.com"
OTHER_CUSTOMER = "john@example.com"
ADMIN = "admin@example.com"


class FakeGateway:
    """Stands in for MpesaClient; records every push and replays a canned reply."""

    def __init__(self):
        self.calls = []
        self.response = {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_191220191020363925",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }
        self.error = None

    def stk_push(self, phone, amount, reference, description):
        self.calls.append({"phone": phone, "amount": amount, "reference": reference, "description": description})
        if self.error:
            raise MpesaError(self.error)
        return dict(self.response)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def redis_cart(monkeypatch):
    """Route the cart store to an in-memory Redis."""
    fake = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(cart_store, "get_client", lambda: fake)
    return fake


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Capture outgoing emails instead of talking to SMTP."""
    sent = []
    monkeypatch.setattr(mailer, "send_email", lambda to, subject, body: sent.append(
        {"to": to, "subject": subject, "body": body}
    ))
    return sent


@pytest.fixture
def events(monkeypatch):
    """Enable publishing and capture every event that would go to Kafka."""
    published = []
    monkeypatch.setattr(settings, "KAFKA_ENABLED", True)
    monkeypatch.setattr(producer, "send", lambda topic, key, value: published.append(
        {"topic": topic, "key": key, "value": value}
    ))
    return published


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    from eshop.main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(email: str, role: str = "customer", name: str = "") -> str:
    claims = {"sub": email, "role": role, "type": "access", "name": name}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {make_token(CUSTOMER, name='Jane Doe')}"}


@pytest.fixture
def other_auth():
    return {"Authorization": f"Bearer {make_token(OTHER_CUSTOMER)}"}


@pytest.fixture
def admin_auth():
    return {"Authorization": f"Bearer {make_token(ADMIN, role='admin')}"}


@pytest.fixture
def products(db):
    widget = Product(title="Widget", sku="WID-1", price=500.0, stock=10, image_url="/w.png", active=True)
    gadget = Product(title="Gadget", sku="GAD-1", price=300.0, sale_price=250.0, stock=3, active=True)
    retired = Product(title="Retired", sku="RET-1", price=100.0, stock=50, active=False)
    db.add_all([widget, gadget, retired])
    db.commit()
    return {"widget": widget, "gadget": gadget, "retired": retired}


@pytest.fixture
def pricing(db):
    return PricingRules(db).upsert(
        "Nairobi",
        shipping_fees=[
            {"method": "standard", "fee": 200.0},
            {"method": "express", "fee": 500.0},
            {"method": "Free Shipping", "fee": 200.0},
        ],
        tax_tiers=[
            {"min": 0, "max": 999, "rate": 0.05},
            {"min": 999, "max": None, "rate": 0.16},
        ],
        payment_fees=[{"method": "mpesa", "fee": 0.0}, {"method": "card", "fee": 50.0}],
    )


@pytest.fixture
def coupons(db):
    now = utcnow()
    rows = {
        "SAVE10": Coupon(code="SAVE10", name="Ten off", discount_type="percentage", discount_value=10,
                         max_discount=80, min_amount=0, start_date=now - timedelta(days=1),
                         end_date=now + timedelta(days=30), used_count=0),
        "FLAT100": Coupon(code="FLAT100", name="Flat 100", discount_type="fixed", discount_value=100,
                          min_amount=600, start_date=now - timedelta(days=1),
                          end_date=now + timedelta(days=30), used_count=0),
        "ONCE": Coupon(code="ONCE", discount_type="fixed", discount_value=50, start_date=now - timedelta(days=1),
                       end_date=now + timedelta(days=30), max_uses=1, used_count=0),
        "EXPIRED": Coupon(code="EXPIRED", discount_type="percentage", discount_value=20,
                          start_date=now - timedelta(days=30), end_date=now - timedelta(days=1), used_count=0),
        "FUTURE": Coupon(code="FUTURE", discount_type="percentage", discount_value=20,
                         start_date=now + timedelta(days=1), end_date=now + timedelta(days=30), used_count=0),
    }
    db.add_all(rows.values())
    db.commit()
    return rows


def address(**overrides) -> dict:
    data = {
        "firstName": "Jane",
        "lastName": "Doe",
        "email": CUSTOMER,
        "phone": "0712345678",
        "address": "1 Moi Avenue",
        "city": "Nairobi",
        "state": "Nairobi",
        "zipCode": "00100",
        "country": "Kenya",
    }
    data.update(overrides)
    return data


def order_payload(items, total, payment_method="cash_on_delivery", shipping_method="standard", **extra) -> dict:
    body = {
        "items": items,
        "shippingAddress": address(),
        "paymentMethod": payment_method,
        "shippingMethod": shipping_method,
        "totalAmount": total,
    }
    body.update(extra)
    return body
