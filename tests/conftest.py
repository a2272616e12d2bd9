"""Pytest fixtures for orderpay tests."""

import os

# settings are read at import time
os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["APP_URL"] = "https://shop.test"

import json
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from orderpay.api import deps
from orderpay.core.config import settings
from orderpay.db.models import Product
from orderpay.db.session import Base
from orderpay.gateways.base import CheckoutSession, PaymentReference
from orderpay.gateways.registry import GatewayRegistry
from orderpay.schemas import OrderCreate
from orderpay.services.events import EventEmitter
from orderpay.services.orders import OrderManager
from orderpay.services.payments import PaymentOrchestrator
from orderpay.services.pricing import PricingPolicy
from orderpay.services.stock import StockLedger

BILLING = {
    "name": "Sara Ahmed",
    "phone": "+966500000001",
    "city": "Riyadh",
    "address": "King Fahd Road 12",
    "zip": "12211",
    "email": "sara@example.com",
}


class RecordingPublisher:
    """Stands in for the Kafka producer and keeps everything it was given."""

    def __init__(self):
        self.sent = []

    def __call__(self, topic, key, value):
        self.sent.append((topic, key, value))

    def types(self):
        return [value["type"] for _, _, value in self.sent]


class FakeGateway:
    """Scripted provider: answers from attributes and records every call."""

    currency = "SAR"

    def __init__(self, name, auto_capture=False, paid=True):
        self.name = name
        self.auto_capture = auto_capture
        self.paid = paid
        self.fail_with = None
        self.calls = []
        self._counter = 0

    def _record(self, call, *args):
        self.calls.append((call,) + args)
        if self.fail_with is not None:
            raise self.fail_with

    def create_checkout_session(self, order):
        self._record("checkout", order.order_number)
        self._counter += 1
        external_id = f"{self.name}-{order.id}-{self._counter}"
        return CheckoutSession(f"https://pay.test/{external_id}", external_id, {"id": external_id})

    def verify_payment(self, external_payment_id):
        self._record("verify", external_payment_id)
        return self.paid

    def capture_payment(self, order, external_payment_id):
        self._record("capture", external_payment_id)
        return {"captured": True, "capture_id": "cap-1"}

    def refund_payment(self, payment, amount_cents):
        self._record("refund", payment.payment_id, amount_cents)
        return {"refund_id": "ref-1", "amount": amount_cents}

    def handle_webhook(self, payload):
        self.calls.append(("webhook", payload))

    def webhook_payment_id(self, payload):
        return payload.get("id")

    def call_names(self):
        return [c[0] for c in self.calls]


class ReferenceGateway(FakeGateway):
    """A provider whose callbacks carry an id we never stored."""

    def __init__(self, name, auto_capture=True, paid=True):
        super().__init__(name, auto_capture=auto_capture, paid=paid)
        self.reference = None

    def resolve_order_reference(self, external_id):
        self._record("resolve", external_id)
        return PaymentReference(self.reference, self.paid, {"PaymentId": external_id})

    def payment_options(self, amount_cents, phone=None):
        return [{"PaymentMethodId": 2, "PaymentMethodEn": "VISA/MASTER", "amount_cents": amount_cents}]


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def products(db):
    """Widget: 10000 cents, 10 in stock. Gadget: 2500 cents, 3 in stock. Retired: inactive."""
    widget = Product(title="Widget", description="A widget", price_cents=10000, stock=10, image_url="https://img.test/w.png")
    gadget = Product(title="Gadget", description="A gadget", price_cents=2500, stock=3)
    retired = Product(title="Retired", description="", price_cents=1000, stock=5, active=False)
    db.add_all([widget, gadget, retired])
    db.commit()
    return {"widget": widget, "gadget": gadget, "retired": retired}


class FileDatabase:
    """A SQLite file shared by independent sessions, for interleaving tests."""

    def __init__(self, path):
        self.engine = create_engine(f"sqlite:///{path}")
        Base.metadata.create_all(self.engine)
        self.session = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self._open = []
        with self.session() as setup:
            widget = Product(title="Widget", price_cents=10000, stock=10)
            last_one = Product(title="Last One", price_cents=500, stock=1)
            setup.add_all([widget, last_one])
            setup.commit()
            self.widget, self.last_one = widget.id, last_one.id

    def open(self):
        session = self.session()
        self._open.append(session)
        return session

    def stock(self, product_id):
        with self.session() as check:
            return check.get(Product, product_id).stock

    def place_order(self, manager, order_data, qty=2, method="tabby"):
        data = order_data([(self.widget, qty)], method=method)
        with self.session() as setup:
            return manager.create_order(setup, "sara@example.com", data.items, data).id

    def close(self):
        for session in self._open:
            session.close()
        self.engine.dispose()


@pytest.fixture
def file_db(tmp_path):
    database = FileDatabase(tmp_path / "orderpay.db")
    yield database
    database.close()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def emitter(publisher):
    return EventEmitter(publish=publisher, order_topic="order.events", payment_topic="payment.events")


@pytest.fixture
def ledger():
    return StockLedger()


@pytest.fixture
def manager(ledger, emitter):
    return OrderManager(ledger=ledger, pricing=PricingPolicy(), events=emitter)


@pytest.fixture
def gateways():
    return {
        "myfatoorah": ReferenceGateway("myfatoorah"),
        "tabby": FakeGateway("tabby"),
        "tamara": FakeGateway("tamara"),
    }


@pytest.fixture
def registry(gateways):
    return GatewayRegistry(gateways)


@pytest.fixture
def orchestrator(registry, manager, ledger, emitter):
    return PaymentOrchestrator(registry, orders=manager, ledger=ledger, events=emitter)


@pytest.fixture
def order_data():
    def build(items, method="tabby", **extra):
        return OrderCreate(
            items=[{"product_id": pid, "qty": qty} for pid, qty in items],
            payment_method=method,
            billing_address=BILLING,
            **extra,
        )
    return build


@pytest.fixture
def make_order(db, manager, products, order_data):
    """Create an order for two widgets unless told otherwise."""
    def create(items=None, method="tabby", email="sara@example.com", **extra):
        items = items or [(products["widget"].id, 2)]
        data = order_data(items, method=method, **extra)
        return manager.create_order(db, email, data.items, data)
    return create


def mint_token(email="sara@example.com", role="customer", token_type="access", secret=None):
    now = datetime.now(timezone.utc)
    claims = {"sub": email, "role": role, "type": token_type, "iat": now, "exp": now + timedelta(minutes=15)}
    return jwt.encode(claims, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth_header():
    def build(email="sara@example.com", role="customer"):
        return {"Authorization": f"Bearer {mint_token(email, role)}"}
    return build


@pytest.fixture
def trusted_gateways():
    return set()


@pytest.fixture
def client(session_factory, manager, orchestrator, registry, trusted_gateways):
    from orderpay.main import app

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[deps.get_db] = override_db
    app.dependency_overrides[deps.get_order_manager] = lambda: manager
    app.dependency_overrides[deps.get_registry] = lambda: registry
    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[deps.get_trusted_webhook_gateways] = lambda: trusted_gateways
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def json_transport(routes):
    """httpx.MockTransport answering ``{(METHOD, path): (status, body)}``; records requests.

    ``body`` may be a dict, a string, or a callable taking the request.
    """
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        key = (request.method, request.url.path)
        if key not in routes:
            return httpx.Response(404, json={"message": f"no route {key}"})
        status, body = routes[key]
        if callable(body):
            body = body(request)
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    transport = httpx.MockTransport(handler)
    transport.seen = seen
    return transport


def sent_json(request: httpx.Request) -> dict:
    return json.loads(request.content.decode("utf-8"))
