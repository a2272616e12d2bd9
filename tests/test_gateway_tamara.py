"""Tests for the Tamara client."""

import pytest

from conftest import json_transport, sent_json
from orderpay.core.config import TamaraConfig
from orderpay.db.models import Payment, PaymentStatus
from orderpay.errors import CaptureError, GatewayError, RefundError
from orderpay.gateways.base import PaymentGateway
from orderpay.gateways.tamara import TamaraGateway

CONFIG = TamaraConfig(
    test_mode=True,
    test_api_token="tm-token",
    test_url="https://tamara.test",
    currency="SAR",
    callback_url="https://shop.test/orderpay/v1/payments/callback/tamara",
    webhook_url="https://shop.test/orderpay/v1/payments/webhook/tamara",
)


def gateway(routes, config=CONFIG):
    transport = json_transport(routes)
    return TamaraGateway(config, transport=transport), transport


@pytest.fixture
def order(make_order):
    return make_order(method="tamara")


@pytest.fixture
def payment(db, order):
    p = Payment(order_id=order.id, payment_id="tm-order-1", gateway="tamara", amount_cents=order.total_cents,
                currency="SAR", status=PaymentStatus.CAPTURED)
    db.add(p)
    db.commit()
    return p


def test_satisfies_gateway_interface():
    gw, _ = gateway({})
    assert isinstance(gw, PaymentGateway)
    assert gw.auto_capture is False


def test_country_follows_mode():
    assert CONFIG.country == "AE"
    assert TamaraConfig(test_mode=False, country_code="").country == "SA"
    assert TamaraConfig(country_code="KW").country == "KW"


class TestCheckout:
    def test_session(self, order):
        gw, transport = gateway({
            ("POST", "/checkout"): (200, {"order_id": "tm-order-1", "checkout_url": "https://tamara.test/c/1"}),
        })
        session = gw.create_checkout_session(order)

        assert session.payment_url == "https://tamara.test/c/1"
        assert session.external_payment_id == "tm-order-1"

        request = transport.seen[0]
        assert request.headers["Authorization"] == "Bearer tm-token"
        body = sent_json(request)
        assert body["order_reference_id"] == order.order_number
        assert body["total_amount"] == {"amount": 280.0, "currency": "SAR"}
        assert body["country_code"] == "AE"
        assert body["consumer"]["first_name"] == "Sara"
        assert body["consumer"]["last_name"] == "Ahmed"
        assert body["merchant_url"]["notification"] == CONFIG.webhook_url
        assert body["items"][0]["quantity"] == 2

    def test_error_codes_in_message(self, order):
        gw, _ = gateway({
            ("POST", "/checkout"): (400, {"message": "Invalid input", "errors": [{"error_code": "total_amount_invalid"}]}),
        })
        with pytest.raises(GatewayError, match="Invalid input: total_amount_invalid"):
            gw.create_checkout_session(order)


class TestVerify:
    @pytest.mark.parametrize("status,paid", [
        ("approved", True), ("authorised", True), ("fully_captured", True), ("new", False), ("declined", False),
    ])
    def test_statuses(self, status, paid):
        gw, _ = gateway({("GET", "/orders/tm-order-1"): (200, {"order_id": "tm-order-1", "status": status})})
        assert gw.verify_payment("tm-order-1") is paid


class TestCapture:
    def test_authorise_then_capture(self, order):
        gw, transport = gateway({
            ("POST", "/orders/tm-order-1/authorise"): (200, {"order_id": "tm-order-1", "status": "authorised"}),
            ("POST", "/payments/capture"): (200, {"capture_id": "cap-3", "order_id": "tm-order-1"}),
        })
        assert gw.capture_payment(order, "tm-order-1") == {"captured": True, "capture_id": "cap-3"}
        assert [r.url.path for r in transport.seen] == ["/orders/tm-order-1/authorise", "/payments/capture"]
        assert sent_json(transport.seen[1])["total_amount"] == {"amount": 280.0, "currency": "SAR"}

    def test_authorise_without_order_id(self, order):
        gw, transport = gateway({("POST", "/orders/tm-order-1/authorise"): (200, {"status": "declined"})})
        with pytest.raises(CaptureError):
            gw.capture_payment(order, "tm-order-1")
        assert len(transport.seen) == 1

    def test_capture_without_capture_id(self, order):
        gw, _ = gateway({
            ("POST", "/orders/tm-order-1/authorise"): (200, {"order_id": "tm-order-1"}),
            ("POST", "/payments/capture"): (200, {"order_id": "tm-order-1"}),
        })
        with pytest.raises(CaptureError):
            gw.capture_payment(order, "tm-order-1")


class TestRefund:
    def test_refund(self, payment):
        gw, transport = gateway({("POST", "/payments/refund"): (200, {"refund_id": "rf-5"})})
        assert gw.refund_payment(payment, 28000) == {"refund_id": "rf-5", "amount": 280.0}
        body = sent_json(transport.seen[0])
        assert body["order_id"] == "tm-order-1"
        assert body["total_amount"] == {"amount": 280.0, "currency": "SAR"}

    def test_refund_not_confirmed(self, payment):
        gw, _ = gateway({("POST", "/payments/refund"): (200, {"status": "pending"})})
        with pytest.raises(RefundError):
            gw.refund_payment(payment, 28000)


class TestExtras:
    def test_payment_options(self):
        gw, _ = gateway({
            ("POST", "/checkout/payment-options-pre-check"): (200, {
                "has_available_payment_options": True,
                "available_payment_labels": [{"payment_type": "PAY_BY_INSTALMENTS", "instalment": 3}],
            }),
        })
        assert gw.payment_options(28000, "+966500000001") == [{"payment_type": "PAY_BY_INSTALMENTS", "instalment": 3}]

    def test_no_payment_options(self):
        gw, _ = gateway({
            ("POST", "/checkout/payment-options-pre-check"): (200, {"has_available_payment_options": False}),
        })
        assert gw.payment_options(28000) == []

    def test_webhook_payment_id(self):
        gw, _ = gateway({})
        assert gw.webhook_payment_id({"order_id": "tm-order-1", "event_type": "order_approved"}) == "tm-order-1"
