"""Tests for gateway lookup."""

import pytest

from orderpay.core.config import settings
from orderpay.db.models import PaymentMethod
from orderpay.errors import UnsupportedGatewayError, ValidationError
from orderpay.gateways.myfatoorah import MyFatoorahGateway
from orderpay.gateways.registry import GatewayRegistry
from orderpay.gateways.tabby import TabbyGateway
from orderpay.gateways.tamara import TamaraGateway


@pytest.fixture
def real_registry():
    return GatewayRegistry.from_settings(settings)


def test_builds_every_provider(real_registry):
    assert real_registry.available_names() == frozenset({"myfatoorah", "tabby", "tamara"})
    assert isinstance(real_registry.resolve("myfatoorah"), MyFatoorahGateway)
    assert isinstance(real_registry.resolve("tabby"), TabbyGateway)
    assert isinstance(real_registry.resolve("tamara"), TamaraGateway)


def test_lookup_ignores_case_and_accepts_enums(real_registry):
    assert real_registry.resolve("TaBbY") is real_registry.resolve(PaymentMethod.TABBY)


def test_timeout_is_passed_to_clients(real_registry):
    assert real_registry.resolve("tamara").http.timeout == settings.GATEWAY_TIMEOUT_SECONDS


@pytest.mark.parametrize("name", ["paypal", "", None])
def test_unsupported(real_registry, name):
    with pytest.raises(UnsupportedGatewayError) as exc:
        real_registry.resolve(name)
    assert isinstance(exc.value, ValidationError)
    assert exc.value.status_code == 422
    assert real_registry.is_supported(name) is False


def test_registry_is_read_only(registry):
    with pytest.raises(TypeError):
        registry._gateways["stripe"] = object()
