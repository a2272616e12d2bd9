"""Tests for order pricing."""

from decimal import Decimal

import pytest

from orderpay.core.config import Settings
from orderpay.services.pricing import PricingPolicy


@pytest.fixture
def policy():
    return PricingPolicy()


class TestTax:
    def test_fifteen_percent_of_subtotal(self, policy):
        assert policy.tax(20000) == 3000

    def test_rounds_half_up_to_whole_cents(self, policy):
        # 15% of 1003 = 150.45 -> 150; 15% of 1010 = 151.5 -> 152
        assert policy.tax(1003) == 150
        assert policy.tax(1010) == 152


class TestShipping:
    @pytest.mark.parametrize(
        "subtotal,expected",
        [
            (0, 10000),
            (19999, 10000),
            (20000, 5000),
            (49999, 5000),
            (50000, 0),
            (120000, 0),
        ],
    )
    def test_tiers(self, policy, subtotal, expected):
        assert policy.shipping(subtotal) == expected


class TestQuote:
    def test_two_widgets(self, policy):
        price = policy.quote(20000)
        assert price.subtotal_cents == 20000
        assert price.tax_cents == 3000
        assert price.shipping_cents == 5000
        assert price.discount_cents == 0
        assert price.total_cents == 28000

    def test_discount_is_subtracted(self, policy):
        price = policy.quote(60000, discount_cents=1500)
        assert price.total_cents == 60000 + 9000 + 0 - 1500

    def test_discount_never_makes_total_negative(self, policy):
        price = policy.quote(1000, discount_cents=999999)
        assert price.total_cents == 0
        assert price.discount_cents == 1000 + 150 + 10000

    def test_negative_discount_is_ignored(self, policy):
        assert policy.quote(1000, discount_cents=-500).discount_cents == 0


def test_policy_follows_settings():
    s = Settings(TAX_RATE=Decimal("0.05"), STANDARD_SHIPPING_CENTS=700)
    policy = PricingPolicy.from_settings(s)
    assert policy.tax(10000) == 500
    assert policy.shipping(100) == 700
