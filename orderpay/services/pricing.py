from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from orderpay.core.config import Settings, settings as default_settings


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    tax_cents: int
    shipping_cents: int
    discount_cents: int
    total_cents: int


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal = Decimal("0.15")
    free_shipping_threshold_cents: int = 50000
    reduced_shipping_threshold_cents: int = 20000
    reduced_shipping_cents: int = 5000
    standard_shipping_cents: int = 10000

    @classmethod
    def from_settings(cls, s: Settings = default_settings) -> "PricingPolicy":
        return cls(
            tax_rate=s.TAX_RATE,
            free_shipping_threshold_cents=s.FREE_SHIPPING_THRESHOLD_CENTS,
            reduced_shipping_threshold_cents=s.REDUCED_SHIPPING_THRESHOLD_CENTS,
            reduced_shipping_cents=s.REDUCED_SHIPPING_CENTS,
            standard_shipping_cents=s.STANDARD_SHIPPING_CENTS,
        )

    def tax(self, subtotal_cents: int) -> int:
        return int((Decimal(subtotal_cents) * self.tax_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def shipping(self, subtotal_cents: int) -> int:
        if subtotal_cents >= self.free_shipping_threshold_cents:
            return 0
        if subtotal_cents >= self.reduced_shipping_threshold_cents:
            return self.reduced_shipping_cents
        return self.standard_shipping_cents

    def quote(self, subtotal_cents: int, discount_cents: int = 0) -> PriceBreakdown:
        tax = self.tax(subtotal_cents)
        shipping = self.shipping(subtotal_cents)
        gross = subtotal_cents + tax + shipping
        # discount never pushes the total below zero
        discount = min(max(0, int(discount_cents or 0)), gross)
        return PriceBreakdown(
            subtotal_cents=subtotal_cents,
            tax_cents=tax,
            shipping_cents=shipping,
            discount_cents=discount,
            total_cents=gross - discount,
        )
