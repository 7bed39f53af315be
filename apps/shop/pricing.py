from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

# upper bound of the PositiveBigIntegerField money columns
MAX_MINOR_AMOUNT = 2**63 - 1


@dataclass(frozen=True)
class OrderTotals:
    subtotal: int
    tax: int
    shipping_cost: int
    total: int


@dataclass(frozen=True)
class PricingPolicy:
    """Flat VAT plus a shipping fee waived above a threshold. Amounts in minor units."""
    vat_rate: Decimal
    free_shipping_threshold: int
    shipping_fee: int

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        conf = settings.SHOP
        return cls(
            vat_rate=Decimal(str(conf["VAT_RATE"])),
            free_shipping_threshold=int(conf["FREE_SHIPPING_THRESHOLD"]),
            shipping_fee=int(conf["SHIPPING_FEE"]),
        )

    def tax_for(self, subtotal: int) -> int:
        return int((Decimal(subtotal) * self.vat_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def shipping_for(self, subtotal: int) -> int:
        return 0 if subtotal > self.free_shipping_threshold else self.shipping_fee

    def totals(self, subtotal: int) -> OrderTotals:
        if subtotal < 0:
            raise ValueError("subtotal must be non-negative")
        tax = self.tax_for(subtotal)
        shipping = self.shipping_for(subtotal)
        return OrderTotals(subtotal=subtotal, tax=tax, shipping_cost=shipping, total=subtotal + tax + shipping)


def compute_totals(subtotal: int, policy: PricingPolicy = None) -> OrderTotals:
    return (policy or PricingPolicy.from_settings()).totals(subtotal)


def to_major_units(amount: int, decimals: int = None) -> Decimal:
    if decimals is None:
        decimals = settings.SHOP["CURRENCY_DECIMALS"]
    return Decimal(amount).scaleb(-decimals)


def to_minor_units(value, decimals: int = None) -> int:
    if decimals is None:
        decimals = settings.SHOP["CURRENCY_DECIMALS"]
    return int((Decimal(value).scaleb(decimals)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
