from decimal import Decimal

import pytest

from .pricing import PricingPolicy, compute_totals, to_major_units, to_minor_units

POLICY = PricingPolicy(vat_rate=Decimal("0.18"), free_shipping_threshold=50000, shipping_fee=5000)


def test_totals_below_free_shipping_threshold():
    totals = POLICY.totals(20000)
    assert (totals.subtotal, totals.tax, totals.shipping_cost, totals.total) == (20000, 3600, 5000, 28600)


def test_shipping_is_waived_only_strictly_above_threshold():
    assert POLICY.shipping_for(50000) == 5000
    assert POLICY.shipping_for(50001) == 0


def test_tax_rounds_half_up():
    # 18% of 25 = 4.5
    assert POLICY.tax_for(25) == 5
    assert POLICY.tax_for(24) == 4


def test_empty_subtotal_still_pays_shipping():
    assert POLICY.totals(0).total == 5000


def test_negative_subtotal_rejected():
    with pytest.raises(ValueError):
        POLICY.totals(-1)


def test_compute_totals_reads_settings(settings):
    settings.SHOP = {**settings.SHOP, "VAT_RATE": "0.10", "SHIPPING_FEE": 1000}
    assert compute_totals(10000).total == 10000 + 1000 + 1000


def test_unit_conversion_uses_currency_exponent():
    assert to_minor_units("19.99", 2) == 1999
    assert to_minor_units("1500", 0) == 1500
    assert to_major_units(1999, 2) == Decimal("19.99")
