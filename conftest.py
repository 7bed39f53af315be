import itertools
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from apps.payments.gateway import GatewayCharge, GatewayVerification
from apps.shop.models import Category, Product, ProductVariant, Vendor
from apps.users.models import Address

_seq = itertools.count(1)


@pytest.fixture(autouse=True)
def _shop_settings(settings, tmp_path):
    settings.SHOP = {
        "CURRENCY": "RWF",
        "CURRENCY_DECIMALS": 0,
        "VAT_RATE": "0.18",
        "FREE_SHIPPING_THRESHOLD": 50000,
        "SHIPPING_FEE": 5000,
    }
    settings.CHECKOUT_TRANSACTION = {**settings.CHECKOUT_TRANSACTION, "BACKOFF": 0}
    settings.IMPORTS = {**settings.IMPORTS, "UPLOAD_DIR": str(tmp_path / "uploads")}


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user("u@test.com", "pw", first_name="Uwase", last_name="Aline")


@pytest.fixture
def other_user(db):
    return get_user_model().objects.create_user("other@test.com", "pw")


@pytest.fixture
def admin_user(db):
    return get_user_model().objects.create_user("admin@test.com", "pw", role="ADMIN")


@pytest.fixture
def address(user):
    return Address.objects.create(user=user, full_name="Uwase Aline", street="KN 5 Rd", city="Kigali")


@pytest.fixture
def category(db):
    return Category.objects.create(name="Apparel")


@pytest.fixture
def make_vendor(db):
    def make(email=None, name="Kigali Threads"):
        owner = get_user_model().objects.create_user(email or f"vendor{next(_seq)}@test.com", "pw", role="VENDOR")
        return Vendor.objects.create(user=owner, business_name=name, is_verified=True)
    return make


@pytest.fixture
def vendor(make_vendor):
    return make_vendor()


@pytest.fixture
def make_product(vendor, category):
    def make(name="Shirt", base_price=10000, **extra):
        extra.setdefault("status", Product.Status.APPROVED)
        return Product.objects.create(
            name=name, base_price=base_price, category=category, vendor=extra.pop("vendor", vendor),
            sku=f"P-{next(_seq)}", **extra,
        )
    return make


@pytest.fixture
def make_variant():
    def make(product, name="M", price=10000, stock=5, **extra):
        return ProductVariant.objects.create(
            product=product, name=name, price=price, stock=stock, sku=f"V-{next(_seq)}", **extra,
        )
    return make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def variant(product, make_variant):
    return make_variant(product)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


class FakeGateway:
    """In-memory gateway; ``successful`` and ``paid`` decide what verify() reports."""

    def __init__(self, successful=True, paid=None, currency="RWF"):
        self.successful = successful
        self.paid = paid
        self.currency = currency
        self.charges = []
        self.verified = []

    def initialize(self, *, reference, amount, currency, customer, callback_url, metadata,
                   payment_options=None, description=""):
        self.charges.append({"reference": reference, "amount": amount, "currency": currency,
                             "customer": customer, "callback_url": callback_url, "metadata": metadata})
        return GatewayCharge(
            transaction_ref=reference,
            redirect_url=f"https://checkout.test/pay/{reference}",
            data={"link": f"https://checkout.test/pay/{reference}", "flw_ref": f"FLW-{reference}"},
        )

    def verify(self, reference):
        self.verified.append(reference)
        charged = next((c for c in self.charges if c["reference"] == reference), None)
        amount = self.paid if self.paid is not None else (charged["amount"] if charged else Decimal("0"))
        data = {"tx_ref": reference, "amount": str(amount), "currency": self.currency,
                "status": "successful" if self.successful else "failed"}
        message = "" if self.successful else "Transaction declined"
        return GatewayVerification(successful=self.successful, data=data, message=message)


@pytest.fixture
def fake_gateway():
    return FakeGateway()
