import threading

import pytest
from django.db import connection
from rest_framework.exceptions import PermissionDenied

from apps.core.exceptions import ConflictError, NotFoundError
from apps.users.models import Address

from . import services
from .models import CartItem, Order, OrderItem, Product, ProductVariant
from .services import cancel_order, create_order, update_order_status

pytestmark = pytest.mark.django_db(transaction=True)


def _checkout(user, address, *lines, **extra):
    items = [{"product_id": p.pk, "variant_id": v.pk if v else None, "quantity": q} for p, v, q in lines]
    return create_order(user=user, address_id=address.pk, payment_method="card", items=items, **extra)


def test_create_order_decrements_stock_and_prices_lines(user, address, product, make_variant):
    small = make_variant(product, name="S", price=8000, stock=3)
    large = make_variant(product, name="L", price=12000, stock=4)

    order = _checkout(user, address, (product, small, 2), (product, large, 1))

    assert order.status == Order.Status.PENDING
    assert order.payment_status == Order.PaymentStatus.PENDING
    assert order.order_number.startswith("ORD-")
    assert order.subtotal == 28000
    assert order.tax == 5040
    assert order.shipping_cost == 5000
    assert order.total == 38040
    assert ProductVariant.objects.get(pk=small.pk).stock == 1
    assert ProductVariant.objects.get(pk=large.pk).stock == 3
    assert [(i.variant_name, i.unit_price, i.total) for i in order.items.order_by("pk")] == [
        ("S", 8000, 16000), ("L", 12000, 12000),
    ]


def test_line_without_variant_uses_base_price(user, address, make_product):
    mug = make_product(name="Mug", base_price=30000)
    order = _checkout(user, address, (mug, None, 2))
    assert order.subtotal == 60000
    assert order.shipping_cost == 0


def test_create_order_rolls_back_on_stock_failure(user, address, product, make_variant):
    plenty = make_variant(product, name="S", stock=10)
    scarce = make_variant(product, name="XL", stock=1)
    CartItem.objects.create(user=user, product=product, variant=plenty, quantity=1)

    with pytest.raises(ConflictError) as exc:
        _checkout(user, address, (product, plenty, 3), (product, scarce, 2))

    assert "XL" in str(exc.value.detail)
    assert Order.objects.count() == 0
    assert OrderItem.objects.count() == 0
    assert ProductVariant.objects.get(pk=plenty.pk).stock == 10
    assert CartItem.objects.filter(user=user).count() == 1


def test_stock_is_conserved_across_orders_and_cancellation(user, address, variant):
    product = variant.product
    first = _checkout(user, address, (product, variant, 2))
    second = _checkout(user, address, (product, variant, 3))
    assert ProductVariant.objects.get(pk=variant.pk).stock == 0

    cancel_order(user=user, order_id=first.pk)
    assert ProductVariant.objects.get(pk=variant.pk).stock == 2

    ordered = sum(i.quantity for i in OrderItem.objects.filter(order=second))
    assert ProductVariant.objects.get(pk=variant.pk).stock + ordered == 5


def test_ordered_products_are_cleared_from_cart(user, address, product, make_product, make_variant):
    shirt = make_variant(product, stock=5)
    hat = make_product(name="Hat")
    CartItem.objects.create(user=user, product=product, variant=shirt, quantity=1)
    CartItem.objects.create(user=user, product=hat, quantity=1)

    _checkout(user, address, (product, shirt, 1))

    assert list(CartItem.objects.filter(user=user).values_list("product_id", flat=True)) == [hat.pk]


def test_address_of_another_user_is_not_found(user, other_user, variant):
    foreign = Address.objects.create(user=other_user, full_name="X", street="Y", city="Z")
    with pytest.raises(NotFoundError):
        _checkout(user, foreign, (variant.product, variant, 1))


def test_unknown_product_is_not_found(user, address, variant):
    with pytest.raises(NotFoundError):
        create_order(user=user, address_id=address.pk, payment_method="card",
                     items=[{"product_id": 999999, "variant_id": None, "quantity": 1}])
    assert ProductVariant.objects.get(pk=variant.pk).stock == 5


def test_unapproved_product_is_a_conflict(user, address, make_product, make_variant):
    draft = make_product(name="Draft", status=Product.Status.PENDING)
    v = make_variant(draft)
    with pytest.raises(ConflictError) as exc:
        _checkout(user, address, (draft, v, 1))
    assert "Draft" in str(exc.value.detail)


def test_variant_of_another_product_is_not_found(user, address, product, make_product, make_variant):
    other = make_product(name="Other")
    stray = make_variant(other)
    with pytest.raises(NotFoundError):
        _checkout(user, address, (product, stray, 1))


def test_order_number_collision_retries_with_fresh_number(user, address, variant, monkeypatch):
    numbers = iter(["ORD-1-AAAAAA", "ORD-1-AAAAAA", "ORD-2-BBBBBB"])
    monkeypatch.setattr(services, "generate_order_number", lambda: next(numbers))

    first = _checkout(user, address, (variant.product, variant, 1))
    second = _checkout(user, address, (variant.product, variant, 1))

    assert first.order_number == "ORD-1-AAAAAA"
    assert second.order_number == "ORD-2-BBBBBB"


def test_order_number_exhaustion_rolls_back(user, address, variant, monkeypatch):
    monkeypatch.setattr(services, "generate_order_number", lambda: "ORD-1-AAAAAA")
    _checkout(user, address, (variant.product, variant, 1))

    with pytest.raises(ConflictError):
        _checkout(user, address, (variant.product, variant, 1))
    assert Order.objects.count() == 1
    assert ProductVariant.objects.get(pk=variant.pk).stock == 4


def test_cancel_twice_does_not_restock_twice(user, address, variant):
    order = _checkout(user, address, (variant.product, variant, 2))
    cancel_order(user=user, order_id=order.pk)

    with pytest.raises(ConflictError):
        cancel_order(user=user, order_id=order.pk)
    assert ProductVariant.objects.get(pk=variant.pk).stock == 5


def test_delivered_order_cannot_be_cancelled(user, address, variant):
    order = _checkout(user, address, (variant.product, variant, 1))
    Order.objects.filter(pk=order.pk).update(status=Order.Status.DELIVERED)

    with pytest.raises(ConflictError):
        cancel_order(user=user, order_id=order.pk)
    assert ProductVariant.objects.get(pk=variant.pk).stock == 4


def test_cancel_of_foreign_order_is_not_found(user, other_user, address, variant):
    order = _checkout(user, address, (variant.product, variant, 1))
    with pytest.raises(NotFoundError):
        cancel_order(user=other_user, order_id=order.pk)


def test_vendor_moves_order_forward_one_step(user, address, vendor, variant):
    order = _checkout(user, address, (variant.product, variant, 1))

    order = update_order_status(user=vendor.user, order_id=order.pk, status=Order.Status.CONFIRMED)
    assert order.status == Order.Status.CONFIRMED

    with pytest.raises(ConflictError):
        update_order_status(user=vendor.user, order_id=order.pk, status=Order.Status.DELIVERED)


def test_vendor_without_lines_in_order_is_denied(user, address, variant, make_vendor):
    order = _checkout(user, address, (variant.product, variant, 1))
    stranger = make_vendor(name="Elsewhere")
    with pytest.raises(PermissionDenied):
        update_order_status(user=stranger.user, order_id=order.pk, status=Order.Status.CONFIRMED)


def test_status_cancel_goes_through_restock(user, address, admin_user, variant):
    order = _checkout(user, address, (variant.product, variant, 3))
    order = update_order_status(user=admin_user, order_id=order.pk, status=Order.Status.CANCELLED)
    assert order.status == Order.Status.CANCELLED
    assert ProductVariant.objects.get(pk=variant.pk).stock == 5


def test_second_checkout_beyond_remaining_stock_is_rejected(user, other_user, address, variant):
    other_address = Address.objects.create(user=other_user, full_name="Other", street="KG 2 Ave", city="Kigali")
    _checkout(user, address, (variant.product, variant, 3))

    with pytest.raises(ConflictError):
        _checkout(other_user, other_address, (variant.product, variant, 3))

    assert ProductVariant.objects.get(pk=variant.pk).stock == 2
    assert Order.objects.count() == 1
    assert OrderItem.objects.count() == 1


@pytest.mark.skipif(connection.vendor != "postgresql", reason="needs real row locks")
def test_two_checkouts_for_last_unit_sell_exactly_once(user, address, variant):
    ProductVariant.objects.filter(pk=variant.pk).update(stock=1)
    barrier = threading.Barrier(2)
    results = []

    def buy():
        try:
            barrier.wait()
            _checkout(user, address, (variant.product, variant, 1))
            results.append("ok")
        except ConflictError:
            results.append("conflict")
        finally:
            connection.close()

    threads = [threading.Thread(target=buy) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["conflict", "ok"]
    assert ProductVariant.objects.get(pk=variant.pk).stock == 0
    assert Order.objects.count() == 1
