import pytest

from .models import CartItem, Order, ProductVariant

pytestmark = pytest.mark.django_db


def _payload(address, variant, quantity=1, **extra):
    return {
        "addressId": address.pk,
        "paymentMethod": "mobile_money",
        "items": [{"productId": variant.product_id, "variantId": variant.pk, "quantity": quantity}],
        **extra,
    }


def test_checkout_requires_authentication(api_client, address, variant):
    res = api_client.post("/api/checkout/create", _payload(address, variant), format="json")
    assert res.status_code in (401, 403)


def test_checkout_creates_order(auth_client, address, variant):
    res = auth_client.post("/api/checkout/create", _payload(address, variant, 2, notes="ring twice"), format="json")

    assert res.status_code == 201
    order = res.data["order"]
    assert res["Location"] == f"/api/checkout/{order['id']}"
    assert order["status"] == "PENDING"
    assert order["paymentMethod"] == "mobile_money"
    assert order["notes"] == "ring twice"
    assert order["items"][0]["quantity"] == 2
    assert order["items"][0]["product"]["vendor"] == variant.product.vendor.business_name
    assert order["address"]["city"] == "Kigali"


@pytest.mark.parametrize("body", [
    {"paymentMethod": "card", "items": [{"productId": 1, "quantity": 1}]},
    {"addressId": 1, "paymentMethod": "cash", "items": [{"productId": 1, "quantity": 1}]},
    {"addressId": 1, "paymentMethod": "card", "items": []},
    {"addressId": 1, "paymentMethod": "card", "items": [{"productId": 1, "quantity": 0}]},
])
def test_checkout_rejects_invalid_body(auth_client, body):
    res = auth_client.post("/api/checkout/create", body, format="json")
    assert res.status_code == 400


def test_checkout_insufficient_stock_is_400(auth_client, address, variant):
    res = auth_client.post("/api/checkout/create", _payload(address, variant, 6), format="json")
    assert res.status_code == 400
    assert "Insufficient stock" in res.data["detail"]
    assert Order.objects.count() == 0


def test_checkout_unknown_address_is_404(auth_client, address, variant):
    body = _payload(address, variant)
    body["addressId"] = address.pk + 1000
    res = auth_client.post("/api/checkout/create", body, format="json")
    assert res.status_code == 404


def test_idempotency_key_replays_first_response(auth_client, address, variant):
    body = _payload(address, variant)
    first = auth_client.post("/api/checkout/create", body, format="json", HTTP_IDEMPOTENCY_KEY="k-1")
    second = auth_client.post("/api/checkout/create", body, format="json", HTTP_IDEMPOTENCY_KEY="k-1")

    assert first.status_code == second.status_code == 201
    assert first.data["order"]["id"] == second.data["order"]["id"]
    assert Order.objects.count() == 1
    assert ProductVariant.objects.get(pk=variant.pk).stock == 4


def test_idempotency_key_with_different_body_conflicts(auth_client, address, variant):
    auth_client.post("/api/checkout/create", _payload(address, variant), format="json", HTTP_IDEMPOTENCY_KEY="k-2")
    res = auth_client.post("/api/checkout/create", _payload(address, variant, 2), format="json",
                           HTTP_IDEMPOTENCY_KEY="k-2")
    assert res.status_code == 400
    assert Order.objects.count() == 1


def test_order_list_is_paginated_and_filtered(auth_client, address, variant):
    for _ in range(3):
        auth_client.post("/api/checkout/create", _payload(address, variant), format="json")
    Order.objects.filter(pk=Order.objects.order_by("created_at").first().pk).update(status=Order.Status.CANCELLED)

    res = auth_client.get("/api/checkout/", {"limit": 2})
    assert res.status_code == 200
    assert res.data["count"] == 3
    assert len(res.data["results"]) == 2

    res = auth_client.get("/api/checkout/", {"status": "cancelled"})
    assert res.data["count"] == 1


def test_order_detail_hides_other_users_orders(auth_client, other_user, address, variant, api_client):
    created = auth_client.post("/api/checkout/create", _payload(address, variant), format="json")
    order_id = created.data["order"]["id"]
    assert auth_client.get(f"/api/checkout/{order_id}").status_code == 200

    api_client.force_authenticate(user=other_user)
    assert api_client.get(f"/api/checkout/{order_id}").status_code == 404


def test_customer_cannot_change_status(auth_client, address, variant):
    created = auth_client.post("/api/checkout/create", _payload(address, variant), format="json")
    res = auth_client.put(f"/api/checkout/{created.data['order']['id']}/status", {"status": "CONFIRMED"},
                          format="json")
    assert res.status_code == 403


def test_vendor_confirms_order(auth_client, api_client, address, vendor, variant):
    created = auth_client.post("/api/checkout/create", _payload(address, variant), format="json")
    api_client.force_authenticate(user=vendor.user)
    res = api_client.put(f"/api/checkout/{created.data['order']['id']}/status", {"status": "CONFIRMED"},
                         format="json")
    assert res.status_code == 200
    assert res.data["order"]["status"] == "CONFIRMED"


def test_cancel_endpoint_restocks(auth_client, address, variant):
    created = auth_client.post("/api/checkout/create", _payload(address, variant, 3), format="json")
    res = auth_client.put(f"/api/checkout/{created.data['order']['id']}/cancel")
    assert res.status_code == 200
    assert ProductVariant.objects.get(pk=variant.pk).stock == 5

    again = auth_client.put(f"/api/checkout/{created.data['order']['id']}/cancel")
    assert again.status_code == 400


def test_cart_add_merges_and_summarizes(auth_client, variant):
    body = {"productId": variant.product_id, "variantId": variant.pk, "quantity": 2}
    assert auth_client.post("/api/cart/items", body, format="json").status_code == 201
    assert auth_client.post("/api/cart/items", body, format="json").status_code == 201

    res = auth_client.get("/api/cart/")
    assert len(res.data["items"]) == 1
    assert res.data["items"][0]["quantity"] == 4
    assert res.data["summary"] == {
        "totalItems": 4, "subtotal": 40000, "tax": 7200, "shippingCost": 5000, "total": 52200,
    }


def test_cart_add_beyond_stock_is_rejected(auth_client, variant):
    body = {"productId": variant.product_id, "variantId": variant.pk, "quantity": 6}
    assert auth_client.post("/api/cart/items", body, format="json").status_code == 400
    assert CartItem.objects.count() == 0


def test_cart_remove_only_own_items(auth_client, user, other_user, product):
    mine = CartItem.objects.create(user=user, product=product, quantity=1)
    theirs = CartItem.objects.create(user=other_user, product=product, quantity=1)

    assert auth_client.delete(f"/api/cart/items/{theirs.pk}").status_code == 404
    assert auth_client.delete(f"/api/cart/items/{mine.pk}").status_code == 204
    assert not CartItem.objects.filter(pk=mine.pk).exists()
