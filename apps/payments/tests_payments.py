from decimal import Decimal

import pytest

from apps.core.exceptions import ConflictError, NotFoundError
from apps.shop.models import Order, ProductVariant
from apps.shop.services import cancel_order, create_order, update_order_status

from . import views
from .models import Payment
from .services import initialize_payment, verify_payment

pytestmark = pytest.mark.django_db(transaction=True)


@pytest.fixture
def order(user, address, variant):
    return create_order(
        user=user, address_id=address.pk, payment_method="card",
        items=[{"product_id": variant.product_id, "variant_id": variant.pk, "quantity": 1}],
    )


def test_initialize_creates_pending_payment_and_leaves_order(user, order, fake_gateway):
    payment, charge = initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)

    assert payment.status == Payment.Status.PENDING
    assert payment.amount == order.total
    assert payment.transaction_ref.startswith(f"{order.order_number}-")
    assert charge.redirect_url.endswith(payment.transaction_ref)
    assert fake_gateway.charges[0]["amount"] == Decimal(order.total)
    assert fake_gateway.charges[0]["customer"].email == user.email
    order.refresh_from_db()
    assert (order.status, order.payment_status) == (Order.Status.PENDING, Order.PaymentStatus.PENDING)


def test_initialize_foreign_or_paid_order_is_not_found(user, other_user, order, fake_gateway):
    with pytest.raises(NotFoundError):
        initialize_payment(user=other_user, order_id=order.pk, payment_method="card", gateway=fake_gateway)

    Order.objects.filter(pk=order.pk).update(payment_status=Order.PaymentStatus.COMPLETED)
    with pytest.raises(NotFoundError):
        initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)
    assert fake_gateway.charges == []


def test_initialize_cancelled_order_is_a_conflict(user, order, fake_gateway):
    cancel_order(user=user, order_id=order.pk)
    with pytest.raises(ConflictError):
        initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)


def test_successful_verification_confirms_order(user, order, fake_gateway):
    payment, _ = initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)

    outcome = verify_payment(user=user, order_id=order.pk, transaction_id=payment.transaction_ref,
                             gateway=fake_gateway)

    assert outcome.successful
    assert outcome.order.status == Order.Status.CONFIRMED
    assert outcome.order.payment_status == Order.PaymentStatus.COMPLETED
    assert outcome.order.payment_ref == payment.transaction_ref
    assert Payment.objects.get(pk=payment.pk).status == Payment.Status.COMPLETED


def test_failed_verification_marks_payment_only(user, order, fake_gateway):
    payment, _ = initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)
    fake_gateway.successful = False

    outcome = verify_payment(user=user, order_id=order.pk, transaction_id=payment.transaction_ref,
                             gateway=fake_gateway)

    assert not outcome.successful
    assert outcome.message == "Transaction declined"
    assert Payment.objects.get(pk=payment.pk).status == Payment.Status.FAILED
    order.refresh_from_db()
    assert (order.status, order.payment_status) == (Order.Status.PENDING, Order.PaymentStatus.PENDING)


def test_underpayment_is_not_accepted(user, order, fake_gateway):
    payment, _ = initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)
    fake_gateway.paid = Decimal(order.total - 1)

    outcome = verify_payment(user=user, order_id=order.pk, transaction_id=payment.transaction_ref,
                             gateway=fake_gateway)

    assert not outcome.successful
    assert Order.objects.get(pk=order.pk).payment_status == Order.PaymentStatus.PENDING


def test_completed_payment_is_not_verified_twice(user, order, fake_gateway):
    payment, _ = initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)
    verify_payment(user=user, order_id=order.pk, transaction_id=payment.transaction_ref, gateway=fake_gateway)

    outcome = verify_payment(user=user, order_id=order.pk, transaction_id=payment.transaction_ref,
                             gateway=fake_gateway)

    assert outcome.successful
    assert fake_gateway.verified == [payment.transaction_ref]


def test_unknown_reference_is_not_found(user, order, fake_gateway):
    with pytest.raises(NotFoundError):
        verify_payment(user=user, order_id=order.pk, transaction_id="nope", gateway=fake_gateway)


def test_payment_endpoints(auth_client, order, fake_gateway, monkeypatch):
    monkeypatch.setattr(views, "get_gateway", lambda: fake_gateway)

    res = auth_client.post(f"/api/checkout/{order.pk}/payment/initialize", {"paymentMethod": "card"}, format="json")
    assert res.status_code == 200
    assert res.data["paymentUrl"].startswith("https://checkout.test/pay/")
    reference = fake_gateway.charges[0]["reference"]

    res = auth_client.post(f"/api/checkout/{order.pk}/payment/verify",
                           {"transactionId": reference, "status": "successful"}, format="json")
    assert res.status_code == 200
    assert res.data["status"] == "success"
    assert res.data["order"]["status"] == "CONFIRMED"


def test_verify_endpoint_reports_failure(auth_client, order, fake_gateway, monkeypatch):
    monkeypatch.setattr(views, "get_gateway", lambda: fake_gateway)
    auth_client.post(f"/api/checkout/{order.pk}/payment/initialize", {"paymentMethod": "card"}, format="json")
    fake_gateway.successful = False

    res = auth_client.post(f"/api/checkout/{order.pk}/payment/verify",
                           {"transactionId": fake_gateway.charges[0]["reference"], "status": "failed"},
                           format="json")
    assert res.status_code == 200
    assert res.data == {"message": "Payment verification failed", "status": "failed",
                        "error": "Transaction declined"}


def test_payment_for_cancelled_order_is_flagged_not_confirmed(user, order, variant, fake_gateway):
    payment, _ = initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)
    cancel_order(user=user, order_id=order.pk)

    outcome = verify_payment(user=user, order_id=order.pk, transaction_id=payment.transaction_ref,
                             gateway=fake_gateway)

    assert not outcome.successful
    order.refresh_from_db()
    assert (order.status, order.payment_status) == (Order.Status.CANCELLED, Order.PaymentStatus.PENDING)
    payment.refresh_from_db()
    assert payment.status == Payment.Status.COMPLETED
    assert payment.metadata["refund_required"] is True
    assert ProductVariant.objects.get(pk=variant.pk).stock == 5

    again = verify_payment(user=user, order_id=order.pk, transaction_id=payment.transaction_ref,
                           gateway=fake_gateway)
    assert not again.successful
    assert fake_gateway.verified == [payment.transaction_ref]


def test_verification_never_moves_order_backwards(user, admin_user, order, fake_gateway):
    payment, _ = initialize_payment(user=user, order_id=order.pk, payment_method="card", gateway=fake_gateway)
    update_order_status(user=admin_user, order_id=order.pk, status=Order.Status.CONFIRMED)
    update_order_status(user=admin_user, order_id=order.pk, status=Order.Status.PROCESSING)

    outcome = verify_payment(user=user, order_id=order.pk, transaction_id=payment.transaction_ref,
                             gateway=fake_gateway)

    assert outcome.successful
    order.refresh_from_db()
    assert order.status == Order.Status.PROCESSING
    assert order.payment_status == Order.PaymentStatus.COMPLETED
    assert order.payment_ref == payment.transaction_ref
