"""Two-phase payment handshake: initialize with the gateway, then verify.

Gateway calls never run inside a database transaction; only the state
changes that follow a verification are applied atomically.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

from apps.core.db import atomic_unit
from apps.core.exceptions import ConflictError, NotFoundError
from apps.shop.models import Order
from apps.shop.pricing import to_major_units

from .gateway import CustomerInfo, GatewayCharge, GatewayVerification, PaymentGateway
from .models import Payment

logger = logging.getLogger("payments")

REFUND_MESSAGE = "Order was cancelled; the payment will be refunded"


@dataclass(frozen=True)
class VerificationOutcome:
    successful: bool
    order: Order
    payment: Payment
    message: str = ""


def initialize_payment(*, user, order_id, payment_method: str, gateway: PaymentGateway,
                       redirect_url: Optional[str] = None) -> tuple[Payment, GatewayCharge]:
    order = Order.objects.filter(pk=order_id, user=user, payment_status=Order.PaymentStatus.PENDING).first()
    if order is None:
        raise NotFoundError("Order not found or already paid")
    if order.status == Order.Status.CANCELLED:
        raise ConflictError(f"Order {order.order_number} is cancelled and cannot be paid")

    conf = settings.PAYMENTS
    currency = settings.SHOP["CURRENCY"]
    reference = f"{order.order_number}-{int(time.time() * 1000)}"
    charge = gateway.initialize(
        reference=reference,
        amount=to_major_units(order.total),
        currency=currency,
        customer=CustomerInfo(email=user.email, name=user.full_name, phone=user.phone),
        callback_url=redirect_url or f"{conf['FRONTEND_URL']}/orders/{order.pk}/payment/callback",
        metadata={"order_id": str(order.pk), "user_id": str(user.pk)},
        payment_options=payment_method,
        description=f"Payment for order {order.order_number}",
    )

    payment = Payment.objects.create(
        order=order,
        amount=order.total,
        currency=currency,
        status=Payment.Status.PENDING,
        payment_method=payment_method,
        transaction_ref=charge.transaction_ref,
        gateway_ref=str(charge.data.get("flw_ref", "")),
        metadata=charge.data,
    )
    logger.info(f"payment initialized: order={order.order_number} ref={payment.transaction_ref}")
    return payment, charge


@atomic_unit
def _confirm(order_id, payment_id, verification: GatewayVerification, transaction_id: str) -> tuple[Order, Payment]:
    """Record a verified payment; the order only moves PENDING -> CONFIRMED, never backwards.

    A cancelled order keeps its status and its released stock: the payment is
    stored as COMPLETED and flagged for refund.
    """
    payment = Payment.objects.select_for_update().get(pk=payment_id)
    order = Order.objects.select_for_update().get(pk=order_id)
    cancelled = order.status == Order.Status.CANCELLED

    payment.status = Payment.Status.COMPLETED
    payment.metadata = {**verification.data, "refund_required": True} if cancelled else verification.data
    payment.save(update_fields=["status", "metadata", "updated_at"])
    if cancelled:
        return order, payment

    if order.payment_status == Order.PaymentStatus.PENDING:
        order.payment_status = Order.PaymentStatus.COMPLETED
        order.payment_ref = transaction_id
    if order.status == Order.Status.PENDING:
        order.status = Order.Status.CONFIRMED
    order.save(update_fields=["payment_status", "status", "payment_ref", "updated_at"])
    return order, payment


def verify_payment(*, user, order_id, transaction_id: str, gateway: PaymentGateway) -> VerificationOutcome:
    order = Order.objects.filter(pk=order_id, user=user).first()
    payment = None
    if order is not None:
        payment = order.payments.filter(transaction_ref=transaction_id).order_by("-created_at").first()
    if order is None or payment is None:
        raise NotFoundError("Order or payment not found")

    if payment.status == Payment.Status.COMPLETED:
        if order.status == Order.Status.CANCELLED:
            return VerificationOutcome(successful=False, order=order, payment=payment,
                                       message=REFUND_MESSAGE)
        return VerificationOutcome(successful=True, order=order, payment=payment)

    verification = gateway.verify(transaction_id)
    if verification.successful and verification.covers(to_major_units(payment.amount), payment.currency):
        order, payment = _confirm(order.pk, payment.pk, verification, transaction_id)
        if order.status == Order.Status.CANCELLED:
            logger.warning(f"payment {transaction_id} received for cancelled order {order.order_number}, refund required")
            return VerificationOutcome(successful=False, order=order, payment=payment,
                                       message=REFUND_MESSAGE)
        logger.info(f"payment verified: order={order.order_number} ref={transaction_id}")
        return VerificationOutcome(successful=True, order=order, payment=payment)

    message = verification.message or "Payment was not successful"
    if verification.successful:
        message = "Paid amount or currency does not match the order"
    payment.status = Payment.Status.FAILED
    payment.metadata = verification.data
    payment.save(update_fields=["status", "metadata", "updated_at"])
    logger.warning(f"payment failed: order={order.order_number} ref={transaction_id}: {message}")
    return VerificationOutcome(successful=False, order=order, payment=payment, message=message)
