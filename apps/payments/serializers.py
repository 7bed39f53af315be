from rest_framework import serializers

from apps.shop.models import Order


class PaymentInitializeIn(serializers.Serializer):
    paymentMethod = serializers.ChoiceField(source="payment_method", choices=Order.PaymentMethod.choices)
    redirectUrl = serializers.URLField(source="redirect_url", required=False, allow_blank=True)


class PaymentVerifyIn(serializers.Serializer):
    transactionId = serializers.CharField(source="transaction_id", max_length=100)
    # reported by the client redirect; informational only, the gateway is authoritative
    status = serializers.ChoiceField(choices=["successful", "failed", "cancelled"])
