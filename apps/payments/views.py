from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.shop.serializers import OrderSummaryOut

from . import services
from .gateway import get_gateway
from .serializers import PaymentInitializeIn, PaymentVerifyIn


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def initialize_payment_view(request, order_id):
    ser = PaymentInitializeIn(data=request.data)
    ser.is_valid(raise_exception=True)
    _, charge = services.initialize_payment(
        user=request.user,
        order_id=order_id,
        payment_method=ser.validated_data["payment_method"],
        redirect_url=ser.validated_data.get("redirect_url") or None,
        gateway=get_gateway(),
    )
    return Response({
        "message": "Payment initialized successfully",
        "paymentUrl": charge.redirect_url,
        "paymentData": charge.data,
    })


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def verify_payment_view(request, order_id):
    ser = PaymentVerifyIn(data=request.data)
    ser.is_valid(raise_exception=True)
    outcome = services.verify_payment(
        user=request.user,
        order_id=order_id,
        transaction_id=ser.validated_data["transaction_id"],
        gateway=get_gateway(),
    )
    if outcome.successful:
        return Response({
            "message": "Payment verified successfully",
            "status": "success",
            "order": OrderSummaryOut(outcome.order).data,
        })
    return Response({
        "message": "Payment verification failed",
        "status": "failed",
        "error": outcome.message,
    })
