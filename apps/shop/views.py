import hashlib
import json

from django.db import transaction
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.core.exceptions import ConflictError, NotFoundError
from apps.users.permissions import IsVendorOrAdmin

from . import services
from .models import IdempotencyKey
from .serializers import (
    CartItemIn,
    CartItemOut,
    OrderCreateIn,
    OrderOut,
    OrderStatusIn,
)


class OrderPagination(PageNumberPagination):
    page_size = 10
    page_size_query_param = "limit"
    max_page_size = 100


def _created_payload(order):
    return {"message": "Order created successfully", "order": OrderOut(order).data}


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def create_order_view(request):
    ser = OrderCreateIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data

    idem = request.headers.get("Idempotency-Key")
    body_hash = hashlib.sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()

    if idem:
        with transaction.atomic():
            rec, created = IdempotencyKey.objects.select_for_update().get_or_create(
                key=idem, user=request.user,
                defaults={"request_hash": body_hash, "status_code": 0, "response_body": {}},
            )
            if not created and rec.status_code:
                if rec.request_hash != body_hash:
                    raise ConflictError("Idempotency-Key was already used with a different request.")
                return Response(rec.response_body, status=rec.status_code)

            order = services.create_order(user=request.user, **data)
            payload = _created_payload(order)
            rec.request_hash, rec.response_body, rec.status_code = body_hash, payload, status.HTTP_201_CREATED
            rec.save(update_fields=["request_hash", "response_body", "status_code"])
    else:
        order = services.create_order(user=request.user, **data)
        payload = _created_payload(order)

    headers = {"Location": f"/api/checkout/{order.pk}"}
    return Response(payload, status=status.HTTP_201_CREATED, headers=headers)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def order_list_view(request):
    qs = services.order_detail_queryset().filter(user=request.user)
    wanted = request.query_params.get("status")
    if wanted:
        qs = qs.filter(status=wanted.upper())
    paginator = OrderPagination()
    page = paginator.paginate_queryset(qs, request)
    return paginator.get_paginated_response(OrderOut(page, many=True).data)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def order_detail_view(request, order_id):
    order = services.order_detail_queryset().filter(pk=order_id, user=request.user).first()
    if order is None:
        raise NotFoundError("Order not found")
    return Response(OrderOut(order).data)


@api_view(["PUT"])
@permission_classes([IsVendorOrAdmin])
def order_status_view(request, order_id):
    ser = OrderStatusIn(data=request.data)
    ser.is_valid(raise_exception=True)
    order = services.update_order_status(user=request.user, order_id=order_id, status=ser.validated_data["status"])
    return Response({"message": "Order status updated successfully", "order": OrderOut(order).data})


@api_view(["PUT"])
@permission_classes([IsAuthenticated])
def cancel_order_view(request, order_id):
    services.cancel_order(user=request.user, order_id=order_id)
    return Response({"message": "Order cancelled successfully"})


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def cart_view(request):
    summary = services.cart_summary(request.user)
    totals = summary["totals"]
    return Response({
        "items": CartItemOut(summary["items"], many=True).data,
        "summary": {
            "totalItems": summary["total_items"],
            "subtotal": totals.subtotal,
            "tax": totals.tax,
            "shippingCost": totals.shipping_cost,
            "total": totals.total,
        },
    })


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def cart_add_view(request):
    ser = CartItemIn(data=request.data)
    ser.is_valid(raise_exception=True)
    item = services.add_to_cart(user=request.user, **ser.validated_data)
    return Response({"message": "Cart updated successfully", "item": CartItemOut(item).data}, status=status.HTTP_201_CREATED)


@api_view(["DELETE"])
@permission_classes([IsAuthenticated])
def cart_remove_view(request, item_id):
    services.remove_cart_item(user=request.user, item_id=item_id)
    return Response(status=status.HTTP_204_NO_CONTENT)
