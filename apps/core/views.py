import logging

from django.apps import apps
from django.db import DatabaseError, connection
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

logger = logging.getLogger("core")

# entity name -> model label reported by the health check
MONITORED_ENTITIES = {
    "users": "users.User",
    "vendors": "shop.Vendor",
    "categories": "shop.Category",
    "products": "shop.Product",
    "variants": "shop.ProductVariant",
    "orders": "shop.Order",
    "payments": "payments.Payment",
}


def entity_counts() -> dict:
    return {name: apps.get_model(label).objects.count() for name, label in MONITORED_ENTITIES.items()}


@api_view(["GET"])
@permission_classes([AllowAny])
def health(request):
    payload = {"backend": "running", "database": "unavailable", "vendor": connection.vendor}
    try:
        payload["counts"] = entity_counts()
    except DatabaseError as e:
        logger.error(f"health check failed: {e}")
        return Response(payload, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    payload["database"] = "connected"
    return Response(payload)
