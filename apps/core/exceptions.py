import logging

from rest_framework import exceptions, status
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger("core")


class NotFoundError(exceptions.NotFound):
    default_detail = "Not found."


class ConflictError(exceptions.APIException):
    """The request is well formed but the current state forbids it (stock, availability, status)."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The request conflicts with the current state of the resource."
    default_code = "conflict"


class GatewayError(exceptions.APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment gateway error."
    default_code = "gateway_error"


class TransactionUnavailable(exceptions.APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "The store is busy, please retry shortly."
    default_code = "transaction_unavailable"


class ImportSourceError(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Could not read the uploaded CSV file."
    default_code = "import_source_error"


def exception_handler(exc, context):
    response = drf_exception_handler(exc, context)
    view = context.get("view")
    name = view.__class__.__name__ if view is not None else "?"
    if response is None:
        logger.exception(f"unhandled error in {name}: {exc}")
    elif response.status_code >= 500:
        logger.error(f"{name} failed with {response.status_code}: {exc}")
    return response
