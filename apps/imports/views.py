import logging
import os
import secrets
import time

from django.conf import settings
from rest_framework.decorators import api_view, parser_classes, permission_classes
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response

from apps.users.permissions import IsAdminRole

from . import services
from .csv_parser import CSVProductParser
from .serializers import CSVUploadIn, ProductRecordOut

logger = logging.getLogger("imports")


def store_upload(upload) -> str:
    """Write the upload under UPLOAD_DIR with a generated name and return the path."""
    upload_dir = settings.IMPORTS["UPLOAD_DIR"]
    os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, f"csv-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}.csv")
    with open(path, "wb") as fh:
        for chunk in upload.chunks():
            fh.write(chunk)
    return path


def _validated_upload(request):
    ser = CSVUploadIn(data=request.data)
    ser.is_valid(raise_exception=True)
    return ser.validated_data["file"]


@api_view(["POST"])
@permission_classes([IsAdminRole])
@parser_classes([MultiPartParser, FormParser])
def upload_products_view(request):
    upload = _validated_upload(request)
    path = store_upload(upload)
    logger.info(f"importing {upload.name} ({upload.size} bytes) for {request.user.email}")
    report = services.import_csv_file(path)
    return Response({"message": report.message, "data": report.as_dict()})


@api_view(["POST"])
@permission_classes([IsAdminRole])
@parser_classes([MultiPartParser, FormParser])
def analyze_csv_view(request):
    upload = _validated_upload(request)
    path = store_upload(upload)
    parser = CSVProductParser(path)
    try:
        stats = parser.stats()
        sample = parser.sample(3)
    finally:
        services.remove_upload(path)

    return Response({
        "message": "CSV analyzed successfully",
        "data": {
            "stats": stats.as_dict(),
            "sample": ProductRecordOut(sample, many=True).data,
            "filename": upload.name,
        },
    })
