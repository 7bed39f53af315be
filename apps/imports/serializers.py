from django.conf import settings
from rest_framework import serializers


class CSVUploadIn(serializers.Serializer):
    file = serializers.FileField()

    def validate_file(self, upload):
        name = (upload.name or "").lower()
        if not (name.endswith(".csv") or upload.content_type == "text/csv"):
            raise serializers.ValidationError("Only CSV files are allowed.")
        if upload.size > settings.IMPORTS["MAX_UPLOAD_SIZE"]:
            raise serializers.ValidationError("File is too large.")
        return upload


class VariantRecordOut(serializers.Serializer):
    sku = serializers.CharField()
    price = serializers.IntegerField()
    name = serializers.CharField(source="display_name")
    attributes = serializers.DictField()
    compareAtPrice = serializers.IntegerField(source="compare_at_price", allow_null=True)


class ImageRecordOut(serializers.Serializer):
    src = serializers.CharField()
    position = serializers.IntegerField()
    altText = serializers.CharField(source="alt_text")


class ProductRecordOut(serializers.Serializer):
    handle = serializers.CharField()
    title = serializers.CharField()
    vendor = serializers.CharField()
    productCategory = serializers.CharField(source="product_category")
    type = serializers.CharField()
    tags = serializers.ListField(source="tag_list", child=serializers.CharField())
    published = serializers.BooleanField()
    status = serializers.CharField()
    variants = VariantRecordOut(many=True)
    images = ImageRecordOut(many=True)

