from rest_framework import serializers

from apps.users.models import Address

from .models import CartItem, Order, OrderItem, Product, ProductImage, ProductVariant


class OrderItemIn(serializers.Serializer):
    productId = serializers.IntegerField(source="product_id", min_value=1)
    variantId = serializers.IntegerField(source="variant_id", min_value=1, required=False, allow_null=True)
    quantity = serializers.IntegerField(min_value=1)


class OrderCreateIn(serializers.Serializer):
    addressId = serializers.IntegerField(source="address_id", min_value=1)
    paymentMethod = serializers.ChoiceField(source="payment_method", choices=Order.PaymentMethod.choices)
    items = OrderItemIn(many=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_items(self, items):
        if not items:
            raise serializers.ValidationError("Order must contain at least one item.")
        return items


class OrderStatusIn(serializers.Serializer):
    status = serializers.ChoiceField(choices=[s for s in Order.Status.choices if s[0] != Order.Status.PENDING])


class CartItemIn(serializers.Serializer):
    productId = serializers.IntegerField(source="product_id", min_value=1)
    variantId = serializers.IntegerField(source="variant_id", min_value=1, required=False, allow_null=True)
    quantity = serializers.IntegerField(min_value=1, default=1)


class ImageOut(serializers.ModelSerializer):
    altText = serializers.CharField(source="alt_text")

    class Meta:
        model = ProductImage
        fields = ["id", "url", "altText", "position"]


class VariantOut(serializers.ModelSerializer):
    class Meta:
        model = ProductVariant
        fields = ["id", "name", "sku", "attributes", "price", "stock"]


class ProductSummaryOut(serializers.ModelSerializer):
    basePrice = serializers.IntegerField(source="base_price")
    vendor = serializers.CharField(source="vendor.business_name")
    image = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = ["id", "name", "sku", "basePrice", "vendor", "image"]

    def get_image(self, product):
        images = product.images.all()
        return ImageOut(images[0]).data if images else None


class AddressOut(serializers.ModelSerializer):
    fullName = serializers.CharField(source="full_name")

    class Meta:
        model = Address
        fields = ["id", "fullName", "phone", "street", "city", "district", "country"]


class OrderItemOut(serializers.ModelSerializer):
    product = ProductSummaryOut()
    variant = VariantOut(allow_null=True)
    productName = serializers.CharField(source="product_name")
    variantName = serializers.CharField(source="variant_name")
    unitPrice = serializers.IntegerField(source="unit_price")

    class Meta:
        model = OrderItem
        fields = ["id", "product", "variant", "productName", "variantName", "quantity", "unitPrice", "total"]


class OrderOut(serializers.ModelSerializer):
    orderNumber = serializers.CharField(source="order_number")
    paymentStatus = serializers.CharField(source="payment_status")
    paymentMethod = serializers.CharField(source="payment_method")
    paymentRef = serializers.CharField(source="payment_ref")
    shippingCost = serializers.IntegerField(source="shipping_cost")
    createdAt = serializers.DateTimeField(source="created_at")
    address = AddressOut()
    items = OrderItemOut(many=True)

    class Meta:
        model = Order
        fields = [
            "id", "orderNumber", "status", "paymentStatus", "paymentMethod", "paymentRef",
            "subtotal", "tax", "shippingCost", "total", "notes", "createdAt", "address", "items",
        ]


class OrderSummaryOut(serializers.ModelSerializer):
    orderNumber = serializers.CharField(source="order_number")
    paymentStatus = serializers.CharField(source="payment_status")

    class Meta:
        model = Order
        fields = ["id", "orderNumber", "status", "paymentStatus"]


class CartItemOut(serializers.ModelSerializer):
    product = ProductSummaryOut()
    variant = VariantOut(allow_null=True)

    class Meta:
        model = CartItem
        fields = ["id", "product", "variant", "quantity"]
