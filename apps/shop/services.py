import logging
import secrets
import string
import time

from django.db import IntegrityError, transaction
from django.db.models import F
from rest_framework.exceptions import PermissionDenied

from apps.core.db import atomic_unit
from apps.core.exceptions import ConflictError, NotFoundError
from apps.users.models import Address, User

from .models import CartItem, Order, OrderItem, Product, ProductVariant
from .pricing import OrderTotals, compute_totals

logger = logging.getLogger("shop")

ORDER_NUMBER_ATTEMPTS = 5
_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

# forward path of an order; CANCELLED is reachable from any non-terminal state
NEXT_STATUS = {
    Order.Status.PENDING: Order.Status.CONFIRMED,
    Order.Status.CONFIRMED: Order.Status.PROCESSING,
    Order.Status.PROCESSING: Order.Status.SHIPPED,
    Order.Status.SHIPPED: Order.Status.DELIVERED,
}


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(6))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def order_detail_queryset():
    return Order.objects.select_related("address").prefetch_related(
        "items__product__images", "items__product__vendor", "items__variant",
    )


def _insert_order(**fields) -> Order:
    # order_number is unique; a collision only costs the savepoint
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        number = generate_order_number()
        try:
            with transaction.atomic():
                return Order.objects.create(order_number=number, **fields)
        except IntegrityError:
            logger.warning(f"order number collision on {number} ({attempt}/{ORDER_NUMBER_ATTEMPTS})")
    raise ConflictError("Could not allocate a unique order number, please retry.")


def reserve_stock(variant: ProductVariant, quantity: int) -> None:
    """Decrement stock only if enough is left; the WHERE clause is the oversell guard."""
    updated = ProductVariant.objects.filter(pk=variant.pk, stock__gte=quantity).update(stock=F("stock") - quantity)
    if not updated:
        raise ConflictError(f'Insufficient stock for variant "{variant.name}" ({variant.sku})')


def release_stock(variant_id: int, quantity: int) -> None:
    ProductVariant.objects.filter(pk=variant_id).update(stock=F("stock") + quantity)


def load_available_product(product_id, products: dict) -> Product:
    product = products.get(product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_available:
        raise ConflictError(f'Product "{product.name}" ({product_id}) is not available')
    return product


def load_variant(product: Product, variant_id, variants: dict) -> ProductVariant:
    variant = variants.get(variant_id)
    if variant is None or variant.product_id != product.pk:
        raise NotFoundError(f'Variant {variant_id} not found for product "{product.name}"')
    if not variant.is_active:
        raise ConflictError(f'Variant "{variant.name}" ({variant_id}) is not available')
    return variant


@atomic_unit
def create_order(*, user: User, address_id, payment_method: str, items: list[dict], notes: str = "") -> Order:
    """items = [{'product_id': 1, 'variant_id': 3, 'quantity': 2}, ...]"""
    address = Address.objects.filter(pk=address_id, user=user).first()
    if address is None:
        raise NotFoundError("Address not found")

    product_ids = {it["product_id"] for it in items}
    variant_ids = sorted({it["variant_id"] for it in items if it.get("variant_id")})
    products = Product.objects.in_bulk(product_ids)
    # lock in a fixed order so concurrent checkouts cannot deadlock each other
    variants = {v.pk: v for v in ProductVariant.objects.select_for_update().filter(pk__in=variant_ids).order_by("pk")}

    subtotal = 0
    lines = []
    for it in items:
        product = load_available_product(it["product_id"], products)
        quantity = int(it["quantity"])
        variant = None
        unit_price = product.base_price
        if it.get("variant_id"):
            variant = load_variant(product, it["variant_id"], variants)
            reserve_stock(variant, quantity)
            unit_price = variant.price

        line_total = unit_price * quantity
        subtotal += line_total
        lines.append(OrderItem(
            product=product,
            variant=variant,
            product_name=product.name,
            variant_name=variant.name if variant else "",
            quantity=quantity,
            unit_price=unit_price,
            total=line_total,
        ))

    totals: OrderTotals = compute_totals(subtotal)
    order = _insert_order(
        user=user,
        address=address,
        status=Order.Status.PENDING,
        payment_status=Order.PaymentStatus.PENDING,
        payment_method=payment_method,
        subtotal=totals.subtotal,
        tax=totals.tax,
        shipping_cost=totals.shipping_cost,
        total=totals.total,
        notes=notes or "",
    )
    for line in lines:
        line.order = order
    OrderItem.objects.bulk_create(lines)

    CartItem.objects.filter(user=user, product_id__in=product_ids).delete()

    number, total = order.order_number, order.total
    transaction.on_commit(lambda: logger.info(f"order created: {number} total={total} items={len(lines)}"))
    return order_detail_queryset().get(pk=order.pk)


def _restock_and_cancel(order: Order) -> None:
    lines = order.items.filter(variant__isnull=False).order_by("variant_id")
    for line in lines:
        release_stock(line.variant_id, line.quantity)
    order.status = Order.Status.CANCELLED
    order.save(update_fields=["status", "updated_at"])


def _check_cancellable(order: Order) -> None:
    if order.status == Order.Status.DELIVERED:
        raise ConflictError(f"Order {order.order_number} has been delivered and cannot be cancelled")
    if order.status == Order.Status.CANCELLED:
        raise ConflictError(f"Order {order.order_number} is already cancelled")


@atomic_unit
def cancel_order(*, user: User, order_id) -> Order:
    order = Order.objects.select_for_update().filter(pk=order_id, user=user).first()
    if order is None:
        raise NotFoundError("Order not found")
    _check_cancellable(order)
    _restock_and_cancel(order)
    logger.info(f"order cancelled: {order.order_number}")
    return order


@atomic_unit
def update_order_status(*, user: User, order_id, status: str) -> Order:
    """Vendor/admin status change; vendors may only touch orders containing their products."""
    order = Order.objects.select_for_update().filter(pk=order_id).first()
    if order is None:
        raise NotFoundError("Order not found")

    if not user.is_admin:
        vendor = getattr(user, "vendor", None)
        owns_line = vendor is not None and order.items.filter(product__vendor=vendor).exists()
        if not owns_line:
            raise PermissionDenied("You can only update orders containing your products")

    if status == Order.Status.CANCELLED:
        _check_cancellable(order)
        _restock_and_cancel(order)
    elif NEXT_STATUS.get(order.status) == status:
        order.status = status
        order.save(update_fields=["status", "updated_at"])
    else:
        raise ConflictError(f"Order {order.order_number} cannot move from {order.status} to {status}")

    logger.info(f"order {order.order_number} status -> {order.status} by {user.pk}")
    return order_detail_queryset().get(pk=order.pk)


# ---------------------------
# cart
# ---------------------------
def cart_summary(user: User) -> dict:
    items = list(
        CartItem.objects.filter(user=user).select_related("product__vendor", "variant").prefetch_related("product__images")
    )
    subtotal = sum((it.variant.price if it.variant else it.product.base_price) * it.quantity for it in items)
    return {
        "items": items,
        "total_items": sum(it.quantity for it in items),
        "totals": compute_totals(subtotal),
    }


@transaction.atomic
def add_to_cart(*, user: User, product_id, quantity: int, variant_id=None) -> CartItem:
    product = load_available_product(product_id, Product.objects.in_bulk([product_id]))
    variant = None
    if variant_id:
        variant = load_variant(product, variant_id, ProductVariant.objects.in_bulk([variant_id]))

    item = (
        CartItem.objects.select_for_update()
        .filter(user=user, product=product, variant=variant)
        .first()
    )
    new_quantity = quantity + (item.quantity if item else 0)
    if variant is not None and variant.stock < new_quantity:
        raise ConflictError(f'Insufficient stock for variant "{variant.name}" ({variant.sku})')

    if item is None:
        return CartItem.objects.create(user=user, product=product, variant=variant, quantity=quantity)
    item.quantity = new_quantity
    item.save(update_fields=["quantity", "updated_at"])
    return item


def remove_cart_item(*, user: User, item_id) -> None:
    deleted, _ = CartItem.objects.filter(pk=item_id, user=user).delete()
    if not deleted:
        raise NotFoundError("Cart item not found")
