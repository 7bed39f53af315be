import logging
import os
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Iterable, List

from django.conf import settings
from django.db import DatabaseError, transaction

from apps.shop.models import Category, Product, ProductImage, ProductVariant, Vendor
from apps.shop.pricing import MAX_MINOR_AMOUNT
from apps.users.models import User

from .csv_parser import CSVProductParser, ProductRecord

logger = logging.getLogger("imports")

_SKU_ALPHABET = string.ascii_lowercase + string.digits


def _random_token(length: int) -> str:
    return "".join(secrets.choice(_SKU_ALPHABET) for _ in range(length))


def generate_product_sku() -> str:
    return f"IMP-{int(time.time() * 1000)}-{_random_token(9)}"


@dataclass
class ImportReport:
    total_processed: int = 0
    imported_products: int = 0
    imported_variants: int = 0
    imported_images: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self, max_errors: int = None) -> dict:
        if max_errors is None:
            max_errors = settings.IMPORTS["MAX_REPORTED_ERRORS"]
        return {
            "totalProductsProcessed": self.total_processed,
            "importedProducts": self.imported_products,
            "importedVariants": self.imported_variants,
            "importedImages": self.imported_images,
            "errors": self.errors[:max_errors],
        }

    @property
    def message(self) -> str:
        return (f"Successfully imported {self.imported_products} products with "
                f"{self.imported_variants} variants and {self.imported_images} images")


@transaction.atomic
def ensure_import_fallbacks() -> tuple[Vendor, Category]:
    """Find or create the vendor and category that anchor imported products."""
    conf = settings.IMPORTS
    vendor = Vendor.objects.filter(business_name=conf["FALLBACK_VENDOR"]).order_by("pk").first()
    if vendor is None:
        owner = User.objects.filter(email=conf["SYSTEM_USER_EMAIL"]).first()
        if owner is None:
            owner = User.objects.create_user(
                conf["SYSTEM_USER_EMAIL"], None,
                first_name="System", last_name="Importer", role=User.Role.VENDOR,
            )
        vendor = Vendor.objects.create(
            user=owner,
            business_name=conf["FALLBACK_VENDOR"],
            business_type="General",
            description="Default vendor for imported products",
            is_verified=True,
            document_status=Vendor.DocumentStatus.APPROVED,
        )
        logger.info(f"created fallback vendor {vendor.business_name!r}")

    category = Category.objects.filter(name=conf["FALLBACK_CATEGORY"]).order_by("pk").first()
    if category is None:
        category = Category.objects.create(
            name=conf["FALLBACK_CATEGORY"],
            description="General category for imported products",
        )
    return vendor, category


def resolve_category(name: str, fallback: Category) -> Category:
    if not name:
        return fallback
    category = Category.objects.filter(name=name).order_by("pk").first()
    if category is None:
        category = Category.objects.create(name=name, description=f"Category for {name} products")
    return category


def _import_product(record: ProductRecord, vendor: Vendor, fallback: Category, report: ImportReport) -> None:
    if Product.objects.filter(name=record.title).exists():
        report.errors.append(f'Product "{record.title}" already exists, skipping')
        return

    priced = [v for v in record.variants if 0 < v.price <= MAX_MINOR_AMOUNT]
    if not priced:
        report.errors.append(f'Product "{record.title}" has no valid price, skipping')
        return
    base_price = min(v.price for v in priced)

    images = variants = 0
    errors = [
        f'Variant price out of range for product "{record.title}": {v.sku or "unknown"}'
        for v in record.variants if v not in priced
    ]
    default_stock = settings.IMPORTS["DEFAULT_STOCK"]
    with transaction.atomic():
        category = resolve_category(record.product_category, fallback)
        product = Product.objects.create(
            name=record.title,
            description=record.body_html or record.title,
            base_price=base_price,
            category=category,
            vendor=vendor,
            sku=generate_product_sku(),
            tags=",".join(record.tag_list),
            status=Product.Status.APPROVED,
        )

        for image in record.images:
            try:
                with transaction.atomic():
                    ProductImage.objects.create(
                        product=product,
                        url=image.src,
                        alt_text=image.alt_text or record.title,
                        position=image.position,
                    )
                images += 1
            except DatabaseError as e:
                logger.warning(f"image {image.src} for {record.title!r} failed: {e}")
                errors.append(f'Failed to import image for product "{record.title}": {image.src}')

        for variant in priced:
            try:
                with transaction.atomic():
                    ProductVariant.objects.create(
                        product=product,
                        name=variant.display_name(),
                        attributes=variant.attributes(),
                        price=variant.price,
                        stock=default_stock,
                        sku=variant.sku or f"{product.sku}-{_random_token(5)}",
                    )
                variants += 1
            except DatabaseError as e:
                logger.warning(f"variant {variant.sku or '?'} for {record.title!r} failed: {e}")
                errors.append(f'Failed to import variant for product "{record.title}": {variant.sku or "unknown"}')

        if variants == 0:
            ProductVariant.objects.create(
                product=product, name="Default", attributes={}, price=base_price,
                stock=default_stock, sku=f"{product.sku}-default",
            )
            variants += 1

    report.imported_products += 1
    report.imported_variants += variants
    report.imported_images += images
    report.errors.extend(errors)


def import_products(records: Iterable[ProductRecord]) -> ImportReport:
    """Persist parsed records one product at a time; a failing product never undoes the others."""
    report = ImportReport()
    vendor, fallback = ensure_import_fallbacks()
    for record in records:
        report.total_processed += 1
        try:
            _import_product(record, vendor, fallback, report)
        except DatabaseError as e:
            logger.exception(f"error importing product {record.title!r}")
            report.errors.append(f'Failed to import product "{record.title}": {e}')

    logger.info(f"import finished: {report.message}, {len(report.errors)} error(s)")
    return report


def remove_upload(path: str) -> None:
    try:
        os.remove(path)
    except OSError as e:
        logger.warning(f"could not delete uploaded CSV file {path}: {e}")


def import_csv_file(path: str) -> ImportReport:
    """Parse and import ``path``; the file is removed afterwards whatever the outcome."""
    try:
        return import_products(CSVProductParser(path).parse())
    finally:
        remove_upload(path)
