"""Parse a Shopify-style product export into product records.

One logical product is spread over several rows sharing a ``Handle``: the
first titled row carries the product attributes, later rows add variants and
images.
"""
import csv
import io
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterator, List, Optional

from django.conf import settings

from apps.core.exceptions import ImportSourceError
from apps.shop.pricing import MAX_MINOR_AMOUNT, to_minor_units

logger = logging.getLogger("imports")

DEFAULT_VENDOR_NAME = "My Store"
# PositiveIntegerField range
MAX_IMAGE_POSITION = 2**31 - 1


@dataclass
class VariantRecord:
    price: int
    sku: str = ""
    option1_name: str = ""
    option1_value: str = ""
    option2_name: str = ""
    option2_value: str = ""
    option3_name: str = ""
    option3_value: str = ""
    compare_at_price: Optional[int] = None
    grams: Optional[Decimal] = None
    barcode: str = ""
    inventory_policy: str = ""
    requires_shipping: bool = False
    taxable: bool = False
    weight_unit: str = ""
    variant_image: str = ""
    cost_per_item: Optional[int] = None

    @property
    def option_values(self) -> tuple:
        return (self.option1_value, self.option2_value, self.option3_value)

    @property
    def options(self) -> List[tuple]:
        pairs = [
            (self.option1_name, self.option1_value),
            (self.option2_name, self.option2_value),
            (self.option3_name, self.option3_value),
        ]
        return [(n, v) for n, v in pairs if n and v]

    @property
    def is_bare(self) -> bool:
        """No SKU and no option values: nothing distinguishes it from the product itself."""
        return not self.sku and not any(self.option_values)

    def attributes(self) -> dict:
        return {name.lower(): value for name, value in self.options}

    def display_name(self) -> str:
        return ", ".join(f"{name}: {value}" for name, value in self.options) or "Default"


@dataclass
class ImageRecord:
    src: str
    position: int
    alt_text: str = ""


@dataclass
class ProductRecord:
    handle: str
    title: str
    body_html: str = ""
    vendor: str = DEFAULT_VENDOR_NAME
    product_category: str = ""
    type: str = ""
    tags: str = ""
    published: bool = False
    status: str = "active"
    seo_title: str = ""
    seo_description: str = ""
    variants: List[VariantRecord] = field(default_factory=list)
    images: List[ImageRecord] = field(default_factory=list)

    @property
    def tag_list(self) -> List[str]:
        return [t.strip() for t in self.tags.split(",") if t.strip()]

    def has_variant(self, candidate: VariantRecord) -> bool:
        for v in self.variants:
            if candidate.sku:
                if v.sku == candidate.sku:
                    return True
            elif v.option_values == candidate.option_values:
                return True
        return False

    def has_image(self, src: str) -> bool:
        return any(img.src == src for img in self.images)


@dataclass(frozen=True)
class ProductStats:
    total_products: int
    total_variants: int
    total_images: int
    categories: List[str]
    vendors: List[str]

    def as_dict(self) -> dict:
        return {
            "totalProducts": self.total_products,
            "totalVariants": self.total_variants,
            "totalImages": self.total_images,
            "categories": self.categories,
            "vendors": self.vendors,
        }


def _cell(row: dict, name: str) -> str:
    return (row.get(name) or "").strip()


def _flag(value: str) -> bool:
    return value.lower() == "true"


def _decimal(value: str) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        return None


def _int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def _money(value: str, decimals: int) -> Optional[int]:
    amount = _decimal(value)
    if amount is None or not amount.is_finite():
        return None
    if amount > Decimal(MAX_MINOR_AMOUNT).scaleb(-decimals):
        return None
    return to_minor_units(amount, decimals)


def summarize(products: List[ProductRecord]) -> ProductStats:
    categories = list(dict.fromkeys(p.product_category for p in products if p.product_category))
    vendors = list(dict.fromkeys(p.vendor for p in products if p.vendor))
    return ProductStats(
        total_products=len(products),
        total_variants=sum(len(p.variants) for p in products),
        total_images=sum(len(p.images) for p in products),
        categories=categories,
        vendors=vendors,
    )


class CSVProductParser:
    """Restartable parser: every ``parse()`` re-reads ``source`` from the start.

    ``source`` is a filesystem path or a seekable text/binary stream.
    """

    def __init__(self, source, currency_decimals: Optional[int] = None):
        self.source = source
        self.currency_decimals = (
            currency_decimals if currency_decimals is not None else settings.SHOP["CURRENCY_DECIMALS"]
        )

    def _open(self):
        if isinstance(self.source, (str, os.PathLike)):
            return open(self.source, newline="", encoding="utf-8-sig")
        self.source.seek(0)
        content = self.source.read()
        if isinstance(content, bytes):
            content = content.decode("utf-8-sig")
        return io.StringIO(content, newline="")

    def rows(self) -> Iterator[dict]:
        try:
            with self._open() as fh:
                reader = csv.DictReader(fh)
                if reader.fieldnames:
                    reader.fieldnames = [name.strip() for name in reader.fieldnames]
                yield from reader
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.warning(f"could not read CSV source: {e}")
            raise ImportSourceError() from e

    def parse(self) -> List[ProductRecord]:
        products: dict = {}
        for row in self.rows():
            handle = _cell(row, "Handle")
            if not handle:
                continue

            product = products.get(handle)
            if product is None:
                title = _cell(row, "Title")
                if not title:
                    continue
                product = self._product_from(handle, title, row)
                products[handle] = product

            if _cell(row, "Variant SKU") or _cell(row, "Variant Price"):
                variant = self._variant_from(row)
                if variant.price > 0 and not product.has_variant(variant):
                    product.variants.append(variant)

            src = _cell(row, "Image Src")
            if src and not product.has_image(src):
                position = _int(_cell(row, "Image Position"))
                if not position or not 0 < position <= MAX_IMAGE_POSITION:
                    position = len(product.images) + 1
                product.images.append(ImageRecord(
                    src=src,
                    position=position,
                    alt_text=_cell(row, "Image Alt Text"),
                ))

        for product in products.values():
            if any(not v.is_bare for v in product.variants):
                product.variants = [v for v in product.variants if not v.is_bare]
            product.images.sort(key=lambda img: img.position)
        return list(products.values())

    def stats(self) -> ProductStats:
        return summarize(self.parse())

    def sample(self, limit: int = 5) -> List[ProductRecord]:
        return self.parse()[:limit]

    @staticmethod
    def _product_from(handle: str, title: str, row: dict) -> ProductRecord:
        return ProductRecord(
            handle=handle,
            title=title,
            body_html=_cell(row, "Body (HTML)"),
            vendor=_cell(row, "Vendor") or DEFAULT_VENDOR_NAME,
            product_category=_cell(row, "Product Category"),
            type=_cell(row, "Type"),
            tags=_cell(row, "Tags"),
            published=_flag(_cell(row, "Published")),
            status=_cell(row, "Status") or "active",
            seo_title=_cell(row, "SEO Title"),
            seo_description=_cell(row, "SEO Description"),
        )

    def _variant_from(self, row: dict) -> VariantRecord:
        decimals = self.currency_decimals
        return VariantRecord(
            price=_money(_cell(row, "Variant Price"), decimals) or 0,
            sku=_cell(row, "Variant SKU"),
            option1_name=_cell(row, "Option1 Name"),
            option1_value=_cell(row, "Option1 Value"),
            option2_name=_cell(row, "Option2 Name"),
            option2_value=_cell(row, "Option2 Value"),
            option3_name=_cell(row, "Option3 Name"),
            option3_value=_cell(row, "Option3 Value"),
            compare_at_price=_money(_cell(row, "Variant Compare At Price"), decimals),
            grams=_decimal(_cell(row, "Variant Grams")),
            barcode=_cell(row, "Variant Barcode"),
            inventory_policy=_cell(row, "Variant Inventory Policy"),
            requires_shipping=_flag(_cell(row, "Variant Requires Shipping")),
            taxable=_flag(_cell(row, "Variant Taxable")),
            weight_unit=_cell(row, "Variant Weight Unit"),
            variant_image=_cell(row, "Variant Image"),
            cost_per_item=_money(_cell(row, "Cost per item"), decimals),
        )

