import os

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from apps.core.exceptions import ImportSourceError
from apps.shop.models import Category, Product, ProductImage, ProductVariant, Vendor
from apps.users.models import User

from . import services
from .csv_parser import ImageRecord, ProductRecord, VariantRecord
from .services import ensure_import_fallbacks, import_csv_file, import_products

pytestmark = pytest.mark.django_db(transaction=True)

CSV = (
    "Handle,Title,Body (HTML),Vendor,Product Category,Tags,Option1 Name,Option1 Value,"
    "Variant SKU,Variant Price,Image Src,Image Position\n"
    "shirt-1,Shirt,<p>Cotton</p>,Kigali Threads,Apparel,\"cotton, summer\",Size,,,10000,https://img.test/a.jpg,2\n"
    "shirt-1,,,,,,Size,M,SH-M,12000,https://img.test/b.jpg,1\n"
    "shirt-1,,,,,,Size,L,SH-L,13000,,\n"
    "mug,Mug,,,,,,,,4500,,\n"
)


def _write(tmp_path, body=CSV, name="products.csv"):
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    return str(path)


def test_import_creates_products_variants_and_images(tmp_path):
    report = import_csv_file(_write(tmp_path))

    assert report.as_dict() == {
        "totalProductsProcessed": 2,
        "importedProducts": 2,
        "importedVariants": 3,
        "importedImages": 2,
        "errors": [],
    }
    shirt = Product.objects.get(name="Shirt")
    assert shirt.base_price == 12000
    assert shirt.status == Product.Status.APPROVED
    assert shirt.category.name == "Apparel"
    assert shirt.vendor.business_name == "Imported Products"
    assert shirt.tags == "cotton,summer"
    assert shirt.sku.startswith("IMP-")
    assert list(shirt.variants.order_by("price").values_list("sku", "stock")) == [("SH-M", 100), ("SH-L", 100)]
    assert list(shirt.images.values_list("url", "position")) == [
        ("https://img.test/b.jpg", 1), ("https://img.test/a.jpg", 2),
    ]
    mug = Product.objects.get(name="Mug")
    assert mug.category.name == "General"
    assert mug.description == "Mug"
    [default] = mug.variants.all()
    assert (default.name, default.price) == ("Default", 4500)


def test_uploaded_file_is_removed_even_when_unreadable(tmp_path):
    path = _write(tmp_path)
    import_csv_file(path)
    assert not os.path.exists(path)

    bad = tmp_path / "bad.csv"
    bad.write_bytes(b"Handle,Title\n\xff\xfe,x\n")
    with pytest.raises(ImportSourceError):
        import_csv_file(str(bad))
    assert not bad.exists()


def test_second_import_skips_existing_products(tmp_path):
    import_csv_file(_write(tmp_path))
    report = import_csv_file(_write(tmp_path))

    assert report.imported_products == 0
    assert report.errors == [
        'Product "Shirt" already exists, skipping',
        'Product "Mug" already exists, skipping',
    ]
    assert Product.objects.count() == 2
    assert ProductVariant.objects.count() == 3


def test_fallbacks_are_created_once():
    first = ensure_import_fallbacks()
    second = ensure_import_fallbacks()

    assert first == second
    assert Vendor.objects.filter(business_name="Imported Products").count() == 1
    assert Category.objects.filter(name="General").count() == 1
    owner = User.objects.get(email="system@iwanyu.com")
    assert not owner.has_usable_password()
    assert first[0].is_verified


def test_failing_children_do_not_stop_the_product(make_variant, product):
    taken = make_variant(product, name="Taken").sku
    record = ProductRecord(
        handle="hat",
        title="Hat",
        variants=[VariantRecord(price=2000, sku=taken, option1_name="Size", option1_value="S"),
                  VariantRecord(price=2500, sku="HAT-M", option1_name="Size", option1_value="M")],
        images=[ImageRecord(src="https://img.test/1.jpg", position=1),
                ImageRecord(src="https://img.test/2.jpg", position=1)],
    )

    report = import_products([record])

    assert report.imported_products == 1
    assert report.imported_variants == 1
    assert report.imported_images == 1
    assert len(report.errors) == 2
    hat = Product.objects.get(name="Hat")
    assert list(hat.variants.values_list("sku", flat=True)) == ["HAT-M"]
    assert ProductImage.objects.filter(product=hat).count() == 1


def test_all_variants_failing_falls_back_to_default(make_variant, product):
    taken = make_variant(product, name="Taken").sku
    record = ProductRecord(handle="scarf", title="Scarf",
                           variants=[VariantRecord(price=1500, sku=taken, option1_name="Color", option1_value="Red")])

    report = import_products([record])

    assert report.imported_variants == 1
    [default] = Product.objects.get(name="Scarf").variants.all()
    assert default.sku.endswith("-default")
    assert default.price == 1500


def test_product_without_price_is_reported_and_the_rest_imports(tmp_path):
    body = CSV + "freebie,Freebie,,,,,,,FREE-1,0,,\n" + "cap,Cap,,,,,,,,,,\n"
    report = import_csv_file(_write(tmp_path, body))

    assert report.total_processed == 4
    assert report.imported_products == 2
    assert report.errors == [
        'Product "Freebie" has no valid price, skipping',
        'Product "Cap" has no valid price, skipping',
    ]
    assert set(Product.objects.values_list("name", flat=True)) == {"Shirt", "Mug"}


def test_out_of_range_price_does_not_stop_the_next_product():
    huge = ProductRecord(handle="yacht", title="Yacht", variants=[VariantRecord(price=10**30, sku="Y-1")])
    mixed = ProductRecord(handle="kite", title="Kite",
                          variants=[VariantRecord(price=10**30, sku="K-XL"), VariantRecord(price=900, sku="K-S")])
    valid = ProductRecord(handle="oar", title="Oar", variants=[VariantRecord(price=700, sku="O-1")])

    report = import_products([huge, mixed, valid])

    assert report.total_processed == 3
    assert report.imported_products == 2
    assert report.errors == [
        'Product "Yacht" has no valid price, skipping',
        'Variant price out of range for product "Kite": K-XL',
    ]
    assert list(Product.objects.get(name="Kite").variants.values_list("sku", flat=True)) == ["K-S"]
    assert Product.objects.get(name="Oar").base_price == 700


def test_a_broken_product_does_not_undo_earlier_ones(monkeypatch):
    good = ProductRecord(handle="a", title="Alpha", variants=[VariantRecord(price=100, sku="A-1")])
    bad = ProductRecord(handle="b", title="Beta", variants=[VariantRecord(price=100, sku="B-1")])
    real_sku = services.generate_product_sku
    skus = iter([real_sku(), "IMP-DUP", "IMP-DUP"])
    monkeypatch.setattr(services, "generate_product_sku", lambda: next(skus))
    Product.objects.create(name="Existing", base_price=1, category=Category.objects.create(name="C"),
                           vendor=ensure_import_fallbacks()[0], sku="IMP-DUP")

    report = import_products([good, bad])

    assert report.total_processed == 2
    assert report.imported_products == 1
    assert Product.objects.filter(name="Alpha").exists()
    assert not Product.objects.filter(name="Beta").exists()
    assert report.errors[0].startswith('Failed to import product "Beta"')


def test_report_lists_at_most_ten_errors():
    report = services.ImportReport(errors=[f"e{i}" for i in range(15)])
    assert report.as_dict()["errors"] == [f"e{i}" for i in range(10)]


def _upload(body=CSV, name="products.csv", content_type="text/csv"):
    return SimpleUploadedFile(name, body.encode("utf-8"), content_type=content_type)


def test_upload_endpoint_imports_and_cleans_up(admin_client, settings):
    res = admin_client.post("/api/import/products/upload", {"file": _upload()}, format="multipart")

    assert res.status_code == 200
    assert res.data["data"]["importedProducts"] == 2
    assert res.data["message"].startswith("Successfully imported 2 products")
    assert os.listdir(settings.IMPORTS["UPLOAD_DIR"]) == []


def test_analyze_endpoint_previews_without_importing(admin_client, settings):
    res = admin_client.post("/api/import/products/analyze", {"file": _upload()}, format="multipart")

    assert res.status_code == 200
    data = res.data["data"]
    assert data["filename"] == "products.csv"
    assert data["stats"]["totalProducts"] == 2
    assert data["stats"]["totalVariants"] == 3
    assert [p["handle"] for p in data["sample"]] == ["shirt-1", "mug"]
    assert data["sample"][0]["variants"][0]["attributes"] == {"size": "M"}
    assert Product.objects.count() == 0
    assert os.listdir(settings.IMPORTS["UPLOAD_DIR"]) == []


def test_upload_rejects_non_csv(admin_client):
    res = admin_client.post("/api/import/products/upload",
                            {"file": _upload(name="products.xlsx", content_type="application/vnd.ms-excel")},
                            format="multipart")
    assert res.status_code == 400


def test_upload_requires_admin(auth_client):
    res = auth_client.post("/api/import/products/upload", {"file": _upload()}, format="multipart")
    assert res.status_code == 403
