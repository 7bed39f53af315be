import io

import pytest

from apps.core.exceptions import ImportSourceError

from .csv_parser import CSVProductParser

HEADER = ("Handle,Title,Body (HTML),Vendor,Product Category,Type,Tags,Published,"
          "Option1 Name,Option1 Value,Option2 Name,Option2 Value,Variant SKU,Variant Price,"
          "Image Src,Image Position,Image Alt Text,Status\n")


def _parser(*rows, decimals=0):
    return CSVProductParser(io.StringIO(HEADER + "".join(r + "\n" for r in rows)), currency_decimals=decimals)


def test_shirt_rows_become_one_product_with_two_variants_and_sorted_images():
    parser = _parser(
        "shirt-1,Shirt,<p>Cotton</p>,Kigali Threads,Apparel,Tops,\"cotton, summer\",TRUE,"
        "Size,,,,,10000,https://img.test/a.jpg,2,Front,active",
        "shirt-1,,,,,,,,Size,M,,,SH-M,12000,https://img.test/b.jpg,1,,",
        "shirt-1,,,,,,,,Size,L,,,SH-L,13000,https://img.test/a.jpg,3,,",
    )

    [shirt] = parser.parse()

    assert shirt.title == "Shirt"
    assert shirt.vendor == "Kigali Threads"
    assert shirt.tag_list == ["cotton", "summer"]
    assert shirt.published is True
    assert [(v.sku, v.price, v.attributes()) for v in shirt.variants] == [
        ("SH-M", 12000, {"size": "M"}), ("SH-L", 13000, {"size": "L"}),
    ]
    assert [(i.src, i.position) for i in shirt.images] == [
        ("https://img.test/b.jpg", 1), ("https://img.test/a.jpg", 2),
    ]


def test_single_price_row_keeps_its_bare_variant():
    [mug] = _parser("mug,Mug,,,,,,,,,,,,4500,,,,").parse()
    assert len(mug.variants) == 1
    assert mug.variants[0].display_name() == "Default"
    assert mug.vendor == "My Store"
    assert mug.status == "active"


def test_variants_deduplicated_by_sku_then_options():
    [p] = _parser(
        "cap,Cap,,,,,,,Color,Red,,,CAP-R,3000,,,,",
        "cap,,,,,,,,Color,Red,,,CAP-R,3500,,,,",
        "cap,,,,,,,,Color,Blue,Size,S,,3000,,,,",
        "cap,,,,,,,,Color,Blue,Size,S,,3100,,,,",
    ).parse()
    assert [(v.sku, v.option_values[:2], v.price) for v in p.variants] == [
        ("CAP-R", ("Red", ""), 3000), ("", ("Blue", "S"), 3000),
    ]
    assert p.variants[1].display_name() == "Color: Blue, Size: S"


def test_rows_without_handle_or_title_are_skipped():
    products = _parser(
        ",Orphan,,,,,,,,,,,,100,,,,",
        "ghost,,,,,,,,,,,,,100,,,,",
        "real,Real,,,,,,,,,,,,100,,,,",
        "ghost,Ghost,,,,,,,,,,,,200,,,,",
    ).parse()
    assert [p.handle for p in products] == ["real", "ghost"]


def test_non_positive_and_unparseable_prices_are_dropped():
    [p] = _parser(
        "pen,Pen,,,,,,,Ink,Blue,,,PEN-B,0,,,,",
        "pen,,,,,,,,Ink,Red,,,PEN-R,abc,,,,",
        "pen,,,,,,,,Ink,Black,,,PEN-K,-5,,,,",
    ).parse()
    assert p.variants == []


def test_prices_and_positions_beyond_column_range_are_dropped():
    [p] = _parser(
        "bag,Bag,,,,,,,Size,L,,,BAG-L,1e30,https://img.test/1.jpg,99999999999,,",
        "bag,,,,,,,,Size,M,,,BAG-M,9223372036854775808,,,,",
        "bag,,,,,,,,Size,S,,,BAG-S,9223372036854775807,,,,",
    ).parse()
    assert [(v.sku, v.price) for v in p.variants] == [("BAG-S", 2**63 - 1)]
    assert [i.position for i in p.images] == [1]


def test_prices_converted_with_currency_exponent():
    [p] = _parser("book,Book,,,,,,,,,,,BK-1,19.99,,,,", decimals=2).parse()
    assert p.variants[0].price == 1999


def test_image_position_falls_back_to_insertion_order():
    [p] = _parser(
        "lamp,Lamp,,,,,,,,,,,,100,https://img.test/1.jpg,,,",
        "lamp,,,,,,,,,,,,,,https://img.test/2.jpg,,,",
    ).parse()
    assert [i.position for i in p.images] == [1, 2]


def test_stats_aggregate_parse_output():
    parser = _parser(
        "a,A,,V1,Cat1,,,,,,,,A-1,100,https://img.test/a.jpg,1,,",
        "b,B,,V1,Cat2,,,,,,,,B-1,100,,,,",
        "b,,,,,,,,,,,,B-2,200,,,,",
    )
    stats = parser.stats()
    parsed = parser.parse()
    assert stats.total_products == len(parsed) == 2
    assert stats.total_variants == sum(len(p.variants) for p in parsed) == 3
    assert stats.total_images == 1
    assert stats.as_dict()["categories"] == ["Cat1", "Cat2"]
    assert stats.vendors == ["V1"]


def test_parse_is_restartable_on_streams_and_paths(tmp_path):
    body = HEADER + "tee,Tee,,,,,,,,,,,T-1,100,,,,\n"
    path = tmp_path / "products.csv"
    path.write_text(body, encoding="utf-8")

    for source in (str(path), io.BytesIO(body.encode("utf-8"))):
        parser = CSVProductParser(source, currency_decimals=0)
        assert parser.parse() == parser.parse()
        assert [p.handle for p in parser.sample(1)] == ["tee"]


def test_utf8_bom_does_not_break_the_handle_column(tmp_path):
    path = tmp_path / "bom.csv"
    path.write_bytes(("\ufeff" + HEADER + "tee,Tee,,,,,,,,,,,T-1,100,,,,\n").encode("utf-8"))
    assert [p.handle for p in CSVProductParser(str(path), currency_decimals=0).parse()] == ["tee"]


def test_unreadable_source_fails_the_whole_parse(tmp_path):
    with pytest.raises(ImportSourceError):
        CSVProductParser(str(tmp_path / "missing.csv")).parse()

    with pytest.raises(ImportSourceError):
        CSVProductParser(io.BytesIO(b"Handle,Title\n\xff\xfe\xfa,x\n")).parse()
