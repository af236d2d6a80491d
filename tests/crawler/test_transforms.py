import pytest

from content_crawler.crawler.selectors import Transform
from content_crawler.crawler.transforms import apply_transforms, decimal_separator_hint, parse_price


@pytest.mark.parametrize("text,expected", [
    ("350.000đ", 350000),
    ("350,000 VND", 350000),
    ("1.250.000 ₫", 1250000),
    ("$1,299.99", 1299.99),
    ("1.299,99 €", 1299.99),
    ("19.99", 19.99),
    ("Giá: 99000", 99000),
])
def test_parse_price_auto(text, expected):
    assert parse_price(text) == expected


@pytest.mark.parametrize("text", [None, "", "Liên hệ", "--", "1.2.3,4,5"])
def test_unparsable_price_is_none(text):
    assert parse_price(text) is None


def test_parse_price_with_decimal_hint():
    assert parse_price("12,50 €", decimal_separator=",") == 12.5
    assert parse_price("350.000đ", decimal_separator=",") == 350000
    assert parse_price("1,500", decimal_separator=".") == 1500
    assert parse_price("1,500", decimal_separator=",") == 1.5


def test_locale_hint():
    assert decimal_separator_hint([Transform(type="parsePrice", locale="vi-VN")]) == ","
    assert decimal_separator_hint([Transform(type="parsePrice", locale="en_US")]) == "."
    assert decimal_separator_hint([Transform(type="parsePrice", decimal=",")]) == ","
    assert decimal_separator_hint([Transform(type="trim")]) is None


def test_text_transforms_in_order():
    transforms = [
        Transform(type="stripTags"),
        Transform(type="trim"),
        Transform(type="replace", find="Hot:", replace=""),
        Transform(type="toUpper"),
        Transform(type="addPrefix", value="> "),
    ]
    assert apply_transforms("  <b>Hot:</b> news ", transforms) == ">  NEWS"


def test_max_length_with_ellipsis():
    result = apply_transforms("abcdefghij", [Transform(type="maxLength", value=4, ellipsis="...")])
    assert result == "abcd..."


def test_regex_and_invalid_regex_skipped():
    assert apply_transforms("a1b2", [Transform(type="regex", pattern=r"\d", replace="")]) == "ab"
    assert apply_transforms("a1b2", [Transform(type="regex", pattern="(")]) == "a1b2"


def test_to_number_decode_and_empty_tags():
    assert apply_transforms("Mã: 12-34", [Transform(type="toNumber")]) == "1234"
    assert apply_transforms("Tom &amp; Jerry", [Transform(type="decodeHtml")]) == "Tom & Jerry"
    assert apply_transforms("<p>x</p><p> </p>", [Transform(type="removeEmptyTags")]) == "<p>x</p>"
