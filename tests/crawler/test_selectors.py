import pytest
from pydantic import ValidationError

from content_crawler.crawler.errors import ExtractionError
from content_crawler.crawler.models import ContentType
from content_crawler.crawler.selectors import (
    DEFAULT_CONFIG,
    ArticleSelectors,
    AttrSelector,
    CrawlSourceConfig,
    ProductSelectors,
    TextSelector,
    parse_selector,
)


def test_parse_attribute_selector():
    selector = parse_selector("meta[property='og:image']::attr(content)")
    assert selector == AttrSelector(css="meta[property='og:image']", attr="content")
    assert str(selector) == "meta[property='og:image']::attr(content)"


def test_parse_text_selector():
    assert parse_selector("  h1.title ") == TextSelector(css="h1.title")


@pytest.mark.parametrize("expression", ["", "   ", "img::attr()", "img::attr(src"])
def test_parse_rejects_bad_expressions(expression):
    with pytest.raises(ValueError):
        parse_selector(expression)


def test_config_loads_camel_case_json():
    config = CrawlSourceConfig.from_record({
        "selectors": {
            "article": {
                "title": "h1",
                "content": ".post-body",
                "featuredImage": "meta[property='og:image']::attr(content)",
                "publishDate": "time::attr(datetime)",
            },
        },
        "removeElements": [".ad-banner"],
        "transforms": {"excerpt": [{"type": "maxLength", "value": 160, "ellipsis": "..."}]},
        "requestHeaders": {"Cookie": "a=b"},
        "requestDelayMs": 1500,
        "seoConfig": None,
    })

    article = config.selectors.article
    assert isinstance(article, ArticleSelectors)
    assert article.content == TextSelector(css=".post-body")
    assert article.featured_image == AttrSelector(css="meta[property='og:image']", attr="content")
    assert article.publish_date.attr == "datetime"
    assert config.remove_elements == [".ad-banner"]
    assert config.transforms_for("excerpt")[0].value == 160
    assert config.request_headers == {"Cookie": "a=b"}
    assert config.request_delay_seconds == 1.5
    assert config.selectors.product is None


def test_config_accepts_snake_case():
    config = CrawlSourceConfig.model_validate({
        "selectors": {"product": {"name": "h1", "price": ".price", "original_price": ".old"}},
        "remove_elements": [".x"],
    })
    assert config.selectors.product.original_price == TextSelector(css=".old")
    assert config.remove_elements == [".x"]


def test_transforms_found_by_camel_case_key():
    config = CrawlSourceConfig.model_validate({
        "transforms": {"originalPrice": [{"type": "parsePrice", "locale": "vi-VN"}]},
    })
    assert config.transforms_for("original_price")[0].locale == "vi-VN"
    assert config.transforms_for("price") == []


def test_missing_kind_fails_fast():
    config = CrawlSourceConfig.model_validate({"selectors": {"article": {"title": "h1", "content": "main"}}})

    with pytest.raises(ExtractionError) as exc_info:
        config.selectors_for(ContentType.PRODUCT)
    assert exc_info.value.reason == "missing_selectors"


def test_invalid_stored_config_is_extraction_error():
    with pytest.raises(ExtractionError) as exc_info:
        CrawlSourceConfig.from_record({"selectors": {"product": {"name": "h1"}}})
    assert exc_info.value.reason == "invalid_config"


def test_unknown_transform_type_rejected():
    with pytest.raises(ValidationError):
        CrawlSourceConfig.model_validate({"transforms": {"title": [{"type": "explode"}]}})


def test_default_config_covers_both_kinds():
    assert isinstance(DEFAULT_CONFIG.selectors_for(ContentType.ARTICLE), ArticleSelectors)
    product = DEFAULT_CONFIG.selectors_for(ContentType.PRODUCT)
    assert isinstance(product, ProductSelectors)
    assert product.name == TextSelector(css="h1")
    assert DEFAULT_CONFIG.request_delay_seconds is None
