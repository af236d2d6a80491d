# content_crawler/crawler/selectors.py
# Responsibility: Typed selector configuration, validated once where it is loaded.

import re
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from content_crawler.crawler.errors import ExtractionError
from content_crawler.crawler.models import ContentType

ATTR_SUFFIX = re.compile(r"^(?P<css>.+?)::attr\(\s*(?P<attr>[^)\s]+)\s*\)\s*$", re.S)


# -------------------------------
# Field selectors
# -------------------------------
class TextSelector(BaseModel):
    """Reads the text (or inner HTML for rich fields) of the first match."""
    model_config = ConfigDict(frozen=True)

    css: str

    def __str__(self) -> str:
        return self.css


class AttrSelector(BaseModel):
    """Reads a named attribute of the first match."""
    model_config = ConfigDict(frozen=True)

    css: str
    attr: str

    def __str__(self) -> str:
        return f"{self.css}::attr({self.attr})"


FieldSelector = Union[AttrSelector, TextSelector]


def parse_selector(expression: str) -> FieldSelector:
    """
    Parses a selector expression into its explicit form.

    "meta[property='og:image']::attr(content)" -> AttrSelector
    "h1.title"                                 -> TextSelector
    """
    expression = expression.strip()
    if not expression:
        raise ValueError("selector must not be empty")
    match = ATTR_SUFFIX.match(expression)
    if match:
        return AttrSelector(css=match.group("css").strip(), attr=match.group("attr"))
    if "::attr(" in expression:
        raise ValueError(f"malformed attribute selector: {expression!r}")
    return TextSelector(css=expression)


def _coerce_selector(value: Any) -> Any:
    if isinstance(value, str):
        return parse_selector(value)
    return value


Selector = Annotated[FieldSelector, BeforeValidator(_coerce_selector)]


class _ConfigModel(BaseModel):
    # The admin layer stores camelCase JSON; snake_case is accepted too.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -------------------------------
# Per-kind selector sets
# -------------------------------
class ArticleSelectors(_ConfigModel):
    title: Selector
    content: Selector
    excerpt: Optional[Selector] = None
    featured_image: Optional[Selector] = None
    author: Optional[Selector] = None
    publish_date: Optional[Selector] = None

    RICH_FIELDS: ClassVar[Tuple[str, ...]] = ("content",)
    URL_FIELDS: ClassVar[Tuple[str, ...]] = ("featured_image",)


class ProductSelectors(_ConfigModel):
    name: Selector
    price: Selector
    original_price: Optional[Selector] = None
    description: Optional[Selector] = None
    images: Optional[Selector] = None
    sku: Optional[Selector] = None

    RICH_FIELDS: ClassVar[Tuple[str, ...]] = ("description",)
    URL_FIELDS: ClassVar[Tuple[str, ...]] = ("images",)
    PRICE_FIELDS: ClassVar[Tuple[str, ...]] = ("price", "original_price")


KindSelectors = Union[ArticleSelectors, ProductSelectors]


class SelectorSet(_ConfigModel):
    article: Optional[ArticleSelectors] = None
    product: Optional[ProductSelectors] = None


# -------------------------------
# Transforms and hints
# -------------------------------
TransformType = Literal[
    "trim", "stripTags", "replace", "regex", "maxLength", "toNumber",
    "toLower", "toUpper", "removeEmptyTags", "decodeHtml", "addPrefix",
    "addSuffix", "parsePrice",
]


class Transform(_ConfigModel):
    type: TransformType
    find: Optional[str] = None
    replace: Optional[str] = None
    pattern: Optional[str] = None
    value: Optional[Union[int, str]] = None
    ellipsis: Optional[str] = None
    # parsePrice hints: a locale such as "vi-VN" or an explicit decimal separator
    locale: Optional[str] = None
    decimal: Optional[Literal[".", ","]] = None


class SeoConfig(_ConfigModel):
    extract_meta: bool = True
    meta_title_selector: Optional[Selector] = None
    meta_description_selector: Optional[Selector] = None


class ImageConfig(_ConfigModel):
    skip_patterns: Optional[List[str]] = None
    allowed_hosts: Optional[List[str]] = None


# -------------------------------
# Source config
# -------------------------------
class CrawlSourceConfig(_ConfigModel):
    selectors: SelectorSet = SelectorSet()
    remove_elements: List[str] = []
    use_default_remove_elements: bool = True
    transforms: Dict[str, List[Transform]] = {}
    seo_config: Optional[SeoConfig] = None
    image_config: Optional[ImageConfig] = None
    request_headers: Dict[str, str] = {}
    request_delay_ms: Optional[int] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CrawlSourceConfig":
        """
        Builds a config from a stored source row (JSON columns, possibly NULL).

        Raises:
            ExtractionError: reason "invalid_config" when the stored shape is wrong.
        """
        payload = {key: value for key, value in record.items() if value is not None}
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise ExtractionError(ExtractionError.INVALID_CONFIG, str(e)) from e

    def selectors_for(self, content_type: ContentType) -> KindSelectors:
        """
        Returns the selector set for a content kind.

        Raises:
            ExtractionError: reason "missing_selectors" when the kind is not configured.
        """
        kind_selectors = getattr(self.selectors, ContentType(content_type).value)
        if kind_selectors is None:
            raise ExtractionError(
                ExtractionError.MISSING_SELECTORS,
                f"No {ContentType(content_type).value} selectors configured",
            )
        return kind_selectors

    def transforms_for(self, field: str) -> List[Transform]:
        """Transforms are looked up by snake_case or camelCase field name."""
        return self.transforms.get(field) or self.transforms.get(to_camel(field)) or []

    @property
    def request_delay_seconds(self) -> Optional[float]:
        if self.request_delay_ms is None:
            return None
        return max(self.request_delay_ms, 0) / 1000.0


# Used when a job has no source, so the crawler works before any source is set up.
DEFAULT_CONFIG = CrawlSourceConfig.model_validate({
    "selectors": {
        "article": {
            "title": "h1",
            "content": "article, .article-content, .post-content, main",
            "excerpt": "meta[name='description']::attr(content)",
            "featuredImage": "meta[property='og:image']::attr(content)",
        },
        "product": {
            "name": "h1",
            "price": ".price, [class*='price']",
            "description": ".description, .product-description",
            "images": "meta[property='og:image']::attr(content)",
        },
    },
})
