# content_crawler/crawler/extractor.py
# Responsibility: Turn raw HTML into article/product records using configurable CSS selector rules.

import logging
import re
from typing import Any, Dict, List, Optional, Pattern, TypedDict
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from content_crawler.crawler.errors import ExtractionError, InvalidUrlError
from content_crawler.crawler.models import ContentType, ExtractedArticle, ExtractedProduct
from content_crawler.crawler.selectors import (
    ArticleSelectors,
    AttrSelector,
    CrawlSourceConfig,
    FieldSelector,
    ImageConfig,
    KindSelectors,
    ProductSelectors,
    parse_selector,
)
from content_crawler.crawler.transforms import (
    apply_transforms,
    collapse_whitespace,
    decimal_separator_hint,
    parse_price,
)
from content_crawler.crawler.url_normalizer import is_blocked_host, normalize

logger = logging.getLogger(__name__)


# -------------------------------
# Constants
# -------------------------------
DEFAULT_REMOVE_ELEMENTS = [
    "script", "style", "noscript", "template",
    "iframe", "form", "input", "button", "select", "textarea",
    "nav", "header", "footer", "aside",
    "[role='navigation']", "[role='banner']", "[role='complementary']",
    "video", "audio", "canvas", "object", "embed", "svg",
    ".advertisement", ".ads", ".ad-container", "[data-ad]",
    ".social-share", ".share-buttons", ".like-buttons",
    ".comment-section", ".comments", ".fb-comments",
    ".related-posts", ".related-articles",
    ".breadcrumb", ".pagination",
    ".newsletter-signup", ".popup", ".modal",
]
REMOVE_ATTRIBUTES = (
    "onclick", "onload", "onerror", "onmouseover", "onmouseout",
    "onfocus", "onblur", "onsubmit", "onchange", "onkeydown", "onkeyup",
    "data-ga", "data-gtm", "data-analytics", "data-tracking",
    "data-action", "data-controller", "data-target", "data-toggle",
)
LAZY_LOAD_ATTRS = (
    "data-src", "data-lazy-src", "data-original",
    "data-srcset", "data-lazy-srcset",
    "data-bg", "data-background-image",
    "nitro-lazy-src",
)
DEFAULT_SKIP_IMAGE_PATTERNS = [
    re.compile(p) for p in (
        r"1x1\.", r"pixel\.", r"beacon\.", r"\.gif\?",
        r"gravatar", r"avatar", r"(?i)icon", r"(?i)logo",
        r"placeholder", r"blank\.", r"spacer\.",
        r"doubleclick", r"googlesyndication",
    )
]
META_TITLE_MAX = 200
META_DESCRIPTION_MAX = 500
PREVIEW_VALUE_MAX = 200
LINK_TITLE_MAX = 200
DEFAULT_LINK_SELECTOR = "a[href]"
DEFAULT_LINK_LIMIT = 100
SKIPPED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:")


class SelectorPreview(TypedDict):
    found: bool
    value: str
    count: int


class ExtractedLink(TypedDict):
    url: str
    title: str
    index: int


class ContentExtractor:
    """
    Selector-driven HTML extractor using BeautifulSoup.
    - Removal rules applied before any field is read
    - Text / attribute / rich-HTML field resolution
    - Per-field transforms and price parsing
    - Relative URL resolution and image filtering
    - SEO metadata
    """

    def extract(
        self,
        html: str,
        kind_selectors: KindSelectors,
        config: Optional[CrawlSourceConfig] = None,
        base_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Extracts one record from a page.

        Args:
            html (str): Raw page HTML.
            kind_selectors (KindSelectors): Article or product selectors.
            config (CrawlSourceConfig): Removal rules, transforms and hints.
            base_url (str): Origin used to resolve relative URLs.

        Returns:
            dict: An ExtractedArticle or ExtractedProduct.

        Raises:
            ExtractionError: "no_content_matched" if no configured field yielded a value,
                "invalid_config" if a selector is not valid CSS.
        """
        config = config or CrawlSourceConfig()
        soup = BeautifulSoup(html, "html.parser")

        # 1. Clean the DOM
        self._remove_elements(soup, config)
        self._strip_attributes(soup)
        self._resolve_lazy_images(soup)

        # 2. Extract fields
        if isinstance(kind_selectors, ArticleSelectors):
            record = self._extract_article(soup, kind_selectors, config, base_url)
        elif isinstance(kind_selectors, ProductSelectors):
            record = self._extract_product(soup, kind_selectors, config, base_url)
        else:
            raise ExtractionError(ExtractionError.MISSING_SELECTORS, "Unknown selector set")

        # 3. A page that matched nothing means the selectors do not fit the site
        configured = [name for name in type(kind_selectors).model_fields if getattr(kind_selectors, name) is not None]
        if all(self._is_empty(record.get(name)) for name in configured):
            raise ExtractionError(
                ExtractionError.NO_CONTENT_MATCHED,
                f"None of the {len(configured)} configured selectors matched",
            )
        return record

    def extract_for(
        self,
        content_type: ContentType,
        html: str,
        config: CrawlSourceConfig,
        base_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Resolves the selector set for `content_type` and extracts."""
        return self.extract(html, config.selectors_for(content_type), config, base_url)

    # ---------------------------
    # Record shapes
    # ---------------------------
    def _extract_article(self, soup: BeautifulSoup, selectors: ArticleSelectors,
                         config: CrawlSourceConfig, base_url: Optional[str]) -> ExtractedArticle:
        featured_image = None
        if selectors.featured_image is not None:
            featured_image = self._read_url(soup, selectors.featured_image, base_url)
            if featured_image and not self._is_allowed_host(featured_image, config.image_config):
                featured_image = None

        images: List[str] = []
        if not isinstance(selectors.content, AttrSelector):
            images = self._collect_images(soup, selectors.content.css, base_url, config.image_config)

        meta_title, meta_description = self._extract_seo(soup, config)
        return ExtractedArticle(
            title=self._field(soup, selectors, "title", config) or "",
            content=self._field(soup, selectors, "content", config, rich=True) or "",
            excerpt=self._field(soup, selectors, "excerpt", config),
            featured_image=featured_image,
            author=self._field(soup, selectors, "author", config),
            publish_date=self._field(soup, selectors, "publish_date", config),
            meta_title=meta_title,
            meta_description=meta_description,
            images=images,
        )

    def _extract_product(self, soup: BeautifulSoup, selectors: ProductSelectors,
                         config: CrawlSourceConfig, base_url: Optional[str]) -> ExtractedProduct:
        images: List[str] = []
        if selectors.images is not None:
            images = self._read_image_list(soup, selectors.images, base_url, config.image_config)

        meta_title, meta_description = self._extract_seo(soup, config)
        return ExtractedProduct(
            name=self._field(soup, selectors, "name", config) or "",
            price=self._price(soup, selectors, "price", config),
            original_price=self._price(soup, selectors, "original_price", config),
            description=self._field(soup, selectors, "description", config, rich=True),
            images=images,
            sku=self._field(soup, selectors, "sku", config),
            meta_title=meta_title,
            meta_description=meta_description,
        )

    # ---------------------------
    # Cleaning
    # ---------------------------
    def _remove_elements(self, soup: BeautifulSoup, config: CrawlSourceConfig) -> None:
        rules = list(DEFAULT_REMOVE_ELEMENTS) if config.use_default_remove_elements else []
        rules.extend(config.remove_elements)
        for rule in rules:
            try:
                matches = soup.select(rule)
            except SelectorSyntaxError as e:
                logger.warning("[Extractor] Ignoring invalid removal selector %r: %s", rule, e)
                continue
            for tag in matches:
                # Nested matches may already be gone with their ancestor
                if not tag.decomposed:
                    tag.decompose()

    def _strip_attributes(self, soup: BeautifulSoup) -> None:
        for tag in soup.find_all(True):
            for attr in REMOVE_ATTRIBUTES:
                if attr in tag.attrs:
                    del tag.attrs[attr]

    def _resolve_lazy_images(self, soup: BeautifulSoup) -> None:
        for img in soup.find_all("img"):
            for attr in LAZY_LOAD_ATTRS:
                lazy_src = self._attr_text(img, attr)
                if lazy_src and (lazy_src.startswith("http") or lazy_src.startswith("/")):
                    img["src"] = lazy_src
                    del img[attr]
                    break

    # ---------------------------
    # Field resolution
    # ---------------------------
    def _select_first(self, soup: BeautifulSoup, css: str) -> Optional[Tag]:
        try:
            return soup.select_one(css)
        except SelectorSyntaxError as e:
            raise ExtractionError(ExtractionError.INVALID_CONFIG, f"Invalid selector {css!r}: {e}") from e

    def _select_all(self, soup: BeautifulSoup, css: str) -> List[Tag]:
        try:
            return soup.select(css)
        except SelectorSyntaxError as e:
            raise ExtractionError(ExtractionError.INVALID_CONFIG, f"Invalid selector {css!r}: {e}") from e

    def _read(self, soup: BeautifulSoup, selector: FieldSelector, rich: bool = False) -> Optional[str]:
        element = self._select_first(soup, selector.css)
        if element is None:
            return None
        if isinstance(selector, AttrSelector):
            return self._attr_text(element, selector.attr)
        if rich:
            return element.decode_contents().strip()
        return collapse_whitespace(element.get_text(" "))

    def _field(self, soup: BeautifulSoup, selectors: KindSelectors, name: str,
               config: CrawlSourceConfig, rich: bool = False) -> Optional[str]:
        selector = getattr(selectors, name)
        if selector is None:
            return None
        raw = self._read(soup, selector, rich=rich)
        if raw is None:
            return None
        value = apply_transforms(raw, config.transforms_for(name)).strip()
        return value or None

    def _price(self, soup: BeautifulSoup, selectors: ProductSelectors, name: str,
               config: CrawlSourceConfig):
        text = self._field(soup, selectors, name, config)
        return parse_price(text, decimal_separator_hint(config.transforms_for(name)))

    def _attr_text(self, element: Tag, attr: str) -> Optional[str]:
        value = element.get(attr)
        if isinstance(value, list):
            value = " ".join(value)
        if value is None:
            return None
        value = value.strip()
        return value or None

    # ---------------------------
    # URLs and images
    # ---------------------------
    def _read_url(self, soup: BeautifulSoup, selector: FieldSelector, base_url: Optional[str]) -> Optional[str]:
        if isinstance(selector, AttrSelector):
            raw = self._read(soup, selector)
        else:
            element = self._select_first(soup, selector.css)
            raw = self._image_src(element) if element is not None else None
        return self.resolve_url(raw, base_url) if raw else None

    def _image_src(self, element: Tag) -> Optional[str]:
        src = self._attr_text(element, "src")
        if src:
            return src
        for attr in LAZY_LOAD_ATTRS:
            src = self._attr_text(element, attr)
            if src and "srcset" in attr:
                return src.split(",")[0].split()[0]
            if src:
                return src
        return None

    def _read_image_list(self, soup: BeautifulSoup, selector: FieldSelector, base_url: Optional[str],
                         image_config: Optional[ImageConfig]) -> List[str]:
        raw_values: List[str] = []
        for element in self._select_all(soup, selector.css):
            if isinstance(selector, AttrSelector):
                raw_values.append(self._attr_text(element, selector.attr))
            elif element.name == "img":
                raw_values.append(self._image_src(element))
            else:
                raw_values.extend(self._image_src(img) for img in element.find_all("img"))
        return self._filter_images(raw_values, base_url, image_config)

    def _collect_images(self, soup: BeautifulSoup, content_css: str, base_url: Optional[str],
                        image_config: Optional[ImageConfig]) -> List[str]:
        raw_values: List[Optional[str]] = []
        container = self._select_first(soup, content_css)
        if container is not None:
            raw_values.extend(self._image_src(img) for img in container.find_all("img"))
        og_image = soup.select_one("meta[property='og:image']")
        if og_image is not None:
            raw_values.append(self._attr_text(og_image, "content"))
        return self._filter_images(raw_values, base_url, image_config)

    def _filter_images(self, raw_values: List[Optional[str]], base_url: Optional[str],
                       image_config: Optional[ImageConfig]) -> List[str]:
        skip_patterns = self._skip_patterns(image_config)
        images: List[str] = []
        for raw in raw_values:
            if not raw:
                continue
            url = self.resolve_url(raw, base_url)
            if not url or url in images:
                continue
            if any(pattern.search(url) for pattern in skip_patterns):
                continue
            if not self._is_allowed_host(url, image_config):
                continue
            images.append(url)
        return images

    def _skip_patterns(self, image_config: Optional[ImageConfig]) -> List[Pattern]:
        if image_config is None or image_config.skip_patterns is None:
            return DEFAULT_SKIP_IMAGE_PATTERNS
        patterns = []
        for raw in image_config.skip_patterns:
            try:
                patterns.append(re.compile(raw))
            except re.error as e:
                logger.warning("[Extractor] Ignoring invalid image skip pattern %r: %s", raw, e)
        return patterns

    def _is_allowed_host(self, url: str, image_config: Optional[ImageConfig]) -> bool:
        if image_config is None or not image_config.allowed_hosts:
            return True
        host = (urlparse(url).hostname or "").lower()
        for allowed in image_config.allowed_hosts:
            allowed = allowed.lower().lstrip(".")
            if host == allowed or host.endswith("." + allowed):
                return True
        return False

    @staticmethod
    def resolve_url(raw_url: str, base_url: Optional[str]) -> Optional[str]:
        """Resolves a possibly relative URL against `base_url`; drops data: and non-http URLs."""
        raw_url = raw_url.strip()
        if not raw_url or raw_url.startswith("data:"):
            return None
        if raw_url.startswith("//"):
            scheme = urlparse(base_url).scheme if base_url else ""
            return f"{scheme or 'https'}:{raw_url}"
        full_url = urljoin(base_url, raw_url) if base_url else raw_url
        if urlparse(full_url).scheme not in ("http", "https"):
            return None
        return full_url

    # ---------------------------
    # SEO metadata
    # ---------------------------
    def _extract_seo(self, soup: BeautifulSoup, config: CrawlSourceConfig):
        seo = config.seo_config
        if seo is not None and not seo.extract_meta:
            return None, None

        meta_title = None
        if seo is not None and seo.meta_title_selector is not None:
            meta_title = self._read(soup, seo.meta_title_selector)
        if not meta_title:
            meta_title = self._meta_content(soup, "meta[property='og:title']")
        if not meta_title and soup.title is not None:
            meta_title = collapse_whitespace(soup.title.get_text(" ")) or None
        if not meta_title:
            h1 = soup.find("h1")
            meta_title = collapse_whitespace(h1.get_text(" ")) if h1 is not None else None

        meta_description = None
        if seo is not None and seo.meta_description_selector is not None:
            meta_description = self._read(soup, seo.meta_description_selector)
        if not meta_description:
            meta_description = (
                self._meta_content(soup, "meta[property='og:description']")
                or self._meta_content(soup, "meta[name='description']")
            )

        return (
            meta_title[:META_TITLE_MAX] if meta_title else None,
            meta_description[:META_DESCRIPTION_MAX] if meta_description else None,
        )

    def _meta_content(self, soup: BeautifulSoup, css: str) -> Optional[str]:
        tag = soup.select_one(css)
        return self._attr_text(tag, "content") if tag is not None else None

    @staticmethod
    def _is_empty(value: Any) -> bool:
        return value is None or value == "" or value == []

    # ---------------------------
    # Selector preview
    # ---------------------------
    def preview_selectors(self, html: str, selectors: Dict[str, str]) -> Dict[str, SelectorPreview]:
        """
        Reports what each selector matches on a page, without cleaning the DOM.
        Used by operators to test rules before saving a source.
        """
        soup = BeautifulSoup(html, "html.parser")
        results: Dict[str, SelectorPreview] = {}
        for field, expression in selectors.items():
            try:
                selector = parse_selector(expression)
                elements = soup.select(selector.css)
            except (ValueError, SelectorSyntaxError):
                results[field] = SelectorPreview(found=False, value="Invalid selector", count=0)
                continue

            value = ""
            if elements:
                first = elements[0]
                if isinstance(selector, AttrSelector):
                    value = self._attr_text(first, selector.attr) or ""
                else:
                    value = collapse_whitespace(first.get_text(" "))
            results[field] = SelectorPreview(
                found=bool(elements),
                value=value[:PREVIEW_VALUE_MAX],
                count=len(elements),
            )
        return results

    # ---------------------------
    # Link discovery
    # ---------------------------
    def extract_links(
        self,
        html: str,
        base_url: str,
        link_selector: str = DEFAULT_LINK_SELECTOR,
        container_selector: Optional[str] = None,
        filter_pattern: Optional[str] = None,
        exclude_pattern: Optional[str] = None,
        limit: int = DEFAULT_LINK_LIMIT,
    ) -> List[ExtractedLink]:
        """
        Collects item links from a category/listing page, ready to be submitted as jobs.

        Args:
            html (str): Page HTML.
            base_url (str): URL of the page; relative hrefs resolve against it.
            link_selector (str): CSS selector for the link elements.
            container_selector (Optional[str]): Only search inside elements matching this.
            filter_pattern (Optional[str]): Keep only URLs matching this regex (case-insensitive).
            exclude_pattern (Optional[str]): Drop URLs matching this regex (case-insensitive).
            limit (int): Maximum number of links returned.

        Returns:
            List[ExtractedLink]: Normalized, de-duplicated links in document order.

        Raises:
            ValueError: If a filter pattern is not a valid regular expression.
            ExtractionError: reason "invalid_config" if a selector cannot be parsed.
        """
        include = self._compile_link_pattern(filter_pattern, "filter")
        exclude = self._compile_link_pattern(exclude_pattern, "exclude")

        soup = BeautifulSoup(html, "html.parser")
        try:
            containers = soup.select(container_selector) if container_selector else [soup]
            elements = [el for container in containers for el in container.select(link_selector)]
        except SelectorSyntaxError as e:
            raise ExtractionError(ExtractionError.INVALID_CONFIG, f"invalid selector: {e}") from e

        links: List[ExtractedLink] = []
        seen = set()
        for element in elements:
            if len(links) >= limit:
                break
            href = (element.get("href") or "").strip()
            if not href or href.lower().startswith(SKIPPED_HREF_PREFIXES):
                continue
            full_url = self.resolve_url(href, base_url)
            if full_url is None:
                continue
            try:
                url = normalize(full_url)
            except InvalidUrlError:
                continue
            if is_blocked_host(url):
                continue
            if include is not None and not include.search(url):
                continue
            if exclude is not None and exclude.search(url):
                continue
            if url in seen:
                continue
            seen.add(url)

            title = collapse_whitespace(element.get_text(" ")) or (element.get("title") or "").strip()
            links.append(ExtractedLink(url=url, title=title[:LINK_TITLE_MAX], index=len(links)))

        logger.debug("[Extractor] Found %d link(s) on %s", len(links), base_url)
        return links

    @staticmethod
    def _compile_link_pattern(pattern: Optional[str], name: str) -> Optional[Pattern]:
        if not pattern:
            return None
        try:
            return re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"Invalid {name} pattern: {e}") from e


# -------------------------------
# Singleton Extractor
# -------------------------------
PageExtractor = ContentExtractor()
