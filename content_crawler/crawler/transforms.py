# content_crawler/crawler/transforms.py
# Responsibility: Post-processing of raw extracted values (text cleanup, number and price parsing).

import html
import logging
import re
from typing import Iterable, Optional, Union

from content_crawler.crawler.selectors import Transform

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"<[^>]*>")
EMPTY_TAG_PATTERN = re.compile(r"<(\w+)[^>]*>\s*</\1>")
WHITESPACE = re.compile(r"\s+")

# Locales that write 1.234,56
COMMA_DECIMAL_LOCALES = {
    "vi", "de", "fr", "es", "it", "pt", "ru", "id", "nl", "tr", "pl", "cs", "da", "sv", "nb", "fi",
}


def collapse_whitespace(text: str) -> str:
    return WHITESPACE.sub(" ", text).strip()


def apply_transforms(value: str, transforms: Iterable[Transform]) -> str:
    """
    Applies string transforms in order. Unknown or unusable directives are skipped.

    parsePrice is not a string transform; it only carries the locale hint for parse_price.
    """
    result = value
    for t in transforms:
        if t.type == "trim":
            result = result.strip()
        elif t.type == "stripTags":
            result = TAG_PATTERN.sub("", result)
        elif t.type == "replace":
            if t.find is not None:
                result = result.replace(t.find, t.replace or "")
        elif t.type == "regex":
            if t.pattern:
                try:
                    result = re.sub(t.pattern, t.replace or "", result)
                except re.error as e:
                    logger.warning("[Transforms] Invalid regex %r skipped: %s", t.pattern, e)
        elif t.type == "maxLength":
            limit = _as_int(t.value)
            if limit is not None and len(result) > limit:
                result = result[:limit] + (t.ellipsis or "")
        elif t.type == "toNumber":
            result = re.sub(r"[^\d]", "", result)
        elif t.type == "toLower":
            result = result.lower()
        elif t.type == "toUpper":
            result = result.upper()
        elif t.type == "removeEmptyTags":
            result = EMPTY_TAG_PATTERN.sub("", result)
        elif t.type == "decodeHtml":
            result = html.unescape(result)
        elif t.type == "addPrefix":
            if isinstance(t.value, str):
                result = t.value + result
        elif t.type == "addSuffix":
            if isinstance(t.value, str):
                result = result + t.value
    return result


def decimal_separator_hint(transforms: Iterable[Transform]) -> Optional[str]:
    """Returns "." or "," from the last parsePrice directive, or None to auto-detect."""
    hint = None
    for t in transforms:
        if t.type != "parsePrice":
            continue
        if t.decimal:
            hint = t.decimal
        elif t.locale:
            language = t.locale.replace("_", "-").split("-")[0].lower()
            hint = "," if language in COMMA_DECIMAL_LOCALES else "."
    return hint


def parse_price(text: Optional[str], decimal_separator: Optional[str] = None) -> Optional[Union[int, float]]:
    """
    Parses a localized price string into a number.

    Examples:
        "350.000đ"             -> 350000
        "1,299.99 USD"         -> 1299.99
        "12,50 €" (decimal=",") -> 12.5

    Args:
        text (str): Raw price text.
        decimal_separator (str): "." or ","; None guesses from the digits.

    Returns:
        int | float | None: None when no number can be read.
    """
    if not text:
        return None

    cleaned = re.sub(r"[^\d.,]", "", text).strip(".,")
    if not cleaned or not any(ch.isdigit() for ch in cleaned):
        return None

    if decimal_separator is None:
        decimal_separator = _guess_decimal_separator(cleaned)

    if decimal_separator is None:
        number = cleaned.replace(".", "").replace(",", "")
    else:
        thousands = "," if decimal_separator == "." else "."
        number = cleaned.replace(thousands, "")
        if number.count(decimal_separator) > 1:
            return None
        number = number.replace(decimal_separator, ".")

    try:
        value = float(number)
    except ValueError:
        return None
    return int(value) if value.is_integer() else value


def _guess_decimal_separator(cleaned: str) -> Optional[str]:
    has_dot = "." in cleaned
    has_comma = "," in cleaned
    if has_dot and has_comma:
        # Whichever comes last separates the decimals
        return "." if cleaned.rfind(".") > cleaned.rfind(",") else ","
    separator = "." if has_dot else "," if has_comma else None
    if separator is None:
        return None
    if cleaned.count(separator) > 1:
        return None
    # A single separator followed by exactly three digits groups thousands
    if len(cleaned) - cleaned.rfind(separator) - 1 == 3:
        return None
    return separator


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
