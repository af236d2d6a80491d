# content_crawler/crawler/url_normalizer.py
# Responsibility: Canonicalize URLs into stable dedup keys.

from typing import Iterable, List
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from content_crawler.config.settings import settings
from content_crawler.crawler.errors import InvalidUrlError

DEFAULT_PORTS = {"http": 80, "https": 443}
TRACKING_PREFIXES = ("utm_",)
TRACKING_PARAMS = frozenset({
    "fbclid", "gclid", "msclkid", "dclid", "yclid", "igshid",
    "mc_cid", "mc_eid", "_ga", "ref",
})


def normalize(raw_url: str, extra_params: Iterable[str] = ()) -> str:
    """
    Canonicalizes a URL so equivalent addresses produce the same string.

    Steps (in order):
    1. Lowercase scheme and host.
    2. Drop the default port.
    3. Strip a trailing slash unless the path is the root.
    4. Remove the fragment.
    5. Remove tracking query parameters, keeping the rest in order.

    Args:
        raw_url (str): URL as entered by an operator.
        extra_params (Iterable[str]): Additional query keys to strip.

    Returns:
        str: The normalized URL.

    Raises:
        InvalidUrlError: If the URL cannot be parsed or has no http(s) host.
    """
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise InvalidUrlError(str(raw_url), "empty URL")

    try:
        parts = urlsplit(raw_url.strip())
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(raw_url, str(e)) from e

    # 1. Scheme and host
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise InvalidUrlError(raw_url, "unsupported scheme")
    host = parts.hostname
    if not host:
        raise InvalidUrlError(raw_url, "missing host")
    if ":" in host:
        host = f"[{host}]"

    # 2. Port
    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"
    userinfo = parts.netloc.rpartition("@")[0] if "@" in parts.netloc else ""
    if userinfo:
        netloc = f"{userinfo}@{netloc}"

    # 3. Trailing slash
    path = parts.path.rstrip("/") or "/"

    # 5. Tracking parameters (4. fragment is dropped by urlunsplit below)
    query = _strip_tracking_params(parts.query, extra_params)

    return urlunsplit((scheme, netloc, path, query, ""))


def _strip_tracking_params(query: str, extra_params: Iterable[str]) -> str:
    if not query:
        return ""
    blocked = set(TRACKING_PARAMS)
    blocked.update(p.lower() for p in settings.CRAWLER.EXTRA_TRACKING_PARAMS)
    blocked.update(p.lower() for p in extra_params)

    kept: List[str] = []
    for pair in query.split("&"):
        if not pair:
            continue
        key = unquote_plus(pair.split("=", 1)[0]).lower()
        if key.startswith(TRACKING_PREFIXES) or key in blocked:
            continue
        # Original encoding is kept so re-normalizing is a no-op
        kept.append(pair)
    return "&".join(kept)


def origin_of(url: str) -> str:
    """Returns scheme://host[:port] of a URL, used as the base for relative links."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, "", "", ""))


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()


def is_blocked_host(url: str) -> bool:
    """True for URLs pointing at hosts the crawler must never request (loopback and the like)."""
    host = host_of(url)
    return any(blocked in host for blocked in settings.CRAWLER.BLOCKED_HOSTS)
