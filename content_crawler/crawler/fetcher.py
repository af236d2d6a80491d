# content_crawler/crawler/fetcher.py
# Responsibility: Fetches raw HTML from external sites with bounded timeouts, redirects and per-host load.

import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import httpx

from content_crawler.config.settings import settings
from content_crawler.crawler.errors import FetchError
from content_crawler.crawler.url_normalizer import host_of

logger = logging.getLogger(__name__)


class HostThrottle:
    """
    Caps concurrent requests per host and spaces out request starts to the same host.
    Shared by every fetcher in the process so batch runs against one source stay polite.
    """

    def __init__(self, max_concurrency: int = None, min_interval: float = None):
        self.max_concurrency = max_concurrency or settings.CRAWLER.PER_HOST_CONCURRENCY
        if min_interval is None:
            min_interval = settings.CRAWLER.PER_HOST_MIN_INTERVAL_SECONDS
        self.min_interval = min_interval
        self._lock = threading.Lock()
        self._semaphores: Dict[str, threading.BoundedSemaphore] = {}
        self._next_slot: Dict[str, float] = {}

    @contextmanager
    def slot(self, host: str, min_interval: Optional[float] = None) -> Iterator[None]:
        """
        Blocks until a request to `host` may start, then holds a concurrency slot.

        Args:
            host (str): Lowercase hostname.
            min_interval (float): Overrides the default spacing for this request.
        """
        semaphore = self._semaphore_for(host)
        with semaphore:
            self._wait_turn(host, self.min_interval if min_interval is None else min_interval)
            yield

    def _semaphore_for(self, host: str) -> threading.BoundedSemaphore:
        with self._lock:
            if host not in self._semaphores:
                self._semaphores[host] = threading.BoundedSemaphore(self.max_concurrency)
            return self._semaphores[host]

    def _wait_turn(self, host: str, interval: float) -> None:
        if interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            start_at = max(now, self._next_slot.get(host, now))
            self._next_slot[host] = start_at + interval
        delay = start_at - now
        if delay > 0:
            time.sleep(delay)


# Process-wide throttle
default_throttle = HostThrottle()


class PageFetcher:
    """
    Component responsible for network IO.
    Performs exactly one attempt per call; retry policy belongs to the job runner.
    """

    def __init__(
        self,
        timeout: float = None,
        max_redirects: int = None,
        throttle: HostThrottle = None,
        transport: httpx.BaseTransport = None,
    ):
        """
        Args:
            timeout (float): Request timeout in seconds. Defaults to settings.
            max_redirects (int): Redirect cap. Defaults to settings.
            throttle (HostThrottle): Per-host limiter. Defaults to the shared instance.
            transport (httpx.BaseTransport): Custom transport (tests use httpx.MockTransport).
        """
        self.timeout = timeout or settings.CRAWLER.REQUEST_TIMEOUT
        self.max_redirects = settings.CRAWLER.MAX_REDIRECTS if max_redirects is None else max_redirects
        self.throttle = throttle or default_throttle
        self.transport = transport
        self.default_headers = {
            "User-Agent": settings.CRAWLER.USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": settings.CRAWLER.ACCEPT_LANGUAGE,
        }

    def build_headers(self, headers: Optional[Dict[str, str]] = None) -> httpx.Headers:
        """Merges caller headers over the defaults. Names compare case-insensitively."""
        merged = httpx.Headers(self.default_headers)
        if headers:
            merged.update(headers)
        return merged

    def fetch_page(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        min_interval: Optional[float] = None,
    ) -> str:
        """
        Issues a single GET and returns the body as text.

        Args:
            url (str): Target URL.
            headers (dict): Extra request headers; these win over the defaults.
            min_interval (float): Per-source spacing between requests to the host.

        Returns:
            str: Decoded response body.

        Raises:
            FetchError: kind "network", "http_status" or "too_many_redirects".
        """
        request_headers = self.build_headers(headers)
        with self.throttle.slot(host_of(url), min_interval):
            try:
                with httpx.Client(
                    timeout=self.timeout,
                    follow_redirects=True,
                    max_redirects=self.max_redirects,
                    transport=self.transport,
                ) as client:
                    response = client.get(url, headers=request_headers)
            except httpx.TooManyRedirects as e:
                logger.info("[Fetcher] Too many redirects on %s", url)
                raise FetchError(FetchError.TOO_MANY_REDIRECTS, str(e), url=url) from e
            except httpx.TimeoutException as e:
                logger.info("[Fetcher] Timeout on %s", url)
                raise FetchError(FetchError.NETWORK, f"timeout ({e})", url=url) from e
            except httpx.RequestError as e:
                logger.info("[Fetcher] Network error on %s: %s", url, e)
                raise FetchError(FetchError.NETWORK, str(e) or type(e).__name__, url=url) from e

        if not response.is_success:
            logger.info("[Fetcher] HTTP %s on %s", response.status_code, url)
            raise FetchError(FetchError.HTTP_STATUS, response.status_code, url=url)

        return response.text
