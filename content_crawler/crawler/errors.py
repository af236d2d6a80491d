# content_crawler/crawler/errors.py
# Responsibility: Error taxonomy shared by the normalizer, fetcher, extractor and job runner.

from typing import Any, Optional


class CrawlerError(Exception):
    """Base class for every error raised by the crawler core."""


class InvalidUrlError(CrawlerError, ValueError):
    """The URL cannot be parsed or is not an http(s) address."""

    def __init__(self, url: str, detail: str = "invalid URL"):
        self.url = url
        self.detail = detail
        super().__init__(f"{detail}: {url!r}")


class FetchError(CrawlerError):
    """
    Retrieval failed. Always terminal for a single run attempt.

    kind is one of: "network", "http_status", "too_many_redirects".
    """

    NETWORK = "network"
    HTTP_STATUS = "http_status"
    TOO_MANY_REDIRECTS = "too_many_redirects"

    def __init__(self, kind: str, detail: Any = None, url: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        self.url = url
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.kind == self.HTTP_STATUS:
            message = f"HTTP {self.detail}"
        elif self.detail:
            message = f"{self.kind}: {self.detail}"
        else:
            message = self.kind
        if self.url:
            message = f"Failed to fetch {self.url}: {message}"
        return message


class ExtractionError(CrawlerError):
    """
    The page could not be turned into a record.

    reason is one of: "missing_selectors", "invalid_config", "no_content_matched".
    """

    MISSING_SELECTORS = "missing_selectors"
    INVALID_CONFIG = "invalid_config"
    NO_CONTENT_MATCHED = "no_content_matched"

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class ConflictError(CrawlerError):
    """The job is already running or already done; nothing was changed."""

    def __init__(self, job_id: str, status: Optional[str], detail: str):
        self.job_id = job_id
        self.status = status
        self.detail = detail
        super().__init__(detail)


class JobNotFoundError(CrawlerError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")
