import threading

import pytest

from content_crawler.crawler.errors import FetchError
from content_crawler.crawler.job import CrawlJobRunner
from content_crawler.crawler.models import ContentType, JobStatus

ARTICLE_HTML = """
<html><head><meta property="og:image" content="/img/a.png"></head>
<body><h1>Hello</h1><article><p>Body text</p></article></body></html>
"""


@pytest.fixture
def runner(store, stub_fetcher):
    return CrawlJobRunner(repository=store, fetcher=stub_fetcher)


def test_product_end_to_end(store, stub_fetcher, runner):
    store.add_source("src-1", {"selectors": {"product": {"name": "h1", "price": ".price"}}})
    job = store.add_job("https://shop.test/vitamin-c", type=ContentType.PRODUCT, source_id="src-1")
    stub_fetcher.html = '<h1>Vitamin C</h1><span class="price">350.000đ</span>'

    result = runner.run_job(job.id)

    assert result.status == JobStatus.PENDING_REVIEW
    assert result.error_kind is None
    assert result.data["name"] == "Vitamin C"
    assert result.data["price"] == 350000

    saved = store.get_job(job.id)
    assert saved.status == JobStatus.PENDING_REVIEW
    assert saved.extracted_data["price"] == 350000
    assert saved.error_message is None
    assert saved.processed_at is not None


def test_duplicate_short_circuits_before_fetch(store, stub_fetcher, runner):
    job = store.add_job("https://shop.test/p/1?utm_source=mail", type=ContentType.PRODUCT)
    store.add_record("https://shop.test/p/1", ContentType.PRODUCT, "rec-9")

    result = runner.run_job(job.id)

    assert result.status == JobStatus.DUPLICATE
    assert result.existing_id == "rec-9"
    assert result.error == "Product already exists: rec-9"
    assert result.error_kind is None
    assert stub_fetcher.calls == []
    assert store.get_job(job.id).status == JobStatus.DUPLICATE


def test_duplicate_is_per_content_type(store, stub_fetcher, runner):
    job = store.add_job("https://site.test/a")
    store.add_record("https://site.test/a", ContentType.PRODUCT, "rec-1")
    stub_fetcher.html = ARTICLE_HTML

    assert runner.run_job(job.id).status == JobStatus.PENDING_REVIEW


def test_fetch_failure_marks_job_failed(store, stub_fetcher, runner):
    job = store.add_job("https://site.test/missing")
    stub_fetcher.error = FetchError(FetchError.HTTP_STATUS, 404, url=job.url)

    result = runner.run_job(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_kind == "fetch"
    saved = store.get_job(job.id)
    assert saved.status == JobStatus.FAILED
    assert saved.error_message == "Failed to fetch https://site.test/missing: HTTP 404"
    assert saved.extracted_data is None


def test_extraction_failure_marks_job_failed(store, stub_fetcher, runner):
    job = store.add_job("https://site.test/empty")
    stub_fetcher.html = "<div>nothing useful</div>"

    result = runner.run_job(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_kind == "extraction"
    assert "no_content_matched" in store.get_job(job.id).error_message


def test_source_without_kind_selectors_fails_extraction(store, stub_fetcher, runner):
    store.add_source("src-1", {"selectors": {"article": {"title": "h1", "content": "article"}}})
    job = store.add_job("https://shop.test/x", type=ContentType.PRODUCT, source_id="src-1")
    stub_fetcher.html = ARTICLE_HTML

    result = runner.run_job(job.id)

    assert result.error_kind == "extraction"
    assert "missing_selectors" in result.error


def test_missing_source_uses_default_selectors(store, stub_fetcher, runner):
    job = store.add_job("https://site.test/news/1", source_id="gone")
    stub_fetcher.html = ARTICLE_HTML

    result = runner.run_job(job.id)

    assert result.status == JobStatus.PENDING_REVIEW
    assert result.data["title"] == "Hello"
    assert "Body text" in result.data["content"]


def test_relative_urls_resolve_against_job_origin(store, stub_fetcher, runner):
    job = store.add_job("https://site.test/news/a?utm_source=x")
    stub_fetcher.html = ARTICLE_HTML

    result = runner.run_job(job.id)

    assert result.data["featured_image"] == "https://site.test/img/a.png"
    # The original URL is fetched, not the normalized one
    assert stub_fetcher.calls[0]["url"] == "https://site.test/news/a?utm_source=x"


def test_source_headers_and_delay_passed_to_fetcher(store, stub_fetcher, runner):
    store.add_source("src-1", {
        "selectors": {"article": {"title": "h1", "content": "article"}},
        "requestHeaders": {"Cookie": "session=1"},
        "requestDelayMs": 1500,
    })
    job = store.add_job("https://site.test/a", source_id="src-1")
    stub_fetcher.html = ARTICLE_HTML

    runner.run_job(job.id)

    call = stub_fetcher.calls[0]
    assert call["headers"] == {"Cookie": "session=1"}
    assert call["min_interval"] == 1.5


@pytest.mark.parametrize("status", [JobStatus.PROCESSING, JobStatus.PENDING_REVIEW, JobStatus.DUPLICATE, JobStatus.SUCCESS])
def test_not_runnable_statuses_conflict(store, stub_fetcher, runner, status):
    job = store.add_job("https://site.test/a", status=status, retry_count=1)

    result = runner.run_job(job.id)

    assert result.error_kind == "conflict"
    assert result.status == status
    assert stub_fetcher.calls == []
    unchanged = store.get_job(job.id)
    assert unchanged.status == status
    assert unchanged.retry_count == 1


@pytest.mark.parametrize("status", [JobStatus.PENDING_REVIEW, JobStatus.DUPLICATE])
def test_recrawl_reruns_finished_jobs(store, stub_fetcher, runner, status):
    job = store.add_job("https://site.test/a", status=status)
    stub_fetcher.html = ARTICLE_HTML

    result = runner.run_job(job.id, recrawl=True)

    assert result.status == JobStatus.PENDING_REVIEW


@pytest.mark.parametrize("status", [JobStatus.PROCESSING, JobStatus.SUCCESS])
def test_recrawl_never_overrides_processing_or_success(store, runner, status):
    job = store.add_job("https://site.test/a", status=status)
    assert runner.run_job(job.id, recrawl=True).error_kind == "conflict"


def test_failed_job_can_be_rerun_and_counts_attempts(store, stub_fetcher, runner):
    job = store.add_job("https://site.test/a", status=JobStatus.FAILED, retry_count=1,
                        error_message="Failed to fetch: HTTP 500")
    stub_fetcher.html = ARTICLE_HTML

    result = runner.run_job(job.id)

    assert result.status == JobStatus.PENDING_REVIEW
    saved = store.get_job(job.id)
    assert saved.retry_count == 2
    assert saved.error_message is None


def test_unknown_job(runner):
    result = runner.run_job("nope")
    assert result.error_kind == "not_found"
    assert result.status is None


def test_invalid_url_leaves_job_untouched(store, stub_fetcher, runner):
    job = store.add_job("ftp://files.test/a")

    result = runner.run_job(job.id)

    assert result.error_kind == "invalid_url"
    assert result.status == JobStatus.PENDING
    saved = store.get_job(job.id)
    assert saved.status == JobStatus.PENDING
    assert saved.retry_count == 0
    assert stub_fetcher.calls == []


class ExplodingExtractor:
    def extract_for(self, content_type, html, config, base_url=None):
        raise RuntimeError("parser crashed")


def test_unexpected_error_never_leaves_job_processing(store, stub_fetcher):
    runner = CrawlJobRunner(repository=store, fetcher=stub_fetcher, extractor=ExplodingExtractor())
    job = store.add_job("https://site.test/a")

    result = runner.run_job(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_kind == "internal"
    saved = store.get_job(job.id)
    assert saved.status == JobStatus.FAILED
    assert saved.error_message == "Internal error: parser crashed"


def test_concurrent_runs_are_mutually_exclusive(store, blocking_fetcher):
    runner = CrawlJobRunner(repository=store, fetcher=blocking_fetcher)
    blocking_fetcher.html = ARTICLE_HTML
    job = store.add_job("https://site.test/a")
    results = {}

    first = threading.Thread(target=lambda: results.setdefault("first", runner.run_job(job.id)))
    first.start()
    assert blocking_fetcher.entered.wait(timeout=5)

    # The first run is mid-fetch, so the job is 'processing'
    second = runner.run_job(job.id)
    blocking_fetcher.release.set()
    first.join(timeout=5)

    assert second.error_kind == "conflict"
    assert second.error == "Job is already processing"
    assert results["first"].status == JobStatus.PENDING_REVIEW
    assert len(blocking_fetcher.calls) == 1
    assert store.outcomes == [(job.id, JobStatus.PENDING_REVIEW)]
    assert store.get_job(job.id).retry_count == 1


def test_lost_claim_race_reports_conflict(store, stub_fetcher):
    class RacingStore(type(store)):
        def claim_job(self, job_id, from_statuses):
            # Another worker wins between the status read and the update
            self.jobs[job_id] = self.jobs[job_id].model_copy(update={"status": JobStatus.PROCESSING})
            return None

    racing = RacingStore()
    job = racing.add_job("https://site.test/a")

    result = CrawlJobRunner(repository=racing, fetcher=stub_fetcher).run_job(job.id)

    assert result.error_kind == "conflict"
    assert result.status == JobStatus.PROCESSING
    assert stub_fetcher.calls == []


def test_store_error_before_claim_is_reported(store, stub_fetcher):
    class UnreachableStore(type(store)):
        def get_job(self, job_id):
            raise RuntimeError("connection refused")

    result = CrawlJobRunner(repository=UnreachableStore(), fetcher=stub_fetcher).run_job("job-1")

    assert result.error_kind == "internal"
    assert result.status is None
    assert result.error == "Internal error: connection refused"
    assert stub_fetcher.calls == []


def test_store_error_during_claim_leaves_job_untouched(store, stub_fetcher):
    class FailingClaimStore(type(store)):
        def claim_job(self, job_id, from_statuses):
            raise RuntimeError("deadlock detected")

    failing = FailingClaimStore()
    job = failing.add_job("https://site.test/a")

    result = CrawlJobRunner(repository=failing, fetcher=stub_fetcher).run_job(job.id)

    assert result.error_kind == "internal"
    assert result.status == JobStatus.PENDING
    assert failing.get_job(job.id).status == JobStatus.PENDING
    assert stub_fetcher.calls == []


def test_failure_to_record_internal_error_is_reported(store, stub_fetcher):
    class ReadOnlyStore(type(store)):
        def save_outcome(self, job_id, status, error_message=None, extracted_data=None):
            raise RuntimeError("database is read-only")

    read_only = ReadOnlyStore()
    job = read_only.add_job("https://site.test/a")
    runner = CrawlJobRunner(repository=read_only, fetcher=stub_fetcher, extractor=ExplodingExtractor())

    result = runner.run_job(job.id)

    assert result.error_kind == "internal"
    assert result.error == "Internal error: parser crashed"
    # Left for the stale-job sweep
    assert result.status == JobStatus.PROCESSING
    assert read_only.get_job(job.id).status == JobStatus.PROCESSING
