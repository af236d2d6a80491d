import itertools
import threading
from datetime import datetime, timedelta, timezone

import pytest

from content_crawler.crawler.models import ContentType, CrawlJob, JobStatus
from content_crawler.crawler.selectors import CrawlSourceConfig


class InMemoryJobStore:
    """
    Test double for CrawlJobRepository.
    claim_job is a lock-protected compare-and-set, like the conditional UPDATE in Postgres.
    """

    def __init__(self):
        self.jobs = {}
        self.sources = {}
        self.records = {}
        self.outcomes = []
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    # Test setup helpers
    def add_job(self, url, type=ContentType.ARTICLE, source_id=None, status=JobStatus.PENDING, **fields):
        job = CrawlJob(id=f"job-{next(self._ids)}", url=url, type=type, source_id=source_id,
                       status=status, created_at=datetime.now(timezone.utc), **fields)
        self.jobs[job.id] = job
        return job

    def add_source(self, source_id, record):
        self.sources[source_id] = record

    def add_record(self, normalized_url, content_type, record_id):
        self.records[(normalized_url, ContentType(content_type))] = record_id

    # Repository interface
    def get_job(self, job_id):
        with self._lock:
            job = self.jobs.get(job_id)
            return job.model_copy() if job else None

    def get_source_config(self, source_id):
        record = self.sources.get(source_id)
        return CrawlSourceConfig.from_record(record) if record is not None else None

    def find_existing_record(self, normalized_url, content_type):
        return self.records.get((normalized_url, ContentType(content_type)))

    def claim_job(self, job_id, from_statuses):
        with self._lock:
            job = self.jobs.get(job_id)
            if job is None or job.status not in set(from_statuses):
                return None
            job = job.model_copy(update={
                "status": JobStatus.PROCESSING,
                "retry_count": job.retry_count + 1,
                "queued_at": None,
                "updated_at": datetime.now(timezone.utc),
            })
            self.jobs[job_id] = job
            return job.model_copy()

    def mark_queued(self, job_ids):
        marked = []
        with self._lock:
            for job_id in job_ids:
                job = self.jobs.get(job_id)
                if job is None or job.status != JobStatus.PENDING or job.queued_at is not None:
                    continue
                self.jobs[job_id] = job.model_copy(update={"queued_at": datetime.now(timezone.utc)})
                marked.append(job_id)
        return marked

    def clear_queued(self, job_ids):
        with self._lock:
            for job_id in job_ids:
                job = self.jobs.get(job_id)
                if job is not None and job.status == JobStatus.PENDING:
                    self.jobs[job_id] = job.model_copy(update={"queued_at": None})

    def release_stale_queue_marks(self, older_than_seconds):
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        count = 0
        with self._lock:
            for job_id, job in list(self.jobs.items()):
                if job.status == JobStatus.PENDING and job.queued_at and job.queued_at < cutoff:
                    self.jobs[job_id] = job.model_copy(update={"queued_at": None})
                    count += 1
        return count

    def save_outcome(self, job_id, status, error_message=None, extracted_data=None):
        with self._lock:
            job = self.jobs[job_id]
            if job.status != JobStatus.PROCESSING:
                return
            self.jobs[job_id] = job.model_copy(update={
                "status": JobStatus(status),
                "error_message": error_message,
                "extracted_data": extracted_data,
                "processed_at": datetime.now(timezone.utc),
            })
            self.outcomes.append((job_id, JobStatus(status)))

    def fetch_pending_job_ids(self, limit):
        pending = [j for j in self.jobs.values() if j.status == JobStatus.PENDING and j.queued_at is None]
        return [j.id for j in pending[:limit]]

    def find_active_urls(self, urls, statuses):
        statuses = set(statuses)
        return [j.url for j in self.jobs.values() if j.url in set(urls) and j.status in statuses]

    def create_jobs(self, urls, content_type, source_id=None):
        return [self.add_job(url, type=content_type, source_id=source_id) for url in urls]

    def list_jobs(self, status=None, content_type=None, source_id=None, limit=20, offset=0):
        jobs = [j for j in self.jobs.values()
                if (status is None or j.status == status)
                and (content_type is None or j.type == content_type)
                and (source_id is None or j.source_id == source_id)]
        return jobs[offset:offset + limit], len(jobs)

    def status_counts(self):
        counts = {}
        for job in self.jobs.values():
            counts[job.status.value] = counts.get(job.status.value, 0) + 1
        return counts

    def reset_stale_jobs(self, older_than_seconds):
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        count = 0
        with self._lock:
            for job_id, job in list(self.jobs.items()):
                if job.status == JobStatus.PROCESSING and job.updated_at and job.updated_at < cutoff:
                    self.jobs[job_id] = job.model_copy(update={"status": JobStatus.FAILED})
                    count += 1
        return count


class StubFetcher:
    """Returns canned HTML (or raises) and records every call."""

    def __init__(self, html="", error=None):
        self.html = html
        self.error = error
        self.calls = []

    def fetch_page(self, url, headers=None, min_interval=None):
        self.calls.append({"url": url, "headers": headers, "min_interval": min_interval})
        if self.error is not None:
            raise self.error
        return self.html


class BlockingFetcher(StubFetcher):
    """Holds the fetch open until released, so a second run can race the first."""

    def __init__(self, html=""):
        super().__init__(html)
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch_page(self, url, headers=None, min_interval=None):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().fetch_page(url, headers, min_interval)


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def stub_fetcher():
    return StubFetcher()


@pytest.fixture
def blocking_fetcher():
    return BlockingFetcher()
