# content_crawler/crawler/scheduler.py
# Responsibility: Creates jobs from submitted URLs and dispatches pending jobs,
# either on a local worker pool or onto the Redis queue.

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from content_crawler.config.settings import settings
from content_crawler.crawler.async_crawler import AsyncCrawlerClient
from content_crawler.crawler.errors import InvalidUrlError
from content_crawler.crawler.job import CrawlJobRunner
from content_crawler.crawler.models import ACTIVE_STATUSES, ContentType, CrawlJob, RunResult
from content_crawler.crawler.repository import CrawlJobRepository
from content_crawler.crawler.url_normalizer import is_blocked_host, normalize

logger = logging.getLogger(__name__)


class CrawlScheduler:
    """
    Entry point for operations that touch many jobs at once.
    Per-job mutual exclusion stays in CrawlJobRunner, so dispatching the same job twice is harmless.
    """

    def __init__(self, repository: CrawlJobRepository = None, runner: CrawlJobRunner = None):
        self.repository = repository or CrawlJobRepository()
        self.runner = runner or CrawlJobRunner(repository=self.repository)

    def create_jobs(self, urls: List[str], content_type: ContentType,
                    source_id: Optional[str] = None) -> Dict:
        """
        Registers new jobs for submitted URLs.

        URLs that are malformed or point at internal hosts are reported as invalid;
        URLs that already have an active job are skipped.

        Returns:
            dict: {"jobs": [CrawlJob], "duplicates": int, "invalid_urls": [str]}
        """
        if len(urls) > settings.CRAWLER.MAX_URLS_PER_BATCH:
            raise ValueError(f"Maximum {settings.CRAWLER.MAX_URLS_PER_BATCH} URLs per batch")

        valid: List[str] = []
        invalid: List[str] = []
        for raw in urls:
            url = raw.strip()
            if not url:
                continue
            try:
                normalize(url)
            except InvalidUrlError:
                invalid.append(raw)
                continue
            if is_blocked_host(url):
                invalid.append(raw)
                continue
            if url not in valid:
                valid.append(url)

        existing = set(self.repository.find_active_urls(valid, ACTIVE_STATUSES)) if valid else set()
        new_urls = [url for url in valid if url not in existing]
        jobs: List[CrawlJob] = []
        if new_urls:
            jobs = self.repository.create_jobs(new_urls, content_type, source_id)
        logger.info("[Scheduler] Created %d job(s), %d duplicate(s), %d invalid",
                    len(jobs), len(valid) - len(new_urls), len(invalid))
        return {"jobs": jobs, "duplicates": len(valid) - len(new_urls), "invalid_urls": invalid}

    def run_pending_jobs(self, limit: int = None, workers: int = None) -> List[RunResult]:
        """
        Runs up to `limit` pending jobs in this process on a bounded thread pool.

        Args:
            limit (int): Maximum jobs to run.
            workers (int): Pool size. Jobs for different ids run fully in parallel.
        """
        limit = limit or settings.CRAWLER.DISPATCH_BATCH_SIZE
        workers = max(1, workers or settings.CRAWLER.WORKER_POOL_SIZE)
        job_ids = self.repository.fetch_pending_job_ids(limit)
        if not job_ids:
            return []

        logger.info("[Scheduler] Running %d pending job(s) with %d worker(s)", len(job_ids), workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self.runner.run_job, job_ids))

    def enqueue_pending_jobs(self, limit: int = None, client: AsyncCrawlerClient = None) -> List[str]:
        """
        Pushes pending jobs onto the Redis queue, at most one entry per job.

        Jobs are marked as queued before they are enqueued; marked jobs are not
        fetched again until a worker claims them, so repeated cycles do not pile up
        entries for a job still waiting in the queue.

        Returns:
            List[str]: The RQ job ids.
        """
        limit = limit or settings.CRAWLER.DISPATCH_BATCH_SIZE
        job_ids = self.repository.fetch_pending_job_ids(limit)
        if not job_ids:
            return []
        marked = self.repository.mark_queued(job_ids)
        if not marked:
            return []
        client = client or AsyncCrawlerClient()
        try:
            return client.enqueue_jobs(marked)
        except Exception:
            # Entries that did reach Redis are harmless: they only start a still-pending job
            self.repository.clear_queued(marked)
            raise
