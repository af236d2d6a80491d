# content_crawler/crawler/async_crawler.py
# Responsibility: Hands crawl job runs to the Redis Queue (RQ) worker.

import logging
from typing import Any, Dict, List

import redis
from rq import Queue

from content_crawler.config.settings import settings
from content_crawler.crawler.job import perform_crawl_job

logger = logging.getLogger(__name__)


class AsyncCrawlerClient:
    """
    Facade over the RQ queue that carries RunJob calls to the worker process.
    A queue entry only names the crawl job; the worker re-reads the job and claims it,
    so an entry that is delivered twice is rejected as a conflict.
    """

    def __init__(self, redis_conn=None):
        self.redis_conn = redis_conn or redis.from_url(settings.REDIS.URL)
        self.queue = Queue(settings.REDIS.QUEUE_NAME, connection=self.redis_conn)

    def enqueue_jobs(self, job_ids: List[str]) -> List[str]:
        """Enqueues one dispatched run per crawl job id; each only starts a still-pending job."""
        return [self.enqueue_job(job_id, pending_only=True) for job_id in job_ids]

    def enqueue_job(self, job_id: str, recrawl: bool = False, pending_only: bool = False) -> str:
        """
        Enqueues a single RunJob call.

        Args:
            job_id (str): Crawl job id.
            recrawl (bool): Passed through to RunJob.
            pending_only (bool): Passed through to RunJob.

        Returns:
            str: The RQ job id.
        """
        rq_job = self.queue.enqueue(
            perform_crawl_job,
            job_id,
            recrawl,
            pending_only,
            job_timeout=settings.CRAWLER.JOB_TIMEOUT,
            description=f"crawl job {job_id}",
        )
        logger.debug("[Queue] Enqueued crawl job %s as %s", job_id, rq_job.get_id())
        return rq_job.get_id()

    def get_queue_info(self) -> Dict[str, Any]:
        return {
            "queue_name": self.queue.name,
            "queued": self.queue.count,
            "started": self.queue.started_job_registry.count,
            "failed": self.queue.failed_job_registry.count,
            "connection_status": "connected" if self.redis_conn.ping() else "disconnected",
        }
