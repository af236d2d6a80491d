# content_crawler/workers/crawler_worker.py
# Responsibility: Runs the RQ Worker AND the dispatch loop that feeds it pending jobs.

import logging
import sys
import threading
import time

import redis
from rq import Queue, Worker

from content_crawler.config.settings import settings
from content_crawler.crawler.async_crawler import AsyncCrawlerClient
from content_crawler.crawler.scheduler import CrawlScheduler
from content_crawler.services.logging_config import configure_logging

logger = logging.getLogger(__name__)


def dispatch_once(scheduler: CrawlScheduler, client: AsyncCrawlerClient) -> int:
    """
    One dispatch cycle: recover crashed runs and lost queue entries, then enqueue pending jobs.

    Returns:
        int: Number of jobs enqueued.
    """
    scheduler.repository.reset_stale_jobs(settings.CRAWLER.STALE_JOB_SECONDS)
    scheduler.repository.release_stale_queue_marks(settings.CRAWLER.STALE_QUEUE_SECONDS)
    queued = scheduler.enqueue_pending_jobs(limit=settings.CRAWLER.DISPATCH_BATCH_SIZE, client=client)
    if queued:
        logger.info("[Dispatcher] Enqueued %d job(s)", len(queued))
    return len(queued)


def run_scheduler_loop(stop_event: threading.Event = None):
    """
    Background thread that periodically checks the DB for pending jobs
    and pushes them to the Redis Queue.
    """
    scheduler = CrawlScheduler()
    client = AsyncCrawlerClient()
    stop_event = stop_event or threading.Event()
    logger.info("[Dispatcher] Started.")

    while not stop_event.is_set():
        try:
            dispatch_once(scheduler, client)
            stop_event.wait(settings.CRAWLER.DISPATCH_INTERVAL_SECONDS)
        except Exception as e:
            logger.error("[Dispatcher] Error: %s", e)
            time.sleep(30)

def start_worker():
    """
    Starts the dispatch thread and the RQ Worker.
    """
    configure_logging()
    queue_name = settings.REDIS.QUEUE_NAME

    t = threading.Thread(target=run_scheduler_loop, daemon=True)
    t.start()

    # Blocking
    try:
        conn = redis.from_url(settings.REDIS.URL)
        logger.info("[Worker] Starting worker on queue: '%s'", queue_name)
        worker = Worker([Queue(queue_name, connection=conn)], connection=conn)
        worker.work()
    except Exception as e:
        logger.critical("[Worker] Fatal error: %s", e)
        sys.exit(1)

if __name__ == '__main__':
    start_worker()
