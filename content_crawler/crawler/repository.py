# content_crawler/crawler/repository.py
# Responsibility: Encapsulates database operations and state transitions for crawl jobs.
# Also answers duplicate lookups against imported articles/products.

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from psycopg2.extras import Json, RealDictCursor

from content_crawler.crawler.models import ContentType, CrawlJob, JobStatus
from content_crawler.crawler.selectors import CrawlSourceConfig
from content_crawler.services.db import DBTransaction

logger = logging.getLogger(__name__)

JOB_COLUMNS = """
    id, url, type, source_id, status, retry_count, error_message,
    extracted_data, processed_at, queued_at, created_at, updated_at
"""

SOURCE_CONFIG_COLUMNS = {
    "selectors": "selectors",
    "remove_elements": "removeElements",
    "transforms": "transforms",
    "seo_config": "seoConfig",
    "image_config": "imageConfig",
    "request_headers": "requestHeaders",
    "request_delay_ms": "requestDelayMs",
    "use_default_remove_elements": "useDefaultRemoveElements",
}

# Imported content tables keyed by the content kind
RECORD_TABLES = {
    ContentType.ARTICLE: "articles",
    ContentType.PRODUCT: "products",
}


class CrawlJobRepository:
    """
    Data Access Layer for crawl jobs.
    Handles all interactions with 'crawl_jobs' and 'crawl_sources', plus the
    source_url lookups used for deduplication.
    """

    # ---------------------------
    # Reads
    # ---------------------------
    def get_job(self, job_id: str) -> Optional[CrawlJob]:
        sql = f"SELECT {JOB_COLUMNS} FROM crawl_jobs WHERE id = %s"
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (job_id,))
                row = cur.fetchone()
        return CrawlJob(**row) if row else None

    def get_source_config(self, source_id: str) -> Optional[CrawlSourceConfig]:
        """
        Loads and validates a source's selector configuration.

        Returns:
            Optional[CrawlSourceConfig]: None if the source no longer exists.

        Raises:
            ExtractionError: reason "invalid_config" if the stored JSON has the wrong shape.
        """
        columns = ", ".join(SOURCE_CONFIG_COLUMNS)
        sql = f"SELECT {columns} FROM crawl_sources WHERE id = %s"
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (source_id,))
                row = cur.fetchone()
        if not row:
            return None
        record = {SOURCE_CONFIG_COLUMNS[column]: value for column, value in row.items()}
        return CrawlSourceConfig.from_record(record)

    def find_existing_record(self, normalized_url: str, content_type: ContentType) -> Optional[str]:
        """Returns the id of an already imported article/product with this source URL."""
        table = RECORD_TABLES[ContentType(content_type)]
        sql = f"SELECT id FROM {table} WHERE source_url = %s LIMIT 1"
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (normalized_url,))
                row = cur.fetchone()
        return str(row[0]) if row else None

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        content_type: Optional[ContentType] = None,
        source_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[CrawlJob], int]:
        """Returns a page of jobs (newest first) and the total count for the filters."""
        clauses, params = [], []
        if status is not None:
            clauses.append("status = %s")
            params.append(JobStatus(status).value)
        if content_type is not None:
            clauses.append("type = %s")
            params.append(ContentType(content_type).value)
        if source_id is not None:
            clauses.append("source_id = %s")
            params.append(source_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT COUNT(*) AS total FROM crawl_jobs {where}", params)
                total = cur.fetchone()["total"]
                cur.execute(
                    f"SELECT {JOB_COLUMNS} FROM crawl_jobs {where} "
                    "ORDER BY created_at DESC LIMIT %s OFFSET %s",
                    params + [limit, offset],
                )
                rows = cur.fetchall()
        return [CrawlJob(**row) for row in rows], total

    def fetch_pending_job_ids(self, limit: int) -> List[str]:
        """Oldest never-run jobs first. Jobs already handed to the queue are skipped."""
        sql = """
            SELECT id FROM crawl_jobs
            WHERE status = 'pending' AND queued_at IS NULL
            ORDER BY created_at ASC
            LIMIT %s
        """
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (limit,))
                return [str(row[0]) for row in cur.fetchall()]

    def find_active_urls(self, urls: Iterable[str], statuses: Iterable[JobStatus]) -> List[str]:
        sql = "SELECT url FROM crawl_jobs WHERE url = ANY(%s) AND status = ANY(%s)"
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (list(urls), [JobStatus(s).value for s in statuses]))
                return [row[0] for row in cur.fetchall()]

    def status_counts(self) -> Dict[str, int]:
        counts = {}
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT status, COUNT(*) AS cnt FROM crawl_jobs GROUP BY status")
                for status, count in cur.fetchall():
                    counts[status] = count
        return counts

    # ---------------------------
    # Writes
    # ---------------------------
    def create_jobs(self, urls: List[str], content_type: ContentType,
                    source_id: Optional[str] = None) -> List[CrawlJob]:
        sql = f"""
            INSERT INTO crawl_jobs (url, type, source_id, status)
            VALUES (%s, %s, %s, 'pending')
            RETURNING {JOB_COLUMNS}
        """
        jobs = []
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                for url in urls:
                    cur.execute(sql, (url, ContentType(content_type).value, source_id))
                    jobs.append(CrawlJob(**cur.fetchone()))
        return jobs

    def claim_job(self, job_id: str, from_statuses: Iterable[JobStatus]) -> Optional[CrawlJob]:
        """
        Atomic transition to 'processing'.

        The status check and the update are one statement, so of two racing
        callers only one gets a row back; the other sees the row already
        'processing' once the first commits.

        Returns:
            Optional[CrawlJob]: The claimed job, or None if its status did not allow it.
        """
        sql = f"""
            UPDATE crawl_jobs
            SET status = 'processing',
                retry_count = retry_count + 1,
                queued_at = NULL,
                updated_at = NOW()
            WHERE id = %s AND status = ANY(%s)
            RETURNING {JOB_COLUMNS}
        """
        with DBTransaction() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (job_id, [JobStatus(s).value for s in from_statuses]))
                row = cur.fetchone()
        return CrawlJob(**row) if row else None

    def mark_queued(self, job_ids: List[str]) -> List[str]:
        """
        Marks pending jobs as handed to the queue.

        Only rows still 'pending' and not yet marked are updated, so two dispatchers
        racing over the same ids each get a disjoint subset back.

        Returns:
            List[str]: Ids that were marked and should be enqueued now.
        """
        if not job_ids:
            return []
        sql = """
            UPDATE crawl_jobs
            SET queued_at = NOW()
            WHERE id = ANY(%s) AND status = 'pending' AND queued_at IS NULL
            RETURNING id
        """
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (list(job_ids),))
                marked = {str(row[0]) for row in cur.fetchall()}
        return [job_id for job_id in job_ids if job_id in marked]

    def clear_queued(self, job_ids: List[str]) -> None:
        """Drops the queue marker, e.g. when the enqueue itself failed."""
        if not job_ids:
            return
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE crawl_jobs SET queued_at = NULL WHERE id = ANY(%s) AND status = 'pending'",
                    (list(job_ids),),
                )

    def release_stale_queue_marks(self, older_than_seconds: int) -> int:
        """Makes pending jobs whose queue entry was lost (e.g. Redis flushed) dispatchable again."""
        sql = """
            UPDATE crawl_jobs
            SET queued_at = NULL
            WHERE status = 'pending'
              AND queued_at < NOW() - (%s * INTERVAL '1 second')
        """
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (older_than_seconds,))
                count = cur.rowcount
        if count:
            logger.warning("[Repository] Released %d stale queue mark(s)", count)
        return count

    def save_outcome(
        self,
        job_id: str,
        status: JobStatus,
        error_message: Optional[str] = None,
        extracted_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Records the terminal outcome of a run attempt and stamps processed_at.
        extracted_data is replaced only on pending_review; other outcomes clear it.
        """
        sql = """
            UPDATE crawl_jobs
            SET status = %s,
                error_message = %s,
                extracted_data = %s,
                processed_at = NOW(),
                updated_at = NOW()
            WHERE id = %s AND status = 'processing'
        """
        payload = Json(extracted_data) if extracted_data is not None else None
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (JobStatus(status).value, error_message, payload, job_id))
                if cur.rowcount == 0:
                    logger.warning("[Repository] Outcome %s for job %s not saved: job is no longer processing",
                                   status, job_id)

    def reset_stale_jobs(self, older_than_seconds: int) -> int:
        """Moves jobs stuck in 'processing' (crashed workers) to 'failed'."""
        sql = """
            UPDATE crawl_jobs
            SET status = 'failed',
                error_message = 'Run interrupted: job was stuck in processing',
                processed_at = NOW(),
                updated_at = NOW()
            WHERE status = 'processing'
              AND updated_at < NOW() - (%s * INTERVAL '1 second')
        """
        with DBTransaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (older_than_seconds,))
                count = cur.rowcount
        if count:
            logger.warning("[Repository] Reset %d stale processing job(s)", count)
        return count
