# content_crawler/crawler/job.py
# Responsibility: The crawl job state machine. One call = one attempt:
# claim -> duplicate check -> fetch -> extract -> persist outcome.

import logging
from typing import Optional

from content_crawler.crawler.errors import (
    ConflictError,
    ExtractionError,
    FetchError,
    InvalidUrlError,
    JobNotFoundError,
)
from content_crawler.crawler.extractor import ContentExtractor, PageExtractor
from content_crawler.crawler.fetcher import PageFetcher
from content_crawler.crawler.models import (
    RECRAWLABLE_STATUSES,
    RUNNABLE_STATUSES,
    CrawlJob,
    JobStatus,
    RunResult,
)
from content_crawler.crawler.repository import CrawlJobRepository
from content_crawler.crawler.selectors import DEFAULT_CONFIG, CrawlSourceConfig
from content_crawler.crawler.url_normalizer import normalize, origin_of

logger = logging.getLogger(__name__)


class CrawlJobRunner:
    """
    Drives a single crawl job through its lifecycle.
    There is no retry loop here: a failed job is re-run by an operator or scheduler.
    """

    def __init__(
        self,
        repository: CrawlJobRepository = None,
        fetcher: PageFetcher = None,
        extractor: ContentExtractor = None,
    ):
        self.repository = repository or CrawlJobRepository()
        self.fetcher = fetcher or PageFetcher()
        self.extractor = extractor or PageExtractor

    def run_job(self, job_id: str, recrawl: bool = False, pending_only: bool = False) -> RunResult:
        """
        Runs one attempt for a job and persists the outcome.

        Args:
            job_id (str): The job to run.
            recrawl (bool): Also allow jobs already in 'duplicate' or 'pending_review'.
            pending_only (bool): Only start a job that has never run. Dispatched queue
                entries use this, so a stale entry never re-runs a failed job.

        Returns:
            RunResult: Never raises; every error is reported in the result.
        """
        if pending_only:
            allowed = {JobStatus.PENDING}
        else:
            allowed = set(RUNNABLE_STATUSES)
            if recrawl:
                allowed |= RECRAWLABLE_STATUSES

        job = None
        try:
            job = self.repository.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            # 1-2. Reject runs that are in flight or already done
            self._check_runnable(job, allowed)
            # A malformed URL is reported without touching the job
            normalize(job.url)
            # 3. Compare-and-set to 'processing'
            job = self._claim(job_id, allowed)
        except JobNotFoundError as e:
            return RunResult(job_id=job_id, error=str(e), error_kind="not_found")
        except ConflictError as e:
            logger.info("[Job] Rejected run for %s: %s", job_id, e.detail)
            return RunResult(job_id=job_id, status=e.status, error=e.detail, error_kind="conflict")
        except InvalidUrlError as e:
            logger.info("[Job] Rejected run for %s: %s", job_id, e)
            return RunResult(job_id=job_id, status=job.status, error=str(e), error_kind="invalid_url")
        except Exception as e:
            # Store unreachable before the claim: nothing was changed
            logger.exception("[Job] Could not start %s", job_id)
            return RunResult(job_id=job_id, status=job.status if job else None,
                             error=f"Internal error: {e}", error_kind="internal")

        logger.info("[Job] Starting %s (%s, attempt %d): %s", job.id, job.type.value, job.retry_count, job.url)
        try:
            return self._process(job)
        except Exception as e:
            # The job must not stay in 'processing' whatever went wrong
            logger.exception("[Job] Unexpected error on %s", job.id)
            message = f"Internal error: {e}"
            try:
                self.repository.save_outcome(job.id, JobStatus.FAILED, error_message=message)
            except Exception:
                # Left in 'processing'; the stale-job sweep moves it to 'failed'
                logger.exception("[Job] Could not record failure of %s", job.id)
                return RunResult(job_id=job.id, status=JobStatus.PROCESSING, error=message, error_kind="internal")
            return RunResult(job_id=job.id, status=JobStatus.FAILED, error=message, error_kind="internal")

    # ---------------------------
    # Steps
    # ---------------------------
    def _claim(self, job_id: str, allowed) -> CrawlJob:
        claimed = self.repository.claim_job(job_id, allowed)
        if claimed is None:
            # Lost a race: someone changed the status between read and update
            current = self.repository.get_job(job_id)
            if current is None:
                raise JobNotFoundError(job_id)
            self._check_runnable(current, allowed)
            raise ConflictError(job_id, current.status, "Job status changed while claiming it")
        return claimed

    def _check_runnable(self, job: CrawlJob, allowed) -> None:
        if job.status == JobStatus.PROCESSING:
            raise ConflictError(job.id, job.status, "Job is already processing")
        if job.status not in allowed:
            if job.status in RECRAWLABLE_STATUSES:
                detail = f"Job is already {job.status.value}; request a re-crawl to run it again"
            elif job.status == JobStatus.FAILED:
                detail = "Job already ran and failed; run it again explicitly"
            else:
                detail = "Job already completed successfully"
            raise ConflictError(job.id, job.status, detail)

    def _process(self, job: CrawlJob) -> RunResult:
        # 4. Normalize
        normalized_url = normalize(job.url)

        # 5. Duplicate check before any network traffic
        existing_id = self.repository.find_existing_record(normalized_url, job.type)
        if existing_id is not None:
            message = f"{job.type.value.capitalize()} already exists: {existing_id}"
            self.repository.save_outcome(job.id, JobStatus.DUPLICATE, error_message=message)
            logger.info("[Job] %s is a duplicate of %s %s", job.id, job.type.value, existing_id)
            return RunResult(job_id=job.id, status=JobStatus.DUPLICATE, error=message, existing_id=existing_id)

        try:
            # 6. Effective config
            config = self._resolve_config(job)
            # 7. Fetch
            html = self.fetcher.fetch_page(
                job.url,
                headers=config.request_headers,
                min_interval=config.request_delay_seconds,
            )
            # 8. Extract
            data = self.extractor.extract_for(job.type, html, config, base_url=origin_of(normalized_url))
        except FetchError as e:
            return self._fail(job, str(e), "fetch")
        except ExtractionError as e:
            return self._fail(job, str(e), "extraction")

        # 9. Success: awaiting human review
        self.repository.save_outcome(job.id, JobStatus.PENDING_REVIEW, error_message=None, extracted_data=data)
        logger.info("[Job] %s extracted, pending review", job.id)
        return RunResult(job_id=job.id, status=JobStatus.PENDING_REVIEW, data=data)

    def _resolve_config(self, job: CrawlJob) -> CrawlSourceConfig:
        if job.source_id:
            config = self.repository.get_source_config(job.source_id)
            if config is not None:
                return config
            logger.warning("[Job] Source %s of job %s not found, using default selectors", job.source_id, job.id)
        return DEFAULT_CONFIG

    def _fail(self, job: CrawlJob, message: str, kind: str) -> RunResult:
        self.repository.save_outcome(job.id, JobStatus.FAILED, error_message=message)
        logger.info("[Job] %s failed (%s): %s", job.id, kind, message)
        return RunResult(job_id=job.id, status=JobStatus.FAILED, error=message, error_kind=kind)


def run_job(job_id: str, recrawl: bool = False, pending_only: bool = False) -> RunResult:
    """RunJob entry point with production collaborators."""
    return CrawlJobRunner().run_job(job_id, recrawl=recrawl, pending_only=pending_only)


def perform_crawl_job(job_id: str, recrawl: bool = False, pending_only: bool = False) -> Optional[dict]:
    """
    Task executed by RQ workers.

    Returns:
        dict: The RunResult as a plain dict so RQ can store it.
    """
    return run_job(job_id, recrawl=recrawl, pending_only=pending_only).model_dump(mode="json")
