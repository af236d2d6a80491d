# content_crawler/routers/crawler_jobs.py
# Responsibility: Job endpoints: create jobs, inspect them, and trigger RunJob.

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from content_crawler.config.settings import settings
from content_crawler.crawler.errors import ExtractionError, FetchError, InvalidUrlError
from content_crawler.crawler.extractor import DEFAULT_LINK_LIMIT, DEFAULT_LINK_SELECTOR, PageExtractor
from content_crawler.crawler.fetcher import PageFetcher
from content_crawler.crawler.job import CrawlJobRunner
from content_crawler.crawler.models import ContentType, CrawlJob, JobStatus, RunResult
from content_crawler.crawler.repository import CrawlJobRepository
from content_crawler.crawler.scheduler import CrawlScheduler
from content_crawler.crawler.url_normalizer import is_blocked_host, normalize

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/crawler",
    tags=["Crawler"]
)

# RunResult.error_kind -> HTTP status
RUN_STATUS_CODES = {
    None: 200,
    "fetch": 422,
    "extraction": 422,
    "internal": 500,
    "conflict": 409,
    "not_found": 404,
    "invalid_url": 400,
}

# --- Pydantic Models ---
class CreateJobsRequest(BaseModel):
    urls: List[str] = Field(min_length=1)
    type: ContentType = ContentType.ARTICLE
    source_id: Optional[str] = None

class CreateJobsResponse(BaseModel):
    message: str
    created: int
    duplicates: int
    invalid_urls: List[str]
    jobs: List[CrawlJob]

class JobListResponse(BaseModel):
    jobs: List[CrawlJob]
    page: int
    limit: int
    total: int

class RunPendingRequest(BaseModel):
    limit: int = Field(default=settings.CRAWLER.DISPATCH_BATCH_SIZE, ge=1, le=200)
    workers: int = Field(default=settings.CRAWLER.WORKER_POOL_SIZE, ge=1, le=32)
    background: bool = False

class SelectorTestRequest(BaseModel):
    url: str
    selectors: Dict[str, str]
    headers: Dict[str, str] = {}

class ExtractLinksRequest(BaseModel):
    url: str
    link_selector: str = DEFAULT_LINK_SELECTOR
    container_selector: Optional[str] = None
    filter_pattern: Optional[str] = None
    exclude_pattern: Optional[str] = None
    limit: int = Field(default=DEFAULT_LINK_LIMIT, ge=1, le=1000)
    headers: Dict[str, str] = {}

class ExtractLinksResponse(BaseModel):
    source_url: str
    links_found: int
    links: List[Dict[str, Any]]

# --- Dependency Injection ---
def get_repository() -> CrawlJobRepository:
    return CrawlJobRepository()

def get_runner(repository: CrawlJobRepository = Depends(get_repository)) -> CrawlJobRunner:
    return CrawlJobRunner(repository=repository)

def get_scheduler(repository: CrawlJobRepository = Depends(get_repository)) -> CrawlScheduler:
    return CrawlScheduler(repository=repository)

def get_fetcher() -> PageFetcher:
    return PageFetcher()

# --- Endpoints ---
@router.post("/jobs", response_model=CreateJobsResponse, status_code=201)
def create_jobs_endpoint(req: CreateJobsRequest, scheduler: CrawlScheduler = Depends(get_scheduler)):
    """Registers crawl jobs for up to MAX_URLS_PER_BATCH URLs."""
    if len(req.urls) > settings.CRAWLER.MAX_URLS_PER_BATCH:
        raise HTTPException(status_code=400, detail=f"Maximum {settings.CRAWLER.MAX_URLS_PER_BATCH} URLs per batch")

    result = scheduler.create_jobs(req.urls, req.type, req.source_id)
    if not result["jobs"] and not result["duplicates"]:
        raise HTTPException(status_code=400, detail={"error": "No valid URLs provided",
                                                     "invalid_urls": result["invalid_urls"]})

    return CreateJobsResponse(
        message=f"Queued {len(result['jobs'])} URL(s)",
        created=len(result["jobs"]),
        duplicates=result["duplicates"],
        invalid_urls=result["invalid_urls"],
        jobs=result["jobs"],
    )

@router.get("/jobs", response_model=JobListResponse)
def list_jobs_endpoint(
    status: Optional[JobStatus] = None,
    type: Optional[ContentType] = None,
    source_id: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    repository: CrawlJobRepository = Depends(get_repository),
):
    jobs, total = repository.list_jobs(status, type, source_id, limit=limit, offset=(page - 1) * limit)
    return JobListResponse(jobs=jobs, page=page, limit=limit, total=total)

@router.get("/jobs/{job_id}", response_model=CrawlJob)
def get_job_endpoint(job_id: str, repository: CrawlJobRepository = Depends(get_repository)):
    job = repository.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job

@router.post("/jobs/run-pending")
def run_pending_endpoint(req: RunPendingRequest, scheduler: CrawlScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    """
    Runs pending jobs now on a local pool, or hands them to the background worker.
    """
    if req.background:
        try:
            queue_ids = scheduler.enqueue_pending_jobs(limit=req.limit)
        except Exception as e:
            logger.error("[API] Failed to enqueue jobs: %s", e)
            raise HTTPException(status_code=503, detail="Queue service unavailable")
        return {"queued": len(queue_ids), "queue_job_ids": queue_ids}

    results = scheduler.run_pending_jobs(limit=req.limit, workers=req.workers)
    return {"processed": len(results), "results": [r.model_dump(mode="json") for r in results]}

@router.post("/jobs/{job_id}/run", response_model=RunResult)
def run_job_endpoint(job_id: str, recrawl: bool = False, runner: CrawlJobRunner = Depends(get_runner)):
    """
    Runs a single crawl attempt for the job (RunJob).
    """
    result = runner.run_job(job_id, recrawl=recrawl)
    status_code = RUN_STATUS_CODES.get(result.error_kind, 500)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))

@router.post("/test-selector")
def test_selector_endpoint(req: SelectorTestRequest, fetcher: PageFetcher = Depends(get_fetcher)):
    """
    Fetches a page and reports what each selector matches, for tuning source rules.
    """
    try:
        html = fetcher.fetch_page(req.url, headers=req.headers)
    except FetchError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"url": req.url, "results": PageExtractor.preview_selectors(html, req.selectors)}

@router.post("/extract-links", response_model=ExtractLinksResponse)
def extract_links_endpoint(req: ExtractLinksRequest, fetcher: PageFetcher = Depends(get_fetcher)):
    """
    Fetches a category/listing page and returns the item links on it, for bulk job creation.
    """
    try:
        normalize(req.url)
    except InvalidUrlError:
        raise HTTPException(status_code=400, detail="Invalid URL")
    if is_blocked_host(req.url):
        raise HTTPException(status_code=400, detail="Cannot extract from local URLs")

    try:
        html = fetcher.fetch_page(req.url, headers=req.headers)
    except FetchError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        links = PageExtractor.extract_links(
            html,
            req.url,
            link_selector=req.link_selector,
            container_selector=req.container_selector,
            filter_pattern=req.filter_pattern,
            exclude_pattern=req.exclude_pattern,
            limit=req.limit,
        )
    except (ValueError, ExtractionError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("[API] Extracted %d link(s) from %s", len(links), req.url)
    return ExtractLinksResponse(source_url=req.url, links_found=len(links), links=links)
