# content_crawler/routers/crawl_status.py
# Responsibility: Read-only API to visualize the crawler's internal state.

from fastapi import APIRouter, Depends, HTTPException
from typing import Dict
from content_crawler.crawler.async_crawler import AsyncCrawlerClient
from content_crawler.crawler.repository import CrawlJobRepository
from content_crawler.routers.crawler_jobs import get_repository

router = APIRouter(
    prefix="/crawl",
    tags=["Crawl Monitor"]
)

def get_async_client() -> AsyncCrawlerClient:
    """Provider for AsyncCrawlerClient."""
    return AsyncCrawlerClient()

@router.get("/status")
def get_status_counts(repository: CrawlJobRepository = Depends(get_repository)) -> Dict[str, int]:
    """Returns count of jobs in each status."""
    return repository.status_counts()

@router.get("/rq_info")
def get_rq_info(client: AsyncCrawlerClient = Depends(get_async_client)):
    """Returns raw Redis Queue stats."""
    try:
        return client.get_queue_info()
    except Exception:
        raise HTTPException(status_code=503, detail="Could not retrieve queue info")
