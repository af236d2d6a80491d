# content_crawler/crawler/models.py
# Responsibility: Job, status and result types shared across the crawler core.

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, TypedDict, Union

from pydantic import BaseModel


class ContentType(str, Enum):
    ARTICLE = "article"
    PRODUCT = "product"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DUPLICATE = "duplicate"
    PENDING_REVIEW = "pending_review"
    FAILED = "failed"
    # Set only by the external approval step
    SUCCESS = "success"


# Statuses a plain run may start from
RUNNABLE_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.PENDING, JobStatus.FAILED})
# Additional statuses accepted when the operator explicitly asks for a re-crawl
RECRAWLABLE_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.DUPLICATE, JobStatus.PENDING_REVIEW})
# Statuses that count as "already has a job" when new URLs are submitted
ACTIVE_STATUSES: FrozenSet[JobStatus] = frozenset({
    JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.PENDING_REVIEW, JobStatus.SUCCESS,
})


class CrawlJob(BaseModel):
    id: str
    url: str
    type: ContentType
    source_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    error_message: Optional[str] = None
    extracted_data: Optional[Dict[str, Any]] = None
    processed_at: Optional[datetime] = None
    # Set while a dispatched queue entry for the job is waiting; cleared by the claim
    queued_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExtractedArticle(TypedDict):
    title: str
    content: str
    excerpt: Optional[str]
    featured_image: Optional[str]
    author: Optional[str]
    publish_date: Optional[str]
    meta_title: Optional[str]
    meta_description: Optional[str]
    images: List[str]


class ExtractedProduct(TypedDict):
    name: str
    price: Optional[Union[int, float]]
    original_price: Optional[Union[int, float]]
    description: Optional[str]
    images: List[str]
    sku: Optional[str]
    meta_title: Optional[str]
    meta_description: Optional[str]


ExtractedRecord = Union[ExtractedArticle, ExtractedProduct]


class RunResult(BaseModel):
    """
    Outcome of a single RunJob call.

    error_kind is None on pending_review / duplicate, otherwise one of:
    "not_found", "conflict", "invalid_url", "fetch", "extraction", "internal".
    """
    job_id: str
    status: Optional[JobStatus] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    existing_id: Optional[str] = None
