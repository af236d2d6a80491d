from pydantic_settings import BaseSettings
from typing import List
import os

class DatabaseSettings(BaseSettings):
    URL: str = os.getenv("DATABASE_URL", "postgresql://crawler_user:crawler_password@db:5432/crawler_db")
    CONNECT_TIMEOUT: int = 10
    APPLICATION_NAME: str = "content-crawler"

class RedisSettings(BaseSettings):
    URL: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    QUEUE_NAME: str = "crawl_jobs"

class ServerSettings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

class CrawlerSettings(BaseSettings):
    USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    ACCEPT_LANGUAGE: str = "vi-VN,vi;q=0.9,en;q=0.8"
    REQUEST_TIMEOUT: float = 30.0
    MAX_REDIRECTS: int = 5
    JOB_TIMEOUT: int = 120

    # Per-host politeness
    PER_HOST_CONCURRENCY: int = 2
    PER_HOST_MIN_INTERVAL_SECONDS: float = 0.5

    # Batch runs
    MAX_URLS_PER_BATCH: int = 50
    WORKER_POOL_SIZE: int = 4
    DISPATCH_BATCH_SIZE: int = 20
    DISPATCH_INTERVAL_SECONDS: int = 10

    # Jobs left in 'processing' longer than this are considered crashed
    STALE_JOB_SECONDS: int = 600
    # Pending jobs marked as queued longer than this get dispatched again
    STALE_QUEUE_SECONDS: int = 3600

    # URL handling
    EXTRA_TRACKING_PARAMS: List[str] = []
    BLOCKED_HOSTS: List[str] = ["localhost", "127.0.0.1", "0.0.0.0"]

class AppSettings(BaseSettings):
    DB: DatabaseSettings = DatabaseSettings()
    REDIS: RedisSettings = RedisSettings()
    SERVER: ServerSettings = ServerSettings()
    CRAWLER: CrawlerSettings = CrawlerSettings()

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = AppSettings()
