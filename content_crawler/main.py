# content_crawler/main.py
# Responsibility: Application entry point. Configures and launches the FastAPI app.

import uvicorn
from fastapi import FastAPI

from content_crawler.config.settings import settings
from content_crawler.routers import crawl_status, crawler_jobs
from content_crawler.services.logging_config import configure_logging


def create_app() -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.
    """
    configure_logging()

    app = FastAPI(
        title="Content Crawler",
        description="Selector-driven article and product crawler with reviewable jobs.",
        version="1.0.0",
        debug=settings.SERVER.DEBUG
    )

    # Register Routers
    app.include_router(crawler_jobs.router)
    app.include_router(crawl_status.router)

    # Health Check
    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "ok", "version": "1.0.0"}

    return app

# Application instance
app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "content_crawler.main:app",
        host=settings.SERVER.HOST,
        port=settings.SERVER.PORT,
        reload=settings.SERVER.DEBUG
    )
