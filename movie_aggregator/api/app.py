"""FastAPI application factory"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from movie_aggregator import __version__
from movie_aggregator.api.routes.crawler import init_worker, router as crawler_router
from movie_aggregator.services.worker import CrawlerWorker, get_worker


def create_app(worker: Optional[CrawlerWorker] = None, start_scheduler: bool = True) -> FastAPI:
    """Create and configure the FastAPI application"""
    shared_worker = worker or get_worker()
    init_worker(shared_worker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        if start_scheduler:
            await shared_worker.start()
        yield
        if start_scheduler:
            shared_worker.stop()
        await shared_worker.close()

    app = FastAPI(
        title="Movie Aggregator Crawler API",
        description="Control surface for the movie catalog crawlers",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(crawler_router)

    return app
