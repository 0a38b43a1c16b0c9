"""
Live feed service - FastAPI app

Runs the feed engine against the configured endpoint and exposes its
snapshot to the dashboard over HTTP and WebSocket.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from livefeed.config import Settings, load_feed_config
from livefeed.observability.logs import setup_logging
from livefeed.observability.metrics import create_metrics_router
from livefeed.routes_feed import manager, router as feed_router
from livefeed.services.feed_engine import FeedEngine
from livefeed.util.async_tools import shutdown_supervised_tasks

logger = logging.getLogger(__name__)


def create_app(engine: Optional[FeedEngine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the app. Without an engine, one is created from environment settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        feed_engine = engine
        if feed_engine is None:
            feed_settings = settings or Settings()
            setup_logging(feed_settings.LOG_LEVEL, feed_settings.LOG_FILE)
            feed_engine = FeedEngine(load_feed_config(feed_settings))

        unsubscribe = feed_engine.subscribe(manager.publish)
        app.state.feed_engine = feed_engine
        feed_engine.start()
        logger.info("Feed engine started")
        try:
            yield
        finally:
            unsubscribe()
            feed_engine.stop()
            app.state.feed_engine = None
            await shutdown_supervised_tasks()
            logger.info("Feed engine stopped")

    app = FastAPI(title="Live Feed", version="1.0", lifespan=lifespan)
    app.include_router(feed_router)
    app.include_router(create_metrics_router())

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


def run() -> None:
    """Console entry point."""
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
