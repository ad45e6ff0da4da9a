"""
FastAPI server for the STUDEX marketplace
Builds the application, its connection pool and its background scheduler
"""

import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Config
from database import Database
from handlers import (
    auth, cart, categories, comments, favorites, health, notifications, projects, purchases,
    search_history, seller,
)
from jobs.scheduler import MarketplaceScheduler
from services.google_oauth import GoogleOAuthClient
from services.media_store import CloudinaryMediaStore
from utils.exception_handler import register_exception_handlers

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO):
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout,
    )
    # Quiet chatty libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def create_app(
    db: Optional[Database] = None,
    start_scheduler: Optional[bool] = None,
    media_store: Optional[CloudinaryMediaStore] = None,
    google_oauth: Optional[GoogleOAuthClient] = None,
) -> FastAPI:
    """
    Application factory.

    Passing a Database lets tests share an in-memory engine; passing
    start_scheduler=False keeps background jobs off.
    """
    run_scheduler = True if start_scheduler is None else start_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🔧 API worker {os.getpid()} starting...")
        Config.validate_production_config()
        Config.log_environment_config()

        app.state.db = app.state.db or Database()
        app.state.media_store = app.state.media_store or CloudinaryMediaStore()
        app.state.google_oauth = app.state.google_oauth or GoogleOAuthClient()
        app.state.started_at = time.time()
        await app.state.db.create_tables()

        # Checkout reads app.state.scheduler to queue payment completion
        app.state.scheduler = MarketplaceScheduler(app.state.db) if run_scheduler else None
        if app.state.scheduler is not None:
            app.state.scheduler.start()

        logger.info(f"✅ Worker {os.getpid()} ready")
        yield

        if app.state.scheduler is not None:
            app.state.scheduler.shutdown()
        if db is None:
            await app.state.db.dispose()
        logger.info(f"🔄 API worker {os.getpid()} shut down")

    app = FastAPI(
        title="STUDEX Marketplace API",
        description="Marketplace for university projects and academic material",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    # Injected collaborators are usable even when the lifespan never runs (tests)
    app.state.db = db
    app.state.media_store = media_store
    app.state.google_oauth = google_oauth
    app.state.scheduler = None
    app.state.started_at = time.time()

    for module in (health, auth, projects, categories, purchases, cart, favorites, comments,
                   notifications, search_history, seller):
        app.include_router(module.router)

    return app


configure_logging()
app = create_app()
