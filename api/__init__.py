"""REST API module for the seller service.

This module provides HTTP endpoints for:
- Session status, manual refresh and recent errors
- Setting and clearing the seller identity
- Listing orders with payment checks and sending fulfillment replies
- Listing catalogs and uploading new ones
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import load_config
from session import Session, build_session

logger = logging.getLogger(__name__)

def create_app(session: Optional[Session] = None, auto_refresh: bool = True,
               cors_origins: Optional[List[str]] = None) -> FastAPI:
    """Build the app; without a session one is built from settings.conf at startup.

    Browsers may only call the API from `cors_origins`; none by default.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        logger.info("Initializing API...")
        if app.state.session is None:
            app.state.session = build_session(load_config())
            await app.state.session.restore()

        refresh_task = None
        if auto_refresh:
            refresh_task = asyncio.create_task(app.state.session.run_auto_refresh())
            logger.info("Started auto refresh task")

        yield

        logger.info("Shutting down API...")
        if refresh_task is not None:
            app.state.session.stop()
            refresh_task.cancel()
            try:
                await refresh_task
            except asyncio.CancelledError:
                pass

    app = FastAPI(
        title="Sourcerer Seller API",
        description="Order ingestion, payment reconciliation and catalog uploads for marketplace sellers",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.session = session

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or [],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from .system import router as system_router
    from .orders import router as orders_router
    from .catalogs import router as catalogs_router

    app.include_router(system_router)
    app.include_router(orders_router)
    app.include_router(catalogs_router)

    return app

__all__ = ['create_app']
