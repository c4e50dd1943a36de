"""REST API module for the campus marketplace engine.

This module provides HTTP endpoints for:
- Placing orders and moving them through fulfilment
- Swap and rental requests between students
- Notifications, notification settings and a live notification stream
- The store owner dashboard
- Push delivery over WebSocket
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auth import JWTSessionVerifier, SessionVerifier
from database import DocumentStore, init_db, close as db_close
from .dependencies import Services
from .websockets import ConnectionManager

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(
    store: Optional[DocumentStore] = None,
    session_verifier: Optional[SessionVerifier] = None
) -> FastAPI:
    """Build the API application.

    Args:
        store: Document store to serve. If not provided, the configured store
            is opened on startup and closed on shutdown.
        session_verifier: Resolves bearer tokens; defaults to JWTs signed with
            the ``jwt_secret`` setting
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        logger.info("Initializing API...")
        owns_store = store is None
        active_store = store or await init_db()

        push_manager = ConnectionManager()
        app.state.push_manager = push_manager
        app.state.services = Services.build(active_store, push_sender=push_manager)
        app.state.session_verifier = session_verifier or JWTSessionVerifier.from_settings()

        yield

        logger.info("Shutting down API...")
        if owns_store:
            await db_close()

    app = FastAPI(
        title="Campus Market API",
        description="Orders, swaps, rentals and notifications for the campus marketplace",
        version=VERSION,
        lifespan=lifespan
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {
            "name": "Campus Market API",
            "version": VERSION,
            "status": "running"
        }

    from .orders import router as orders_router
    from .swaps import router as swaps_router
    from .rentals import router as rentals_router
    from .notifications import router as notifications_router
    from .dashboard import router as dashboard_router
    from .websockets import router as websocket_router

    app.include_router(orders_router)
    app.include_router(swaps_router)
    app.include_router(rentals_router)
    app.include_router(notifications_router)
    app.include_router(dashboard_router)
    app.include_router(websocket_router)
    return app


app = create_app()

__all__ = ['app', 'create_app']
