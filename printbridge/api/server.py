"""
FastAPI application factory for the read-only status API.
"""

import logging

from fastapi import FastAPI

from printbridge import __version__
from printbridge.api.dependencies import init_dependencies
from printbridge.api.routes import router
from printbridge.daemon import BrowsedState

logger = logging.getLogger(__name__)


def create_app(state: BrowsedState) -> FastAPI:
    """
    Create the status application.

    Args:
        state: The running daemon's state, read by every route

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="printbridge",
        description="Status of remote printers made available as local queues",
        version=__version__,
    )

    init_dependencies(state)
    app.include_router(router)
    logger.debug(f"Status API routes: {', '.join(r.path for r in router.routes)}")

    return app
