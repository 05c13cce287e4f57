"""Main FastAPI application for EHR onboarding.

This module creates and configures the FastAPI application with all
routers and exception handlers.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI

from ehr_onboarding.api import connection_endpoints, health, webhook_endpoints
from ehr_onboarding.api.exceptions import register_exception_handlers
from ehr_onboarding.config import get_settings
from ehr_onboarding.core.database import init_db
from ehr_onboarding.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create tables on startup."""
    init_db()
    logger.info("application_started", app_name=app.title)
    yield
    logger.info("application_stopped", app_name=app.title)


def create_app() -> FastAPI:
    """Build the application."""
    settings = get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(health.router)
    app.include_router(connection_endpoints.router)
    app.include_router(webhook_endpoints.router)
    return app


app = create_app()


def main() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "ehr_onboarding.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
