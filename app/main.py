"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routes import bills, consistency, health, meters, readings
from app.core.config import settings
from app.core.database import Base, engine
from app.core.errors import AppError, app_error_handler
from app.core.logging import setup_logging

# Import models for Base.metadata.create_all - order matters for foreign keys
from app.models import (
    room,  # noqa: F401
    contract,  # noqa: F401
    meter,  # noqa: F401
    meter_reading,  # noqa: F401
    bill,  # noqa: F401
    bill_detail,  # noqa: F401
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    setup_logging()
    # Startup: Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("%s %s started", settings.PROJECT_NAME, settings.VERSION)
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Utility billing and data consistency service for rental properties",
    lifespan=lifespan,
)

app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]

# Include API routers
app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(meters.router, prefix="/api")
app.include_router(readings.router, prefix="/api")
app.include_router(bills.router, prefix="/api")
app.include_router(consistency.router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
