"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campaign_engine.api.v1.routes import api_router
from campaign_engine.core.config import get_settings
from campaign_engine.core.validation import validate_configuration_on_startup
from campaign_engine.utils.tasks import drain_background_tasks

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates configuration (fatal in production)

    Shutdown:
    - Waits briefly for detached notification and webhook tasks
    """
    settings = get_settings()
    environment = settings.environment
    strict_validation = settings.is_production

    logger.info("Starting Campaign Engine API...")

    try:
        validate_configuration_on_startup(strict=strict_validation)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        logger.warning(f"Configuration warnings (non-fatal in {environment}): {e}")

    logger.info("Campaign Engine API started successfully")

    yield

    logger.info("Shutting down Campaign Engine API...")
    try:
        await drain_background_tasks(timeout=SHUTDOWN_DRAIN_SECONDS)
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")
    logger.info("Campaign Engine API shutdown complete")


app = FastAPI(
    title="Campaign Engine",
    description="Outbound voice campaign scheduling and provider webhook ingestion",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "Campaign Engine API", "status": "running"}


@app.get("/health")
async def health_check():
    """Liveness plus the environment this instance runs in."""
    return {"status": "healthy", "environment": get_settings().environment}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
