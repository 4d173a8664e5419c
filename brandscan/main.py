"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from brandscan.config import settings
from brandscan.database import init_db
from brandscan.routes import runs, webhooks

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables for local SQLite setups; Postgres schemas come from Alembic."""
    if settings.DATABASE_URL.startswith("sqlite"):
        logger.info("SQLite database, creating tables")
        init_db()
    yield


# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Brandscan",
    description="Brand visibility analysis orchestration over an at-least-once dispatch relay",
    version="0.1.0",
)

# Include routers
app.include_router(runs.router)
app.include_router(webhooks.router)
app.include_router(webhooks.cron_router)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Answer 500 so the dispatch relay redelivers the message."""
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy"}
