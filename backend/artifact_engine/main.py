"""FastAPI application entry point."""
import logging
from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from artifact_engine.core.config import settings
from artifact_engine.core.db import get_db, init_db
from artifact_engine.core.errors import (
    ArtifactEngineError,
    InvalidRange,
    NotFound,
    PersistenceError,
    UnsupportedKind,
    UpstreamGenerationError,
    ValidationFailed,
)
from artifact_engine.core.structured_logging import configure_structlog, get_logger
from artifact_engine.core.metrics import get_metrics
from artifact_engine.api import artifacts, websocket

# Configure structured logging
configure_structlog(log_level=settings.log_level)
struct_logger = get_logger(__name__)

# Also configure standard logging for compatibility
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize database tables
init_db()

struct_logger.info(
    "application_starting",
    project_name=settings.project_name,
    version=settings.project_version,
    database_type="PostgreSQL" if settings.is_postgresql else "SQLite",
    log_level=settings.log_level,
    test_mode=settings.artifact_test_mode,
    has_llm_key=settings.has_llm_key
)

logger.info(f"Starting {settings.project_name} v{settings.project_version}")
if settings.is_postgresql:
    # Hide password in logs
    db_url_display = settings.database_url.split("@")[-1] if "@" in settings.database_url else settings.database_url
    logger.info(f"Database: PostgreSQL (Supabase) - {db_url_display}")
else:
    logger.info(f"Database: SQLite - {settings.database_url}")
if settings.use_simulated_producer:
    logger.warning("No LLM API key configured (or test mode on). Using the simulated model producer.")
else:
    logger.info(f"LLM: {settings.llm_model} via {settings.llm_base_url}")

# HTTP status for each engine error
ERROR_STATUS_CODES = {
    NotFound: 404,
    InvalidRange: 422,
    ValidationFailed: 422,
    UnsupportedKind: 422,
    UpstreamGenerationError: 502,
    PersistenceError: 503,
}

# Create FastAPI app
app = FastAPI(
    title=settings.project_name,
    description="Versioned artifact engine with streamed generation",
    version=settings.project_version
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(artifacts.router)
app.include_router(websocket.router)


@app.exception_handler(ArtifactEngineError)
async def artifact_engine_error_handler(request: Request, exc: ArtifactEngineError):
    """Map engine errors to HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Artifact Engine API",
        "version": settings.project_version,
        "docs": "/docs",
        "openapi": "/openapi.json"
    }


@app.get("/health")
def health(db: Session = Depends(get_db)):
    """Health check endpoint."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected"}
        )
    return {
        "status": "healthy",
        "database": "connected"
    }


@app.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    Metrics include:
    - Operation counts, durations and in-flight operations
    - Versions written per kind and update type
    - Version-number conflicts resolved by the store
    - Document suggestions persisted
    - Stream events and validation failures
    - LLM call statistics and rate limiting
    """
    metrics_data = get_metrics()
    return Response(content=metrics_data, media_type="text/plain; version=0.0.4; charset=utf-8")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "artifact_engine.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload
    )
