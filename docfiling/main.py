"""FastAPI application for the document filing service."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Union

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from docfiling.config import get_settings
from docfiling.db.supabase_client import get_supabase_client
from docfiling.logging_config import configure_logging
from docfiling.middleware.logging import RequestLoggingMiddleware
from docfiling.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from docfiling.routers import analyze
from docfiling.services.pipeline import CLASSIFY_SKILL, INTELLIGENCE_SKILL
from docfiling.services.skill_loader import list_skills

VERSION = "1.0.0"
COMMIT_HASH = "development"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate configuration at startup."""
    try:
        settings = get_settings()
    except Exception as e:
        logger.error("Startup validation failed: %s", e)
        raise

    configure_logging(settings.log_level)
    logger.info("Starting Document Filing API v%s", VERSION)
    logger.info(
        "Classifier: %s (model %s)",
        "live" if settings.oracle_configured and not settings.use_mock else "mock",
        settings.model_name,
    )
    logger.info("Persistent store: %s", "configured" if settings.supabase_configured else "not configured")

    yield

    logger.info("Shutting down Document Filing API")


app = FastAPI(
    title="Document Filing API",
    description="Batch document classification, placement and intelligence extraction",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Required by slowapi
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=None)
async def health_check() -> Union[Dict[str, Any], Response]:
    """
    Report classifier mode, skill availability and store connectivity.

    Status Codes:
        200: Service can classify batches
        503: A skill is misconfigured or the configured store is unreachable
    """
    settings = get_settings()
    services: Dict[str, str] = {}
    overall_healthy = True

    services["oracle"] = "live" if settings.oracle_configured and not settings.use_mock else "mock"

    # Missing skills fall back to built-in instructions; malformed ones fail runs
    try:
        available = {skill.name for skill in list_skills(settings.skills_dir)}
        for name in (CLASSIFY_SKILL, INTELLIGENCE_SKILL):
            services[f"skill:{name}"] = "healthy" if name in available else "missing (using fallback)"
    except Exception as e:
        services["skills"] = f"unhealthy: {str(e)}"
        overall_healthy = False

    if not settings.supabase_configured:
        services["supabase"] = "not_configured"
    else:
        try:
            supabase_client = get_supabase_client()
            supabase_client.table("file_type_definitions").select("id").limit(1).execute()
            services["supabase"] = "healthy"
        except Exception as e:
            services["supabase"] = f"unhealthy: {str(e)}"
            overall_healthy = False

    response_data: Dict[str, Any] = {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": services,
    }

    if not overall_healthy:
        return Response(
            content=json.dumps(response_data),
            status_code=503,
            media_type="application/json",
        )
    return response_data


@app.get("/version")
async def version_info() -> Dict[str, str]:
    """Version number and commit hash of the API."""
    return {
        "version": VERSION,
        "commit_hash": COMMIT_HASH,
    }


app.include_router(analyze.router)
