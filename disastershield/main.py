"""Main FastAPI application for DisasterShield"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from disastershield.api import claims, contractors, estimates, health, jobs, webhooks
from disastershield.config import settings
from disastershield.db.database import close_db, init_db
from disastershield.middleware.logging import LoggingMiddleware
from disastershield.middleware.request_id import RequestIDMiddleware
from disastershield.utils.errors import DisasterShieldError
from disastershield.utils.logging import setup_logging

# Set up logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    logger.info("Starting DisasterShield application...")

    issues = settings.validate_configuration()
    for warning in issues["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    for error in issues["errors"]:
        logger.error(f"Configuration error: {error}")

    await init_db()
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down DisasterShield application...")
    await close_db()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="DisasterShield API",
    description="""
    ## Contractor Matching for Disaster-Damage Claims

    Homeowners file a claim; DisasterShield ranks available repair contractors
    by location, trade and workload, invites the best matches with signed
    accept/decline links, and assigns exactly one contractor once the
    homeowner accepts an estimate.

    ### Workflow
    1. **Submit Claim** → `POST /api/v1/claims`
    2. **Invitations** → top contractors receive email, in-app and SMS alerts
    3. **Respond** → contractors accept or decline via their links
    4. **Estimate** → accepting contractors submit an estimate
    5. **Assign** → homeowner accepts one estimate; everyone else is released
    """,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.app_debug else None,
    redoc_url="/redoc" if settings.app_debug else None,
)

# Configure middleware (order matters - last added runs first)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)


@app.get("/status", response_class=JSONResponse)
async def api_status() -> dict[str, Any]:
    """API status endpoint for programmatic access"""
    return {
        "name": "DisasterShield API",
        "version": "0.1.0",
        "status": "operational",
        "environment": settings.app_env,
        "docs": "/docs" if settings.app_debug else None,
    }


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(
    claims.router,
    prefix="/api/v1/claims",
    tags=["claims"]
)
app.include_router(
    contractors.router,
    prefix="/api/v1/contractors",
    tags=["contractors"]
)
app.include_router(
    jobs.router,
    prefix="/api/v1/jobs",
    tags=["jobs"]
)
app.include_router(
    estimates.router,
    prefix="/api/v1/estimates",
    tags=["estimates"]
)
app.include_router(
    webhooks.router,
    prefix="/api/v1/webhooks",
    tags=["webhooks"]
)


@app.exception_handler(DisasterShieldError)
async def domain_exception_handler(request: Request, exc: DisasterShieldError):
    """Domain errors that escaped a router are client errors"""
    logger.warning(f"Unhandled domain error on {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"error": type(exc).__name__, "message": str(exc)})


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.app_debug else "An error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "disastershield.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
        log_level=settings.log_level.lower(),
    )
