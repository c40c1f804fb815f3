"""
verigate/main.py

Purpose: Application entry point

- Initializes FastAPI app
- Loads configuration and logging
- Registers API routes (verification sessions)
- No business logic should be written here
- Manages application lifecycle (startup/shutdown)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time

from verigate.core import metrics
from verigate.core.config import settings, validate_settings
from verigate.core.errors import add_exception_handlers
from verigate.core.logging import setup_logging, get_logger
from verigate.db.mongo import connect_to_mongo, close_mongo_connection, check_database_health
from verigate.db.indexes import create_indexes
from verigate.services.registration_service import close_registration_client
from verigate.api import verification

# Initialize logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting verigate...")

    try:
        validate_settings()
        logger.info("Configuration validated")

        await connect_to_mongo()
        await create_indexes()
        logger.info("Session store ready")

        is_healthy = await check_database_health()
        if not is_healthy:
            logger.warning("Database health check failed during startup")

        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Captcha gate: {'enabled' if settings.CAPTCHA_ENABLED else 'disabled'}")

    except Exception as e:
        logger.critical(f"Failed to start application: {str(e)}", exc_info=True)
        raise

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down verigate...")

    try:
        await close_registration_client()
        await close_mongo_connection()
        logger.info("verigate shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}", exc_info=True)


app = FastAPI(
    title="verigate",
    description="Verification session service gating code requests behind client challenges",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,  # Disable docs in production
    redoc_url="/redoc" if settings.is_development else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    # Upstream calls are bounded at 15s, so anything near that is worth a look
    if process_time > 5.0:
        logger.warning(
            f"Slow request detected: {request.method} {request.url.path}",
            extra={"process_time": process_time}
        )

    return response


add_exception_handlers(app)

app.include_router(verification.router, prefix=settings.API_PREFIX, tags=["Verification"])


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic info."""
    return {
        "name": "verigate",
        "version": "1.0.0",
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.
    Checks database connectivity and reports challenge counters.
    """
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.ENVIRONMENT,
        "version": "1.0.0",
        "checks": {},
        "counters": metrics.snapshot(),
    }

    try:
        db_healthy = await check_database_health()
        health_status["checks"]["database"] = "healthy" if db_healthy else "unhealthy"

        if not db_healthy:
            health_status["status"] = "degraded"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        health_status["checks"]["database"] = "unhealthy"
        health_status["status"] = "unhealthy"

    # Registration service is only reached on demand
    health_status["checks"]["registration_service"] = "not_checked"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(content=health_status, status_code=status_code)


# Readiness probe (for Kubernetes/orchestration)
@app.get("/ready", tags=["Health"])
async def readiness_check():
    try:
        db_healthy = await check_database_health()
        if db_healthy:
            return {"status": "ready"}
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "database_unavailable"}
        )
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": str(e)}
        )


# Liveness probe (for Kubernetes/orchestration)
@app.get("/live", tags=["Health"])
async def liveness_check():
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "verigate.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
