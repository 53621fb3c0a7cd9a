"""
FastAPI Application Entry Point

Integrates:
  - WeChat callback router (/api/callback, /api/healthz)
  - Health checks
  - Middleware for logging & error handling
  - Background job drain on shutdown

Run: uvicorn main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import Config
from infra import InfraBootstrap, bootstrap_infrastructure
from transport.wechat import router as wechat_router

# Setup logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan: startup and shutdown handlers.
    """
    # Startup
    logger.info("=" * 60)
    logger.info("Ruminer WeChat bridge starting up...")
    logger.info(f"Environment: {Config.ENVIRONMENT}")
    if not getattr(app.state, "infra", None):
        app.state.infra = bootstrap_infrastructure()
    logger.info(f"Infrastructure: {app.state.infra!r}")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Ruminer WeChat bridge shutting down...")
    left = await app.state.infra.shutdown()
    if left:
        logger.warning(f"{left} background job(s) abandoned at shutdown")
    InfraBootstrap.reset()


# Create FastAPI app
app = FastAPI(
    title="Ruminer WeChat Bridge",
    description="Saves links shared with a WeChat official account to GitHub",
    version="1.0.0",
    lifespan=lifespan,
)


# Middleware for logging
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    logger.debug(f"{request.method} {request.url.path}")
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"Request error: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


# Include routers
app.include_router(wechat_router)


# Health check endpoints
@app.get("/health/live")
async def health_live():
    """Live health check (Kubernetes liveness probe)."""
    return {"status": "alive"}


@app.get("/health/ready")
async def health_ready():
    """Readiness health check (Kubernetes readiness probe)."""
    missing = Config.missing()
    if missing:
        return {"status": "not_ready", "reason": f"missing: {', '.join(missing)}"}
    return {"status": "ready"}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Ruminer WeChat Bridge",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "wechat_verify": "GET /api/callback",
            "wechat_callback": "POST /api/callback",
            "wechat_health": "GET /api/healthz",
            "health_live": "GET /health/live",
            "health_ready": "GET /health/ready",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=Config.PORT,
        reload=Config.ENVIRONMENT == "development",
    )
