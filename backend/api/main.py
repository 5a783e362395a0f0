"""
StockLevels API — FastAPI Application Entry Point
"""

import math
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from stock.errors import InvalidInput, NotFound, RateLimited, SourceUnavailable, StockError

settings = get_settings()
logger = structlog.get_logger()

ERROR_STATUS = {
    InvalidInput.kind: 422,
    NotFound.kind: 404,
    RateLimited.kind: 429,
    SourceUnavailable.kind: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from db.session import AsyncSessionLocal
    from stock.pipeline import build_pipeline

    redis_client = None
    if settings.rate_limit_backend == "redis":
        redis_client = aioredis.from_url(settings.redis_url)

    app.state.stock_pipeline = build_pipeline(settings, AsyncSessionLocal, redis_client=redis_client)
    logger.info(
        "StockLevels API starting up",
        version=settings.app_version,
        rate_limit_backend=settings.rate_limit_backend,
        cache_ttl_seconds=settings.stock_cache_ttl_seconds,
    )
    try:
        yield
    finally:
        if redis_client is not None:
            await redis_client.aclose()
        logger.info("StockLevels API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Read-only stock levels with cached, rate-limited resolution",
    lifespan=lifespan,
)


@app.exception_handler(StockError)
async def stock_error_handler(request: Request, exc: StockError):
    """Map pipeline outcomes to distinct HTTP statuses."""
    status_code = ERROR_STATUS.get(exc.kind, 500)
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import auth, stock

app.include_router(auth.router)
app.include_router(stock.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
