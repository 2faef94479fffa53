"""
FastAPI application entry point for the LiveStage payments API.
"""
import logging
import multiprocessing
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from app.config import settings
from app.errors import ServiceError, RateLimited
from app.limiter import limiter
from app.logging_config import setup_logging
from app.routers import tickets, tips, affiliates, webhooks, cron, connect
from app.services.scheduler import start_scheduler, stop_scheduler

# Get logger for request logging
logger = logging.getLogger(__name__)

# Configure logging
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting up LiveStage API...")

    # Only SpawnProcess-1 runs the scheduler when uvicorn has several workers
    is_master = multiprocessing.current_process().name == "SpawnProcess-1"
    if is_master:
        start_scheduler()

    yield

    logger.info("Shutting down LiveStage API...")
    if is_master:
        stop_scheduler()


app = FastAPI(
    title="LiveStage API",
    description="Ticketing, tipping and affiliate payouts for live concerts",
    version="0.1.0",
    lifespan=lifespan
)

# Configure rate limiter
app.state.limiter = limiter


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render domain errors as {"error": kind, "detail": message}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Same shape as other domain errors, with Retry-After."""
    retry_after = exc.limit.limit.get_expiry()
    logger.warning(f"Rate limit exceeded: {request.method} {request.url.path} ({exc.detail})")
    return await service_error_handler(request, RateLimited(retry_after, f"Rate limit exceeded: {exc.detail}"))


# Parse CORS origins from config
# In development mode, allow all origins for easier local development
if settings.ENVIRONMENT == "development" or settings.DEBUG:
    cors_origins = ["*"]
else:
    cors_origins = (
        ["*"] if settings.CORS_ORIGINS == "*"
        else [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    )

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with method, path, origin, and response status."""
    origin = request.headers.get("origin", "no-origin")
    logger.info(f"Request: {request.method} {request.url.path} | Origin: {origin}")

    response = await call_next(request)

    logger.info(f"Response: {request.method} {request.url.path} | Status: {response.status_code}")
    return response


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Register routers
app.include_router(tickets.router, tags=["tickets"])
app.include_router(tips.router, tags=["tips"])
app.include_router(affiliates.router, tags=["affiliates"])
app.include_router(webhooks.router, tags=["webhooks"])
app.include_router(cron.router, tags=["cron"])
app.include_router(connect.router, tags=["connect"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
