"""FastAPI application entry point."""
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog

from portal.config import settings
from portal.database import init_db, close_db
from portal.api import api_router
from portal.api import alma, oauth2, search_api
from portal.middleware.rate_limit import limiter
from portal.middleware.security import AccountCORSMiddleware, SecurityHeadersMiddleware
from portal.services.ils import ILSException

logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting application", app_name=settings.APP_NAME, ils_driver=settings.ILS_DRIVER)

    # Keep serving health checks while the database is still starting
    try:
        await init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.warning("Database initialization failed - will retry on first request", error=str(e))

    yield

    logger.info("Shutting down application")
    try:
        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning("Error closing database connections", error=str(e))


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    Library discovery portal API

    ## Features
    - JSON/JSONP search and record API over Solr
    - Library account linkage, holds placement, cancellation and editing
    - Lists, favorites, tags and search history
    - OAuth2 / OpenID Connect identity provider
    - Alma webhook for patron synchronisation
    """,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Security headers wrap the CORS layer
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    AccountCORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=settings.cors_methods_list,
    allow_headers=settings.cors_headers_list,
    expose_headers=["X-Request-ID"],
    max_age=600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests."""
    start_time = datetime.now(timezone.utc)
    response = await call_next(request)
    duration = (datetime.now(timezone.utc) - start_time).total_seconds()

    if not request.url.path.startswith("/api/v1/health"):
        logger.info(
            "Request processed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_seconds=duration,
            client_ip=request.client.host if request.client else None,
        )
    return response


@app.exception_handler(ILSException)
async def ils_exception_handler(request: Request, exc: ILSException):
    """The library system failed; tell the user without details."""
    logger.error(
        "ILS request failed",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "detail": "ils_connection_failed",
            "messages": [{"type": "error", "msg": "ils_connection_failed"}],
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions securely."""
    error_id = str(uuid4())[:8]

    # Full details stay server-side
    logger.error(
        "Unhandled exception",
        error_id=error_id,
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error_message=str(exc),
        client_ip=request.client.host if request.client else None,
        exc_info=settings.DEBUG,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "An internal error occurred. Please try again later.",
            "error_id": error_id,
        },
    )


app.include_router(api_router, prefix="/api/v1")
app.include_router(search_api.router, tags=["Search API"])
app.include_router(oauth2.router, tags=["OAuth2"])
app.include_router(alma.router, tags=["Alma"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs" if settings.DEBUG else "Documentation disabled in production",
        "health": "/api/v1/health",
        "api": "/api",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "portal.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
