import logging
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.account import router as account_router
from app.api.auth import router as auth_router
from app.api.data import router as data_router
from app.api.deps import StoreDep
from app.core.config import APP_VERSION, settings
from app.core.errors import (
    HTTPError,
    http_error_handler,
    request_validation_error_handler,
    starlette_http_error_handler,
)
from app.core.logging import setup_logging
from app.core.middleware import ErrorResponseMiddleware, RequestValidationMiddleware
from app.storage import build_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the configured store for the lifetime of the app."""
    setup_logging()

    store = build_store(settings)
    await store.init()
    app.state.store = store
    logger.info(f"{settings.APP_NAME} {APP_VERSION} started with {settings.STORAGE_BACKEND} storage")

    if not settings.EMAIL_ENABLED:
        logger.warning("EMAIL_ENABLED is false; registration and password reset are unavailable")

    yield

    logger.info("Closing store")
    await store.close()


app = FastAPI(
    title=settings.APP_NAME,
    version=APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
    redirect_slashes=False,
)

# Standardized error responses
app.add_exception_handler(HTTPError, http_error_handler)
app.add_exception_handler(StarletteHTTPException, starlette_http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)

# Middleware added later wraps middleware added earlier
app.add_middleware(
    RequestValidationMiddleware,
    max_request_size=5 * 1024 * 1024,  # 5 MB, generous for years of habit data
    enforce_content_type=True,
)
app.add_middleware(ErrorResponseMiddleware)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add OWASP-recommended security headers to all responses."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
    response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    response.headers["Cache-Control"] = "no-store"

    # Only enable HSTS in production with HTTPS
    if not settings.DEBUG:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Tag the request and every log line it produces with one id."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()

    response.headers["X-Request-ID"] = request_id
    return response


@app.get("/health")
async def health_check(store: StoreDep):
    """Returns 200 when the store answers, 503 otherwise."""
    healthy = await store.ping()
    checks = {
        "status": "healthy" if healthy else "unhealthy",
        "storage": settings.STORAGE_BACKEND,
        "version": APP_VERSION,
    }
    return JSONResponse(content=checks, status_code=200 if healthy else 503)


app.include_router(auth_router, prefix="/api")
app.include_router(account_router, prefix="/api")
app.include_router(data_router, prefix="/api")
