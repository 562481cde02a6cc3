import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from agent_analytics.api.routes.router import api_router
from agent_analytics.core.config import settings, setup_logging
from agent_analytics.core.exceptions import AnalyticsError, PayloadTooLargeError
from agent_analytics.core.limiter import limiter
from agent_analytics.db.factory import create_adapter
from agent_analytics.services.auth_cache import AuthCache

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "X-API-Key"]
CORS_MAX_AGE = 86400
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ", ".join(CORS_METHODS),
    "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
    "Access-Control-Max-Age": str(CORS_MAX_AGE),
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    setup_logging()
    db = create_adapter(settings)
    await db.create_schema()
    app.state.db = db
    app.state.auth_cache = AuthCache(
        db,
        ttl_seconds=settings.AUTH_CACHE_TTL_SECONDS,
        project_tokens=settings.PROJECT_TOKENS,
        api_keys=settings.API_KEYS,
    )
    logger.info("%s started with %s storage", settings.PROJECT_NAME, settings.STORAGE_BACKEND)
    yield
    # Shutdown
    await db.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"invalid {location or 'body'}: {first.get('msg', 'invalid value')}"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    # Rendered by ServerErrorMiddleware, outside CORSMiddleware
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal server error"},
        headers={"Access-Control-Allow-Origin": "*"},
    )


class BodySizeLimitMiddleware:
    """Reject request bodies above ``max_bytes`` with a 413.

    A declared ``Content-Length`` is checked up front; a chunked body is
    counted as it arrives. The error is raised from ``receive`` while the
    route reads the body, so it goes through the regular exception handlers.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        declared_too_large = (
            length is not None and length.isdigit() and int(length) > self.max_bytes
        )
        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            if declared_too_large:
                raise PayloadTooLargeError(max_bytes=self.max_bytes)
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise PayloadTooLargeError(max_bytes=self.max_bytes)
            return message

        await self.app(scope, limited_receive, send)


# Innermost, so routes read the body through the counting receive
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.MAX_BODY_BYTES)


@app.middleware("http")
async def add_security_headers(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Add security headers to all responses."""
    response: Response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if not settings.DEBUG:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# CORS: any origin may post events and read with an API key
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=CORS_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
    max_age=CORS_MAX_AGE,
)


@app.options("/{path:path}", include_in_schema=False)
async def bare_options(path: str) -> Response:
    """An OPTIONS request that is not a CORS pre-flight gets only the CORS headers."""
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


# Routes
app.include_router(api_router)
