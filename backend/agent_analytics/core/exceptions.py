"""HTTP-mapped error taxonomy.

Every error raised by the core derives from :class:`AnalyticsError`, which is a
``fastapi.HTTPException`` so routes can let them propagate untouched. The
exception handler in ``main.py`` renders them as ``{"error": detail, **extra}``.
"""

from typing import Any

from fastapi import HTTPException, status


class AnalyticsError(HTTPException):
    """Base error carrying a status code and optional extra body fields."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "internal server error"

    def __init__(self, detail: str | None = None, **extra: Any):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        return {"error": self.detail, **self.extra}


class ValidationError(AnalyticsError):
    """Malformed or missing required fields, batch size violations."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "invalid request"


class QueryError(AnalyticsError):
    """Query shape outside the allowlists. ``allowed`` lists permitted values."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "invalid query"


class UnauthorizedError(AnalyticsError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "unauthorized - API key required"


class ForbiddenError(AnalyticsError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "forbidden"


class NotFoundError(AnalyticsError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "not found"


class ConflictError(AnalyticsError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "conflict"


class PayloadTooLargeError(AnalyticsError):
    status_code = status.HTTP_413_CONTENT_TOO_LARGE
    default_detail = "request body too large"


class RateLimitError(AnalyticsError):
    """Daily event quota reached. ``limit`` carries the configured quota."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "rate limit exceeded"


class ServiceUnavailableError(AnalyticsError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "service unavailable"
