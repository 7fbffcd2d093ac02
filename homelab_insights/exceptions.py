"""Error handling and custom exceptions

Insufficient data and degenerate input are never errors in this package;
analyzers return empty or zero-confidence results for them. The exceptions
below cover store failures and API-level lookups.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("homelab_insights")


class InsightsException(Exception):
    """Base exception for Homelab Insights"""

    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class MetricsStoreException(InsightsException):
    """Raised when the metrics store cannot be read"""

    def __init__(self, operation: str, original_error: str):
        super().__init__(
            message=f"Metrics store {operation} failed: {original_error}",
            status_code=503,
            details={"operation": operation, "original_error": original_error}
        )


class PersistenceException(InsightsException):
    """Raised when insights or finding history cannot be stored or read"""

    def __init__(self, operation: str, original_error: str):
        super().__init__(
            message=f"Insights store {operation} failed: {original_error}",
            status_code=503,
            details={"operation": operation, "original_error": original_error}
        )


class SummarizerException(InsightsException):
    """Raised by summarizer providers; always handled by the aggregator"""

    def __init__(self, provider: str, original_error: str):
        super().__init__(
            message=f"{provider} summarizer error: {original_error}",
            status_code=503,
            details={"provider": provider, "original_error": original_error}
        )


class InsightNotFoundException(InsightsException):
    """Raised when an insight id does not exist"""

    def __init__(self, insight_id: str):
        super().__init__(
            message=f"Insight not found: {insight_id}",
            status_code=404,
            details={"insight_id": insight_id}
        )


class UnknownResourceException(InsightsException):
    """Raised when a capacity forecast is requested for an unknown resource"""

    def __init__(self, resource: str, supported: tuple):
        super().__init__(
            message=f"Unknown resource: {resource}",
            status_code=400,
            details={"resource": resource, "supported": list(supported)}
        )


async def insights_exception_handler(request: Request, exc: InsightsException):
    """Handle custom exceptions"""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "details": exc.details,
            "type": exc.__class__.__name__,
        }
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content={
            "error": "Validation error",
            "errors": errors,
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.exception("Unhandled exception")

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred",
        }
    )
