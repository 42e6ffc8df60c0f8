"""API middleware and error handlers for ChatCart.

Provides:
- Request ID correlation
- Error handling
"""

import time
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from chatcart.domain.exceptions import DomainError

logger = structlog.get_logger()


# ============================================================================
# Request ID Middleware
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID for correlation.

    Generates or extracts a request ID and adds it to:
    - Request state for access in handlers
    - Response headers for client correlation
    - Log context for tracing
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid4())
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
            )
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[self.HEADER_NAME] = request_id
        return response


# ============================================================================
# Error Handling Middleware
# ============================================================================


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware for consistent error handling.

    Catches unhandled exceptions and returns standardized error responses.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", None)

            logger.exception(
                "Unhandled exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
            )

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error_code": "InternalError",
                    "message": "An internal error occurred",
                    "details": {},
                    "request_id": request_id,
                },
            )


# ============================================================================
# Exception Handlers
# ============================================================================


# HTTP status per domain error kind; anything unlisted is a 400.
STATUS_BY_ERROR_KIND: dict[str, int] = {
    "CartNotFound": status.HTTP_404_NOT_FOUND,
    "ConversationNotFound": status.HTTP_404_NOT_FOUND,
    "ItemNotFound": status.HTTP_404_NOT_FOUND,
    "InvalidSessionToken": status.HTTP_400_BAD_REQUEST,
    "InvalidIntent": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "InvalidQuantity": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "NotAProduct": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "InvalidStateTransition": status.HTTP_409_CONFLICT,
    "Conflict": status.HTTP_409_CONFLICT,
    "StepLimitExceeded": status.HTTP_409_CONFLICT,
    "StoreUnavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "Timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


def status_for(error_kind: str | None) -> int:
    return STATUS_BY_ERROR_KIND.get(error_kind or "", status.HTTP_400_BAD_REQUEST)


def _error_body(
    request: Request, error_code: str, message: str, details: dict | list
) -> dict:
    return {
        "error_code": error_code,
        "message": message,
        "details": details,
        "request_id": getattr(request.state, "request_id", None),
    }


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Render a domain error with the status code of its kind."""
    status_code = status_for(exc.error_kind)
    if status_code >= 500:
        logger.warning("Request failed on store", error_kind=exc.error_kind, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content=_error_body(request, exc.error_kind, exc.message, exc.details),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", {})
    else:
        error_code = _code_for_status(exc.status_code)
        message = str(detail)
        details = {}

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, error_code, message, details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request body validation failures in the standard format."""
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(request, "ValidationError", "Request validation failed", details),
    )


def _code_for_status(status_code: int) -> str:
    return _CODE_BY_STATUS.get(status_code, "HTTPError")


_CODE_BY_STATUS = {
    status.HTTP_404_NOT_FOUND: "NotFound",
    status.HTTP_405_METHOD_NOT_ALLOWED: "MethodNotAllowed",
}


# ============================================================================
# Middleware Setup
# ============================================================================


def setup_middleware(app: FastAPI) -> None:
    """Configure middleware and exception handlers for the application.

    Middleware is added in reverse order (last added = first executed).

    Args:
        app: FastAPI application instance.
    """
    app.add_exception_handler(DomainError, domain_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, validation_exception_handler  # type: ignore[arg-type]
    )

    # Error handling (inside request ID, catches handler errors)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID correlation (outermost)
    app.add_middleware(RequestIdMiddleware)
