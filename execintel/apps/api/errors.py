from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from execintel.apps.api.response import error_response, is_versioned_request
from execintel.core.errors import (
    ConflictError,
    ExecIntelError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamFailure,
    ValidationError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_FAILURE",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _envelope(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    return _envelope(request, exc.status_code, code, message, details, exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.errors()}, status_code=422)
    return _envelope(
        request,
        422,
        "VALIDATION_ERROR",
        "Validation error",
        {"errors": exc.errors()},
    )


def _domain_status(exc: ExecIntelError) -> tuple[int, str, dict[str, Any] | None]:
    if isinstance(exc, ValidationError):
        return 422, "VALIDATION_ERROR", {"field": exc.field}
    if isinstance(exc, NotFoundError):
        return 404, "NOT_FOUND", None
    if isinstance(exc, InvalidTransitionError):
        return 409, "INVALID_TRANSITION", {"current": exc.current, "target": exc.target}
    if isinstance(exc, ConflictError):
        return 409, "CONFLICT", None
    if isinstance(exc, UpstreamFailure):
        return 502, "UPSTREAM_FAILURE", None
    return 502, "UPSTREAM_FAILURE", None


async def domain_exception_handler(request: Request, exc: ExecIntelError) -> JSONResponse:
    status_code, code, details = _domain_status(exc)
    if status_code >= 500:
        logger.warning("domain_error path=%s error=%s", request.url.path, exc)
    return _envelope(request, status_code, code, str(exc), details)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces to clients.
    logger.exception("unhandled_error path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    return _envelope(request, 500, "INTERNAL_ERROR", "Internal server error")
