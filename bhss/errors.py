"""
Error taxonomy and FastAPI exception handlers.

Every error response is a JSON object with a ``message`` field and an
application ``code``; unclassified failures are logged server-side and
reported as a generic 500.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Application error codes for client-side handling."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
}


class AppHTTPException(HTTPException):
    """Application-specific HTTP exception with error code."""

    def __init__(self, status_code: int, code: ErrorCode, detail: str):
        super().__init__(status_code=status_code, detail=detail)
        self.code = code


class DuplicateKeyError(Exception):
    """Raised by the data layer when a unique constraint rejects a write."""


def validation_error(detail: str) -> AppHTTPException:
    return AppHTTPException(400, ErrorCode.VALIDATION_ERROR, detail)


def unauthorized(detail: str = "Unauthorized") -> AppHTTPException:
    return AppHTTPException(401, ErrorCode.UNAUTHORIZED, detail)


def forbidden(detail: str = "Forbidden") -> AppHTTPException:
    return AppHTTPException(403, ErrorCode.FORBIDDEN, detail)


def not_found(detail: str) -> AppHTTPException:
    return AppHTTPException(404, ErrorCode.NOT_FOUND, detail)


def conflict(detail: str) -> AppHTTPException:
    return AppHTTPException(409, ErrorCode.CONFLICT, detail)


def _error_body(message: str, code: ErrorCode) -> dict[str, Any]:
    return {"message": message, "code": code.value}


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    msg = str(first.get("msg", "Invalid value"))
    if msg.startswith("Value error, "):
        # Raised by our own validators; already phrased for the client.
        return msg[len("Value error, ") :]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "form")]
    if loc:
        return f"{'.'.join(loc)}: {msg}"
    return msg


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code = getattr(exc, "code", None) or _STATUS_CODES.get(
        exc.status_code, ErrorCode.INTERNAL_ERROR
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail), code),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=_error_body(
            _describe_validation_error(exc), ErrorCode.VALIDATION_ERROR
        ),
    )


async def duplicate_key_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Unique constraint violation on %s: %s", request.url.path, exc)
    message = str(exc) if isinstance(exc, DuplicateKeyError) else "Duplicate key"
    return JSONResponse(
        status_code=409, content=_error_body(message, ErrorCode.CONFLICT)
    )


async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("Internal server error", ErrorCode.INTERNAL_ERROR),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(IntegrityError, duplicate_key_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
