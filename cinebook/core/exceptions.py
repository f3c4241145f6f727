"""
Error taxonomy and global exception handlers.

Every handler answers with the ``{"success": false, "message": ...}``
envelope so clients never see a stack trace.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto one HTTP status."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class ConflictError(AppError):
    status_code = 400
    default_message = "Duplicate field value entered"


class AuthError(AppError):
    status_code = 401
    default_message = "Not authorized to access this route"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Not allowed to access this route"


class OriginError(AppError):
    status_code = 403
    default_message = "CORS error - Origin not allowed"

    def __init__(self, origin: str | None, message: str | None = None) -> None:
        super().__init__(message)
        self.origin = origin


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class RateLimitError(AppError):
    status_code = 429
    default_message = "Too many requests, please try again later"


class InternalError(AppError):
    status_code = 500


class TokenSigningError(InternalError):
    default_message = "Error generating authentication token"


def error_response(exc: AppError) -> JSONResponse:
    content: dict = {"success": False, "message": exc.message}
    if isinstance(exc, OriginError):
        content["origin"] = exc.origin
    return JSONResponse(status_code=exc.status_code, content=content)


@contextmanager
def server_error_boundary(operation: str) -> Iterator[None]:
    """Turn store / transport failures inside *operation* into an InternalError."""
    try:
        yield
    except AppError:
        raise
    except (SQLAlchemyError, OSError, TimeoutError) as exc:
        logger.error("Server error during %s: %s", operation, exc, exc_info=True)
        raise InternalError(f"Server error during {operation}") from exc


def _validation_message(errors: list[dict]) -> str:
    messages = []
    for err in errors:
        if err.get("type") == "missing":
            field = str(err.get("loc", ("field",))[-1])
            article = "an" if field[:1].lower() in ("a", "e", "i", "o", "u") else "a"
            messages.append(f"Please add {article} {field}")
            continue
        msg = str(err.get("msg", "Invalid value"))
        messages.append(msg.removeprefix("Value error, "))
    return ", ".join(messages)


async def _app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message, exc_info=exc.__cause__)
    return error_response(exc)


async def _request_validation_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    return error_response(ValidationError(_validation_message(list(exc.errors()))))


async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = exc.detail
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Route {request.url.path} not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


def _generic_exception_handler_for(development: bool):
    async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        message = str(exc) if development else "Internal server error"
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": message},
        )

    return _generic_exception_handler


def register_exception_handlers(app: FastAPI, *, development: bool = False) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler_for(development))
