from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from notevault.api.schemas import ErrorBody
from notevault.logging import get_logger
from notevault.service.errors import ServiceError
from notevault.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_ERROR = {
    400: "Validation Error",
    401: "Unauthorized",
    403: "Access Denied",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    500: "Server Error",
}


def _error_kind_for_status(status_code: int) -> str:
    return _STATUS_TO_ERROR.get(status_code, "Server Error" if status_code >= 500 else "Bad Request")


def error_response(status_code: int, message: str, error: str | None = None) -> JSONResponse:
    """Render ``{"success": false, "error": <kind>, "message": <text>}``."""
    body = ErrorBody(error=error or _error_kind_for_status(status_code), message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc)
        msg = err.get("msg", "invalid value")
        parts.append(f"{field}: {msg}" if field else msg)
    return ", ".join(parts) or "invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error envelope for domain, storage and framework errors."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return error_response(409, exc.message, "Conflict")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_kind=exc.error,
            message=exc.message,
            detail=exc.detail,
        )
        return error_response(exc.status_code, exc.message, exc.error)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        message = _validation_message(exc)
        logger.warning(
            "request_validation_error",
            path=request.url.path,
            method=request.method,
            message=message,
        )
        return error_response(400, message, "Validation Error")

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        response = error_response(exc.status_code, message)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return error_response(500, "Something went wrong", "Server Error")
