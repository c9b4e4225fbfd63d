"""JSON error rendering for the API.

Handlers raise ``HTTPException`` with the status and message; everything that
escapes a handler is rendered here as ``{"message", "code"}`` with a stack trace
attached outside production.
"""
import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings

logger = logging.getLogger(__name__)


def _error_payload(
    message: str,
    *,
    code: str,
    exc: Optional[BaseException] = None,
    details: Any = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"message": message, "code": code}
    if details is not None:
        payload["details"] = details
    if exc is not None and not settings.is_production:
        payload["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return payload


def _error_message(error: Dict[str, Any]) -> str:
    ctx = error.get("ctx") or {}
    if isinstance(ctx.get("error"), Exception):
        return str(ctx["error"])
    loc = [str(part) for part in error.get("loc", ()) if part != "body"]
    msg = error.get("msg", "Invalid value")
    return f"{'.'.join(loc)}: {msg}" if loc else msg


def validation_message(exc: ValidationError) -> str:
    """First human readable message of a pydantic ValidationError."""
    errors = exc.errors()
    return _error_message(errors[0]) if errors else "Invalid data"


def bad_request(exc: ValidationError) -> HTTPException:
    return HTTPException(status_code=400, detail=validation_message(exc))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = getattr(exc, "detail", None)
        message = detail if isinstance(detail, str) else "Request failed"
        details = None if isinstance(detail, str) else detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(message, code="http_exception", exc=exc, details=details),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = _error_message(errors[0]) if errors else "Invalid request"
        return JSONResponse(
            status_code=400,
            content=_error_payload(
                message,
                code="validation_error",
                details=jsonable_encoder([{k: v for k, v in e.items() if k != "ctx"} for e in errors]),
            ),
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content=_error_payload("Internal server error", code="internal_error", exc=exc),
        )
