"""
Application error taxonomy and the handlers that render it.

Services raise the exceptions defined here; routers never build error
responses themselves.  ``register_exception_handlers`` installs one handler
per family so that every failure leaves the API in the same envelope::

    {"success": false, "message": "...", "errors": [...]}

Unexpected exceptions are logged with request context and collapsed into a
generic 500 so internal detail never reaches the client.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, errors: list[dict] | None = None) -> None:
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class DuplicateError(ValidationError):
    default_message = "Resource already exists"


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Authentication required"


class InvalidToken(Unauthenticated):
    default_message = "Token is not valid"


class Forbidden(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    default_message = "Resource not found"


class UnexpectedError(AppError):
    pass


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------

def error_body(message: str, errors: list[dict] | None = None) -> dict:
    body: dict = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    """Flatten pydantic error entries into ``{field, message, value}`` dicts."""
    errors = []
    for err in exc.errors():
        loc = [part for part in err.get("loc", ()) if isinstance(part, str)]
        field = loc[-1] if loc else "body"
        errors.append({
            "field": field,
            "message": err.get("msg", "Invalid value"),
            "value": err.get("input"),
        })
    return jsonable_encoder(errors)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.errors))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=error_body("Validation failed", _validation_errors(exc)),
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    route = request.scope.get("route")
    logger.error(
        "Unhandled error in %s (%s %s) path_params=%s",
        getattr(route, "name", "unknown"),
        request.method,
        request.url.path,
        dict(request.path_params),
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
