"""Global exception handlers: every error leaves the API as ``{"message": ...}``."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from rental_admin.services.policy_service import AccessDeniedError, PolicyServiceError
from rental_admin.services.record_service import InvalidQueryError, RecordNotFoundError
from rental_admin.services.session_service import SessionRequiredError

logger = logging.getLogger("rental_admin.errors")


def _error_details(errors: list[dict]) -> list[dict]:
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg"),
            "type": error.get("type"),
        }
        for error in errors
    ]


def _message(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, **extra})


def register_error_handlers(app: FastAPI) -> None:
    """Register the error-mapping layer on the FastAPI app."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            return JSONResponse(
                status_code=exc.status_code,
                content={"message": f"Method {request.method} not allowed"},
                headers=exc.headers,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail)},
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        return _message(422, "Validation failed", errors=_error_details(exc.errors()))

    @app.exception_handler(ValidationError)
    async def schema_validation_handler(request: Request, exc: ValidationError):
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        return _message(422, "Validation failed", errors=_error_details(exc.errors()))

    @app.exception_handler(SessionRequiredError)
    async def session_required_handler(request: Request, exc: SessionRequiredError):
        return _message(401, str(exc) or "Not logged in.")

    @app.exception_handler(AccessDeniedError)
    async def access_denied_handler(request: Request, exc: AccessDeniedError):
        return _message(403, str(exc) or "Access denied.")

    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: RecordNotFoundError):
        return _message(404, str(exc))

    @app.exception_handler(InvalidQueryError)
    async def invalid_query_handler(request: Request, exc: InvalidQueryError):
        return _message(400, str(exc))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("Integrity error on %s: %s", request.url.path, exc.orig)
        return _message(400, f"Integrity error: {exc.orig}")

    @app.exception_handler(PolicyServiceError)
    async def policy_unavailable_handler(request: Request, exc: PolicyServiceError):
        logger.error("Policy service failure on %s: %s", request.url.path, exc)
        return _message(503, str(exc))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return _message(500, "Internal server error")
