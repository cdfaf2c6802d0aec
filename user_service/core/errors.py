"""Error taxonomy and normalized error responses."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from user_service.core.logging import get_request_id

logger = logging.getLogger("user_service")


class AppError(Exception):
    code = "app_error"
    status_code = 500
    default_message = "application error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400
    default_message = "invalid request"


class EmptyUserIDError(ValidationError):
    code = "empty_user_id"
    default_message = "empty user ID field"


class EmptyEntityIDError(ValidationError):
    code = "empty_entity_id"
    default_message = "empty entity ID field"


class ConflictError(AppError):
    code = "conflict"
    status_code = 409
    default_message = "conflict"


class AssociationExistsError(ConflictError):
    code = "association_exists"
    default_message = "user-entity association already exists"


class LimitExceededError(AppError):
    code = "limit_exceeded"
    status_code = 429
    default_message = "limit exceeded"


class TooManyUserEntitiesError(LimitExceededError):
    code = "too_many_user_entities"
    default_message = "too many associated entities for user ID"


class TooManyEntityUsersError(LimitExceededError):
    code = "too_many_entity_users"
    default_message = "too many associated users for entity ID"


class StorageTimeoutError(AppError, TimeoutError):
    code = "storage_timeout"
    status_code = 504
    default_message = "storage operation timed out"


class ConfigurationError(ValueError):
    """Raised while constructing a storer from invalid parameters."""


def _extract_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _error_response(request: Request, status_code: int, code: str, message: str, request_id: Optional[str] = None) -> JSONResponse:
    rid = request_id or _extract_request_id(request)
    level = logging.ERROR if status_code >= 500 else logging.WARNING
    logger.log(level, "request failed", extra={"request_id": rid, "error_code": code, "status": status_code})
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "request_id": rid}, "detail": message},
        headers={"x-request-id": rid},
    )


async def app_error_handler(request: Request, exc: AppError):
    return _error_response(request, exc.status_code, exc.code, exc.message, exc.request_id)


async def http_error_handler(request: Request, exc: HTTPException):
    code = "not_found" if exc.status_code == 404 else "http_error"
    return _error_response(request, exc.status_code, code, exc.detail or "HTTP error")


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error_response(request, 400, "validation_error", "malformed request body")


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled exception", exc_info=exc, extra={"request_id": _extract_request_id(request)})
    # internals stay out of the response body
    return _error_response(request, 500, "internal_error", "Unexpected error")
