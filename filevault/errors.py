# filevault/errors.py
"""
Error taxonomy shared by the auth and file services.

Every error leaving either service is rendered as

    {"error": {"message", "code", "details"?, "timestamp", "path", "method"}}

Services raise the concrete subclasses below; the handlers registered by
``register_exception_handlers`` turn them into responses.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .monitoring.metrics import errors_total

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors with an HTTP status and a machine-readable code"""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None,
                 details: Any = None):
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        super().__init__(self.message)


# Taxonomy

class ValidationError(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Validation failed"


class AuthError(ServiceError):
    status_code = 401
    code = "INVALID_TOKEN"
    message = "Invalid or expired token"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Access denied"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class RequestTimeout(ServiceError):
    status_code = 408
    code = "REQUEST_TIMEOUT"
    message = "Request timeout"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"
    message = "Resource already exists"


class GoneError(ServiceError):
    status_code = 410
    code = "GONE"
    message = "Resource is no longer available"


class PayloadTooLarge(ServiceError):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"
    message = "Payload too large"


class StorageError(ServiceError):
    status_code = 500
    code = "STORAGE_ERROR"
    message = "Failed to upload file to storage"


class DatabaseError(ServiceError):
    status_code = 503
    code = "DATABASE_ERROR"
    message = "Database service unavailable"


# Auth service

class MissingFields(ValidationError):
    code = "MISSING_FIELDS"
    message = "Email and password are required"


class InvalidEmail(ValidationError):
    code = "INVALID_EMAIL"
    message = "Please provide a valid email address"


class WeakPassword(ValidationError):
    code = "WEAK_PASSWORD"
    message = "Password does not meet requirements"


class EmailExists(ConflictError):
    code = "EMAIL_EXISTS"
    message = "User with this email already exists"


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


class UserNotFound(NotFoundError):
    code = "USER_NOT_FOUND"
    message = "User not found"


# Bearer tokens

class MissingAuthHeader(AuthError):
    code = "MISSING_AUTH_HEADER"
    message = "Authorization header is required"


class MissingToken(AuthError):
    code = "MISSING_TOKEN"
    message = "Token is required"


class InvalidTokenInput(ValidationError):
    code = "INVALID_TOKEN_INPUT"
    message = "User ID is required for token generation"


class TokenMalformed(AuthError):
    code = "INVALID_TOKEN"
    message = "Invalid token"


class TokenExpired(AuthError):
    code = "TOKEN_EXPIRED"
    message = "Token has expired"


class TokenNotYetValid(AuthError):
    code = "TOKEN_NOT_ACTIVE"
    message = "Token is not active yet"


class WrongTokenKind(AuthError):
    code = "INVALID_TOKEN_TYPE"
    message = "Wrong token type"


# File service

class MissingFilename(ValidationError):
    code = "MISSING_FILENAME"
    message = "Filename query parameter is required"


class FilenameTooLong(ValidationError):
    code = "FILENAME_TOO_LONG"
    message = "Filename must be at most 255 characters"


class EmptyFile(ValidationError):
    code = "EMPTY_FILE"
    message = "File cannot be empty"


class FileTooLarge(PayloadTooLarge):
    code = "FILE_TOO_LARGE"
    message = "File size exceeds maximum limit"


class DuplicateFile(ConflictError):
    code = "DUPLICATE_FILE"
    message = "File already exists"


class FileNotFound(NotFoundError):
    code = "FILE_NOT_FOUND"
    message = "File not found or access denied"


class FileNotInStorage(NotFoundError):
    code = "FILE_NOT_IN_STORAGE"
    message = "File not found in storage"


class UrlGenerationError(StorageError):
    code = "URL_GENERATION_ERROR"
    message = "Failed to generate download URL"


class LimitTooHigh(ValidationError):
    code = "LIMIT_TOO_HIGH"
    message = "Limit cannot exceed 100"


class InvalidPagination(ValidationError):
    code = "INVALID_PAGINATION"
    message = "Limit must be at least 1 and skip cannot be negative"


class InvalidSortField(ValidationError):
    code = "INVALID_SORT_FIELD"
    message = "Unsupported sort field"


class InvalidDateRange(ValidationError):
    code = "INVALID_DATE_RANGE"
    message = "uploadedFrom must not be later than uploadedTo"


class InvalidSignature(ForbiddenError):
    code = "INVALID_SIGNATURE"
    message = "Download link signature is invalid"


class UrlExpired(GoneError):
    code = "URL_EXPIRED"
    message = "Download link has expired"


def error_body(request: Request, status_code: int, code: str, message: str,
               details: Any = None) -> JSONResponse:
    """Build the shared error envelope"""
    error = {"message": message, "code": code}
    if details is not None:
        error["details"] = details
    error.update({
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "path": request.url.path,
        "method": request.method,
    })
    return JSONResponse(status_code=status_code, content={"error": error})


def error_response(request: Request, exc: ServiceError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    response = error_body(request, exc.status_code, exc.code, exc.message, exc.details)
    if headers:
        response.headers.update(headers)
    return response


def register_exception_handlers(app: FastAPI, settings) -> None:
    """Install the envelope-producing handlers on an app"""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        errors_total.labels(code=exc.code, service=app.title).inc()
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path,
                         exc.message, exc.code)
        return error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())),
                "message": err.get("msg"),
            }
            for err in exc.errors()
        ]
        return error_body(request, 400, "VALIDATION_ERROR", "Validation failed", details)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_body(
                request, 404, "ROUTE_NOT_FOUND",
                f"Route {request.method} {request.url.path} not found",
            )
        if exc.status_code == 405:
            return error_body(
                request, 405, "METHOD_NOT_ALLOWED",
                f"Method {request.method} not allowed for {request.url.path}",
            )
        return error_body(request, exc.status_code, "HTTP_ERROR", str(exc.detail))

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return error_response(request, DatabaseError())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = "Internal server error"
        details = None
        if not settings.is_production:
            message = str(exc) or message
            details = {"type": exc.__class__.__name__}
        return error_body(request, 500, "INTERNAL_ERROR", message, details)
