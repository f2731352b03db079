from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config

logger = structlog.get_logger(__name__)


class ApiError(HTTPException):
    """
    Base class for the service's error taxonomy.

    Subclasses pin a status code and a default message so route code can
    simply ``raise NotFoundError("Review not found")``.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(
            status_code=status_code or self.status_code,
            detail=message or self.default_message,
            headers=headers,
        )
        self.errors = errors


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class AuthenticationError(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Access denied"


class AccessDenied(AuthenticationError):
    """No bearer token was supplied."""


class InvalidToken(AuthenticationError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid token"


class InvalidCredentials(AuthenticationError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid email or password"


class InvalidOrExpiredCode(AuthenticationError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid or expired verification code"


class AuthorizationError(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Admin access required"


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Resource already exists"


class UpstreamError(ApiError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Upstream service failed"


class UploadError(UpstreamError):
    default_message = "Failed to upload image"


class InternalError(ApiError):
    pass


def _error_body(request: Request, status_code: int, message: Any) -> Dict[str, Any]:
    return {
        "service": config.SERVICE_NAME,
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        "message": message,
    }


def register_exception_handlers(app: FastAPI) -> None:
    """
    Attach the JSON error handlers to the application.
    """

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        content = _error_body(request, exc.status_code, exc.detail)
        errors = getattr(exc, "errors", None)
        if errors:
            content["errors"] = errors
        if exc.status_code >= 500:
            logger.error(
                "request_failed",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=exc.detail,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                # drop the leading "body"/"query" marker
                "path": [p for p in err["loc"][1:]],
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        content = _error_body(request, status.HTTP_400_BAD_REQUEST, "Validation failed")
        content["errors"] = errors
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_error",
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(request, 500, "Internal server error"),
        )
