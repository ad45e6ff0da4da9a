"""
Exception Handler Module
Marketplace error taxonomy plus the FastAPI handlers that render it as
{success: false, message, code?}
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Config

logger = logging.getLogger(__name__)


class StudexError(Exception):
    """Base class for every error surfaced to API clients"""

    status_code = 500
    default_code: Optional[str] = None

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)


class ValidationError(StudexError):
    """Missing or malformed request fields"""
    status_code = 400


class UnavailableError(ValidationError):
    """Listing is not open for purchase"""
    default_code = "UNAVAILABLE"


class OwnListingPurchaseError(ValidationError):
    """Buyer is the listing's seller"""
    default_code = "OWN_PROJECT"


class AuthError(StudexError):
    """Missing, invalid or expired credential, or a disabled account"""
    status_code = 401


class ForbiddenError(AuthError):
    """Credential is valid but not allowed to do this"""
    status_code = 403


class NotFoundError(StudexError):
    status_code = 404


class ConflictError(StudexError):
    """Duplicate email, favorite, cart entry or purchase"""
    status_code = 409


class AlreadyPurchasedError(ConflictError):
    default_code = "ALREADY_PURCHASED"


class InternalError(StudexError):
    """Unexpected persistence or integration failure"""
    status_code = 500


_DUPLICATE_SIGNALS = ("unique", "duplicate")


def is_duplicate_key_error(error: Exception) -> bool:
    """True when a database error carries a unique-constraint violation"""
    text = str(getattr(error, "orig", error)).lower()
    return any(signal in text for signal in _DUPLICATE_SIGNALS)


def error_body(message: str, code: Optional[str] = None, **extra) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if code:
        body["code"] = code
    body.update(extra)
    return body


async def studex_error_handler(request: Request, exc: StudexError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")

    extra = dict(exc.details or {})
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code, **extra))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    fields = [".".join(str(part) for part in err.get("loc", ()) if part != "body") for err in errors]
    message = "Invalid request data"
    if fields and fields[0]:
        message = f"Invalid request data: {', '.join(f for f in fields if f)}"
    logger.warning(f"⚠️ {request.method} {request.url.path} validation failed: {fields}")

    extra = {}
    if not Config.IS_PRODUCTION:
        extra["errors"] = [{"field": f, "message": err.get("msg")} for f, err in zip(fields, errors)]
    return JSONResponse(status_code=400, content=error_body(message, **extra))


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    if is_duplicate_key_error(exc):
        logger.warning(f"⚠️ {request.method} {request.url.path} duplicate key: {exc.orig}")
        return JSONResponse(status_code=409, content=error_body("Resource already exists"))
    return await unhandled_error_handler(request, exc)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = f"Route {request.method} {request.url.path} not found"
    return JSONResponse(status_code=exc.status_code, content=error_body(message), headers=getattr(exc, "headers", None))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}", exc_info=exc)
    extra = {}
    if not Config.IS_PRODUCTION:
        extra["error"] = str(exc)
    return JSONResponse(status_code=500, content=error_body("Internal server error", **extra))


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(StudexError, studex_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
