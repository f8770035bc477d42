"""
errors.py

This module contains the gateway error taxonomy and the FastAPI handlers that render it
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base class for errors surfaced to the caller with an HTTP-equivalent status.

    Attributes:
        status_code (int): HTTP status used when the error is raised before streaming starts.
        code (str): Stable machine-readable error code.
        detail (str): Human readable message, safe to show to the caller.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_error"
    default_detail = "Internal server error"

    def __init__(self, detail: str = None, status_code: int = None):
        self.detail = detail or self.default_detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class Unauthenticated(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    default_detail = "Unauthorized"


class InvalidCredential(GatewayError):
    # One message for unknown email and wrong password alike.
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_credential"
    default_detail = "Invalid email or password"


class NotFound(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_detail = "Not found"


class InvalidInput(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"
    default_detail = "Invalid input"


class Conflict(GatewayError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_detail = "Email already registered"


class NotConfigured(GatewayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "not_configured"
    default_detail = "Sign-in provider not configured"


class ProviderError(GatewayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "provider_error"
    default_detail = "Upstream provider failed"


class MissingEmail(ProviderError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "missing_email"
    default_detail = "No email returned by the identity provider"


class BillingRequired(ProviderError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "billing_required"
    default_detail = "Billing account required for image generation"


class NoContent(ProviderError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "no_content"
    default_detail = (
        "No image generated. Image generation may require a billing-enabled account; "
        "otherwise try a different prompt."
    )


class PersistenceError(GatewayError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "persistence_error"
    default_detail = "Failed to save data"


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.detail}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    detail = f"{location}: {message}" if location else message
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=InvalidInput(detail).to_dict(),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "code": "internal_error"},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the gateway error handlers to the application."""
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
