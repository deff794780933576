"""
Application exceptions and their JSON rendering.

Each exception carries the HTTP status it maps to. The response body is
{"error": ...} (or {"errors": [...]} for field-level failures) merged with
any resource-specific `context` keys such as {"status": "error"}.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class SmsRelayError(Exception):
    """Base exception for the SMS relay API."""
    status_code = 500

    def __init__(
        self,
        message: str,
        errors: Optional[list[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.errors = errors
        self.context = context or {}
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        if self.errors is not None:
            payload: dict[str, Any] = {"errors": self.errors}
        else:
            payload = {"error": self.message}
        payload.update(self.context)
        return payload


class BadRequestError(SmsRelayError):
    """Required input missing. Nothing was written."""
    status_code = 400


class UnauthorizedError(SmsRelayError):
    """No identity, or bad login credentials."""
    status_code = 401

    def __init__(self, message: str = "Unauthorized", **kwargs):
        super().__init__(message, **kwargs)


class ForbiddenError(SmsRelayError):
    status_code = 403


class NotFoundError(SmsRelayError):
    status_code = 404


class ValidationFailedError(SmsRelayError):
    """Input is well-formed but violates domain rules."""
    status_code = 422

    def __init__(self, errors: list[str], message: str = "Validation failed", **kwargs):
        super().__init__(message, errors=errors, **kwargs)


class DeliveryFailedError(SmsRelayError):
    """The message was stored as failed because the carrier did not accept it."""
    status_code = 422


class UnprocessableError(SmsRelayError):
    status_code = 422


class InternalError(SmsRelayError):
    status_code = 500


class ConfigurationError(Exception):
    """Required deployment configuration (e.g. carrier credentials) is missing."""


def add_exception_handlers(app: FastAPI) -> None:
    """Registers exception handlers with the FastAPI app."""

    @app.exception_handler(SmsRelayError)
    async def smsrelay_exception_handler(request: Request, exc: SmsRelayError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception: {exc}",
            extra={"method": request.method, "path": request.url.path},
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "status": "error"},
        )
