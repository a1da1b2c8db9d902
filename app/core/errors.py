"""Service exceptions and their JSON rendering."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

DEFAULT_ERROR_DETAILS = "Check the function logs for more information"
INVALID_REQUEST_MESSAGE = "Invalid request body"
# Routers whose failures are reported as server errors rather than bad requests
SERVER_ERROR_PREFIXES = ("/feedback",)


class ServiceError(RuntimeError):
    """Base exception for request handlers; rendered as ``{"error", "details"}``."""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "SERVICE_ERROR",
        *,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class ConfigurationError(ServiceError):
    """Raised when a required secret or URL is not configured."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message, code="E_CONFIG", status_code=status_code)


class BillingError(ServiceError):
    """Raised for invalid billing requests (missing input, unknown user, no customer)."""

    def __init__(self, message: str, code: str = "E_BILLING") -> None:
        super().__init__(message, code=code, status_code=400)


class ProviderError(ServiceError):
    """Raised when Stripe rejects a request; carries the provider's error body."""

    def __init__(
        self, message: str, *, http_status: int | None = None, body: Any = None
    ) -> None:
        super().__init__(message, code="E_PROVIDER", status_code=400, details=body)
        self.http_status = http_status


class IdentityServiceError(ServiceError):
    """Raised when the Supabase Auth admin API fails."""

    def __init__(self, message: str, code: str = "E_IDENTITY") -> None:
        super().__init__(message, code=code, status_code=400)


class EmailDeliveryError(ServiceError):
    """Raised when the transactional email provider fails."""

    def __init__(self, message: str, code: str = "E_EMAIL", *, details: Any = None) -> None:
        super().__init__(message, code=code, status_code=500, details=details)


def error_body(message: str, details: Any = None) -> dict[str, Any]:
    return {"error": message, "details": details if details is not None else DEFAULT_ERROR_DETAILS}


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.warning(
        "request.failed",
        extra={
            "path": request.url.path,
            "code": exc.code,
            "status_code": exc.status_code,
            "error": str(exc),
        },
    )
    return JSONResponse(status_code=exc.status_code, content=error_body(str(exc), exc.details))


def _validation_status(path: str) -> int:
    return 500 if path.startswith(SERVER_ERROR_PREFIXES) else 400


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": str(error.get("type", "")),
        }
        for error in exc.errors()
    ]
    status_code = _validation_status(request.url.path)
    logger.warning(
        "request.invalid",
        extra={"path": request.url.path, "status_code": status_code, "errors": len(details)},
    )
    return JSONResponse(
        status_code=status_code, content=error_body(INVALID_REQUEST_MESSAGE, details)
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the ServiceError and request-validation renderers to the application."""
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
