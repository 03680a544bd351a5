"""Application error types and their JSON rendering."""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code

    def payload(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class NotFoundError(AppError):
    code = "not_found"
    status_code = 404


class PermissionDeniedError(AppError):
    code = "permission_denied"
    status_code = 403


class InvalidArgumentError(AppError):
    code = "invalid_argument"
    status_code = 400


class SignatureInvalidError(AppError):
    code = "signature_invalid"
    status_code = 400


class ConflictError(AppError):
    """A concurrent update won the race; the caller may retry."""
    code = "conflict"
    status_code = 409


class UpstreamError(AppError):
    """An outbound provider (LLM, payments, email) failed or timed out."""
    code = "upstream_failure"
    status_code = 502


class ConfigurationError(AppError):
    code = "not_configured"
    status_code = 500


class QuotaExceededError(AppError):
    """Raised when a metered action is over the plan's quota.

    Carries the usage/limits snapshot so the client can render an upgrade
    prompt without another request.
    """
    code = "quota_exceeded"
    status_code = 402

    def __init__(self, message: str, *, usage: dict, limits: dict, plan: str):
        super().__init__(message)
        self.usage = usage
        self.limits = limits
        self.plan = plan

    def payload(self) -> dict[str, Any]:
        data = super().payload()
        data.update(usage=self.usage, limits=self.limits, plan=self.plan)
        return data


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
