from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    request_id: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "request_id": self.request_id,
        }


class AppError(Exception):
    def __init__(self, status_code: int, code: str, error_type: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.error_type = error_type
        self.message = message


class AuthFailure(AppError):
    """Credential missing, malformed, rejected, or not bound to a user."""

    def __init__(self, message: str, code: str = "auth_invalid"):
        super().__init__(401, code, "auth", message)


class QuotaExceeded(AppError):
    def __init__(self, message: str = "Usage limit exceeded. Please upgrade your plan."):
        super().__init__(403, "quota_exceeded", "quota", message)


class ProfileNotFound(AppError):
    """No ledger row exists for an authenticated user."""

    def __init__(self, message: str = "Profile not found"):
        super().__init__(500, "profile_not_found", "quota", message)


class TranslationError(AppError):
    """Request body cannot be mapped onto the upstream request schema."""

    def __init__(self, message: str, code: str = "translation_failed"):
        super().__init__(500, code, "translation", message)


class ConfigurationError(AppError):
    def __init__(self, message: str):
        super().__init__(500, "configuration_error", "config", message)


class UpstreamError(AppError):
    """Upstream refused or could not be reached before the stream started."""

    def __init__(self, message: str, code: str = "upstream_error", upstream_status: int = 0):
        super().__init__(502, code, "upstream", message)
        self.upstream_status = upstream_status


class LedgerError(AppError):
    def __init__(self, message: str, code: str = "ledger_unavailable"):
        super().__init__(500, code, "ledger", message)


def request_id_from_request(request: Request) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def app_error_response(status_code: int, code: str, message: str, request_id: str) -> JSONResponse:
    envelope = ErrorEnvelope(code=code, message=message, request_id=request_id)
    response = JSONResponse(status_code=status_code, content=envelope.as_dict())
    response.headers["x-request-id"] = request_id
    return response
