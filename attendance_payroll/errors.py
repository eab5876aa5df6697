from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ValidationError(ApiError):
    """Malformed or unacceptable input. Rejected immediately, never retried."""

    def __init__(self, code: str, message: str):
        super().__init__(422, code, message)


class ConflictError(ApiError):
    """The request clashes with current state; the caller has to reconcile first."""

    def __init__(self, code: str, message: str):
        super().__init__(409, code, message)


class NotFoundError(ApiError):
    def __init__(self, code: str, message: str):
        super().__init__(404, code, message)


class TransientError(ApiError):
    """Storage hiccup. Safe to retry because every write is an idempotent upsert."""

    def __init__(self, code: str, message: str):
        super().__init__(503, code, message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
