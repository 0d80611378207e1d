from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class AppError(Exception):
    code: str
    message: str
    status_code: int
    details: dict[str, Any] | None = None

    def to_response(self, trace_id: str | None) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details or {},
                "trace_id": trace_id,
            }
        }


class ErrorCodes:
    INTEGRATION_NOT_FOUND = "INTEGRATION_NOT_FOUND"
    INTEGRATION_VALIDATION_FAILED = "INTEGRATION_VALIDATION_FAILED"
    INTEGRATION_VERSION_REQUIRED = "INTEGRATION_VERSION_REQUIRED"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    FORBIDDEN = "FORBIDDEN"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class UnknownIntegrationKind(LookupError):
    """Raised for a kind with no registered schema or probe. Always a programming error."""


def not_found(kind: str) -> AppError:
    return AppError(
        code=ErrorCodes.INTEGRATION_NOT_FOUND,
        message="Integration is not configured.",
        status_code=404,
        details={"kind": kind},
    )


def forbidden() -> AppError:
    return AppError(code=ErrorCodes.FORBIDDEN, message="Forbidden", status_code=403)
