"""Exceptions raised by services and translated into JSON error envelopes."""

from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """An error with an HTTP status and a machine-readable code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        *,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"ok": False, "error": error}


class BadRequestError(ApiError):
    def __init__(self, message: str, *, details: Any | None = None) -> None:
        super().__init__(400, "BAD_REQUEST", message, details=details)


class UnauthorizedError(ApiError):
    def __init__(self, message: str = "Sign in required.") -> None:
        super().__init__(401, "UNAUTHORIZED", message)


class ForbiddenError(ApiError):
    def __init__(self, message: str = "Not allowed.") -> None:
        super().__init__(403, "FORBIDDEN", message)


class NotFoundError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(404, "NOT_FOUND", message)


class UpstreamError(ApiError):
    """Raised when TMDB or TVmaze responds with an error or unusable payload."""

    def __init__(self, message: str, *, upstream_status: int | None = None) -> None:
        super().__init__(502, "UPSTREAM_ERROR", message)
        self.upstream_status = upstream_status


class AdminRequiredError(ApiError):
    """Raised by the shared-passphrase gate on write routes."""

    def __init__(self) -> None:
        super().__init__(401, "ADMIN_REQUIRED", "Admin passphrase required.")

    def to_payload(self) -> dict[str, Any]:
        return {"ok": False, "error": self.code}


class RateLimitedError(ApiError):
    def __init__(self) -> None:
        super().__init__(429, "RATE_LIMITED", "Too many requests")
