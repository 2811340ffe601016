"""
Typed failures returned by the resolution API.

Every service-layer failure is one of these; the app factory maps them to a
JSON body `{"error": ..., "kind": ..., ...}` with the matching HTTP status.
"""
from __future__ import annotations

from typing import Any


class GovernanceError(Exception):
    status_code = 500
    kind = "error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()

    @classmethod
    def default_message(cls) -> str:
        return "Request failed"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "kind": self.kind}


class Unauthorized(GovernanceError):
    status_code = 401
    kind = "unauthorized"

    @classmethod
    def default_message(cls) -> str:
        return "Unauthorized"


class Forbidden(GovernanceError):
    status_code = 403
    kind = "forbidden"

    def __init__(self, message: str | None = None, *, missing_permission: str | None = None) -> None:
        super().__init__(message)
        self.missing_permission = missing_permission

    @classmethod
    def default_message(cls) -> str:
        return "Forbidden"

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        if self.missing_permission:
            d["missing_permission"] = self.missing_permission
        return d


class NotFound(GovernanceError):
    """Missing, or owned by another organization. The two are never distinguished."""

    status_code = 404
    kind = "not_found"

    @classmethod
    def default_message(cls) -> str:
        return "Not found"


class ValidationFailed(GovernanceError):
    status_code = 400
    kind = "validation_failed"

    def __init__(self, details: dict[str, list[str]], message: str | None = None) -> None:
        super().__init__(message)
        self.details = details

    @classmethod
    def default_message(cls) -> str:
        return "Validation failed"

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["details"] = self.details
        return d


class InvalidStateTransition(GovernanceError):
    status_code = 409
    kind = "invalid_state_transition"

    def __init__(self, current: str, requested: str, message: str | None = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot {requested} a resolution that is {current}")

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["current"] = self.current
        d["requested"] = self.requested
        return d


class Conflict(GovernanceError):
    status_code = 409
    kind = "conflict"

    @classmethod
    def default_message(cls) -> str:
        return "Conflict"


class StorageFailure(GovernanceError):
    status_code = 500
    kind = "storage_failure"

    @classmethod
    def default_message(cls) -> str:
        return "Internal server error"
