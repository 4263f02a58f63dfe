"""Error taxonomy for the staking and settlement core.

Every error carries a machine-readable ``code``, a human-readable ``message``,
optional ``details`` and the HTTP status the API maps it to.
"""

from __future__ import annotations

from typing import Any


class PredictionError(Exception):
    """Base class for all errors surfaced to callers."""

    code = "prediction_error"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ValidationError(PredictionError):
    code = "validation_error"
    status_code = 400


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class Unauthorized(PredictionError):
    code = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class Forbidden(PredictionError):
    code = "forbidden"
    status_code = 403


class NotFound(PredictionError):
    code = "not_found"
    status_code = 404


class PredictionNotOpen(PredictionError):
    """Stake rejected because the prediction no longer accepts stakes."""

    code = "prediction_not_open"
    status_code = 409

    def __init__(self, message: str, status: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, {"status": status, **(details or {})})
        self.status = status


class PredictionLocked(PredictionNotOpen):
    code = "prediction_locked"


class InvalidTransition(PredictionError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Cannot move prediction from {current} to {target}",
            {"current_status": current, "target_status": target},
        )
        self.current = current
        self.target = target


class NotModifiable(PredictionError):
    code = "not_modifiable"
    status_code = 409


class ZeroPoolSettlement(PredictionError):
    code = "zero_pool_settlement"
    status_code = 409


class ConcurrentUpdate(PredictionError):
    code = "concurrent_update"
    status_code = 409


class InsufficientBalance(PredictionError):
    code = "insufficient_balance"
    status_code = 422

    def __init__(self, available: Any, required: Any) -> None:
        super().__init__(
            f"Insufficient balance: {available} available, {required} required",
            {"available": str(available), "required": str(required)},
        )
        self.available = available
        self.required = required


class RateLimited(PredictionError):
    code = "rate_limited"
    status_code = 429


class UpstreamError(PredictionError):
    """Balance or authorization collaborator could not be reached."""

    code = "upstream_error"
    status_code = 502
