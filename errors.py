"""Error taxonomy shared by the policy engines and the HTTP layer.

Every error carries the HTTP status it maps to, a machine-readable ``error``
code and, for validation failures, the list of individual problems. Policy
violations are expected business outcomes; callers branch on ``error``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

__all__ = [
    "PolicyError",
    "ValidationError",
    "NotFoundError",
    "PolicyViolation",
    "AccessDenied",
    "InternalError",
]


class PolicyError(Exception):
    """Base class for all engine errors."""

    status_code = 500
    default_code = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        errors: Optional[Sequence[str]] = None,
        status_code: int | None = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.error = code or self.default_code
        self.message = message or self.error
        self.errors: List[str] = [str(item) for item in errors or () if item]
        self.details: Dict[str, Any] = dict(details or {})
        if status_code is not None:
            self.status_code = int(status_code)
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error, "message": self.message}
        if self.errors:
            payload["errors"] = list(self.errors)
        payload.update(self.details)
        return payload


class ValidationError(PolicyError, ValueError):
    """Malformed scope, id or policy values."""

    status_code = 400
    default_code = "Validation failed"


class NotFoundError(PolicyError, LookupError):
    """Scope, assessment or mapping absent."""

    status_code = 404
    default_code = "Not found"


class PolicyViolation(PolicyError):
    """A business rule refused the operation."""

    status_code = 409
    default_code = "Policy violation"


class AccessDenied(PolicyError):
    """Ownership or role mismatch."""

    status_code = 403
    default_code = "AccessDenied"


class InternalError(PolicyError):
    """Storage failure."""

    status_code = 500
    default_code = "Internal server error"
