"""Error taxonomy for the remediation workflow."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.remediation.models import SafetyCheck


class RemediationError(Exception):
    """Base error for every remediation failure surfaced to callers."""

    code: str = "remediation_error"

    def __init__(self, message: str, *, code: str | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.cause = cause

    def to_dict(self) -> dict[str, str]:
        """Return a serializable error payload (no traceback, no cause details)."""
        return {"code": self.code, "message": self.message}


class ValidationError(RemediationError):
    """Request or handler parameters are malformed."""

    code = "validation_error"


class SafetyViolationError(RemediationError):
    """Safety checks found an unresolved critical issue."""

    code = "safety_violation"

    def __init__(
        self,
        message: str,
        *,
        failed_checks: Sequence[SafetyCheck] = (),
        code: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, code=code, cause=cause)
        self.failed_checks = tuple(failed_checks)


class RollbackError(RemediationError):
    """Rollback was requested for a job that cannot be rolled back."""

    code = "rollback_error"


class ApprovalError(RemediationError):
    """Approval notification or approval transition failed."""

    code = "approval_error"


class JobNotFoundError(RemediationError):
    """No job exists for the requested (tenant_id, job_id)."""

    code = "not_found"


class JobConflictError(RemediationError):
    """Create-if-absent found an existing job, or compare-and-set lost a race."""

    code = "conflict"


class InvalidTransitionError(RemediationError):
    """A status write would move a job backwards or off the state graph."""

    code = "invalid_transition"


__all__ = [
    "RemediationError",
    "ValidationError",
    "SafetyViolationError",
    "RollbackError",
    "ApprovalError",
    "JobNotFoundError",
    "JobConflictError",
    "InvalidTransitionError",
]
