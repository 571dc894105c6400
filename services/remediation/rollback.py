"""Rollback coordination over a completed job's rollback descriptor."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from services.remediation.actuator import Actuator
from services.remediation.errors import RollbackError
from services.remediation.heuristics import contains_any
from services.remediation.models import (
    ActionOutcome,
    ActionStatus,
    JobStatus,
    RemediationJob,
    RollbackResult,
)
from services.remediation.safety import IRREVERSIBLE_KEYWORDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollbackFeasibility:
    feasible: bool
    reasons: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


def summarize_outcomes(actions: Sequence[ActionOutcome]) -> RollbackResult:
    """Aggregate per-action outcomes.

    ``success`` needs at least one SUCCESS and no FAILED; ``partial_rollback``
    means some, but not all, actions failed.
    """
    items = tuple(actions)
    failed = sum(1 for a in items if a.status is ActionStatus.FAILED)
    succeeded = sum(1 for a in items if a.status is ActionStatus.SUCCESS)
    success = failed == 0 and succeeded > 0
    partial = 0 < failed < len(items)

    if success:
        message = "Rollback completed successfully"
    elif partial:
        message = "Rollback partially completed - some actions failed"
    elif items and failed == 0:
        message = "Rollback requires manual action - see rollback instructions"
    else:
        message = "Rollback failed"
    return RollbackResult(success=success, partial_rollback=partial, actions=items, message=message)


class RollbackCoordinator:
    """Re-invokes compensating actions for a completed job."""

    def __init__(self, actuator: Actuator) -> None:
        self._actuator = actuator

    def execute_rollback(self, job: RemediationJob) -> RollbackResult:
        if job.status is not JobStatus.COMPLETED:
            raise RollbackError(
                f"job {job.job_id} is {job.display_status}; only APPLIED jobs can be rolled back"
            )
        descriptor = job.rollback_descriptor
        if descriptor is None:
            raise RollbackError(f"job {job.job_id} has no rollback descriptor")

        try:
            actions = self._actuator.rollback(descriptor)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Actuator rollback for job %s raised: %s", job.job_id, exc)
            actions = [
                ActionOutcome(
                    action=f"rollback:{descriptor.kind}",
                    resource=descriptor.resource_id,
                    status=ActionStatus.FAILED,
                    error=f"{type(exc).__name__}: {exc}",
                )
            ]
        result = summarize_outcomes(actions)
        logger.info(
            "Rollback of job %s finished: success=%s partial=%s actions=%d",
            job.job_id,
            result.success,
            result.partial_rollback,
            len(result.actions),
        )
        return result

    def assess_feasibility(self, job: RemediationJob) -> RollbackFeasibility:
        """Read-only pre-check of whether an automated rollback can succeed."""
        reasons: list[str] = []
        warnings: list[str] = []
        if job.status is not JobStatus.COMPLETED:
            reasons.append(f"Job status is {job.display_status}, not APPLIED")
        descriptor = job.rollback_descriptor
        if descriptor is None:
            reasons.append("No rollback information available")
        elif not descriptor.automated:
            reasons.append("Rollback requires manual steps: " + " ".join(descriptor.instructions))
        if contains_any(job.remediation_type, IRREVERSIBLE_KEYWORDS):
            reasons.append("Operation is irreversible")
        if contains_any(job.remediation_type, ("encryption", "delete-resource")):
            warnings.append("Rollback may have time constraints or dependencies")
        if job.remediation_type == "block-public-access":
            warnings.append("Re-opening public access should be confirmed with the bucket owner")
        if job.dry_run:
            warnings.append("Job was a dry run; no changes were applied")
        return RollbackFeasibility(feasible=not reasons, reasons=tuple(reasons), warnings=tuple(warnings))
