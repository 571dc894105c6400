"""Remediation workflow state machine.

The workflow is the only writer of ``RemediationJob.status``. Every status write
is checked against ``ALLOWED_TRANSITIONS`` and applied as a compare-and-set on
the status the workflow last observed, so a concurrent writer surfaces as
``JobConflictError`` instead of a silent overwrite.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from infra.logging_config import StructuredLogger, request_context
from services.remediation.actuator import Actuator
from services.remediation.approval import ApprovalDispatcher, requires_approval
from services.remediation.audit import AuditSink, NoopAuditSink, RemediationAuditEvent
from services.remediation.errors import (
    InvalidTransitionError,
    JobNotFoundError,
    RemediationError,
    SafetyViolationError,
    ValidationError,
)
from services.remediation.heuristics import DEFAULT_PRODUCTION_MATCHER, Clock, ProductionPredicate
from services.remediation.models import (
    JobStatus,
    RemediationJob,
    RemediationRequest,
    RollbackResult,
    can_transition,
    utc_now,
)
from services.remediation.rollback import RollbackCoordinator
from services.remediation.safety import SafetyGate
from services.remediation.store import JobStore

_log = StructuredLogger(__name__)

DEFAULT_MAX_ERROR_MESSAGE_LENGTH = 500

_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b"), "***"),
    (
        re.compile(r"(?i)\b(aws_secret_access_key|secret|password|passwd|token|session_token)(\s*[=:]\s*)\S+"),
        r"\1\2***",
    ),
    (re.compile(r"(?i)(postgres(?:ql)?://[^:/\s]+:)[^@\s]+(@)"), r"\1***\2"),
)

# Unexpected handler bugs are recorded on the job the same way client failures are.
_UNEXPECTED_EXECUTION_ERRORS = (ValueError, TypeError, KeyError, RuntimeError, AttributeError)


def sanitize_error_message(message: str, max_length: int = DEFAULT_MAX_ERROR_MESSAGE_LENGTH) -> str:
    """Mask credentials and cap the length of an error message before it is persisted."""
    text = " ".join(str(message or "").split())
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    if max_length > 3 and len(text) > max_length:
        text = text[: max_length - 3] + "..."
    return text


class RemediationWorkflow:
    """Sequences safety, impact, approval, execution and rollback for one job at a time."""

    def __init__(
        self,
        *,
        actuator: Actuator,
        store: JobStore,
        safety_gate: SafetyGate,
        approval_dispatcher: ApprovalDispatcher | None = None,
        audit_sink: AuditSink | None = None,
        rollback_coordinator: RollbackCoordinator | None = None,
        is_production: ProductionPredicate = DEFAULT_PRODUCTION_MATCHER,
        max_error_message_length: int = DEFAULT_MAX_ERROR_MESSAGE_LENGTH,
        clock: Clock = utc_now,
        job_id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._actuator = actuator
        self._store = store
        self._safety_gate = safety_gate
        self._approval = approval_dispatcher or ApprovalDispatcher(is_production=is_production)
        self._audit = audit_sink or NoopAuditSink()
        self._rollback = rollback_coordinator or RollbackCoordinator(actuator)
        self._is_production = is_production
        self._max_error_len = int(max_error_message_length)
        self._clock = clock
        self._job_id_factory = job_id_factory

    # public operations

    def apply(self, request: RemediationRequest) -> RemediationJob:
        """Run a request through the gates; execute now or park for approval."""
        return self._submit(request, force_approval=False)

    def request_approval(self, request: RemediationRequest) -> RemediationJob:
        """Like ``apply`` but always parks the job in PENDING_APPROVAL."""
        return self._submit(request, force_approval=True)

    def approve(self, tenant_id: str, job_id: str, approver: str) -> RemediationJob:
        """Record the approval and execute the stored request."""
        approver = str(approver or "").strip()
        if not approver:
            raise ValidationError("approver is required")
        job = self._require(tenant_id, job_id)
        with request_context(correlation_id=job.correlation_id, tenant_id=tenant_id, job_id=job_id):
            if job.status is not JobStatus.PENDING_APPROVAL:
                raise InvalidTransitionError(
                    f"job {job_id} is {job.display_status}; only PENDING_APPROVAL jobs can be approved"
                )
            job = self._transition(
                job,
                JobStatus.APPROVED,
                {
                    "approved_at": self._clock(),
                    "approved_by": approver,
                    "message": f"Approved by {approver}",
                },
            )
            self._emit(job, "remediation_approved", actor_id=approver)
            _log.info("remediation_approved", approver=approver)
            return self._execute(job, job.to_request(), actor_id=approver)

    def rollback(self, tenant_id: str, job_id: str, actor: str) -> RemediationJob:
        """Undo an applied job; the job ends ROLLED_BACK whatever the per-action outcome."""
        job = self._require(tenant_id, job_id)
        with request_context(correlation_id=job.correlation_id, tenant_id=tenant_id, job_id=job_id):
            result: RollbackResult = self._rollback.execute_rollback(job)
            job = self._transition(
                job,
                JobStatus.ROLLED_BACK,
                {
                    "rollback_result": result,
                    "rolled_back_at": self._clock(),
                    "message": result.message,
                },
            )
            self._emit(
                job,
                "remediation_rolled_back",
                actor_id=actor,
                details={
                    "success": result.success,
                    "partial_rollback": result.partial_rollback,
                    "actions": len(result.actions),
                },
            )
            _log.info(
                "remediation_rolled_back",
                success=result.success,
                partial_rollback=result.partial_rollback,
            )
            return job

    def status(self, tenant_id: str, job_id: str) -> RemediationJob:
        return self._require(tenant_id, job_id)

    def list_pending(self, tenant_id: str | None = None) -> list[RemediationJob]:
        return self._store.query_by_status(JobStatus.PENDING_APPROVAL, tenant_id=tenant_id)

    # internals

    def _submit(self, request: RemediationRequest, *, force_approval: bool) -> RemediationJob:
        req = request.validate()
        job_id = self._job_id_factory() if self._job_id_factory else None
        job = self._store.create(RemediationJob.new(req, job_id=job_id, now=self._clock()))

        with request_context(correlation_id=req.correlation_id, tenant_id=req.tenant_id, job_id=job.job_id):
            self._emit(
                job,
                "remediation_requested",
                actor_id=req.requested_by,
                details={"dry_run": req.dry_run, "auto_approve": req.auto_approve},
            )
            _log.info(
                "remediation_requested",
                resource_id=req.resource_id,
                resource_type=req.resource_type,
                remediation_type=req.remediation_type,
            )

            # Unsupported pairs leave the job PENDING with no further writes.
            handler = self._actuator.resolve(req.resource_type, req.remediation_type)
            try:
                handler.validate_parameters(req.parameters)
            except ValidationError as exc:
                self._fail(job, exc, actor_id=req.requested_by)
                raise

            safety = self._safety_gate.run_safety_checks(req)
            critical = safety.critical_failures()
            if critical and not req.safety_override:
                summary = "; ".join(f"{c.name}: {c.message}" for c in critical)
                error_message = self._sanitize(f"Critical safety checks failed: {summary}")
                job = self._transition(
                    job,
                    JobStatus.FAILED,
                    {
                        "safety_check_result": safety,
                        "failed_at": self._clock(),
                        "error_message": error_message,
                        "message": "Remediation blocked by safety checks",
                    },
                )
                self._emit(
                    job,
                    "remediation_blocked",
                    actor_id=req.requested_by,
                    details={"failed_checks": [c.name for c in critical]},
                )
                _log.warning("remediation_blocked", failed_checks=[c.name for c in critical])
                raise SafetyViolationError(error_message, failed_checks=critical)
            if critical:
                _log.warning("safety_override_used", failed_checks=[c.name for c in critical])

            impact = self._actuator.estimate_impact(req)
            approval_required = requires_approval(req, safety, impact, is_production=self._is_production)
            artifacts: dict[str, Any] = {
                "safety_check_result": safety,
                "impact_estimate": impact,
                "approval_required": approval_required,
            }

            if force_approval or (approval_required and not req.auto_approve):
                artifacts["message"] = "Awaiting approval"
                job = self._transition(job, JobStatus.PENDING_APPROVAL, artifacts)
                report = self._approval.request_approval(job)
                self._emit(
                    job,
                    "approval_requested",
                    actor_id=req.requested_by,
                    details={
                        "approvers": list(report.requirements.approvers),
                        "delivered": list(report.delivered),
                        "failed": [target for target, _ in report.failed],
                        "risk_level": impact.risk_level.value,
                    },
                )
                _log.info(
                    "approval_requested",
                    risk_level=impact.risk_level.value,
                    delivered=len(report.delivered),
                    failed=len(report.failed),
                )
                return job

            job = self._store.update(job.tenant_id, job.job_id, artifacts, expected_status=job.status)
            return self._execute(job, req, actor_id=req.requested_by)

    def _execute(self, job: RemediationJob, request: RemediationRequest, *, actor_id: str) -> RemediationJob:
        try:
            result = self._actuator.execute(request)
            if not result.success:
                raise RemediationError(result.message or "remediation reported failure", code="execution_failed")
        except RemediationError as exc:
            self._fail(job, exc, actor_id=actor_id)
            raise
        except _UNEXPECTED_EXECUTION_ERRORS as exc:
            wrapped = RemediationError(
                f"{request.remediation_type} on {request.resource_id} failed: {type(exc).__name__}: {exc}",
                code="execution_failed",
                cause=exc,
            )
            self._fail(job, wrapped, actor_id=actor_id)
            raise wrapped from exc

        job = self._transition(
            job,
            JobStatus.COMPLETED,
            {
                "changes": result.changes,
                "rollback_descriptor": result.rollback_descriptor,
                "applied_at": self._clock(),
                "message": result.message or "Remediation applied",
            },
        )
        self._emit(
            job,
            "remediation_applied",
            actor_id=actor_id,
            details={
                "dry_run": job.dry_run,
                "changes": len(job.changes),
                "rollback_automated": result.rollback_descriptor.automated,
            },
        )
        _log.info("remediation_applied", dry_run=job.dry_run, changes=len(job.changes))
        return job

    def _fail(self, job: RemediationJob, exc: RemediationError, *, actor_id: str) -> RemediationJob:
        error_message = self._sanitize(exc.message)
        job = self._transition(
            job,
            JobStatus.FAILED,
            {
                "failed_at": self._clock(),
                "error_message": error_message,
                "message": "Remediation failed",
            },
        )
        self._emit(job, "remediation_failed", actor_id=actor_id, details={"code": exc.code})
        _log.error("remediation_failed", error_code=exc.code, error_message=error_message)
        return job

    def _transition(
        self,
        job: RemediationJob,
        target: JobStatus,
        updates: Mapping[str, Any],
    ) -> RemediationJob:
        if not can_transition(job.status, target):
            raise InvalidTransitionError(
                f"job {job.job_id} cannot move from {job.status.value} to {target.value}"
            )
        return self._store.update(
            job.tenant_id,
            job.job_id,
            {**updates, "status": target},
            expected_status=job.status,
        )

    def _require(self, tenant_id: str, job_id: str) -> RemediationJob:
        job = self._store.get(tenant_id, job_id)
        if job is None:
            raise JobNotFoundError(f"job {job_id} not found for tenant {tenant_id}")
        return job

    def _emit(
        self,
        job: RemediationJob,
        action: str,
        *,
        actor_id: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        payload = {
            "tenant_id": job.tenant_id,
            "status": job.status.value,
            "resource_id": job.resource_id,
            "resource_type": job.resource_type,
            "remediation_type": job.remediation_type,
            **dict(details or {}),
        }
        self._audit.append(
            RemediationAuditEvent.build(
                action,
                actor_id=actor_id,
                target_id=job.job_id,
                details=payload,
                correlation_id=job.correlation_id,
                timestamp=self._clock(),
            )
        )

    def _sanitize(self, message: str) -> str:
        return sanitize_error_message(message, self._max_error_len)
