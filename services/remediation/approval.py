"""Approval policy and approver notification.

``requires_approval`` is pure and total. ``ApprovalDispatcher`` is the
side-effecting half: it fans the approval summary out to every configured
channel and never lets a delivery failure escape.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from services.remediation.errors import ApprovalError
from services.remediation.heuristics import DEFAULT_PRODUCTION_MATCHER, ProductionPredicate
from services.remediation.models import (
    ImpactEstimate,
    RemediationJob,
    RemediationRequest,
    RiskLevel,
    SafetyCheckResult,
    Severity,
)
from services.remediation.notifiers import Notifier

logger = logging.getLogger(__name__)

APPROVAL_RESOURCE_TYPES = frozenset(
    {"identity-role", "identity-policy", "network-ingress-group", "virtual-network"}
)
APPROVAL_REMEDIATION_TYPES = frozenset({"delete-resource", "modify-permissions", "change-encryption"})


def requires_approval(
    request: RemediationRequest | RemediationJob,
    safety_result: SafetyCheckResult,
    impact: ImpactEstimate,
    *,
    is_production: ProductionPredicate = DEFAULT_PRODUCTION_MATCHER,
) -> bool:
    """Return True when human sign-off is required before execution."""
    high_risk = impact.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)
    serious_failure = not safety_result.passed and any(
        not check.passed and check.severity in (Severity.HIGH, Severity.CRITICAL) for check in safety_result.checks
    )
    return (
        high_risk
        or serious_failure
        or is_production(request.resource_id)
        or request.resource_type in APPROVAL_RESOURCE_TYPES
        or request.remediation_type in APPROVAL_REMEDIATION_TYPES
    )


@dataclass(frozen=True)
class ApprovalRequirements:
    """Who must approve, and advisory deadlines carried in notifications."""

    approvers: tuple[str, ...]
    required_approvals: int
    timeout_hours: int
    escalation_hours: int


_BASE_REQUIREMENTS: dict[RiskLevel, ApprovalRequirements] = {
    RiskLevel.CRITICAL: ApprovalRequirements(("security-team", "ops-manager", "cto"), 2, 4, 1),
    RiskLevel.HIGH: ApprovalRequirements(("security-team", "ops-manager"), 1, 8, 2),
    RiskLevel.MEDIUM: ApprovalRequirements(("ops-team",), 1, 24, 4),
    RiskLevel.LOW: ApprovalRequirements(("ops-team",), 1, 48, 8),
}


def approval_requirements(
    risk_level: RiskLevel,
    *,
    production: bool,
    safety_failed: bool,
) -> ApprovalRequirements:
    """Approver groups by risk tier; production adds ops-manager, failed checks add security-team."""
    base = _BASE_REQUIREMENTS[risk_level]
    approvers = list(base.approvers)
    if production and "ops-manager" not in approvers:
        approvers.append("ops-manager")
    if safety_failed and "security-team" not in approvers:
        approvers.append("security-team")
    return ApprovalRequirements(
        approvers=tuple(approvers),
        required_approvals=base.required_approvals,
        timeout_hours=base.timeout_hours,
        escalation_hours=base.escalation_hours,
    )


def build_approval_message(job: RemediationJob, requirements: ApprovalRequirements, *, dashboard_url: str = "") -> str:
    """Plain-text summary sent to approvers."""
    impact = job.impact_estimate
    safety = job.safety_check_result
    lines = [
        "Remediation approval required",
        "",
        f"Job ID: {job.job_id}",
        f"Tenant: {job.tenant_id}",
        f"Finding: {job.finding_id}",
        f"Resource: {job.resource_id} ({job.resource_type})",
        f"Remediation: {job.remediation_type}",
        f"Requested by: {job.requested_by}",
        f"Risk level: {impact.risk_level.value if impact else 'UNKNOWN'}",
    ]
    if impact:
        lines += [
            "",
            "Impact:",
            f"  Affected resources: {impact.affected_resources}",
            f"  Downtime expected: {'yes' if impact.downtime else 'no'}",
            f"  Cost impact: {impact.cost_impact:g}",
            f"  {impact.description}",
        ]
        lines += [f"  - {m}" for m in impact.mitigations]
    failed = safety.failed_checks() if safety else []
    if failed:
        lines += ["", "Failed safety checks:"]
        lines += [f"  - [{c.severity.value}] {c.name}: {c.message}" for c in failed]
    lines += [
        "",
        f"Approvers: {', '.join(requirements.approvers)} ({requirements.required_approvals} required)",
        f"Please respond within {requirements.timeout_hours}h "
        f"(escalation after {requirements.escalation_hours}h).",
        "",
        f"To approve: approve --tenant-id {job.tenant_id} --job-id {job.job_id} --approver <you>",
        "To reject: leave the job pending and contact the requester.",
    ]
    if dashboard_url:
        lines.append(f"Dashboard: {dashboard_url.rstrip('/')}/remediations/{job.job_id}")
    return "\n".join(lines)


@dataclass(frozen=True)
class ApprovalDispatchReport:
    requirements: ApprovalRequirements
    delivered: tuple[str, ...] = ()
    failed: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def any_delivered(self) -> bool:
        return bool(self.delivered)


class ApprovalDispatcher:
    """Best-effort fan-out of approval requests."""

    def __init__(
        self,
        notifiers: Sequence[Notifier] = (),
        *,
        is_production: ProductionPredicate = DEFAULT_PRODUCTION_MATCHER,
        dashboard_url: str = "",
    ) -> None:
        self._notifiers = tuple(notifiers)
        self._is_production = is_production
        self._dashboard_url = dashboard_url

    def requirements_for(self, job: RemediationJob) -> ApprovalRequirements:
        risk = job.impact_estimate.risk_level if job.impact_estimate else RiskLevel.HIGH
        safety_failed = bool(job.safety_check_result and not job.safety_check_result.passed)
        return approval_requirements(
            risk,
            production=self._is_production(job.resource_id),
            safety_failed=safety_failed,
        )

    def request_approval(self, job: RemediationJob) -> ApprovalDispatchReport:
        """Deliver to every channel; failures are logged and reported, never raised."""
        requirements = self.requirements_for(job)
        message = build_approval_message(job, requirements, dashboard_url=self._dashboard_url)
        metadata = {
            "subject": f"Approval required: {job.remediation_type} on {job.resource_id}",
            "job_id": job.job_id,
            "tenant_id": job.tenant_id,
            "risk_level": job.impact_estimate.risk_level.value if job.impact_estimate else "",
            "approvers": list(requirements.approvers),
            "required_approvals": requirements.required_approvals,
            "timeout_hours": requirements.timeout_hours,
            "escalation_hours": requirements.escalation_hours,
        }

        delivered: list[str] = []
        failed: list[tuple[str, str]] = []
        for notifier in self._notifiers:
            for channel in notifier.channels(requirements.approvers):
                target = f"{notifier.name}:{channel}"
                try:
                    notifier.notify(channel, message, metadata)
                except ApprovalError as exc:
                    logger.warning("Approval notification to %s failed for job %s: %s", target, job.job_id, exc)
                    failed.append((target, exc.message))
                else:
                    delivered.append(target)

        if not delivered:
            logger.warning("Approval request for job %s reached no channel; approve out-of-band", job.job_id)
        return ApprovalDispatchReport(requirements=requirements, delivered=tuple(delivered), failed=tuple(failed))
