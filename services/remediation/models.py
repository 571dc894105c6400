"""Typed records exchanged between the workflow, gates, actuator and store.

Every record is a frozen dataclass with ``to_dict``/``from_dict`` so jobs can be
persisted as JSON documents and compared byte-for-byte.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from services.remediation.errors import ValidationError
from version import SCHEMA_VERSION

_ACCOUNT_ID_RE = re.compile(r"^\d{12}$")


def utc_now() -> datetime:
    """Timezone-aware UTC now, truncated to milliseconds."""
    now = datetime.now(UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class _OrderedLevel:
    """Ordinal helpers shared by risk and severity scales."""

    value: str

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self.value)

    def escalate(self):  # type: ignore[no-untyped-def]
        """Return the next tier up, saturating at CRITICAL."""
        members = list(type(self))  # type: ignore[call-overload]
        return members[min(self.rank + 1, len(members) - 1)]

    def at_least(self, other: _OrderedLevel) -> bool:
        return self.rank >= other.rank


_LEVEL_ORDER = ("LOW", "MEDIUM", "HIGH", "CRITICAL")


class RiskLevel(_OrderedLevel, str, Enum):
    """Blast-radius classification of a remediation."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Severity(_OrderedLevel, str, Enum):
    """Severity of one safety check."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class JobStatus(str, Enum):
    """Lifecycle states of a remediation job."""

    PENDING = "PENDING"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    APPLIED = "COMPLETED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"

    @property
    def display(self) -> str:
        """Read-model name; completed jobs are shown as APPLIED."""
        return "APPLIED" if self is JobStatus.COMPLETED else self.value

    @property
    def terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS.get(self)


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PENDING_APPROVAL, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.PENDING_APPROVAL: frozenset({JobStatus.APPROVED}),
    JobStatus.APPROVED: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset({JobStatus.ROLLED_BACK}),
    JobStatus.FAILED: frozenset(),
    JobStatus.ROLLED_BACK: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True when ``target`` is a legal successor of ``current``."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class ActionStatus(str, Enum):
    """Outcome of one compensating action."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class RemediationRequest:
    """Caller input for apply/request_approval."""

    tenant_id: str
    finding_id: str
    resource_id: str
    resource_type: str
    remediation_type: str
    requested_by: str
    region: str = ""
    account_id: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)
    auto_approve: bool = False
    dry_run: bool = False
    safety_override: bool = False
    correlation_id: str = ""

    def validate(self) -> RemediationRequest:
        """Raise ``ValidationError`` for missing or malformed fields, return a normalized copy."""
        missing = [
            name
            for name in (
                "tenant_id",
                "finding_id",
                "resource_id",
                "resource_type",
                "remediation_type",
                "requested_by",
            )
            if not str(getattr(self, name) or "").strip()
        ]
        if missing:
            raise ValidationError(f"missing required request fields: {', '.join(missing)}")
        account_id = str(self.account_id or "").strip()
        if account_id and not _ACCOUNT_ID_RE.match(account_id):
            raise ValidationError("account_id must be a 12-digit AWS account id")
        if not isinstance(self.parameters, Mapping):
            raise ValidationError("parameters must be a mapping")
        return replace(
            self,
            tenant_id=self.tenant_id.strip(),
            finding_id=self.finding_id.strip(),
            resource_id=self.resource_id.strip(),
            resource_type=self.resource_type.strip().lower(),
            remediation_type=self.remediation_type.strip().lower(),
            requested_by=self.requested_by.strip(),
            region=str(self.region or "").strip(),
            account_id=account_id,
            parameters=dict(self.parameters),
            correlation_id=str(self.correlation_id or "").strip() or str(uuid.uuid4()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "finding_id": self.finding_id,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "remediation_type": self.remediation_type,
            "requested_by": self.requested_by,
            "region": self.region,
            "account_id": self.account_id,
            "parameters": dict(self.parameters),
            "auto_approve": self.auto_approve,
            "dry_run": self.dry_run,
            "safety_override": self.safety_override,
            "correlation_id": self.correlation_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RemediationRequest:
        return cls(
            tenant_id=str(data.get("tenant_id") or ""),
            finding_id=str(data.get("finding_id") or ""),
            resource_id=str(data.get("resource_id") or ""),
            resource_type=str(data.get("resource_type") or ""),
            remediation_type=str(data.get("remediation_type") or ""),
            requested_by=str(data.get("requested_by") or ""),
            region=str(data.get("region") or ""),
            account_id=str(data.get("account_id") or ""),
            parameters=dict(data.get("parameters") or {}),
            auto_approve=bool(data.get("auto_approve", False)),
            dry_run=bool(data.get("dry_run", False)),
            safety_override=bool(data.get("safety_override", False)),
            correlation_id=str(data.get("correlation_id") or ""),
        )


@dataclass(frozen=True)
class SafetyCheck:
    """One named pre-flight assertion."""

    name: str
    passed: bool
    severity: Severity
    message: str
    recommendation: str | None = None

    @property
    def blocking(self) -> bool:
        """A failed check above LOW counts against the aggregate verdict."""
        return not self.passed and self.severity is not Severity.LOW

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "severity": self.severity.value,
            "message": self.message,
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SafetyCheck:
        return cls(
            name=str(data["name"]),
            passed=bool(data["passed"]),
            severity=Severity(data["severity"]),
            message=str(data.get("message") or ""),
            recommendation=data.get("recommendation"),
        )


@dataclass(frozen=True)
class SafetyCheckResult:
    passed: bool
    checks: tuple[SafetyCheck, ...] = ()

    @classmethod
    def aggregate(cls, checks: Sequence[SafetyCheck]) -> SafetyCheckResult:
        """Every check must pass or be LOW severity."""
        items = tuple(checks)
        return cls(passed=all(c.passed or c.severity is Severity.LOW for c in items), checks=items)

    def failed_checks(self) -> list[SafetyCheck]:
        return [c for c in self.checks if not c.passed]

    def critical_failures(self) -> list[SafetyCheck]:
        return [c for c in self.checks if not c.passed and c.severity is Severity.CRITICAL]

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "checks": [c.to_dict() for c in self.checks]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SafetyCheckResult:
        return cls(
            passed=bool(data["passed"]),
            checks=tuple(SafetyCheck.from_dict(c) for c in data.get("checks") or ()),
        )


@dataclass(frozen=True)
class ImpactEstimate:
    risk_level: RiskLevel
    affected_resources: int = 1
    downtime: bool = False
    cost_impact: float = 0.0
    description: str = ""
    mitigations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk_level": self.risk_level.value,
            "affected_resources": self.affected_resources,
            "downtime": self.downtime,
            "cost_impact": self.cost_impact,
            "description": self.description,
            "mitigations": list(self.mitigations),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ImpactEstimate:
        return cls(
            risk_level=RiskLevel(data["risk_level"]),
            affected_resources=int(data.get("affected_resources", 1)),
            downtime=bool(data.get("downtime", False)),
            cost_impact=float(data.get("cost_impact", 0.0)),
            description=str(data.get("description") or ""),
            mitigations=tuple(data.get("mitigations") or ()),
        )


@dataclass(frozen=True)
class ChangeRecord:
    action: str
    resource: str
    before: Any = None
    after: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "resource": self.resource, "before": self.before, "after": self.after}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChangeRecord:
        return cls(
            action=str(data["action"]),
            resource=str(data["resource"]),
            before=data.get("before"),
            after=data.get("after"),
        )


@dataclass(frozen=True)
class RollbackDescriptor:
    """How to reverse one applied change.

    ``data`` is ``None`` when the change cannot be reversed automatically; the
    ``instructions`` then carry the manual procedure.
    """

    kind: str
    resource_id: str
    resource_type: str
    remediation_type: str
    instructions: tuple[str, ...]
    data: Mapping[str, Any] | None = None
    region: str = ""

    def __post_init__(self) -> None:
        if not self.instructions:
            raise ValueError("rollback descriptor requires at least one instruction")

    @property
    def automated(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "remediation_type": self.remediation_type,
            "region": self.region,
            "data": dict(self.data) if self.data is not None else None,
            "instructions": list(self.instructions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RollbackDescriptor:
        raw = data.get("data")
        return cls(
            kind=str(data["kind"]),
            resource_id=str(data["resource_id"]),
            resource_type=str(data["resource_type"]),
            remediation_type=str(data["remediation_type"]),
            region=str(data.get("region") or ""),
            data=dict(raw) if raw is not None else None,
            instructions=tuple(data.get("instructions") or ()),
        )


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    changes: tuple[ChangeRecord, ...]
    rollback_descriptor: RollbackDescriptor
    message: str = ""


@dataclass(frozen=True)
class ActionOutcome:
    action: str
    resource: str
    status: ActionStatus
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "resource": self.resource, "status": self.status.value, "error": self.error}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ActionOutcome:
        return cls(
            action=str(data["action"]),
            resource=str(data["resource"]),
            status=ActionStatus(data["status"]),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    partial_rollback: bool
    actions: tuple[ActionOutcome, ...]
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "partial_rollback": self.partial_rollback,
            "actions": [a.to_dict() for a in self.actions],
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RollbackResult:
        return cls(
            success=bool(data["success"]),
            partial_rollback=bool(data["partial_rollback"]),
            actions=tuple(ActionOutcome.from_dict(a) for a in data.get("actions") or ()),
            message=str(data.get("message") or ""),
        )


@dataclass(frozen=True)
class RemediationJob:
    """Persisted state of one remediation attempt."""

    job_id: str
    tenant_id: str
    finding_id: str
    resource_id: str
    resource_type: str
    remediation_type: str
    requested_by: str
    requested_at: datetime
    status: JobStatus = JobStatus.PENDING
    region: str = ""
    account_id: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)
    dry_run: bool = False
    correlation_id: str = ""
    approved_at: datetime | None = None
    approved_by: str | None = None
    applied_at: datetime | None = None
    rolled_back_at: datetime | None = None
    failed_at: datetime | None = None
    safety_check_result: SafetyCheckResult | None = None
    impact_estimate: ImpactEstimate | None = None
    approval_required: bool | None = None
    changes: tuple[ChangeRecord, ...] = ()
    rollback_descriptor: RollbackDescriptor | None = None
    rollback_result: RollbackResult | None = None
    error_message: str | None = None
    message: str = ""

    @classmethod
    def new(cls, request: RemediationRequest, *, job_id: str | None = None, now: datetime | None = None) -> RemediationJob:
        """Build the initial PENDING record for a validated request."""
        return cls(
            job_id=job_id or str(uuid.uuid4()),
            tenant_id=request.tenant_id,
            finding_id=request.finding_id,
            resource_id=request.resource_id,
            resource_type=request.resource_type,
            remediation_type=request.remediation_type,
            requested_by=request.requested_by,
            requested_at=now or utc_now(),
            region=request.region,
            account_id=request.account_id,
            parameters=dict(request.parameters),
            dry_run=request.dry_run,
            correlation_id=request.correlation_id,
            message="Remediation job created",
        )

    @property
    def display_status(self) -> str:
        return self.status.display

    def to_request(self) -> RemediationRequest:
        """Rebuild the execution request from the stored job (used after approval)."""
        return RemediationRequest(
            tenant_id=self.tenant_id,
            finding_id=self.finding_id,
            resource_id=self.resource_id,
            resource_type=self.resource_type,
            remediation_type=self.remediation_type,
            requested_by=self.requested_by,
            region=self.region,
            account_id=self.account_id,
            parameters=dict(self.parameters),
            dry_run=self.dry_run,
            correlation_id=self.correlation_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "job_id": self.job_id,
            "tenant_id": self.tenant_id,
            "finding_id": self.finding_id,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "remediation_type": self.remediation_type,
            "region": self.region,
            "account_id": self.account_id,
            "status": self.status.value,
            "display_status": self.display_status,
            "requested_by": self.requested_by,
            "requested_at": _iso(self.requested_at),
            "approved_at": _iso(self.approved_at),
            "approved_by": self.approved_by,
            "applied_at": _iso(self.applied_at),
            "rolled_back_at": _iso(self.rolled_back_at),
            "failed_at": _iso(self.failed_at),
            "parameters": dict(self.parameters),
            "dry_run": self.dry_run,
            "correlation_id": self.correlation_id,
            "safety_check_result": self.safety_check_result.to_dict() if self.safety_check_result else None,
            "impact_estimate": self.impact_estimate.to_dict() if self.impact_estimate else None,
            "approval_required": self.approval_required,
            "changes": [c.to_dict() for c in self.changes],
            "rollback_descriptor": self.rollback_descriptor.to_dict() if self.rollback_descriptor else None,
            "rollback_result": self.rollback_result.to_dict() if self.rollback_result else None,
            "error_message": self.error_message,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RemediationJob:
        safety = data.get("safety_check_result")
        impact = data.get("impact_estimate")
        descriptor = data.get("rollback_descriptor")
        rollback_result = data.get("rollback_result")
        approval_required = data.get("approval_required")
        requested_at = _parse_dt(data.get("requested_at"))
        if requested_at is None:
            raise ValueError("requested_at is required")
        return cls(
            job_id=str(data["job_id"]),
            tenant_id=str(data["tenant_id"]),
            finding_id=str(data.get("finding_id") or ""),
            resource_id=str(data.get("resource_id") or ""),
            resource_type=str(data.get("resource_type") or ""),
            remediation_type=str(data.get("remediation_type") or ""),
            requested_by=str(data.get("requested_by") or ""),
            requested_at=requested_at,
            status=JobStatus(data.get("status") or JobStatus.PENDING.value),
            region=str(data.get("region") or ""),
            account_id=str(data.get("account_id") or ""),
            parameters=dict(data.get("parameters") or {}),
            dry_run=bool(data.get("dry_run", False)),
            correlation_id=str(data.get("correlation_id") or ""),
            approved_at=_parse_dt(data.get("approved_at")),
            approved_by=data.get("approved_by"),
            applied_at=_parse_dt(data.get("applied_at")),
            rolled_back_at=_parse_dt(data.get("rolled_back_at")),
            failed_at=_parse_dt(data.get("failed_at")),
            safety_check_result=SafetyCheckResult.from_dict(safety) if safety else None,
            impact_estimate=ImpactEstimate.from_dict(impact) if impact else None,
            approval_required=None if approval_required is None else bool(approval_required),
            changes=tuple(ChangeRecord.from_dict(c) for c in data.get("changes") or ()),
            rollback_descriptor=RollbackDescriptor.from_dict(descriptor) if descriptor else None,
            rollback_result=RollbackResult.from_dict(rollback_result) if rollback_result else None,
            error_message=data.get("error_message"),
            message=str(data.get("message") or ""),
        )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "ActionOutcome",
    "ActionStatus",
    "ChangeRecord",
    "ExecutionResult",
    "ImpactEstimate",
    "JobStatus",
    "RemediationJob",
    "RemediationRequest",
    "RiskLevel",
    "RollbackDescriptor",
    "RollbackResult",
    "SafetyCheck",
    "SafetyCheckResult",
    "Severity",
    "can_transition",
    "utc_now",
]
