"""Deterministic impact estimation for remediations.

The estimate is a pure function of ``(resource_type, remediation_type,
resource_id)``: a fixed baseline per resource family, optionally refined per
remediation type, then a single production escalation.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from services.remediation.heuristics import DEFAULT_PRODUCTION_MATCHER, ProductionPredicate
from services.remediation.models import ImpactEstimate, RiskLevel

PRODUCTION_MITIGATION = "Production resource - extra caution required"


@dataclass(frozen=True)
class _Baseline:
    risk_level: RiskLevel
    affected_resources: int
    downtime: bool
    cost_impact: float
    description: str
    mitigations: tuple[str, ...]

    def estimate(self) -> ImpactEstimate:
        return ImpactEstimate(
            risk_level=self.risk_level,
            affected_resources=self.affected_resources,
            downtime=self.downtime,
            cost_impact=self.cost_impact,
            description=self.description,
            mitigations=self.mitigations,
        )


_BUCKET = _Baseline(
    RiskLevel.LOW, 1, False, 0.0,
    "Storage bucket configuration change - no downtime expected",
    ("No service interruption expected",),
)
_IDENTITY = _Baseline(
    RiskLevel.HIGH, 1, False, 0.0,
    "IAM changes can affect access permissions - high risk",
    ("Test permissions thoroughly", "Have rollback plan ready", "Monitor for access issues"),
)
_NETWORK = _Baseline(
    RiskLevel.HIGH, 5, True, 0.0,
    "Security group changes can affect network connectivity",
    ("Verify connectivity requirements", "Test network access", "Have emergency access method"),
)
_TRAIL = _Baseline(
    RiskLevel.LOW, 1, False, 10.0,
    "CloudTrail changes may increase logging costs",
    ("Monitor CloudTrail costs", "Review log retention policies"),
)
_KEY = _Baseline(
    RiskLevel.LOW, 1, False, 5.0,
    "KMS changes have minimal impact",
    ("No service interruption expected",),
)
_DATABASE = _Baseline(
    RiskLevel.MEDIUM, 1, False, 20.0,
    "Database changes may require downtime and increase costs",
    ("Schedule during maintenance window", "Monitor performance impact"),
)
_FUNCTION = _Baseline(
    RiskLevel.MEDIUM, 1, False, 0.0,
    "Lambda configuration changes may affect function execution",
    ("Test function execution", "Monitor cold start times"),
)
_UNKNOWN = _Baseline(
    RiskLevel.MEDIUM, 1, False, 0.0,
    "No impact baseline for this remediation - manual review recommended",
    ("Review the change manually before approving",),
)

_FAMILY_BASELINES: dict[str, _Baseline] = {
    "storage-bucket": _BUCKET,
    "identity-role": _IDENTITY,
    "identity-user": _IDENTITY,
    "identity-policy": _IDENTITY,
    "network-ingress-group": _NETWORK,
    "virtual-network": _NETWORK,
    "audit-trail": _TRAIL,
    "encryption-key": _KEY,
    "database-instance": _DATABASE,
    "database-cluster": _DATABASE,
    "serverless-function": _FUNCTION,
}

_OVERRIDES: dict[tuple[str, str], _Baseline] = {
    ("storage-bucket", "enable-bucket-encryption"): replace(
        _BUCKET, description="Enable S3 bucket encryption - no downtime, minimal cost impact"
    ),
    ("storage-bucket", "enable-bucket-versioning"): replace(
        _BUCKET,
        description="Enable S3 bucket versioning - storage cost grows with retained versions",
        mitigations=("No service interruption expected", "Add lifecycle rules for noncurrent versions"),
    ),
    ("storage-bucket", "block-public-access"): replace(
        _BUCKET,
        risk_level=RiskLevel.MEDIUM,
        description="Block public access - may affect public-facing applications",
        mitigations=("Verify no legitimate public access requirements", "Test application functionality"),
    ),
    ("database-instance", "enable-encryption"): replace(
        _DATABASE,
        downtime=True,
        description="Database encryption requires snapshot restore and a cutover window",
    ),
}


def estimate_impact(
    resource_type: str,
    remediation_type: str,
    resource_id: str,
    *,
    is_production: ProductionPredicate = DEFAULT_PRODUCTION_MATCHER,
) -> ImpactEstimate:
    """Return the baseline impact for the pair, escalated one tier for production resources."""
    key = (str(resource_type or "").strip().lower(), str(remediation_type or "").strip().lower())
    baseline = _OVERRIDES.get(key) or _FAMILY_BASELINES.get(key[0]) or _UNKNOWN
    estimate = baseline.estimate()
    if is_production(resource_id):
        estimate = replace(
            estimate,
            risk_level=estimate.risk_level.escalate(),
            mitigations=(*estimate.mitigations, PRODUCTION_MITIGATION),
        )
    return estimate
