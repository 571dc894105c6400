"""Unit tests for remediation impact estimation."""

from __future__ import annotations

import pytest

from services.remediation.heuristics import ProductionNameMatcher
from services.remediation.impact import PRODUCTION_MITIGATION, estimate_impact
from services.remediation.models import RiskLevel


@pytest.mark.parametrize(
    ("resource_type", "remediation_type", "expected"),
    [
        ("storage-bucket", "enable-bucket-encryption", RiskLevel.LOW),
        ("storage-bucket", "block-public-access", RiskLevel.MEDIUM),
        ("identity-role", "attach-security-policy", RiskLevel.HIGH),
        ("network-ingress-group", "restrict-ssh-access", RiskLevel.HIGH),
        ("audit-trail", "enable-log-file-validation", RiskLevel.LOW),
        ("encryption-key", "enable-key-rotation", RiskLevel.LOW),
        ("database-instance", "enable-backup-retention", RiskLevel.MEDIUM),
        ("serverless-function", "enable-vpc-configuration", RiskLevel.MEDIUM),
        ("quantum-widget", "fix-it", RiskLevel.MEDIUM),
    ],
)
def test_baseline_risk_per_family(resource_type: str, remediation_type: str, expected: RiskLevel) -> None:
    """Non-production resources keep the family baseline."""
    assert estimate_impact(resource_type, remediation_type, "orders-db").risk_level is expected


def test_database_encryption_expects_downtime() -> None:
    impact = estimate_impact("database-instance", "enable-encryption", "orders-db")

    assert impact.downtime is True
    assert impact.risk_level is RiskLevel.MEDIUM


def test_production_escalates_one_tier_and_adds_mitigation() -> None:
    """A production-looking id bumps the tier once and appends the caution note."""
    base = estimate_impact("database-instance", "enable-encryption", "orders-db")
    prod = estimate_impact("database-instance", "enable-encryption", "prod-orders-db")

    assert prod.risk_level is RiskLevel.HIGH
    assert prod.mitigations == (*base.mitigations, PRODUCTION_MITIGATION)
    assert prod.description == base.description


def test_production_escalation_saturates_at_critical() -> None:
    impact = estimate_impact("identity-role", "attach-security-policy", "production-admin")

    assert impact.risk_level is RiskLevel.CRITICAL


def test_estimate_is_deterministic_and_case_insensitive() -> None:
    first = estimate_impact("Storage-Bucket", " ENABLE-BUCKET-ENCRYPTION ", "reports-bucket")
    second = estimate_impact("storage-bucket", "enable-bucket-encryption", "reports-bucket")

    assert first == second


def test_custom_production_predicate_is_honored() -> None:
    matcher = ProductionNameMatcher(markers=("live",))

    assert estimate_impact("audit-trail", "enable-log-file-validation", "prod-trail", is_production=matcher).risk_level is RiskLevel.LOW
    assert estimate_impact("audit-trail", "enable-log-file-validation", "live-trail", is_production=matcher).risk_level is RiskLevel.MEDIUM
