"""Approval policy, approver routing and notification fan-out."""

from __future__ import annotations

from dataclasses import replace

import pytest

from services.remediation.approval import (
    ApprovalDispatcher,
    approval_requirements,
    build_approval_message,
    requires_approval,
)
from services.remediation.models import (
    ImpactEstimate,
    RiskLevel,
    SafetyCheck,
    SafetyCheckResult,
    Severity,
)
from services.remediation.notifiers import InMemoryNotifier
from tests.factories import make_job, make_request

_PASSED = SafetyCheckResult.aggregate([SafetyCheck("Production Environment Check", True, Severity.LOW, "ok")])


def _impact(level: RiskLevel = RiskLevel.LOW) -> ImpactEstimate:
    return ImpactEstimate(risk_level=level, description="test impact", mitigations=("watch it",))


def test_low_risk_non_production_bucket_needs_no_approval() -> None:
    assert requires_approval(make_request(), _PASSED, _impact()) is False


@pytest.mark.parametrize("level", [RiskLevel.HIGH, RiskLevel.CRITICAL])
def test_high_risk_requires_approval(level: RiskLevel) -> None:
    assert requires_approval(make_request(), _PASSED, _impact(level)) is True


def test_serious_failed_check_requires_approval() -> None:
    safety = SafetyCheckResult.aggregate([SafetyCheck("Criticality Tag Check", False, Severity.HIGH, "tagged")])

    assert requires_approval(make_request(), safety, _impact()) is True


def test_medium_failed_check_alone_does_not_require_approval() -> None:
    safety = SafetyCheckResult.aggregate([SafetyCheck("Multi-AZ Check", False, Severity.MEDIUM, "single az")])

    assert requires_approval(make_request(), safety, _impact()) is False


def test_production_resource_requires_approval() -> None:
    assert requires_approval(make_request(resource_id="prod-reports"), _PASSED, _impact()) is True


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("resource_type", "identity-role"),
        ("resource_type", "network-ingress-group"),
        ("remediation_type", "delete-resource"),
        ("remediation_type", "modify-permissions"),
    ],
)
def test_sensitive_types_require_approval(field: str, value: str) -> None:
    assert requires_approval(make_request(**{field: value}), _PASSED, _impact()) is True


def test_custom_production_predicate() -> None:
    request = make_request(resource_id="live-reports")

    assert requires_approval(request, _PASSED, _impact(), is_production=lambda rid: rid.startswith("live-")) is True


def test_requirements_by_tier() -> None:
    critical = approval_requirements(RiskLevel.CRITICAL, production=False, safety_failed=False)
    low = approval_requirements(RiskLevel.LOW, production=False, safety_failed=False)

    assert critical.approvers == ("security-team", "ops-manager", "cto")
    assert critical.required_approvals == 2
    assert (critical.timeout_hours, critical.escalation_hours) == (4, 1)
    assert low.approvers == ("ops-team",)
    assert (low.timeout_hours, low.escalation_hours) == (48, 8)


def test_production_and_failed_checks_add_approver_groups_once() -> None:
    medium = approval_requirements(RiskLevel.MEDIUM, production=True, safety_failed=True)
    high = approval_requirements(RiskLevel.HIGH, production=True, safety_failed=True)

    assert medium.approvers == ("ops-team", "ops-manager", "security-team")
    assert high.approvers == ("security-team", "ops-manager")


def _parked_job(**overrides):  # type: ignore[no-untyped-def]
    safety = SafetyCheckResult.aggregate(
        [SafetyCheck("Production Environment Check", False, Severity.HIGH, "looks like production")]
    )
    data = {
        "resource_id": "prod-orders-db",
        "resource_type": "database-instance",
        "remediation_type": "enable-encryption",
        "safety_check_result": safety,
        "impact_estimate": _impact(RiskLevel.HIGH),
        "approval_required": True,
    }
    data.update(overrides)
    return make_job(**data)


def test_approval_message_summarizes_job() -> None:
    job = _parked_job()
    requirements = approval_requirements(RiskLevel.HIGH, production=True, safety_failed=True)

    message = build_approval_message(job, requirements, dashboard_url="https://console.example.com/")

    assert "Job ID: job-1" in message
    assert "Risk level: HIGH" in message
    assert "[HIGH] Production Environment Check" in message
    assert "within 8h (escalation after 2h)" in message
    assert "https://console.example.com/remediations/job-1" in message


def test_dispatcher_delivers_to_every_approver_group() -> None:
    notifier = InMemoryNotifier()
    report = ApprovalDispatcher([notifier]).request_approval(_parked_job())

    assert report.delivered == ("memory:security-team", "memory:ops-manager")
    assert report.failed == ()
    channel, message, metadata = notifier.sent[0]
    assert channel == "security-team"
    assert "prod-orders-db" in message
    assert metadata["job_id"] == "job-1"
    assert metadata["risk_level"] == "HIGH"
    assert metadata["timeout_hours"] == 8


def test_dispatcher_reports_failures_without_raising() -> None:
    broken = InMemoryNotifier(failing_channels=("security-team", "ops-manager"))
    working = InMemoryNotifier()

    report = ApprovalDispatcher([broken, working]).request_approval(_parked_job())

    assert [target for target, _ in report.failed] == ["memory:security-team", "memory:ops-manager"]
    assert report.delivered == ("memory:security-team", "memory:ops-manager")
    assert report.any_delivered is True


def test_dispatcher_with_no_notifiers_reports_nothing_delivered() -> None:
    report = ApprovalDispatcher().request_approval(_parked_job())

    assert report.any_delivered is False
    assert report.requirements.approvers == ("security-team", "ops-manager")


def test_dispatcher_without_impact_falls_back_to_high_tier() -> None:
    job = replace(_parked_job(), impact_estimate=None)

    requirements = ApprovalDispatcher().requirements_for(job)

    assert requirements.approvers[0] == "security-team"
