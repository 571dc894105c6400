"""Remediation domain records."""

from __future__ import annotations

import json
from dataclasses import replace

import pytest

from services.remediation.errors import ValidationError
from services.remediation.models import (
    ALLOWED_TRANSITIONS,
    ActionOutcome,
    ActionStatus,
    ChangeRecord,
    ImpactEstimate,
    JobStatus,
    RemediationJob,
    RiskLevel,
    RollbackDescriptor,
    RollbackResult,
    SafetyCheck,
    SafetyCheckResult,
    Severity,
    can_transition,
)
from tests.factories import WEEKEND_NOON, make_completed_job, make_descriptor, make_request


def test_transition_table() -> None:
    assert can_transition(JobStatus.PENDING, JobStatus.COMPLETED)
    assert can_transition(JobStatus.PENDING_APPROVAL, JobStatus.APPROVED)
    assert can_transition(JobStatus.COMPLETED, JobStatus.ROLLED_BACK)
    assert not can_transition(JobStatus.PENDING_APPROVAL, JobStatus.COMPLETED)
    assert not can_transition(JobStatus.FAILED, JobStatus.ROLLED_BACK)
    assert not can_transition(JobStatus.ROLLED_BACK, JobStatus.COMPLETED)
    assert set(ALLOWED_TRANSITIONS) == set(JobStatus)


def test_terminal_states() -> None:
    assert {s for s in JobStatus if s.terminal} == {JobStatus.FAILED, JobStatus.ROLLED_BACK}


def test_applied_is_an_alias_displayed_for_completed_jobs() -> None:
    assert JobStatus.APPLIED is JobStatus.COMPLETED
    assert JobStatus.COMPLETED.display == "APPLIED"
    assert JobStatus.PENDING_APPROVAL.display == "PENDING_APPROVAL"


@pytest.mark.parametrize(
    ("level", "expected"),
    [
        (RiskLevel.LOW, RiskLevel.MEDIUM),
        (RiskLevel.MEDIUM, RiskLevel.HIGH),
        (RiskLevel.HIGH, RiskLevel.CRITICAL),
        (RiskLevel.CRITICAL, RiskLevel.CRITICAL),
    ],
)
def test_risk_escalation_saturates(level: RiskLevel, expected: RiskLevel) -> None:
    assert level.escalate() is expected


def test_severity_ordering() -> None:
    assert Severity.HIGH.at_least(Severity.MEDIUM)
    assert not Severity.LOW.at_least(Severity.MEDIUM)
    assert Severity.CRITICAL.rank == 3


def test_validate_normalizes_and_fills_correlation_id() -> None:
    request = make_request(resource_type=" Storage-Bucket ", remediation_type="ENABLE-BUCKET-ENCRYPTION", correlation_id="")

    validated = request.validate()

    assert validated.resource_type == "storage-bucket"
    assert validated.remediation_type == "enable-bucket-encryption"
    assert validated.correlation_id
    assert request.correlation_id == ""


@pytest.mark.parametrize(
    "overrides",
    [
        {"tenant_id": ""},
        {"resource_id": "   "},
        {"requested_by": ""},
        {"account_id": "12345"},
        {"account_id": "abcdefghijkl"},
    ],
)
def test_validate_rejects_bad_requests(overrides: dict[str, str]) -> None:
    with pytest.raises(ValidationError):
        make_request(**overrides).validate()


def test_aggregate_ignores_low_failures() -> None:
    checks = [
        SafetyCheck("Multi-AZ Check", False, Severity.LOW, "single az"),
        SafetyCheck("Database Existence", True, Severity.LOW, "ok"),
    ]

    result = SafetyCheckResult.aggregate(checks)

    assert result.passed is True
    assert [c.name for c in result.failed_checks()] == ["Multi-AZ Check"]
    assert result.critical_failures() == []


def test_aggregate_fails_on_medium_and_reports_critical() -> None:
    result = SafetyCheckResult.aggregate(
        [
            SafetyCheck("Backup Retention Check", False, Severity.MEDIUM, "no backups"),
            SafetyCheck("Bucket Accessibility", False, Severity.CRITICAL, "gone"),
        ]
    )

    assert result.passed is False
    assert [c.name for c in result.critical_failures()] == ["Bucket Accessibility"]


def test_descriptor_requires_instructions() -> None:
    with pytest.raises(ValueError):
        make_descriptor(instructions=())


def test_descriptor_without_data_is_manual() -> None:
    assert make_descriptor().automated is True
    assert make_descriptor(data=None).automated is False


def test_new_job_starts_pending() -> None:
    job = RemediationJob.new(make_request().validate(), job_id="job-7", now=WEEKEND_NOON)

    assert job.status is JobStatus.PENDING
    assert job.message == "Remediation job created"
    assert job.to_request().auto_approve is False


def test_full_job_document_round_trips_through_json() -> None:
    job = replace(
        make_completed_job(),
        approved_by="bob",
        approved_at=WEEKEND_NOON,
        safety_check_result=SafetyCheckResult.aggregate(
            [SafetyCheck("Criticality Tag Check", True, Severity.LOW, "ok", recommendation=None)]
        ),
        impact_estimate=ImpactEstimate(
            risk_level=RiskLevel.MEDIUM, description="d", affected_resources=3, downtime=True, mitigations=("m",)
        ),
        approval_required=False,
        changes=(ChangeRecord(action="put_bucket_encryption", resource="reports-bucket", before=None, after={"a": 1}),),
        rollback_result=RollbackResult(
            success=True,
            partial_rollback=False,
            actions=(ActionOutcome(action="delete", resource="reports-bucket", status=ActionStatus.SUCCESS),),
            message="Rollback completed successfully",
        ),
    )

    document = json.loads(json.dumps(job.to_dict()))
    restored = RemediationJob.from_dict(document)

    assert restored.to_dict() == job.to_dict()
    assert document["display_status"] == "APPLIED"
    assert document["requested_at"] == "2026-10-17T12:00:00.000Z"


def test_from_dict_requires_requested_at() -> None:
    document = make_completed_job().to_dict()
    document["requested_at"] = None

    with pytest.raises(ValueError):
        RemediationJob.from_dict(document)
