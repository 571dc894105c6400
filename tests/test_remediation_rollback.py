"""Rollback coordination and outcome aggregation."""

from __future__ import annotations

import pytest

from services.remediation.actuator import RegistryActuator
from services.remediation.errors import RollbackError
from services.remediation.models import ActionOutcome, ActionStatus, JobStatus
from services.remediation.rollback import RollbackCoordinator, summarize_outcomes
from tests.aws_mocks import make_bucket_s3, make_services
from tests.factories import RecordingActuator, make_completed_job, make_descriptor, make_job


def _outcome(status: ActionStatus) -> ActionOutcome:
    return ActionOutcome(action="step", resource="r", status=status)


def _coordinator(**clients) -> tuple[RollbackCoordinator, RecordingActuator]:  # type: ignore[no-untyped-def]
    services = make_services(**clients)
    actuator = RecordingActuator(RegistryActuator(services_for_region=lambda _region: services))
    return RollbackCoordinator(actuator), actuator


@pytest.mark.parametrize(
    ("statuses", "success", "partial", "message"),
    [
        ([ActionStatus.SUCCESS, ActionStatus.SUCCESS], True, False, "Rollback completed successfully"),
        ([ActionStatus.SUCCESS, ActionStatus.FAILED], False, True, "Rollback partially completed - some actions failed"),
        ([ActionStatus.FAILED], False, False, "Rollback failed"),
        ([ActionStatus.SKIPPED], False, False, "Rollback requires manual action - see rollback instructions"),
        ([ActionStatus.SUCCESS, ActionStatus.SKIPPED], True, False, "Rollback completed successfully"),
        ([], False, False, "Rollback failed"),
    ],
)
def test_summarize_outcomes(statuses, success: bool, partial: bool, message: str) -> None:  # type: ignore[no-untyped-def]
    result = summarize_outcomes([_outcome(s) for s in statuses])

    assert result.success is success
    assert result.partial_rollback is partial
    assert result.message == message
    assert len(result.actions) == len(statuses)


@pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.PENDING_APPROVAL, JobStatus.APPROVED, JobStatus.FAILED, JobStatus.ROLLED_BACK])
def test_non_completed_job_is_rejected_before_any_actuator_call(status: JobStatus) -> None:
    coordinator, actuator = _coordinator(s3=make_bucket_s3())

    with pytest.raises(RollbackError):
        coordinator.execute_rollback(make_job(status=status, rollback_descriptor=make_descriptor()))

    assert actuator.rollback_calls == []


def test_completed_job_without_descriptor_is_rejected() -> None:
    coordinator, actuator = _coordinator()

    with pytest.raises(RollbackError):
        coordinator.execute_rollback(make_job(status=JobStatus.COMPLETED))

    assert actuator.rollback_calls == []


def test_automated_rollback_runs_handler() -> None:
    s3 = make_bucket_s3()
    coordinator, actuator = _coordinator(s3=s3)

    result = coordinator.execute_rollback(make_completed_job())

    assert result.success is True
    assert len(actuator.rollback_calls) == 1
    assert s3.op_names() == ["delete_bucket_encryption"]


def test_manual_descriptor_yields_single_skipped_action() -> None:
    coordinator, _ = _coordinator()
    job = make_completed_job(rollback_descriptor=make_descriptor(data=None, instructions=("Restore from snapshot",)))

    result = coordinator.execute_rollback(job)

    assert [a.status for a in result.actions] == [ActionStatus.SKIPPED]
    assert result.actions[0].error == "manual rollback required: Restore from snapshot"
    assert result.success is False


def test_actuator_exception_becomes_failed_action() -> None:
    class _ExplodingActuator:
        def rollback(self, descriptor):  # type: ignore[no-untyped-def]
            raise RuntimeError("connection reset")

    result = RollbackCoordinator(_ExplodingActuator()).execute_rollback(make_completed_job())  # type: ignore[arg-type]

    assert len(result.actions) == 1
    assert result.actions[0].status is ActionStatus.FAILED
    assert result.actions[0].action == "rollback:storage-bucket/enable-bucket-encryption"
    assert result.actions[0].error == "RuntimeError: connection reset"
    assert result.message == "Rollback failed"


def test_feasibility_of_completed_automated_job() -> None:
    coordinator, _ = _coordinator()

    feasibility = coordinator.assess_feasibility(make_completed_job())

    assert feasibility.feasible is True
    assert feasibility.warnings == ("Rollback may have time constraints or dependencies",)


def test_feasibility_reports_every_blocking_reason() -> None:
    coordinator, _ = _coordinator()
    job = make_job(
        status=JobStatus.PENDING_APPROVAL,
        remediation_type="delete-resource",
        rollback_descriptor=make_descriptor(data=None, instructions=("Recreate it by hand",)),
    )

    feasibility = coordinator.assess_feasibility(job)

    assert feasibility.feasible is False
    assert len(feasibility.reasons) == 3
    assert "Operation is irreversible" in feasibility.reasons


def test_feasibility_warns_on_dry_run() -> None:
    coordinator, _ = _coordinator()

    feasibility = coordinator.assess_feasibility(make_completed_job(dry_run=True))

    assert "Job was a dry run; no changes were applied" in feasibility.warnings
