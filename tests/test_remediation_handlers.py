"""Behavior of the built-in handlers through the registry actuator."""

from __future__ import annotations

import re
from typing import Any

import pytest

from services.remediation.actuator import RegistryActuator
from services.remediation.errors import RemediationError, ValidationError
from services.remediation.models import ActionStatus, RollbackDescriptor
from tests.aws_mocks import FakeAwsClient, make_bucket_s3, make_rds, make_services
from tests.factories import make_descriptor, make_request


def _actuator(**clients: Any) -> RegistryActuator:
    services = make_services(**clients)
    return RegistryActuator(services_for_region=lambda _region: services)


def _statuses(outcomes) -> list[ActionStatus]:  # type: ignore[no-untyped-def]
    return [o.status for o in outcomes]


# storage-bucket


def test_bucket_encryption_defaults_to_sse_s3() -> None:
    s3 = make_bucket_s3()
    result = _actuator(s3=s3).execute(make_request())

    put = s3.kwargs_for("put_bucket_encryption")[0]
    rule = put["ServerSideEncryptionConfiguration"]["Rules"][0]
    assert rule["ApplyServerSideEncryptionByDefault"] == {"SSEAlgorithm": "AES256"}
    assert result.success is True
    assert result.rollback_descriptor.data == {"bucket": "reports-bucket", "previous_configuration": None}


def test_bucket_encryption_uses_kms_key_when_given() -> None:
    s3 = make_bucket_s3()
    _actuator(s3=s3).execute(make_request(parameters={"kms_key_id": "alias/reports"}))

    rule = s3.kwargs_for("put_bucket_encryption")[0]["ServerSideEncryptionConfiguration"]["Rules"][0]
    assert rule["ApplyServerSideEncryptionByDefault"] == {"SSEAlgorithm": "aws:kms", "KMSMasterKeyID": "alias/reports"}


def test_bucket_encryption_rollback_restores_previous_configuration() -> None:
    previous = {"Rules": [{"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "aws:kms"}}]}
    s3 = make_bucket_s3(encryption=previous)
    actuator = _actuator(s3=s3)
    result = actuator.execute(make_request())

    outcomes = actuator.rollback(result.rollback_descriptor)

    assert _statuses(outcomes) == [ActionStatus.SUCCESS]
    assert s3.kwargs_for("put_bucket_encryption")[-1]["ServerSideEncryptionConfiguration"] == previous
    assert "delete_bucket_encryption" not in s3.op_names()


def test_bucket_encryption_rollback_deletes_when_previously_unencrypted() -> None:
    s3 = make_bucket_s3()
    actuator = _actuator(s3=s3)

    outcomes = actuator.rollback(make_descriptor())

    assert _statuses(outcomes) == [ActionStatus.SUCCESS]
    assert s3.kwargs_for("delete_bucket_encryption") == [{"Bucket": "reports-bucket"}]


def test_versioning_already_enabled_needs_no_rollback() -> None:
    s3 = FakeAwsClient(responses={"get_bucket_versioning": {"Status": "Enabled"}})
    actuator = _actuator(s3=s3)
    result = actuator.execute(make_request(remediation_type="enable-bucket-versioning"))

    assert result.rollback_descriptor.automated is False
    outcomes = actuator.rollback(result.rollback_descriptor)
    assert _statuses(outcomes) == [ActionStatus.SKIPPED]
    assert (outcomes[0].error or "").startswith("manual rollback required:")


def test_versioning_rollback_suspends() -> None:
    s3 = FakeAwsClient(responses={"get_bucket_versioning": {}})
    actuator = _actuator(s3=s3)
    result = actuator.execute(make_request(remediation_type="enable-bucket-versioning"))

    actuator.rollback(result.rollback_descriptor)

    assert s3.kwargs_for("put_bucket_versioning")[-1]["VersioningConfiguration"] == {"Status": "Suspended"}


def test_block_public_access_without_prior_block_is_manual_rollback() -> None:
    s3 = FakeAwsClient()
    s3.fail("get_public_access_block", code="NoSuchPublicAccessBlockConfiguration")
    result = _actuator(s3=s3).execute(make_request(remediation_type="block-public-access"))

    block = s3.kwargs_for("put_public_access_block")[0]["PublicAccessBlockConfiguration"]
    assert all(block.values())
    assert result.rollback_descriptor.data is None
    assert result.rollback_descriptor.instructions


def test_block_public_access_restores_prior_block() -> None:
    prior = {"BlockPublicAcls": True, "IgnorePublicAcls": False, "BlockPublicPolicy": False, "RestrictPublicBuckets": False}
    s3 = FakeAwsClient(responses={"get_public_access_block": {"PublicAccessBlockConfiguration": prior}})
    actuator = _actuator(s3=s3)
    result = actuator.execute(make_request(remediation_type="block-public-access"))

    actuator.rollback(result.rollback_descriptor)

    assert s3.kwargs_for("put_public_access_block")[-1]["PublicAccessBlockConfiguration"] == prior


# identity-role


def test_attach_policy_requires_policy_arn_before_any_call() -> None:
    iam = FakeAwsClient()

    with pytest.raises(ValidationError) as excinfo:
        _actuator(iam=iam).execute(make_request(resource_type="identity-role", remediation_type="attach-security-policy"))

    assert excinfo.value.code == "missing_parameters"
    assert iam.calls == []


def test_attach_policy_accepts_role_arn_and_rolls_back_by_detaching() -> None:
    iam = FakeAwsClient()
    actuator = _actuator(iam=iam)
    request = make_request(
        resource_id="arn:aws:iam::111111111111:role/app-role",
        resource_type="identity-role",
        remediation_type="attach-security-policy",
        parameters={"policy_arn": "arn:aws:iam::aws:policy/SecurityAudit"},
    )
    result = actuator.execute(request)

    assert iam.kwargs_for("attach_role_policy") == [
        {"RoleName": "app-role", "PolicyArn": "arn:aws:iam::aws:policy/SecurityAudit"}
    ]
    outcomes = actuator.rollback(result.rollback_descriptor)
    assert _statuses(outcomes) == [ActionStatus.SUCCESS]
    assert iam.kwargs_for("detach_role_policy") == iam.kwargs_for("attach_role_policy")


def test_least_privilege_policy_rejects_invalid_json() -> None:
    with pytest.raises(ValidationError):
        _actuator(iam=FakeAwsClient()).execute(
            make_request(
                resource_type="identity-role",
                remediation_type="create-least-privilege-policy",
                parameters={"policy_document": "{not json"},
            )
        )


def test_least_privilege_policy_creates_attaches_and_rolls_back_both() -> None:
    arn = "arn:aws:iam::111111111111:policy/app-role-least-privilege-policy"
    iam = FakeAwsClient(responses={"create_policy": {"Policy": {"Arn": arn}}})
    actuator = _actuator(iam=iam)
    document = {"Version": "2012-10-17", "Statement": [{"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}]}
    result = actuator.execute(
        make_request(
            resource_id="app-role",
            resource_type="identity-role",
            remediation_type="create-least-privilege-policy",
            parameters={"policy_document": document},
        )
    )

    assert iam.kwargs_for("create_policy")[0]["PolicyName"] == "app-role-least-privilege-policy"
    assert iam.kwargs_for("attach_role_policy") == [{"RoleName": "app-role", "PolicyArn": arn}]
    assert len(result.changes) == 2

    outcomes = actuator.rollback(result.rollback_descriptor)
    assert _statuses(outcomes) == [ActionStatus.SUCCESS, ActionStatus.SUCCESS]
    assert iam.op_names()[-2:] == ["detach_role_policy", "delete_policy"]


# network-ingress-group


def test_remove_rule_builds_ip_permission_from_shorthand() -> None:
    ec2 = FakeAwsClient()
    actuator = _actuator(ec2=ec2)
    result = actuator.execute(
        make_request(
            resource_id="sg-123",
            resource_type="network-ingress-group",
            remediation_type="remove-overly-permissive-rule",
            parameters={"rule": {"port": 3389, "cidr": "0.0.0.0/0"}},
        )
    )

    expected = {"IpProtocol": "tcp", "FromPort": 3389, "ToPort": 3389, "IpRanges": [{"CidrIp": "0.0.0.0/0"}]}
    assert ec2.kwargs_for("revoke_security_group_ingress") == [{"GroupId": "sg-123", "IpPermissions": [expected]}]

    actuator.rollback(result.rollback_descriptor)
    assert ec2.kwargs_for("authorize_security_group_ingress") == [{"GroupId": "sg-123", "IpPermissions": [expected]}]


def test_restrict_ssh_rejects_invalid_cidr() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _actuator(ec2=FakeAwsClient()).execute(
            make_request(
                resource_id="sg-123",
                resource_type="network-ingress-group",
                remediation_type="restrict-ssh-access",
                parameters={"allowed_cidr": "not-a-cidr"},
            )
        )

    assert excinfo.value.code == "invalid_cidr"


def test_restrict_ssh_rollback_continues_after_failed_step() -> None:
    ec2 = FakeAwsClient()
    actuator = _actuator(ec2=ec2)
    result = actuator.execute(
        make_request(resource_id="sg-123", resource_type="network-ingress-group", remediation_type="restrict-ssh-access")
    )
    allowed = ec2.kwargs_for("authorize_security_group_ingress")[0]["IpPermissions"][0]
    assert allowed["IpRanges"] == [{"CidrIp": "10.0.0.0/8"}]

    ec2.fail("revoke_security_group_ingress", code="InvalidPermission.NotFound")
    outcomes = actuator.rollback(result.rollback_descriptor)

    assert _statuses(outcomes) == [ActionStatus.FAILED, ActionStatus.SUCCESS]
    assert "InvalidPermission.NotFound" in (outcomes[0].error or "")


# audit-trail, encryption-key


def test_log_file_validation_round_trip_calls() -> None:
    cloudtrail = FakeAwsClient()
    actuator = _actuator(cloudtrail=cloudtrail)
    result = actuator.execute(
        make_request(resource_id="org-trail", resource_type="audit-trail", remediation_type="enable-log-file-validation")
    )
    actuator.rollback(result.rollback_descriptor)

    assert [kw["EnableLogFileValidation"] for kw in cloudtrail.kwargs_for("update_trail")] == [True, False]


def test_management_events_without_basic_selectors_is_manual_rollback() -> None:
    cloudtrail = FakeAwsClient(responses={"get_event_selectors": {"AdvancedEventSelectors": [{"Name": "x"}]}})
    result = _actuator(cloudtrail=cloudtrail).execute(
        make_request(resource_id="org-trail", resource_type="audit-trail", remediation_type="enable-management-events")
    )

    assert cloudtrail.kwargs_for("put_event_selectors")[0]["EventSelectors"] == [
        {"ReadWriteType": "All", "IncludeManagementEvents": True}
    ]
    assert result.rollback_descriptor.automated is False


def test_key_rotation_rollback_disables_when_previously_off() -> None:
    kms = FakeAwsClient(responses={"get_key_rotation_status": {"KeyRotationEnabled": False}})
    actuator = _actuator(kms=kms)
    result = actuator.execute(
        make_request(resource_id="key-1", resource_type="encryption-key", remediation_type="enable-key-rotation")
    )

    actuator.rollback(result.rollback_descriptor)

    assert kms.op_names() == ["get_key_rotation_status", "enable_key_rotation", "disable_key_rotation"]


# database


def test_database_encryption_snapshots_and_is_not_automatable() -> None:
    rds = make_rds("orders-db")
    result = _actuator(rds=rds).execute(
        make_request(resource_id="orders-db", resource_type="database-instance", remediation_type="enable-encryption")
    )

    snapshot_id = rds.kwargs_for("create_db_snapshot")[0]["DBSnapshotIdentifier"]
    assert re.fullmatch(r"orders-db-pre-encryption-\d{14}", snapshot_id)
    descriptor = result.rollback_descriptor
    assert descriptor.data is None
    assert len(descriptor.instructions) == 3
    assert snapshot_id in descriptor.instructions[1]


def test_backup_retention_on_cluster_and_rollback_restores_previous() -> None:
    rds = FakeAwsClient(responses={"describe_db_clusters": {"DBClusters": [{"BackupRetentionPeriod": 1}]}})
    actuator = _actuator(rds=rds)
    result = actuator.execute(
        make_request(
            resource_id="orders-cluster",
            resource_type="database-cluster",
            remediation_type="enable-backup-retention",
            parameters={"retention_period": 14},
        )
    )

    actuator.rollback(result.rollback_descriptor)

    assert [kw["BackupRetentionPeriod"] for kw in rds.kwargs_for("modify_db_cluster")] == [14, 1]
    assert "modify_db_instance" not in rds.op_names()


# serverless-function


def test_vpc_configuration_validates_and_restores_previous() -> None:
    function = FakeAwsClient(
        responses={"get_function_configuration": {"VpcConfig": {"SubnetIds": ["subnet-old"], "SecurityGroupIds": []}}}
    )
    actuator = _actuator(lambda_client=function)
    result = actuator.execute(
        make_request(
            resource_id="ingest-fn",
            resource_type="serverless-function",
            remediation_type="enable-vpc-configuration",
            parameters={"vpc_config": {"subnet_ids": "subnet-a, subnet-b", "security_group_ids": ["sg-1"]}},
        )
    )

    applied = function.kwargs_for("update_function_configuration")[0]["VpcConfig"]
    assert applied == {"SubnetIds": ["subnet-a", "subnet-b"], "SecurityGroupIds": ["sg-1"]}

    actuator.rollback(result.rollback_descriptor)
    restored = function.kwargs_for("update_function_configuration")[-1]["VpcConfig"]
    assert restored == {"SubnetIds": ["subnet-old"], "SecurityGroupIds": []}


def test_vpc_configuration_rejects_empty_subnets() -> None:
    with pytest.raises(ValidationError):
        _actuator(lambda_client=FakeAwsClient()).execute(
            make_request(
                resource_id="ingest-fn",
                resource_type="serverless-function",
                remediation_type="enable-vpc-configuration",
                parameters={"vpc_config": {"subnet_ids": [], "security_group_ids": ["sg-1"]}},
            )
        )


# actuator behavior


def test_client_errors_become_execution_failures() -> None:
    s3 = make_bucket_s3()
    s3.fail("put_bucket_encryption", code="AccessDenied", message="nope")

    with pytest.raises(RemediationError) as excinfo:
        _actuator(s3=s3).execute(make_request())

    assert excinfo.value.code == "execution_failed"
    assert "AccessDenied" in excinfo.value.message
    assert excinfo.value.cause is not None


def test_missing_client_is_reported_before_any_call() -> None:
    with pytest.raises(RemediationError) as excinfo:
        _actuator().execute(make_request())

    assert excinfo.value.code == "client_unavailable"


def test_dry_run_makes_no_mutating_calls() -> None:
    s3 = make_bucket_s3()
    result = _actuator(s3=s3).execute(make_request(dry_run=True))

    assert s3.calls == []
    assert result.changes[0].action == "dry-run:enable-bucket-encryption"
    assert result.rollback_descriptor.automated is False


def test_rollback_for_unregistered_pair_is_failed_outcome() -> None:
    descriptor = RollbackDescriptor(
        kind="quantum-widget/fix-it",
        resource_id="w-1",
        resource_type="quantum-widget",
        remediation_type="fix-it",
        instructions=("n/a",),
        data={"x": 1},
    )

    outcomes = _actuator().rollback(descriptor)

    assert _statuses(outcomes) == [ActionStatus.FAILED]


def test_rollback_with_malformed_data_is_failed_outcome() -> None:
    descriptor = make_descriptor(
        kind="identity-role/attach-security-policy",
        resource_type="identity-role",
        remediation_type="attach-security-policy",
        data={"unexpected": True},
    )

    outcomes = _actuator(iam=FakeAwsClient()).rollback(descriptor)

    assert _statuses(outcomes) == [ActionStatus.FAILED]
    assert "KeyError" in (outcomes[0].error or "")
