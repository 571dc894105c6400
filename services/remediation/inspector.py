"""Read-only resource queries used by safety checks.

Every method performs describe/get calls only. Cloud client errors are left
to propagate so the caller can turn them into failed checks.
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError  # type: ignore[import-untyped]

from contracts.services import Services
from services.remediation.errors import RemediationError
from services.remediation.handlers._common import error_code


class ResourceInspector:
    """Query surface over the SDK clients of one region."""

    def __init__(self, services: Services) -> None:
        self._services = services

    def _client(self, name: str) -> Any:
        client = self._services.get(name)
        if client is None:
            raise RemediationError(f"{name} client is not configured", code="client_unavailable")
        return client

    def caller_identity(self) -> dict[str, Any]:
        resp = self._client("sts").get_caller_identity()
        return {"account": resp.get("Account"), "arn": resp.get("Arn"), "user_id": resp.get("UserId")}

    def bucket_location(self, bucket: str) -> str:
        resp = self._client("s3").get_bucket_location(Bucket=bucket)
        return str(resp.get("LocationConstraint") or "us-east-1")

    def bucket_tags(self, bucket: str) -> dict[str, str]:
        try:
            resp = self._client("s3").get_bucket_tagging(Bucket=bucket)
        except ClientError as exc:
            if error_code(exc) == "NoSuchTagSet":
                return {}
            raise
        return {str(t.get("Key")): str(t.get("Value")) for t in resp.get("TagSet") or []}

    def role(self, role_name: str) -> dict[str, Any]:
        return dict(self._client("iam").get_role(RoleName=role_name).get("Role") or {})

    def attached_role_policies(self, role_name: str) -> list[dict[str, Any]]:
        iam = self._client("iam")
        paginator = iam.get_paginator("list_attached_role_policies")
        policies: list[dict[str, Any]] = []
        for page in paginator.paginate(RoleName=role_name):
            policies.extend(page.get("AttachedPolicies") or [])
        return policies

    def security_group(self, group_id: str) -> dict[str, Any]:
        resp = self._client("ec2").describe_security_groups(GroupIds=[group_id])
        groups = resp.get("SecurityGroups") or []
        if not groups:
            raise RemediationError(f"security group {group_id} not found", code="not_found")
        return dict(groups[0])

    def running_instance_count(self, group_id: str) -> int:
        resp = self._client("ec2").describe_instances(
            Filters=[
                {"Name": "instance.group-id", "Values": [group_id]},
                {"Name": "instance-state-name", "Values": ["running"]},
            ]
        )
        return sum(len(r.get("Instances") or []) for r in resp.get("Reservations") or [])

    def database(self, identifier: str, *, cluster: bool = False) -> dict[str, Any]:
        rds = self._client("rds")
        if cluster:
            items = rds.describe_db_clusters(DBClusterIdentifier=identifier).get("DBClusters") or []
        else:
            items = rds.describe_db_instances(DBInstanceIdentifier=identifier).get("DBInstances") or []
        if not items:
            raise RemediationError(f"database {identifier} not found", code="not_found")
        return dict(items[0])
