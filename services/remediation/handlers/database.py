"""Managed database (RDS instance/cluster) remediations."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from services.remediation.base import HandlerContext, RemediationHandler
from services.remediation.handlers._common import rollback_step
from services.remediation.models import (
    ActionOutcome,
    ChangeRecord,
    ExecutionResult,
    RemediationRequest,
    RollbackDescriptor,
    utc_now,
)
from services.remediation.preconditions import IntRangePrecondition
from services.remediation.registry import register_handler

DEFAULT_RETENTION_DAYS = 7


def _is_cluster(resource_type: str) -> bool:
    return resource_type == "database-cluster"


def _current_retention(rds: Any, identifier: str, *, cluster: bool) -> int:
    if cluster:
        items = rds.describe_db_clusters(DBClusterIdentifier=identifier).get("DBClusters") or []
    else:
        items = rds.describe_db_instances(DBInstanceIdentifier=identifier).get("DBInstances") or []
    if not items:
        return 0
    return int(items[0].get("BackupRetentionPeriod") or 0)


def _set_retention(rds: Any, identifier: str, days: int, *, cluster: bool) -> None:
    if cluster:
        rds.modify_db_cluster(DBClusterIdentifier=identifier, BackupRetentionPeriod=days, ApplyImmediately=True)
    else:
        rds.modify_db_instance(DBInstanceIdentifier=identifier, BackupRetentionPeriod=days, ApplyImmediately=True)


@register_handler("database-instance", "enable-encryption")
class EnableStorageEncryption(RemediationHandler):
    """Start the encrypt-by-restore procedure for an unencrypted instance.

    Storage encryption cannot be switched on in place. The handler takes a
    pre-encryption snapshot that the operator copies with encryption and
    restores; the change is irreversible from automation's point of view.
    """

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        rds = ctx.client("rds")
        db_id = request.resource_id
        snapshot_id = f"{db_id}-pre-encryption-{utc_now():%Y%m%d%H%M%S}"
        rds.create_db_snapshot(DBSnapshotIdentifier=snapshot_id, DBInstanceIdentifier=db_id)

        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Create pre-encryption snapshot",
                    resource=db_id,
                    before=None,
                    after={"snapshot_id": snapshot_id},
                ),
                ChangeRecord(
                    action="Enable encryption (requires snapshot restore)",
                    resource=db_id,
                    before={"encrypted": False},
                    after={"encrypted": True},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data=None,
                instructions=(
                    "Automated rollback is not possible: storage encryption cannot be disabled in place.",
                    f"Manual process: restore instance {db_id} from unencrypted snapshot {snapshot_id}.",
                    "Repoint clients to the restored instance, then retire the encrypted copy.",
                ),
            ),
            message=f"Pre-encryption snapshot {snapshot_id} created for {db_id}",
        )


@register_handler(("database-instance", "database-cluster"), "enable-backup-retention")
class EnableBackupRetention(RemediationHandler):
    """Set the automated backup retention period (``retention_period`` days, default 7)."""

    preconditions = (IntRangePrecondition(key="retention_period", minimum=1, maximum=35),)

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        rds = ctx.client("rds")
        identifier = request.resource_id
        cluster = _is_cluster(request.resource_type)
        days = int(params.get("retention_period") or DEFAULT_RETENTION_DAYS)
        before = _current_retention(rds, identifier, cluster=cluster)
        _set_retention(rds, identifier, days, cluster=cluster)

        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Enable backup retention",
                    resource=identifier,
                    before={"backup_retention": before},
                    after={"backup_retention": days},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data={"identifier": identifier, "cluster": cluster, "previous_retention": before},
                instructions=(f"Set backup retention period back to {before}",),
            ),
            message=f"Backup retention set to {days} days on {identifier}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        rds = ctx.client("rds")
        data = descriptor.data or {}
        identifier = str(data.get("identifier") or descriptor.resource_id)
        cluster = bool(data.get("cluster"))
        previous = int(data.get("previous_retention") or 0)
        return [
            rollback_step(
                "Restore backup retention",
                identifier,
                lambda: _set_retention(rds, identifier, previous, cluster=cluster),
            )
        ]
