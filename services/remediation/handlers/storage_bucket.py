"""Storage bucket (S3) remediations."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from botocore.exceptions import ClientError  # type: ignore[import-untyped]

from services.remediation.base import HandlerContext, RemediationHandler
from services.remediation.handlers._common import error_code, rollback_step
from services.remediation.models import (
    ActionOutcome,
    ChangeRecord,
    ExecutionResult,
    RemediationRequest,
    RollbackDescriptor,
)
from services.remediation.registry import register_handler

_NO_ENCRYPTION_CODES = {"ServerSideEncryptionConfigurationNotFoundError"}
_NO_PUBLIC_ACCESS_BLOCK_CODES = {"NoSuchPublicAccessBlockConfiguration"}

_BLOCK_ALL = {
    "BlockPublicAcls": True,
    "IgnorePublicAcls": True,
    "BlockPublicPolicy": True,
    "RestrictPublicBuckets": True,
}


def _current_encryption(s3: Any, bucket: str) -> dict[str, Any] | None:
    try:
        resp = s3.get_bucket_encryption(Bucket=bucket)
    except ClientError as exc:
        if error_code(exc) in _NO_ENCRYPTION_CODES:
            return None
        raise
    return dict(resp.get("ServerSideEncryptionConfiguration") or {}) or None


@register_handler("storage-bucket", "enable-bucket-encryption")
class EnableBucketEncryption(RemediationHandler):
    """Apply default server-side encryption (SSE-S3, or SSE-KMS when ``kms_key_id`` is given)."""

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        s3 = ctx.client("s3")
        bucket = request.resource_id
        before = _current_encryption(s3, bucket)

        kms_key_id = str(params.get("kms_key_id") or "").strip()
        default: dict[str, Any] = {"SSEAlgorithm": "AES256"}
        if kms_key_id:
            default = {"SSEAlgorithm": "aws:kms", "KMSMasterKeyID": kms_key_id}
        config = {"Rules": [{"ApplyServerSideEncryptionByDefault": default}]}
        s3.put_bucket_encryption(Bucket=bucket, ServerSideEncryptionConfiguration=config)

        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Enable bucket encryption",
                    resource=bucket,
                    before={"encryption": before or "disabled"},
                    after={"encryption": default["SSEAlgorithm"]},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data={"bucket": bucket, "previous_configuration": before},
                instructions=(
                    "Restore the previous default encryption configuration"
                    if before
                    else "Delete the bucket default encryption configuration",
                ),
            ),
            message=f"Default encryption enabled on bucket {bucket}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        s3 = ctx.client("s3")
        data = descriptor.data or {}
        bucket = str(data.get("bucket") or descriptor.resource_id)
        previous = data.get("previous_configuration")
        if previous:
            return [
                rollback_step(
                    "Restore bucket encryption",
                    bucket,
                    lambda: s3.put_bucket_encryption(Bucket=bucket, ServerSideEncryptionConfiguration=previous),
                )
            ]
        return [rollback_step("Remove bucket encryption", bucket, lambda: s3.delete_bucket_encryption(Bucket=bucket))]


@register_handler("storage-bucket", "enable-bucket-versioning")
class EnableBucketVersioning(RemediationHandler):
    """Turn on object versioning."""

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        s3 = ctx.client("s3")
        bucket = request.resource_id
        before = str(s3.get_bucket_versioning(Bucket=bucket).get("Status") or "Disabled")
        s3.put_bucket_versioning(Bucket=bucket, VersioningConfiguration={"Status": "Enabled"})

        if before == "Enabled":
            descriptor = self.descriptor(
                request,
                data=None,
                instructions=("Versioning was already enabled before remediation; no rollback required.",),
            )
        else:
            descriptor = self.descriptor(
                request,
                data={"bucket": bucket, "previous_status": before},
                instructions=("Suspend bucket versioning (versioning cannot be fully disabled once enabled)",),
            )
        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Enable bucket versioning",
                    resource=bucket,
                    before={"versioning": before},
                    after={"versioning": "Enabled"},
                ),
            ),
            rollback_descriptor=descriptor,
            message=f"Versioning enabled on bucket {bucket}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        s3 = ctx.client("s3")
        bucket = str((descriptor.data or {}).get("bucket") or descriptor.resource_id)
        return [
            rollback_step(
                "Suspend bucket versioning",
                bucket,
                lambda: s3.put_bucket_versioning(Bucket=bucket, VersioningConfiguration={"Status": "Suspended"}),
            )
        ]


@register_handler("storage-bucket", "block-public-access")
class BlockPublicAccess(RemediationHandler):
    """Enable all four public access block settings on the bucket."""

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        s3 = ctx.client("s3")
        bucket = request.resource_id
        try:
            before: dict[str, Any] | None = dict(
                s3.get_public_access_block(Bucket=bucket).get("PublicAccessBlockConfiguration") or {}
            )
        except ClientError as exc:
            if error_code(exc) not in _NO_PUBLIC_ACCESS_BLOCK_CODES:
                raise
            before = None

        s3.put_public_access_block(Bucket=bucket, PublicAccessBlockConfiguration=dict(_BLOCK_ALL))

        if before:
            descriptor = self.descriptor(
                request,
                data={"bucket": bucket, "previous_configuration": before},
                instructions=("Restore the previous public access block configuration",),
            )
        else:
            descriptor = self.descriptor(
                request,
                data=None,
                instructions=(
                    "Manual rollback required: confirm the bucket must be public, then remove "
                    "the public access block with delete_public_access_block.",
                ),
            )
        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Block public access",
                    resource=bucket,
                    before={"public_access_block": before or "none"},
                    after={"public_access_block": dict(_BLOCK_ALL)},
                ),
            ),
            rollback_descriptor=descriptor,
            message=f"Public access blocked on bucket {bucket}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        s3 = ctx.client("s3")
        data = descriptor.data or {}
        bucket = str(data.get("bucket") or descriptor.resource_id)
        previous = dict(data.get("previous_configuration") or {})
        return [
            rollback_step(
                "Restore public access block",
                bucket,
                lambda: s3.put_public_access_block(Bucket=bucket, PublicAccessBlockConfiguration=previous),
            )
        ]
