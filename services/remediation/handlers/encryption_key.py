"""Encryption key (KMS) remediations."""

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
)
from services.remediation.registry import register_handler


@register_handler("encryption-key", "enable-key-rotation")
class EnableKeyRotation(RemediationHandler):
    """Enable automatic yearly rotation of a customer-managed key."""

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        kms = ctx.client("kms")
        key_id = request.resource_id
        before = bool(kms.get_key_rotation_status(KeyId=key_id).get("KeyRotationEnabled"))
        kms.enable_key_rotation(KeyId=key_id)

        if before:
            descriptor = self.descriptor(
                request,
                data=None,
                instructions=("Key rotation was already enabled before remediation; no rollback required.",),
            )
        else:
            descriptor = self.descriptor(
                request,
                data={"key_id": key_id},
                instructions=("Disable automatic key rotation",),
            )
        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Enable key rotation",
                    resource=key_id,
                    before={"rotation_enabled": before},
                    after={"rotation_enabled": True},
                ),
            ),
            rollback_descriptor=descriptor,
            message=f"Key rotation enabled for {key_id}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        kms = ctx.client("kms")
        key_id = str((descriptor.data or {}).get("key_id") or descriptor.resource_id)
        return [rollback_step("Disable key rotation", key_id, lambda: kms.disable_key_rotation(KeyId=key_id))]
