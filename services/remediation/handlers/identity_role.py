"""Identity role (IAM) remediations."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from services.remediation.base import HandlerContext, RemediationHandler
from services.remediation.errors import ValidationError
from services.remediation.handlers._common import rollback_step
from services.remediation.models import (
    ActionOutcome,
    ChangeRecord,
    ExecutionResult,
    RemediationRequest,
    RollbackDescriptor,
)
from services.remediation.registry import register_handler


def _role_name(resource_id: str) -> str:
    """Accept a bare role name or a role ARN."""
    text = str(resource_id or "").strip()
    if text.startswith("arn:") and ":role/" in text:
        return text.rsplit("/", 1)[-1]
    return text


@register_handler("identity-role", "attach-security-policy")
class AttachSecurityPolicy(RemediationHandler):
    """Attach a managed policy to the role."""

    required_parameters = ("policy_arn",)

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        iam = ctx.client("iam")
        role = _role_name(request.resource_id)
        policy_arn = str(params["policy_arn"]).strip()
        iam.attach_role_policy(RoleName=role, PolicyArn=policy_arn)
        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Attach security policy",
                    resource=role,
                    before={"attached": False},
                    after={"attached": True, "policy_arn": policy_arn},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data={"role_name": role, "policy_arn": policy_arn},
                instructions=(f"Detach policy {policy_arn} from role {role}",),
            ),
            message=f"Policy {policy_arn} attached to role {role}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        iam = ctx.client("iam")
        data = descriptor.data or {}
        role = str(data["role_name"])
        policy_arn = str(data["policy_arn"])
        return [
            rollback_step(
                "Detach security policy",
                role,
                lambda: iam.detach_role_policy(RoleName=role, PolicyArn=policy_arn),
            )
        ]


@register_handler("identity-role", "create-least-privilege-policy")
class CreateLeastPrivilegePolicy(RemediationHandler):
    """Create a customer-managed policy from ``policy_document`` and attach it to the role."""

    required_parameters = ("policy_document",)

    def validate_parameters(self, parameters: Mapping[str, Any]) -> dict[str, Any]:
        params = super().validate_parameters(parameters)
        document = params["policy_document"]
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as exc:
                raise ValidationError("policy_document must be valid JSON", cause=exc) from exc
        if not isinstance(document, Mapping) or "Statement" not in document:
            raise ValidationError("policy_document must be an IAM policy with a Statement")
        params["policy_document"] = dict(document)
        return params

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        iam = ctx.client("iam")
        role = _role_name(request.resource_id)
        policy_name = f"{role}-least-privilege-policy"
        resp = iam.create_policy(
            PolicyName=policy_name,
            PolicyDocument=json.dumps(params["policy_document"], sort_keys=True),
            Description=f"Least-privilege policy generated for finding {request.finding_id}",
        )
        policy_arn = str((resp.get("Policy") or {}).get("Arn") or "")
        if not policy_arn and request.account_id:
            policy_arn = f"arn:aws:iam::{request.account_id}:policy/{policy_name}"
        iam.attach_role_policy(RoleName=role, PolicyArn=policy_arn)

        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Create least privilege policy",
                    resource=role,
                    before=None,
                    after={"policy_name": policy_name, "policy_arn": policy_arn},
                ),
                ChangeRecord(
                    action="Attach least privilege policy",
                    resource=role,
                    before={"attached": False},
                    after={"attached": True, "policy_arn": policy_arn},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data={"role_name": role, "policy_arn": policy_arn},
                instructions=(
                    f"Detach policy {policy_arn} from role {role}",
                    f"Delete policy {policy_arn}",
                ),
            ),
            message=f"Least-privilege policy {policy_name} created and attached to role {role}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        iam = ctx.client("iam")
        data = descriptor.data or {}
        role = str(data["role_name"])
        policy_arn = str(data["policy_arn"])
        return [
            rollback_step(
                "Detach least privilege policy",
                role,
                lambda: iam.detach_role_policy(RoleName=role, PolicyArn=policy_arn),
            ),
            rollback_step("Delete least privilege policy", policy_arn, lambda: iam.delete_policy(PolicyArn=policy_arn)),
        ]
