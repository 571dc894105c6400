"""Serverless function (Lambda) remediations."""

from __future__ import annotations

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


def _id_list(value: Any, name: str) -> list[str]:
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple)):
        items = [str(part).strip() for part in value if str(part).strip()]
    else:
        raise ValidationError(f"vpc_config.{name} must be a list of ids")
    if not items:
        raise ValidationError(f"vpc_config.{name} must not be empty")
    return items


@register_handler("serverless-function", "enable-vpc-configuration")
class EnableVpcConfiguration(RemediationHandler):
    """Attach the function to private subnets and security groups."""

    required_parameters = ("vpc_config",)

    def validate_parameters(self, parameters: Mapping[str, Any]) -> dict[str, Any]:
        params = super().validate_parameters(parameters)
        raw = params["vpc_config"]
        if not isinstance(raw, Mapping):
            raise ValidationError("vpc_config must be a mapping with subnet_ids and security_group_ids")
        params["vpc_config"] = {
            "SubnetIds": _id_list(raw.get("subnet_ids", raw.get("SubnetIds")), "subnet_ids"),
            "SecurityGroupIds": _id_list(
                raw.get("security_group_ids", raw.get("SecurityGroupIds")), "security_group_ids"
            ),
        }
        return params

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        lambda_client = ctx.client("lambda")
        function = request.resource_id
        current = lambda_client.get_function_configuration(FunctionName=function).get("VpcConfig") or {}
        previous = {
            "SubnetIds": list(current.get("SubnetIds") or []),
            "SecurityGroupIds": list(current.get("SecurityGroupIds") or []),
        }
        vpc_config = dict(params["vpc_config"])
        lambda_client.update_function_configuration(FunctionName=function, VpcConfig=vpc_config)

        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Enable VPC configuration",
                    resource=function,
                    before={"vpc_config": previous},
                    after={"vpc_config": vpc_config},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data={"function_name": function, "previous_vpc_config": previous},
                instructions=("Restore the previous VPC configuration (empty lists detach the function)",),
            ),
            message=f"VPC configuration applied to function {function}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        lambda_client = ctx.client("lambda")
        data = descriptor.data or {}
        function = str(data.get("function_name") or descriptor.resource_id)
        previous = dict(data.get("previous_vpc_config") or {"SubnetIds": [], "SecurityGroupIds": []})
        return [
            rollback_step(
                "Restore VPC configuration",
                function,
                lambda: lambda_client.update_function_configuration(FunctionName=function, VpcConfig=previous),
            )
        ]
