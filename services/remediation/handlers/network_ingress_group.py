"""Network ingress group (EC2 security group) remediations."""

from __future__ import annotations

import ipaddress
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
from services.remediation.preconditions import CidrParameterPrecondition
from services.remediation.registry import register_handler

OPEN_IPV4 = "0.0.0.0/0"
DEFAULT_SSH_CIDR = "10.0.0.0/8"


def ip_permission(*, protocol: str, from_port: int | None, to_port: int | None, cidr: str) -> dict[str, Any]:
    """Build one EC2 IpPermissions entry for a single CIDR."""
    network = ipaddress.ip_network(cidr, strict=False)
    permission: dict[str, Any] = {"IpProtocol": protocol}
    if from_port is not None:
        permission["FromPort"] = int(from_port)
    if to_port is not None:
        permission["ToPort"] = int(to_port)
    if network.version == 6:
        permission["Ipv6Ranges"] = [{"CidrIpv6": str(network)}]
    else:
        permission["IpRanges"] = [{"CidrIp": str(network)}]
    return permission


def _rule_to_permission(rule: Any) -> dict[str, Any]:
    """Accept a raw IpPermissions entry or a ``{protocol, from_port, to_port, cidr}`` mapping."""
    if not isinstance(rule, Mapping):
        raise ValidationError("rule must be a mapping")
    if "IpProtocol" in rule:
        return dict(rule)
    protocol = str(rule.get("protocol") or rule.get("ip_protocol") or "tcp")
    from_port = rule.get("from_port", rule.get("port"))
    to_port = rule.get("to_port", from_port)
    try:
        return ip_permission(
            protocol=protocol,
            from_port=None if from_port is None else int(from_port),
            to_port=None if to_port is None else int(to_port),
            cidr=str(rule.get("cidr") or OPEN_IPV4),
        )
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"rule is malformed: {exc}", cause=exc) from exc


@register_handler("network-ingress-group", "remove-overly-permissive-rule")
class RemoveOverlyPermissiveRule(RemediationHandler):
    """Revoke one ingress rule given in ``rule``."""

    required_parameters = ("rule",)

    def validate_parameters(self, parameters: Mapping[str, Any]) -> dict[str, Any]:
        params = super().validate_parameters(parameters)
        params["rule"] = _rule_to_permission(params["rule"])
        return params

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        ec2 = ctx.client("ec2")
        group_id = request.resource_id
        permission = dict(params["rule"])
        ec2.revoke_security_group_ingress(GroupId=group_id, IpPermissions=[permission])
        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Remove overly permissive rule",
                    resource=group_id,
                    before={"rule": permission},
                    after={"rule": None},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data={"group_id": group_id, "ip_permissions": [permission]},
                instructions=("Re-authorize the revoked ingress rule",),
            ),
            message=f"Ingress rule revoked on security group {group_id}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        ec2 = ctx.client("ec2")
        data = descriptor.data or {}
        group_id = str(data["group_id"])
        permissions = list(data["ip_permissions"])
        return [
            rollback_step(
                "Restore ingress rule",
                group_id,
                lambda: ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=permissions),
            )
        ]


@register_handler("network-ingress-group", "restrict-ssh-access")
class RestrictSshAccess(RemediationHandler):
    """Replace world-open SSH ingress with ``allowed_cidr`` (default 10.0.0.0/8)."""

    preconditions = (CidrParameterPrecondition(key="allowed_cidr"),)

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        ec2 = ctx.client("ec2")
        group_id = request.resource_id
        allowed_cidr = str(params.get("allowed_cidr") or DEFAULT_SSH_CIDR)
        open_rule = ip_permission(protocol="tcp", from_port=22, to_port=22, cidr=OPEN_IPV4)
        restricted_rule = ip_permission(protocol="tcp", from_port=22, to_port=22, cidr=allowed_cidr)

        ec2.revoke_security_group_ingress(GroupId=group_id, IpPermissions=[open_rule])
        ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=[restricted_rule])

        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Restrict SSH access",
                    resource=group_id,
                    before={"ssh_cidr": OPEN_IPV4},
                    after={"ssh_cidr": allowed_cidr},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data={"group_id": group_id, "restricted_rule": restricted_rule, "original_rule": open_rule},
                instructions=(
                    f"Revoke SSH ingress from {allowed_cidr}",
                    f"Re-authorize SSH ingress from {OPEN_IPV4}",
                ),
            ),
            message=f"SSH access on {group_id} restricted to {allowed_cidr}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        ec2 = ctx.client("ec2")
        data = descriptor.data or {}
        group_id = str(data["group_id"])
        restricted = dict(data["restricted_rule"])
        original = dict(data["original_rule"])
        return [
            rollback_step(
                "Remove restricted SSH rule",
                group_id,
                lambda: ec2.revoke_security_group_ingress(GroupId=group_id, IpPermissions=[restricted]),
            ),
            rollback_step(
                "Restore original SSH rule",
                group_id,
                lambda: ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=[original]),
            ),
        ]
