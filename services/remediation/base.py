"""Base contracts for remediation handlers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from contracts.services import Services
from services.remediation.errors import RemediationError, ValidationError
from services.remediation.models import (
    ActionOutcome,
    ActionStatus,
    ChangeRecord,
    ExecutionResult,
    RemediationRequest,
    RollbackDescriptor,
)
from services.remediation.preconditions import (
    ParameterPrecondition,
    RequiredParametersPrecondition,
    evaluate_preconditions,
)


@dataclass(frozen=True)
class HandlerContext:
    """Immutable runtime context for one handler invocation."""

    services: Services
    region: str
    account_id: str = ""

    def client(self, name: str) -> Any:
        """Resolve an SDK client or fail before any call is attempted."""
        client = self.services.get(name)
        if client is None:
            raise RemediationError(f"{name} client is required in HandlerContext.services", code="client_unavailable")
        return client


class RemediationHandler(ABC):
    """One (resource_type, remediation_type) capability.

    Subclasses implement :meth:`apply` and, when the change is reversible,
    :meth:`rollback`. Cloud client errors raised from either method are
    translated by the actuator.
    """

    resource_types: tuple[str, ...] = ()
    remediation_type: str = ""
    required_parameters: tuple[str, ...] = ()
    preconditions: tuple[ParameterPrecondition, ...] = ()

    def validate_parameters(self, parameters: Mapping[str, Any]) -> dict[str, Any]:
        """Return normalized parameters or raise ``ValidationError``."""
        checks: tuple[ParameterPrecondition, ...] = self.preconditions
        if self.required_parameters:
            checks = (RequiredParametersPrecondition(required_keys=self.required_parameters), *checks)
        result = evaluate_preconditions(preconditions=checks, parameters=parameters)
        if not result.ok:
            raise ValidationError(result.message or result.code, code=result.code or None)
        return dict(parameters)

    def execute(self, ctx: HandlerContext, request: RemediationRequest) -> ExecutionResult:
        """Validate parameters then apply, or only describe the plan on dry-run."""
        params = self.validate_parameters(request.parameters)
        if request.dry_run:
            return self.preview(request, params)
        return self.apply(ctx, request, params)

    @abstractmethod
    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        """Mutate the target resource and describe how to reverse it."""
        raise NotImplementedError

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        """Reverse a change; handlers without automated rollback report SKIPPED."""
        _ = ctx
        return [
            ActionOutcome(
                action=f"rollback:{descriptor.kind}",
                resource=descriptor.resource_id,
                status=ActionStatus.SKIPPED,
                error="automated rollback not supported; see instructions",
            )
        ]

    def preview(self, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        """Dry-run result: the planned change and a descriptor with nothing to undo."""
        _ = params
        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action=f"dry-run:{self.remediation_type}",
                    resource=request.resource_id,
                    before=None,
                    after="planned",
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data=None,
                instructions=("Dry run only: no changes were applied, nothing to roll back.",),
            ),
            message=f"dry-run: {self.remediation_type} on {request.resource_id}",
        )

    def descriptor(
        self,
        request: RemediationRequest,
        *,
        data: Mapping[str, Any] | None,
        instructions: tuple[str, ...],
    ) -> RollbackDescriptor:
        return RollbackDescriptor(
            kind=f"{request.resource_type}/{self.remediation_type}",
            resource_id=request.resource_id,
            resource_type=request.resource_type,
            remediation_type=self.remediation_type,
            region=request.region,
            data=dict(data) if data is not None else None,
            instructions=instructions,
        )
