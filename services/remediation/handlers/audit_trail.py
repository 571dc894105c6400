"""Audit trail (CloudTrail) remediations."""

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


@register_handler("audit-trail", "enable-log-file-validation")
class EnableLogFileValidation(RemediationHandler):
    """Turn on digest-based log file integrity validation."""

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        cloudtrail = ctx.client("cloudtrail")
        trail = request.resource_id
        cloudtrail.update_trail(Name=trail, EnableLogFileValidation=True)
        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Enable log file validation",
                    resource=trail,
                    before={"log_file_validation": False},
                    after={"log_file_validation": True},
                ),
            ),
            rollback_descriptor=self.descriptor(
                request,
                data={"trail_name": trail},
                instructions=("Disable log file validation on the trail",),
            ),
            message=f"Log file validation enabled on trail {trail}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        cloudtrail = ctx.client("cloudtrail")
        trail = str((descriptor.data or {}).get("trail_name") or descriptor.resource_id)
        return [
            rollback_step(
                "Disable log file validation",
                trail,
                lambda: cloudtrail.update_trail(Name=trail, EnableLogFileValidation=False),
            )
        ]


@register_handler("audit-trail", "enable-management-events")
class EnableManagementEvents(RemediationHandler):
    """Record read and write management events on the trail."""

    def apply(self, ctx: HandlerContext, request: RemediationRequest, params: Mapping[str, Any]) -> ExecutionResult:
        cloudtrail = ctx.client("cloudtrail")
        trail = request.resource_id
        current = cloudtrail.get_event_selectors(TrailName=trail)
        previous = list(current.get("EventSelectors") or [])
        selectors = [{"ReadWriteType": "All", "IncludeManagementEvents": True}]
        cloudtrail.put_event_selectors(TrailName=trail, EventSelectors=selectors)

        if previous:
            descriptor = self.descriptor(
                request,
                data={"trail_name": trail, "previous_selectors": previous},
                instructions=("Restore the previous event selectors on the trail",),
            )
        else:
            descriptor = self.descriptor(
                request,
                data=None,
                instructions=(
                    "Manual rollback required: the trail used advanced event selectors or none; "
                    "review and reapply the intended selectors with put_event_selectors.",
                ),
            )
        return ExecutionResult(
            success=True,
            changes=(
                ChangeRecord(
                    action="Enable management events",
                    resource=trail,
                    before={"event_selectors": previous},
                    after={"event_selectors": selectors},
                ),
            ),
            rollback_descriptor=descriptor,
            message=f"Management events enabled on trail {trail}",
        )

    def rollback(self, ctx: HandlerContext, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        cloudtrail = ctx.client("cloudtrail")
        data = descriptor.data or {}
        trail = str(data.get("trail_name") or descriptor.resource_id)
        previous = list(data.get("previous_selectors") or [])
        return [
            rollback_step(
                "Restore event selectors",
                trail,
                lambda: cloudtrail.put_event_selectors(TrailName=trail, EventSelectors=previous),
            )
        ]
