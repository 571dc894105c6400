"""Actuator: the only component that touches cloud resources.

``RegistryActuator`` dispatches each ``(resource_type, remediation_type)`` pair
to a registered handler, builds per-region SDK clients through an injected
provider, and translates cloud client errors into ``RemediationError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from botocore.exceptions import BotoCoreError, ClientError  # type: ignore[import-untyped]

from contracts.services import Services
from services.remediation.base import HandlerContext, RemediationHandler
from services.remediation.errors import RemediationError
from services.remediation.handlers._common import describe_error, skipped
from services.remediation.heuristics import DEFAULT_PRODUCTION_MATCHER, ProductionPredicate
from services.remediation.impact import estimate_impact
from services.remediation.inspector import ResourceInspector
from services.remediation.models import (
    ActionOutcome,
    ActionStatus,
    ExecutionResult,
    ImpactEstimate,
    RemediationRequest,
    RollbackDescriptor,
)
from services.remediation.registry import HandlerRegistry

logger = logging.getLogger(__name__)

ServicesProvider = Callable[[str], Services]


class Actuator(Protocol):
    """Boundary between the workflow and the infrastructure it changes."""

    def supports(self, resource_type: str, remediation_type: str) -> bool:
        """Return True when a handler exists for the pair."""

    def known_resource_type(self, resource_type: str) -> bool:
        """Return True when any handler is registered for the resource type."""

    def resolve(self, resource_type: str, remediation_type: str) -> RemediationHandler:
        """Return the handler for the pair or raise ``RemediationError``."""

    def inspector(self, region: str) -> ResourceInspector:
        """Return the read-only query surface for a region."""

    def estimate_impact(self, request: RemediationRequest) -> ImpactEstimate:
        """Pure impact estimate for the request."""

    def execute(self, request: RemediationRequest) -> ExecutionResult:
        """Apply the remediation (or preview it on dry-run)."""

    def rollback(self, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        """Run compensating actions; failures are reported as data."""


class RegistryActuator:
    """Actuator backed by the handler registry and a per-region client provider."""

    def __init__(
        self,
        *,
        services_for_region: ServicesProvider,
        registry: HandlerRegistry | None = None,
        auto_discover: bool = True,
        default_region: str = "us-east-1",
        is_production: ProductionPredicate = DEFAULT_PRODUCTION_MATCHER,
    ) -> None:
        if registry is None:
            registry = HandlerRegistry()
        if auto_discover:
            registry.discover()
        self._registry = registry
        self._services_for_region = services_for_region
        self._default_region = default_region
        self._is_production = is_production

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    def _region(self, region: str) -> str:
        return str(region or "").strip() or self._default_region

    def supports(self, resource_type: str, remediation_type: str) -> bool:
        return self._registry.get_class(resource_type, remediation_type) is not None

    def known_resource_type(self, resource_type: str) -> bool:
        return str(resource_type or "").strip().lower() in self._registry.resource_types()

    def resolve(self, resource_type: str, remediation_type: str) -> RemediationHandler:
        return self._registry.create(resource_type, remediation_type)

    def inspector(self, region: str) -> ResourceInspector:
        return ResourceInspector(self._services_for_region(self._region(region)))

    def estimate_impact(self, request: RemediationRequest) -> ImpactEstimate:
        return estimate_impact(
            request.resource_type,
            request.remediation_type,
            request.resource_id,
            is_production=self._is_production,
        )

    def execute(self, request: RemediationRequest) -> ExecutionResult:
        """Run the handler; ``ValidationError`` propagates, client errors become ``RemediationError``."""
        handler = self.resolve(request.resource_type, request.remediation_type)
        region = self._region(request.region)
        ctx = HandlerContext(
            services=self._services_for_region(region),
            region=region,
            account_id=request.account_id,
        )
        try:
            return handler.execute(ctx, request)
        except (ClientError, BotoCoreError) as exc:
            raise RemediationError(
                f"{request.remediation_type} on {request.resource_id} failed: {describe_error(exc)}",
                code="execution_failed",
                cause=exc,
            ) from exc

    def rollback(self, descriptor: RollbackDescriptor) -> list[ActionOutcome]:
        """Never raises: non-automatable descriptors yield one SKIPPED outcome."""
        action = f"rollback:{descriptor.kind}"
        if not descriptor.automated:
            return [skipped(action, descriptor.resource_id, "manual rollback required: " + descriptor.instructions[0])]

        klass = self._registry.get_class(descriptor.resource_type, descriptor.remediation_type)
        if klass is None:
            return [
                ActionOutcome(
                    action=action,
                    resource=descriptor.resource_id,
                    status=ActionStatus.FAILED,
                    error=f"no handler registered for {descriptor.kind}",
                )
            ]

        region = self._region(descriptor.region)
        try:
            ctx = HandlerContext(services=self._services_for_region(region), region=region)
            return klass().rollback(ctx, descriptor)
        except (ClientError, BotoCoreError, RemediationError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Rollback of %s on %s failed: %s", descriptor.kind, descriptor.resource_id, exc)
            return [
                ActionOutcome(
                    action=action,
                    resource=descriptor.resource_id,
                    status=ActionStatus.FAILED,
                    error=describe_error(exc),
                )
            ]
