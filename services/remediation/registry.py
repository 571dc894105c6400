"""Registry and discovery for remediation handler implementations."""

from __future__ import annotations

import importlib
import pkgutil
from collections.abc import Callable, Iterable

from services.remediation.base import RemediationHandler
from services.remediation.errors import RemediationError

HandlerType = type[RemediationHandler]
HandlerKey = tuple[str, str]

_HANDLER_REGISTRY: dict[HandlerKey, HandlerType] = {}


def _normalize(value: str) -> str:
    return str(value or "").strip().lower()


def register_handler(
    resource_types: str | Iterable[str],
    remediation_type: str,
) -> Callable[[HandlerType], HandlerType]:
    """Register a handler class for one remediation type on one or more resource types."""
    types = (resource_types,) if isinstance(resource_types, str) else tuple(resource_types)
    keys = [(_normalize(rt), _normalize(remediation_type)) for rt in types]
    if not keys or any(not rt or not rem for rt, rem in keys):
        raise ValueError("resource_type and remediation_type must be non-empty")

    def _decorator(klass: HandlerType) -> HandlerType:
        for key in keys:
            if key in _HANDLER_REGISTRY:
                raise KeyError(f"Handler already registered for {key!r}")
        for key in keys:
            _HANDLER_REGISTRY[key] = klass
        klass.resource_types = tuple(rt for rt, _ in keys)
        klass.remediation_type = keys[0][1]
        return klass

    return _decorator


def list_handler_keys() -> list[HandlerKey]:
    """Return registered (resource_type, remediation_type) pairs in deterministic order."""
    return sorted(_HANDLER_REGISTRY.keys())


class HandlerRegistry:
    """Handler registry facade with discovery and instantiation helpers."""

    def discover(self, package_name: str = "services.remediation.handlers") -> None:
        """Import all modules under the handlers package."""
        package = importlib.import_module(package_name)
        package_path = getattr(package, "__path__", None)
        if package_path is None:
            return
        prefix = package.__name__ + "."
        for module_info in pkgutil.walk_packages(package_path, prefix):
            importlib.import_module(module_info.name)

    def list_keys(self) -> list[HandlerKey]:
        return list_handler_keys()

    def resource_types(self) -> set[str]:
        return {rt for rt, _ in _HANDLER_REGISTRY}

    def get_class(self, resource_type: str, remediation_type: str) -> HandlerType | None:
        """Return the registered handler class, or None on a miss."""
        key = (_normalize(resource_type), _normalize(remediation_type))
        if not key[0] or not key[1]:
            return None
        return _HANDLER_REGISTRY.get(key)

    def create(self, resource_type: str, remediation_type: str) -> RemediationHandler:
        """Instantiate the registered handler or raise ``RemediationError``."""
        klass = self.get_class(resource_type, remediation_type)
        if klass is None:
            raise RemediationError(
                f"Unsupported remediation {remediation_type!r} for resource type {resource_type!r}",
                code="unsupported_remediation",
            )
        return klass()
