"""Parameter preconditions evaluated before a handler touches any client."""

from __future__ import annotations

import ipaddress
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class PreconditionResult:
    """Deterministic precondition evaluation result."""

    ok: bool
    code: str = ""
    message: str = ""


class ParameterPrecondition(ABC):
    """Contract for reusable handler parameter checks."""

    code: str = "precondition_failed"

    def describe(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def evaluate(self, parameters: Mapping[str, Any]) -> PreconditionResult:
        raise NotImplementedError


@dataclass(frozen=True)
class RequiredParametersPrecondition(ParameterPrecondition):
    """Ensure required parameters are present and non-empty."""

    required_keys: tuple[str, ...]
    code: str = "missing_parameters"

    def evaluate(self, parameters: Mapping[str, Any]) -> PreconditionResult:
        missing: list[str] = []
        for key in self.required_keys:
            value = parameters.get(key)
            if value is None:
                missing.append(key)
            elif isinstance(value, (str, list, dict, tuple)) and not value:
                missing.append(key)
            elif isinstance(value, str) and not value.strip():
                missing.append(key)
        if missing:
            return PreconditionResult(
                ok=False,
                code=self.code,
                message=f"missing required parameters: {', '.join(sorted(missing))}",
            )
        return PreconditionResult(ok=True)


@dataclass(frozen=True)
class CidrParameterPrecondition(ParameterPrecondition):
    """Ensure an optional parameter, when given, is a valid CIDR block."""

    key: str
    code: str = "invalid_cidr"

    def evaluate(self, parameters: Mapping[str, Any]) -> PreconditionResult:
        value = parameters.get(self.key)
        if value is None:
            return PreconditionResult(ok=True)
        try:
            ipaddress.ip_network(str(value), strict=False)
        except ValueError:
            return PreconditionResult(ok=False, code=self.code, message=f"{self.key} is not a valid CIDR: {value!r}")
        return PreconditionResult(ok=True)


@dataclass(frozen=True)
class IntRangePrecondition(ParameterPrecondition):
    """Ensure an optional integer parameter falls within [minimum, maximum]."""

    key: str
    minimum: int
    maximum: int
    code: str = "out_of_range"

    def evaluate(self, parameters: Mapping[str, Any]) -> PreconditionResult:
        value = parameters.get(self.key)
        if value is None:
            return PreconditionResult(ok=True)
        try:
            number = int(value)
        except (TypeError, ValueError):
            return PreconditionResult(ok=False, code=self.code, message=f"{self.key} must be an integer")
        if not self.minimum <= number <= self.maximum:
            return PreconditionResult(
                ok=False,
                code=self.code,
                message=f"{self.key} must be between {self.minimum} and {self.maximum}",
            )
        return PreconditionResult(ok=True)


def evaluate_preconditions(
    *,
    preconditions: Sequence[ParameterPrecondition],
    parameters: Mapping[str, Any],
) -> PreconditionResult:
    """Evaluate preconditions in order and return the first failure."""
    for precondition in preconditions:
        result = precondition.evaluate(parameters)
        if not result.ok:
            return result
    return PreconditionResult(ok=True)
