"""Shared helpers for remediation handler implementations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError  # type: ignore[import-untyped]

from services.remediation.models import ActionOutcome, ActionStatus

logger = logging.getLogger(__name__)


def error_code(exc: ClientError) -> str:
    """Return the AWS error code carried by a ClientError, or ''."""
    error = exc.response.get("Error") or {}
    return str(error.get("Code") or "")


def describe_error(exc: Exception) -> str:
    """Short, credential-free description of a cloud client error."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error") or {}
        code = str(error.get("Code") or "unknown_error")
        message = str(error.get("Message") or "").strip()
        return f"{code}: {message}" if message else code
    return f"{type(exc).__name__}: {exc}"


def rollback_step(action: str, resource: str, call: Callable[[], Any]) -> ActionOutcome:
    """Run one compensating call and report its outcome as data."""
    try:
        call()
    except (ClientError, BotoCoreError) as exc:
        logger.warning("Rollback action %r on %s failed: %s", action, resource, describe_error(exc))
        return ActionOutcome(action=action, resource=resource, status=ActionStatus.FAILED, error=describe_error(exc))
    return ActionOutcome(action=action, resource=resource, status=ActionStatus.SUCCESS)


def skipped(action: str, resource: str, reason: str) -> ActionOutcome:
    return ActionOutcome(action=action, resource=resource, status=ActionStatus.SKIPPED, error=reason)
