"""Approval notification channels.

Each notifier raises ``ApprovalError`` when delivery fails; the dispatcher
records the failure and carries on with the remaining channels.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError  # type: ignore[import-untyped]

from infra.logging_config import StructuredLogger
from services.remediation.errors import ApprovalError
from services.remediation.handlers._common import describe_error

logger = logging.getLogger(__name__)

_SNS_SUBJECT_LIMIT = 100


class Notifier(Protocol):
    """Fire-and-forget delivery of approval requests."""

    name: str

    def channels(self, approvers: Sequence[str]) -> list[str]:
        """Return the channels this notifier should deliver to for the approver groups."""

    def notify(self, channel: str, message: str, metadata: Mapping[str, Any]) -> None:
        """Deliver one message or raise ``ApprovalError``."""


class SnsNotifier:
    """Publish to one SNS topic per approver group."""

    name = "sns"

    def __init__(self, sns_client: Any, topics: Mapping[str, str]) -> None:
        self._sns = sns_client
        self._topics = {str(k).lower(): str(v) for k, v in topics.items()}

    def channels(self, approvers: Sequence[str]) -> list[str]:
        return [group for group in approvers if group.lower() in self._topics]

    def notify(self, channel: str, message: str, metadata: Mapping[str, Any]) -> None:
        topic_arn = self._topics.get(channel.lower())
        if not topic_arn:
            raise ApprovalError(f"no SNS topic configured for approver group {channel!r}")
        subject = str(metadata.get("subject") or "Remediation approval required")[:_SNS_SUBJECT_LIMIT]
        attributes = {
            key: {"DataType": "String", "StringValue": str(metadata[key])}
            for key in ("job_id", "tenant_id", "risk_level")
            if metadata.get(key)
        }
        try:
            self._sns.publish(TopicArn=topic_arn, Subject=subject, Message=message, MessageAttributes=attributes)
        except (ClientError, BotoCoreError) as exc:
            raise ApprovalError(f"SNS publish to {channel} failed: {describe_error(exc)}", cause=exc) from exc


class SlackWebhookNotifier:
    """Post the approval summary to an incoming webhook."""

    name = "slack"

    def __init__(
        self,
        webhook_url: str,
        *,
        channel: str = "#compliance-approvals",
        timeout_seconds: float = 10.0,
        opener: Callable[..., Any] = urllib.request.urlopen,
    ) -> None:
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout_seconds = timeout_seconds
        self._opener = opener

    def channels(self, approvers: Sequence[str]) -> list[str]:
        _ = approvers
        return [self._channel]

    def notify(self, channel: str, message: str, metadata: Mapping[str, Any]) -> None:
        payload = {
            "channel": channel,
            "username": "Compliance Remediation",
            "text": f"*{metadata.get('subject') or 'Remediation approval required'}*\n{message}",
        }
        req = urllib.request.Request(
            self._webhook_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with self._opener(req, timeout=self._timeout_seconds) as resp:
                status = int(getattr(resp, "status", 200))
        except (urllib.error.URLError, OSError) as exc:
            raise ApprovalError(f"Slack webhook delivery failed: {exc}", cause=exc) from exc
        if status >= 300:
            raise ApprovalError(f"Slack webhook returned HTTP {status}")


class LoggingNotifier:
    """Write approval requests to the application log."""

    name = "log"

    def __init__(self) -> None:
        self._log = StructuredLogger(__name__)

    def channels(self, approvers: Sequence[str]) -> list[str]:
        return ["log"] if approvers else []

    def notify(self, channel: str, message: str, metadata: Mapping[str, Any]) -> None:
        _ = channel
        self._log.info(
            "approval_requested",
            approval_job_id=metadata.get("job_id"),
            approvers=list(metadata.get("approvers") or []),
            risk_level=metadata.get("risk_level"),
            summary=message,
        )


class InMemoryNotifier:
    """Records deliveries; channels listed in ``failing_channels`` raise ``ApprovalError``."""

    name = "memory"

    def __init__(self, *, failing_channels: Sequence[str] = ()) -> None:
        self._failing = set(failing_channels)
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    def channels(self, approvers: Sequence[str]) -> list[str]:
        return list(approvers)

    def notify(self, channel: str, message: str, metadata: Mapping[str, Any]) -> None:
        if channel in self._failing:
            raise ApprovalError(f"delivery to {channel} failed")
        self.sent.append((channel, message, dict(metadata)))
