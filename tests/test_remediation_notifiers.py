"""Approval notification channels."""

from __future__ import annotations

import json
import logging
import urllib.error
from typing import Any

import pytest

from services.remediation.errors import ApprovalError
from services.remediation.notifiers import (
    InMemoryNotifier,
    LoggingNotifier,
    SlackWebhookNotifier,
    SnsNotifier,
)
from tests.aws_mocks import FakeAwsClient, make_client_error

_TOPICS = {
    "Security-Team": "arn:aws:sns:us-east-1:111111111111:security-approvals",
    "ops-manager": "arn:aws:sns:us-east-1:111111111111:ops-approvals",
}
_METADATA = {"job_id": "job-1", "tenant_id": "acme", "risk_level": "HIGH", "subject": "Approve job-1"}


def test_sns_channels_only_cover_configured_groups() -> None:
    notifier = SnsNotifier(FakeAwsClient(), _TOPICS)

    assert notifier.channels(["security-team", "ops-manager", "cto"]) == ["security-team", "ops-manager"]


def test_sns_publish_carries_subject_and_attributes() -> None:
    sns = FakeAwsClient()

    SnsNotifier(sns, _TOPICS).notify("security-team", "please approve", _METADATA)

    op, kwargs = sns.calls[0]
    assert op == "publish"
    assert kwargs["TopicArn"].endswith(":security-approvals")
    assert kwargs["Subject"] == "Approve job-1"
    assert kwargs["Message"] == "please approve"
    assert kwargs["MessageAttributes"]["risk_level"] == {"DataType": "String", "StringValue": "HIGH"}


def test_sns_subject_is_truncated() -> None:
    sns = FakeAwsClient()

    SnsNotifier(sns, _TOPICS).notify("ops-manager", "m", {"subject": "x" * 250})

    assert len(sns.calls[0][1]["Subject"]) == 100
    assert sns.calls[0][1]["MessageAttributes"] == {}


def test_sns_unknown_group_raises() -> None:
    with pytest.raises(ApprovalError, match="no SNS topic"):
        SnsNotifier(FakeAwsClient(), _TOPICS).notify("cto", "m", _METADATA)


def test_sns_client_error_becomes_approval_error() -> None:
    sns = FakeAwsClient(errors={"publish": make_client_error("Publish", code="AuthorizationError", message="nope")})

    with pytest.raises(ApprovalError) as excinfo:
        SnsNotifier(sns, _TOPICS).notify("security-team", "m", _METADATA)

    assert "AuthorizationError: nope" in excinfo.value.message
    assert excinfo.value.code == "approval_error"
    assert excinfo.value.cause is not None


class _Response:
    def __init__(self, status: int) -> None:
        self.status = status

    def __enter__(self) -> _Response:
        return self

    def __exit__(self, *exc: Any) -> None:
        return None


class _Opener:
    def __init__(self, status: int = 200, error: Exception | None = None) -> None:
        self.status = status
        self.error = error
        self.requests: list[tuple[Any, float]] = []

    def __call__(self, req: Any, timeout: float) -> _Response:
        self.requests.append((req, timeout))
        if self.error is not None:
            raise self.error
        return _Response(self.status)


def test_slack_posts_json_payload() -> None:
    opener = _Opener()
    notifier = SlackWebhookNotifier("https://hooks.example.com/T/1", channel="#approvals", timeout_seconds=3, opener=opener)

    assert notifier.channels(["security-team"]) == ["#approvals"]
    notifier.notify("#approvals", "please approve", _METADATA)

    req, timeout = opener.requests[0]
    body = json.loads(req.data.decode("utf-8"))
    assert timeout == 3
    assert req.get_method() == "POST"
    assert body["channel"] == "#approvals"
    assert body["text"] == "*Approve job-1*\nplease approve"


def test_slack_non_2xx_raises() -> None:
    notifier = SlackWebhookNotifier("https://hooks.example.com/T/1", opener=_Opener(status=500))

    with pytest.raises(ApprovalError, match="HTTP 500"):
        notifier.notify("#compliance-approvals", "m", _METADATA)


def test_slack_transport_error_raises() -> None:
    notifier = SlackWebhookNotifier(
        "https://hooks.example.com/T/1", opener=_Opener(error=urllib.error.URLError("unreachable"))
    )

    with pytest.raises(ApprovalError, match="delivery failed"):
        notifier.notify("#compliance-approvals", "m", _METADATA)


def test_logging_notifier_writes_structured_line(caplog: pytest.LogCaptureFixture) -> None:
    notifier = LoggingNotifier()

    assert notifier.channels([]) == []
    with caplog.at_level(logging.INFO, logger="services.remediation.notifiers"):
        notifier.notify("log", "summary text", {"job_id": "job-1", "approvers": ("ops-team",)})

    record = caplog.records[-1]
    assert record.getMessage() == "approval_requested"
    assert record.approval_job_id == "job-1"  # type: ignore[attr-defined]
    assert record.approvers == ["ops-team"]  # type: ignore[attr-defined]


def test_in_memory_notifier_records_and_fails_selected_channels() -> None:
    notifier = InMemoryNotifier(failing_channels=("cto",))

    notifier.notify("ops-team", "m", {"job_id": "job-1"})
    with pytest.raises(ApprovalError):
        notifier.notify("cto", "m", {})

    assert notifier.sent == [("ops-team", "m", {"job_id": "job-1"})]
