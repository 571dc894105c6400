"""Tests for shared AWS test doubles."""

from __future__ import annotations

from typing import Any

import pytest
from botocore.exceptions import ClientError

from tests.aws_mocks import FakeAwsClient, make_bucket_s3, make_client_error, make_services


def test_fake_client_records_calls_and_answers() -> None:
    client = FakeAwsClient(responses={"describe_things": {"Things": [1]}})

    assert client.describe_things(Name="a") == {"Things": [1]}
    assert client.unconfigured_op() == {}
    assert client.calls == [("describe_things", {"Name": "a"}), ("unconfigured_op", {})]
    assert client.kwargs_for("describe_things") == [{"Name": "a"}]


def test_fake_client_kwargs_aware_response() -> None:
    client = FakeAwsClient(responses={"get_thing": lambda kw: {"Echo": kw["Id"]}})

    assert client.get_thing(Id="x") == {"Echo": "x"}


def test_fake_paginated_client_supports_kwargs_aware_pages() -> None:
    """Paginator page providers should be able to branch on paginate kwargs."""

    def _provider(kwargs: dict[str, Any]) -> list[dict[str, Any]]:
        return [{"Items": [{"role": kwargs.get("RoleName")}]}]

    client = FakeAwsClient(region="eu-west-1", pages_by_op={"list_items": _provider})
    pages = list(client.get_paginator("list_items").paginate(RoleName="alpha"))

    assert pages == [{"Items": [{"role": "alpha"}]}]
    assert client.meta.region_name == "eu-west-1"


def test_fake_client_fail_raises_real_client_error() -> None:
    client = FakeAwsClient()
    client.fail("put_thing", code="Throttling", message="slow down")

    with pytest.raises(ClientError) as excinfo:
        client.put_thing()

    assert excinfo.value.response["Error"]["Code"] == "Throttling"
    assert client.op_names() == ["put_thing"]


def test_respond_clears_configured_failure() -> None:
    client = FakeAwsClient(errors={"get_thing": make_client_error("get_thing")})
    client.respond("get_thing", {"ok": True})

    assert client.get_thing() == {"ok": True}


def test_bucket_fake_reports_missing_tags_and_encryption() -> None:
    s3 = make_bucket_s3()

    with pytest.raises(ClientError):
        s3.get_bucket_tagging(Bucket="b")
    with pytest.raises(ClientError):
        s3.get_bucket_encryption(Bucket="b")


def test_make_services_defaults_sts() -> None:
    services = make_services()

    assert services.get("sts") is not None
    assert services.get("s3") is None
