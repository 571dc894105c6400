"""
contracts/services.py

SDK client container + region-aware factory (DI-friendly).

Handlers never build clients themselves:
    factory.for_region("eu-west-3") -> Services (cached)
Tests build ``Services(...)`` directly with fake clients.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

import boto3
from botocore.config import Config


@dataclass(frozen=True)
class Services:
    """
    Bag of SDK clients injected into handler contexts.

    Every client is optional so tests only need to provide the ones a handler
    touches. `region` is informational.
    """
    s3: Any = None
    iam: Any = None
    ec2: Any = None
    rds: Any = None
    kms: Any = None
    cloudtrail: Any = None
    lambda_client: Any = None
    sts: Any = None
    sns: Any = None
    region: str = ""

    def get(self, name: str) -> Any | None:
        """Return the client registered under ``name`` (``lambda`` maps to ``lambda_client``)."""
        key = "lambda_client" if name == "lambda" else name
        if key == "region" or key not in _CLIENT_FIELDS:
            return None
        return getattr(self, key)


_CLIENT_FIELDS = frozenset(f.name for f in fields(Services)) - {"region"}


class ServicesFactory:
    """
    Creates and caches AWS SDK clients per region.

    Usage:
      factory = ServicesFactory(session=boto3.Session(), sdk_config=SDK_CONFIG)
      svcs = factory.for_region("eu-west-3")
      svcs2 = factory.for_region("eu-west-3")  # cached, same object

    IAM and STS are global APIs; one client of each is shared by every region.
    """

    def __init__(self, *, session: boto3.Session, sdk_config: Config | None = None) -> None:
        self._session = session
        self._sdk_config = sdk_config
        self._by_region: dict[str, Services] = {}
        self._iam_global: Any | None = None
        self._sts_global: Any | None = None

    def _client(self, service: str, *, region: str | None) -> Any:
        kwargs: dict[str, Any] = {}
        if region:
            kwargs["region_name"] = region
        if self._sdk_config is not None:
            kwargs["config"] = self._sdk_config
        return self._session.client(service, **kwargs)

    def global_iam(self) -> Any:
        """IAM is account-wide; reuse one client."""
        if self._iam_global is None:
            self._iam_global = self._client("iam", region=None)
        return self._iam_global

    def global_sts(self) -> Any:
        """STS caller identity does not depend on region; reuse one client."""
        if self._sts_global is None:
            self._sts_global = self._client("sts", region=None)
        return self._sts_global

    def for_region(self, region: str) -> Services:
        """Return cached Services for a given region, creating it if needed."""
        reg = str(region or "").strip()
        if not reg:
            raise ValueError("region must be a non-empty string")

        cached = self._by_region.get(reg)
        if cached is not None:
            return cached

        svcs = Services(
            s3=self._client("s3", region=reg),
            iam=self.global_iam(),
            ec2=self._client("ec2", region=reg),
            rds=self._client("rds", region=reg),
            kms=self._client("kms", region=reg),
            cloudtrail=self._client("cloudtrail", region=reg),
            lambda_client=self._client("lambda", region=reg),
            sts=self.global_sts(),
            sns=self._client("sns", region=reg),
            region=reg,
        )
        self._by_region[reg] = svcs
        return svcs

    def clear_cache(self) -> None:
        """Clears per-region Services cache. (Mostly useful for tests.)"""
        self._by_region.clear()
