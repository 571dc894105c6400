"""botocore client configuration shared by every remediation client."""

from botocore.config import Config

from infra.config import AWSConfig, get_settings
from version import ENGINE_NAME, ENGINE_VERSION


def build_sdk_config(aws: AWSConfig | None = None) -> Config:
    """Return the botocore ``Config`` for the given AWS settings group."""
    cfg = aws or get_settings().aws
    return Config(
        retries={"max_attempts": int(cfg.max_retries), "mode": "adaptive"},
        user_agent_extra=f"{ENGINE_NAME}/{ENGINE_VERSION}",
        connect_timeout=int(cfg.connect_timeout),
        read_timeout=int(cfg.timeout),
    )


SDK_CONFIG = build_sdk_config()
