"""Centralized application configuration with schema validation.

This module is intentionally compatibility-first:
- Supports legacy flat environment names (for example ``DB_URL``).
- Supports nested names (for example ``DB__URL``) for future consistency.
- Optionally reads a local ``.env`` file before process env values.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_DEFAULT_PRODUCTION_MARKERS = ("prod", "production")
_DEFAULT_BUSINESS_DAYS = (0, 1, 2, 3, 4)


def _split_csv(value: object) -> list[str]:
    """Accept list or comma-separated string and return stripped, non-empty items."""
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part).strip() for part in value if str(part).strip()]
    raise TypeError("expected a list[str] or comma-separated string")


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    model_config = ConfigDict(frozen=True)

    url: str | None = Field(default=None, description="Postgres connection URL")
    pool_maxconn: int = Field(default=10, ge=1, le=100)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class AWSConfig(BaseModel):
    """AWS client defaults used by service factories."""

    model_config = ConfigDict(frozen=True)

    default_region: str = Field(default="us-east-1")
    max_retries: int = Field(default=10, ge=1, le=25)
    timeout: int = Field(default=60, ge=1, le=300)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class LoggingSettings(BaseModel):
    """Repository-wide logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    override_root_handlers: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        text = str(value or "").strip().upper()
        if text in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return text
        return "INFO"


class RemediationConfig(BaseModel):
    """Heuristics and limits used by the remediation workflow."""

    model_config = ConfigDict(frozen=True)

    production_markers: tuple[str, ...] = Field(default=_DEFAULT_PRODUCTION_MARKERS)
    business_hours_start: int = Field(default=9, ge=0, le=23)
    business_hours_end: int = Field(default=17, ge=1, le=24)
    business_days: tuple[int, ...] = Field(default=_DEFAULT_BUSINESS_DAYS)
    business_timezone: str = Field(default="UTC")
    safety_check_timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_error_message_length: int = Field(default=500, ge=32)

    @field_validator("production_markers", mode="before")
    @classmethod
    def _normalize_markers(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return _DEFAULT_PRODUCTION_MARKERS
        items = [item.lower() for item in _split_csv(value)]
        return tuple(dict.fromkeys(items)) or _DEFAULT_PRODUCTION_MARKERS

    @field_validator("business_days", mode="before")
    @classmethod
    def _normalize_days(cls, value: object) -> tuple[int, ...]:
        if value is None:
            return _DEFAULT_BUSINESS_DAYS
        days: list[int] = []
        for item in _split_csv(value):
            day = int(item)
            if not 0 <= day <= 6:
                raise ValueError("remediation.business_days entries must be 0..6 (Monday=0)")
            days.append(day)
        return tuple(sorted(set(days))) or _DEFAULT_BUSINESS_DAYS


class ApprovalConfig(BaseModel):
    """Approval notification channels."""

    model_config = ConfigDict(frozen=True)

    sns_topics: dict[str, str] = Field(default_factory=dict)
    slack_webhook_url: str | None = Field(default=None)
    slack_channel: str = Field(default="#compliance-approvals")
    dashboard_url: str = Field(default="")

    @field_validator("sns_topics", mode="before")
    @classmethod
    def _parse_topics(cls, value: object) -> dict[str, str]:
        """Accept a mapping or ``group=arn,group=arn`` text."""
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return {str(k).strip().lower(): str(v).strip() for k, v in value.items() if str(v).strip()}
        topics: dict[str, str] = {}
        for item in _split_csv(value):
            if "=" not in item:
                raise ValueError(f"approval.sns_topics entry must be group=arn: {item!r}")
            group, arn = item.split("=", 1)
            if group.strip() and arn.strip():
                topics[group.strip().lower()] = arn.strip()
        return topics

    @field_validator("slack_webhook_url", mode="before")
    @classmethod
    def _normalize_optional_text(cls, value: object) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class Settings(BaseModel):
    """Top-level settings model."""

    model_config = ConfigDict(frozen=True)

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    aws: AWSConfig = Field(default_factory=AWSConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    remediation: RemediationConfig = Field(default_factory=RemediationConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Build settings from `.env` then environment variables."""
        runtime_env = os.environ if env is None else env
        merged_env = _merge_env(_load_dotenv(Path(env_file)), runtime_env)
        payload = _build_payload(merged_env)
        return cls.model_validate(payload)


def _load_dotenv(path: Path) -> dict[str, str]:
    """Parse a minimal `.env` file format."""
    if not path.exists() or not path.is_file():
        return {}

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key_clean = key.strip()
        value = raw_value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        if key_clean:
            values[key_clean] = value
    return values


def _merge_env(dotenv_values: Mapping[str, str], runtime_env: Mapping[str, str]) -> dict[str, str]:
    """Return env map where process env overrides `.env` values."""
    merged = {str(k): str(v) for k, v in dotenv_values.items()}
    for key, value in runtime_env.items():
        merged[str(key)] = str(value)
    return merged


def _first_non_empty(env: Mapping[str, str], *keys: str) -> str | None:
    """Return the first non-empty value for the provided keys."""
    for key in keys:
        value = str(env.get(key, "")).strip()
        if value:
            return value
    return None


def _approval_topics_from_env(env: Mapping[str, str]) -> str | None:
    """Collect ``APPROVAL_TOPIC_<GROUP>`` variables into ``group=arn`` text."""
    explicit = _first_non_empty(env, "APPROVAL__SNS_TOPICS", "APPROVAL_SNS_TOPICS")
    if explicit:
        return explicit
    pairs: list[str] = []
    for key in sorted(env):
        if not key.startswith("APPROVAL_TOPIC_"):
            continue
        arn = str(env[key]).strip()
        group = key[len("APPROVAL_TOPIC_"):].strip().lower().replace("_", "-")
        if group and arn:
            pairs.append(f"{group}={arn}")
    return ",".join(pairs) or None


def _build_payload(env: Mapping[str, str]) -> dict[str, object]:
    """Build nested settings payload from env values."""
    db = {
        "url": _first_non_empty(env, "DB__URL", "DB_URL"),
        "pool_maxconn": _first_non_empty(env, "DB__POOL_MAXCONN", "DB_POOL_MAXCONN"),
        "connect_timeout": _first_non_empty(env, "DB__CONNECT_TIMEOUT", "DB_CONNECT_TIMEOUT"),
    }
    aws = {
        "default_region": _first_non_empty(env, "AWS__DEFAULT_REGION", "AWS_DEFAULT_REGION", "AWS_REGION"),
        "max_retries": _first_non_empty(env, "AWS__MAX_RETRIES", "AWS_MAX_RETRIES"),
        "timeout": _first_non_empty(env, "AWS__TIMEOUT", "AWS_TIMEOUT"),
        "connect_timeout": _first_non_empty(env, "AWS__CONNECT_TIMEOUT", "AWS_CONNECT_TIMEOUT"),
    }
    logging_settings = {
        "level": _first_non_empty(env, "LOGGING__LEVEL", "REMEDIATION_LOG_LEVEL"),
        "json_logs": _first_non_empty(env, "LOGGING__JSON_LOGS", "REMEDIATION_LOG_JSON"),
        "override_root_handlers": _first_non_empty(
            env, "LOGGING__OVERRIDE_ROOT_HANDLERS", "REMEDIATION_LOG_OVERRIDE"
        ),
    }
    remediation = {
        "production_markers": _first_non_empty(
            env, "REMEDIATION__PRODUCTION_MARKERS", "PRODUCTION_MARKERS"
        ),
        "business_hours_start": _first_non_empty(
            env, "REMEDIATION__BUSINESS_HOURS_START", "BUSINESS_HOURS_START"
        ),
        "business_hours_end": _first_non_empty(
            env, "REMEDIATION__BUSINESS_HOURS_END", "BUSINESS_HOURS_END"
        ),
        "business_days": _first_non_empty(env, "REMEDIATION__BUSINESS_DAYS", "BUSINESS_DAYS"),
        "business_timezone": _first_non_empty(
            env, "REMEDIATION__BUSINESS_TIMEZONE", "BUSINESS_TIMEZONE"
        ),
        "safety_check_timeout_seconds": _first_non_empty(
            env, "REMEDIATION__SAFETY_CHECK_TIMEOUT_SECONDS", "SAFETY_CHECK_TIMEOUT_SECONDS"
        ),
        "max_error_message_length": _first_non_empty(
            env, "REMEDIATION__MAX_ERROR_MESSAGE_LENGTH", "MAX_ERROR_MESSAGE_LENGTH"
        ),
    }
    approval = {
        "sns_topics": _approval_topics_from_env(env),
        "slack_webhook_url": _first_non_empty(env, "APPROVAL__SLACK_WEBHOOK_URL", "SLACK_WEBHOOK_URL"),
        "slack_channel": _first_non_empty(env, "APPROVAL__SLACK_CHANNEL", "SLACK_CHANNEL"),
        "dashboard_url": _first_non_empty(env, "APPROVAL__DASHBOARD_URL", "DASHBOARD_URL"),
    }
    return {
        "db": {k: v for k, v in db.items() if v is not None},
        "aws": {k: v for k, v in aws.items() if v is not None},
        "logging": {k: v for k, v in logging_settings.items() if v is not None},
        "remediation": {k: v for k, v in remediation.items() if v is not None},
        "approval": {k: v for k, v in approval.items() if v is not None},
    }


_SETTINGS_LOCK = Lock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Return cached settings, optionally forcing reload from env."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        if reload or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings.from_env()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear in-process settings cache."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "AWSConfig",
    "ApprovalConfig",
    "DatabaseConfig",
    "LoggingSettings",
    "RemediationConfig",
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "ValidationError",
]
