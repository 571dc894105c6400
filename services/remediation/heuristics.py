"""Pluggable environment heuristics used by safety checks, impact and approval."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from infra.config import RemediationConfig

ProductionPredicate = Callable[[str], bool]
Clock = Callable[[], datetime]


@dataclass(frozen=True)
class ProductionNameMatcher:
    """Case-insensitive substring match of a resource identifier against markers."""

    markers: tuple[str, ...] = ("prod", "production")

    def __call__(self, resource_id: str) -> bool:
        text = str(resource_id or "").lower()
        return any(marker in text for marker in self.markers)


@dataclass(frozen=True)
class BusinessHoursWindow:
    """Weekday/hour window evaluated in a fixed timezone."""

    start_hour: int = 9
    end_hour: int = 17
    days: tuple[int, ...] = (0, 1, 2, 3, 4)
    timezone: str = "UTC"

    def contains(self, moment: datetime) -> bool:
        local = moment.astimezone(ZoneInfo(self.timezone))
        return local.weekday() in self.days and self.start_hour <= local.hour < self.end_hour


def production_matcher_from_config(config: RemediationConfig) -> ProductionNameMatcher:
    return ProductionNameMatcher(markers=tuple(config.production_markers))


def business_hours_from_config(config: RemediationConfig) -> BusinessHoursWindow:
    return BusinessHoursWindow(
        start_hour=config.business_hours_start,
        end_hour=config.business_hours_end,
        days=tuple(config.business_days),
        timezone=config.business_timezone,
    )


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    lowered = str(text or "").lower()
    return any(keyword in lowered for keyword in keywords)


DEFAULT_PRODUCTION_MATCHER = ProductionNameMatcher()
