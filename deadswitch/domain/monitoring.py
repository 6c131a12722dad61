"""
Read-only views over a switch: health, urgency and reminder windows.

Built on the switch's own predicates so the deadline boundary is the same
everywhere (exclusive at the instant).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from deadswitch.domain.switch import Switch, SwitchStatus
from deadswitch.domain.timeutil import utc_now

DEFAULT_WARNING_PERIOD = timedelta(hours=24)
DEFAULT_REMINDER_THRESHOLD = 0.9


class HealthLevel(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    TRIGGERED = "TRIGGERED"


@dataclass(frozen=True)
class HealthStatus:
    level: HealthLevel
    message: str
    hours_until_due: float | None = None


def format_hours(hours: float) -> str:
    if hours < 1:
        minutes = max(0, round(hours * 60))
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    if hours < 24:
        whole = int(hours)
        return f"{whole} hour{'s' if whole != 1 else ''}"
    days = int(hours // 24)
    remaining = int(hours % 24)
    text = f"{days} day{'s' if days != 1 else ''}"
    if remaining:
        text += f" {remaining} hour{'s' if remaining != 1 else ''}"
    return text


def _hours_until_due(switch: Switch, now: datetime) -> float | None:
    delta = switch.time_until_due(now)
    if delta is None:
        return None
    return delta.total_seconds() / 3600


def is_in_warning_period(
    switch: Switch, now: datetime | None = None, warning_period: timedelta = DEFAULT_WARNING_PERIOD
) -> bool:
    """Due within ``warning_period`` but not yet past due."""
    now = now or utc_now()
    if not switch.is_active or switch.next_check_in_due is None or switch.is_past_due(now):
        return False
    return switch.next_check_in_due - now <= warning_period


def is_reminder_due(switch: Switch, now: datetime | None = None, threshold: float = DEFAULT_REMINDER_THRESHOLD) -> bool:
    """More than ``threshold`` of the interval elapsed since the last check-in, not yet past due."""
    now = now or utc_now()
    if not switch.is_active or switch.last_check_in is None or switch.is_past_due(now):
        return False
    elapsed = now - switch.last_check_in
    return elapsed > switch.check_in_interval * threshold


def health_status(switch: Switch, now: datetime | None = None) -> HealthStatus:
    now = now or utc_now()
    if switch.status is SwitchStatus.TRIGGERED:
        return HealthStatus(HealthLevel.TRIGGERED, "Switch has been triggered")
    if switch.status is SwitchStatus.EXPIRED:
        return HealthStatus(HealthLevel.TRIGGERED, "Switch has expired")
    hours = _hours_until_due(switch, now)
    if switch.status is SwitchStatus.PAUSED:
        return HealthStatus(HealthLevel.OK, "Switch is paused", hours)
    if switch.is_grace_period_expired(now):
        return HealthStatus(HealthLevel.CRITICAL, "Grace period expired; switch will trigger", hours)
    if switch.is_past_due(now):
        return HealthStatus(HealthLevel.CRITICAL, "Check-in overdue; in grace period", hours)
    if is_in_warning_period(switch, now):
        return HealthStatus(HealthLevel.WARNING, f"Check-in due in {format_hours(hours or 0)}", hours)
    return HealthStatus(HealthLevel.OK, f"Next check-in in {format_hours(hours or 0)}", hours)


def urgency(switch: Switch, now: datetime | None = None) -> int:
    """0..100 score used to order dashboards and reminders."""
    now = now or utc_now()
    if switch.status is SwitchStatus.TRIGGERED:
        return 100
    if not switch.is_active:
        return 0
    if switch.is_grace_period_expired(now):
        return 100
    if switch.is_past_due(now):
        return 90
    if switch.last_check_in is None:
        return 0
    interval = switch.check_in_interval.total_seconds()
    elapsed = (now - switch.last_check_in).total_seconds()
    score = int(elapsed / interval * 90)
    return max(0, min(89, score))
