# -*- coding: utf-8 -*-
"""
Notification policy filter.
Decides, per trigger event and owner preference, whether to notify.
"""
from dataclasses import dataclass
from datetime import datetime, time
from typing import Optional

import pytz
from loguru import logger

from src.notif.records import NotificationPreference
from src.rules.rule_defs import TriggerEvent
from src.storage.db import utc_now

REASON_OK = "ok"
REASON_CATEGORY_DISABLED = "category_disabled"
REASON_QUIET_HOURS = "quiet_hours"


@dataclass(frozen=True)
class PolicyDecision:
    """persist: keep an in-app record; deliver: invoke channels."""
    persist: bool
    deliver: bool
    reason: str


def parse_hhmm(value: str) -> time:
    """
    Parse "HH:MM" (24h) into a time.

    Raises:
        ValueError: if the string is not a valid HH:MM
    """
    if not isinstance(value, str):
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    return time(hour, minute)


def local_time(now: datetime, tz_name: str) -> time:
    """Wall-clock time in `tz_name` for a naive-UTC (or aware) datetime."""
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{tz_name}', using UTC")
        tz = pytz.utc

    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(tz).time().replace(second=0, microsecond=0)


def in_window(current: time, start: time, end: time) -> bool:
    """
    True if current is in [start, end).
    start > end wraps midnight: [start, 24:00) + [00:00, end). start == end is empty.
    """
    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end


def in_quiet_hours(preference: NotificationPreference, now: Optional[datetime] = None) -> bool:
    if not preference.quiet_hours_start or not preference.quiet_hours_end:
        return False

    try:
        start = parse_hhmm(preference.quiet_hours_start)
        end = parse_hhmm(preference.quiet_hours_end)
    except ValueError as e:
        logger.warning(f"Ignoring quiet hours for {preference.owner_id}: {e}")
        return False

    current = local_time(now or utc_now(), preference.timezone)
    return in_window(current, start, end)


def decide(
    event: TriggerEvent,
    preference: NotificationPreference,
    now: Optional[datetime] = None,
) -> PolicyDecision:
    """
    Category off: drop entirely. Quiet hours: record in-app, no delivery.
    Otherwise record and deliver.
    """
    if not preference.category_enabled(event.category):
        return PolicyDecision(persist=False, deliver=False, reason=REASON_CATEGORY_DISABLED)
    if in_quiet_hours(preference, now):
        return PolicyDecision(persist=True, deliver=False, reason=REASON_QUIET_HOURS)
    return PolicyDecision(persist=True, deliver=True, reason=REASON_OK)


def should_notify(
    event: TriggerEvent,
    preference: NotificationPreference,
    now: Optional[datetime] = None,
) -> bool:
    """False if the event's category is off or `now` falls in quiet hours."""
    return decide(event, preference, now).deliver
