# -*- coding: utf-8 -*-
"""
Notification inbox and delivery preferences.
In-app notifications per owner plus the lazily created preference record.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytz
from loguru import logger

from src.errors import NotFoundError, ValidationError
from src.notif.policy import parse_hhmm
from src.notif.records import CATEGORY_VALUES, Notification, NotificationPreference
from src.storage.db import utc_now
from src.storage.repo import NotificationStore, PreferenceStore

_PREFERENCE_FIELDS = (
    "push_enabled",
    "email_enabled",
    "by_category",
    "quiet_hours_start",
    "quiet_hours_end",
    "timezone",
)


class NotificationInbox:
    """Owner-facing notification operations."""

    def __init__(
        self,
        notifications: Optional[NotificationStore] = None,
        preferences: Optional[PreferenceStore] = None,
    ):
        self.notifications = notifications or NotificationStore()
        self.preferences = preferences or PreferenceStore()

    # Preferences

    def get_preferences(self, owner_id: str) -> NotificationPreference:
        """Owner's preferences; defaults are stored on first access."""
        return self.preferences.get_or_create(owner_id)

    def update_preferences(self, owner_id: str, **changes: Any) -> NotificationPreference:
        """
        Apply preference changes.

        Args:
            owner_id: Preference owner
            **changes: Any of push_enabled, email_enabled, by_category,
                quiet_hours_start, quiet_hours_end, timezone

        Raises:
            ValidationError: listing every invalid change
        """
        errors: List[str] = []

        unknown = sorted(set(changes) - set(_PREFERENCE_FIELDS))
        for name in unknown:
            errors.append(f"unknown preference field: {name}")

        for flag in ("push_enabled", "email_enabled"):
            if flag in changes and not isinstance(changes[flag], bool):
                errors.append(f"{flag} must be true or false")

        if "by_category" in changes:
            by_category = changes["by_category"]
            if not isinstance(by_category, dict):
                errors.append("by_category must be a map of category -> bool")
            else:
                for category, enabled in by_category.items():
                    if category not in CATEGORY_VALUES:
                        errors.append(f"unknown category: {category}")
                    elif not isinstance(enabled, bool):
                        errors.append(f"by_category.{category} must be true or false")

        for bound in ("quiet_hours_start", "quiet_hours_end"):
            value = changes.get(bound)
            if value is not None:
                try:
                    parse_hhmm(value)
                except ValueError:
                    errors.append(f"{bound} must be HH:MM (24h), got {value!r}")

        if "timezone" in changes:
            tz_name = changes["timezone"]
            if not isinstance(tz_name, str) or tz_name not in pytz.all_timezones_set:
                errors.append(f"unknown timezone: {tz_name!r}")

        if errors:
            raise ValidationError(errors)

        changed = sorted(changes)
        current = self.get_preferences(owner_id)
        if "by_category" in changes:
            merged = dict(current.by_category)
            merged.update(changes.pop("by_category"))
            current.by_category = merged
        for name, value in changes.items():
            setattr(current, name, value)

        saved = self.preferences.save(current)
        logger.info(f"Preferences updated for {owner_id}: {changed}")
        return saved

    # Inbox

    def list_notifications(self, owner_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        return self.notifications.list_by_owner(owner_id, unread_only=unread_only, limit=limit)

    def mark_as_read(self, notification_id: str) -> None:
        if not self.notifications.mark_read(notification_id):
            raise NotFoundError("notification", notification_id)

    def mark_all_as_read(self, owner_id: str) -> int:
        return self.notifications.mark_all_read(owner_id)

    def delete_notification(self, notification_id: str) -> None:
        if not self.notifications.delete(notification_id):
            raise NotFoundError("notification", notification_id)

    def clear_all(self, owner_id: str) -> int:
        count = self.notifications.delete_by_owner(owner_id)
        logger.info(f"Cleared {count} notification(s) for {owner_id}")
        return count

    def stats(self, owner_id: str) -> Dict[str, Any]:
        return self.notifications.counts(owner_id)

    def cleanup_notifications(self, older_than_days: int = 30, now: Optional[datetime] = None) -> int:
        """Retention cleanup: older than the cutoff, or past their expires_at."""
        now = now or utc_now()
        cutoff = now - timedelta(days=older_than_days)
        removed = self.notifications.delete_expired(cutoff, now=now)
        logger.info(f"Removed {removed} notification(s) older than {older_than_days}d or expired")
        return removed
