# -*- coding: utf-8 -*-
"""
Notification dispatcher.
Turns trigger events into persisted notifications and hands them to the
enabled delivery channels.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from loguru import logger

from src.errors import DeliveryError
from src.notif.channels import DeliveryChannel
from src.notif.inbox import NotificationInbox
from src.notif.policy import decide
from src.notif.records import (
    CATEGORY_VALUES,
    PRIORITY_VALUES,
    Category,
    Notification,
    NotificationPreference,
    Priority,
)
from src.notif.templates import notification_data, notification_message, notification_title
from src.rules.rule_defs import TriggerEvent


@dataclass
class DispatchResult:
    """notification is None when the category was disabled."""
    notification: Optional[Notification]
    delivered: List[str] = field(default_factory=list)
    reason: str = "ok"


def resolve_category(value: Optional[str]) -> str:
    if value in CATEGORY_VALUES:
        return value
    return Category.ALERT.value


def resolve_priority(value: Optional[str], default: str = Priority.MEDIUM.value) -> str:
    if value in PRIORITY_VALUES:
        return value
    return default if default in PRIORITY_VALUES else Priority.MEDIUM.value


class NotificationDispatcher:
    """Persists notifications and invokes delivery channels."""

    def __init__(
        self,
        inbox: NotificationInbox,
        channels: Optional[Dict[str, DeliveryChannel]] = None,
        default_priority: str = Priority.MEDIUM.value,
        expires_after_days: Optional[int] = None,
    ):
        self.inbox = inbox
        self.channels = channels or {}
        self.default_priority = default_priority
        self.expires_after_days = expires_after_days

        self.notifications_created = 0
        self.deliveries_failed = 0
        self.last_delivery_at: Optional[datetime] = None

    async def handle_event(self, event: TriggerEvent) -> DispatchResult:
        """Load the owner's preferences and dispatch."""
        preference = self.inbox.get_preferences(event.owner_id)
        return await self.dispatch(event, preference)

    async def dispatch(
        self,
        event: TriggerEvent,
        preference: NotificationPreference,
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """
        Apply policy, persist, deliver.

        Category disabled: nothing persisted. Quiet hours: persisted only.
        Channel failures are logged and never undo the persisted record.
        """
        category = resolve_category(event.category)
        if category != event.category:
            event = replace(event, category=category)
        decision = decide(event, preference, now)

        if not decision.persist:
            logger.info(f"Notification skipped for {event.owner_id} ({event.symbol}): {decision.reason}")
            return DispatchResult(notification=None, reason=decision.reason)

        title = notification_title(event.symbol)
        message = notification_message(event, indicator=event.indicator)
        expires_at = None
        if self.expires_after_days:
            expires_at = event.triggered_at + timedelta(days=self.expires_after_days)

        notification = self.inbox.notifications.add(
            owner_id=event.owner_id,
            title=title,
            message=message,
            category=category,
            priority=resolve_priority(event.priority, self.default_priority),
            data=notification_data(event),
            expires_at=expires_at,
        )
        self.notifications_created += 1
        logger.info(f"Notification {notification.id} created for {event.owner_id}: {message}")

        if not decision.deliver:
            logger.info(f"Delivery held for {event.owner_id}: {decision.reason}")
            return DispatchResult(notification=notification, reason=decision.reason)

        delivered = await self._deliver(notification, preference)
        return DispatchResult(notification=notification, delivered=delivered, reason=decision.reason)

    async def _deliver(self, notification: Notification, preference: NotificationPreference) -> List[str]:
        payload = dict(notification.data)
        payload.update({
            "notification_id": notification.id,
            "category": notification.category,
            "priority": notification.priority,
            "created_at": notification.created_at,
            "timezone": preference.timezone,
        })

        delivered: List[str] = []
        for name, channel in self.channels.items():
            if not preference.channel_enabled(name):
                logger.debug(f"Channel {name} disabled for {notification.owner_id}")
                continue
            try:
                await channel.send(notification.owner_id, notification.title, notification.message, payload)
                delivered.append(name)
            except DeliveryError as e:
                self.deliveries_failed += 1
                logger.warning(f"{e} (notification {notification.id}, owner {notification.owner_id})")
            except Exception as e:
                self.deliveries_failed += 1
                logger.exception(
                    f"Unexpected {name} delivery error (notification {notification.id}, "
                    f"owner {notification.owner_id}): {e}"
                )

        if delivered:
            self.last_delivery_at = notification.created_at
        return delivered

