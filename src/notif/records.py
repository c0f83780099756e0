"""Notification and preference records."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Category(str, Enum):
    ALERT = "alert"
    NEWS = "news"
    SYSTEM = "system"
    MARKET = "market"
    PORTFOLIO = "portfolio"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Channel(str, Enum):
    PUSH = "push"
    EMAIL = "email"


CATEGORY_VALUES = tuple(c.value for c in Category)
PRIORITY_VALUES = tuple(p.value for p in Priority)

DEFAULT_CATEGORIES: Dict[str, bool] = {
    Category.ALERT.value: True,
    Category.MARKET.value: True,
    Category.NEWS.value: False,
    Category.SYSTEM.value: True,
    Category.PORTFOLIO.value: True,
}


def default_categories() -> Dict[str, bool]:
    return dict(DEFAULT_CATEGORIES)


@dataclass
class NotificationPreference:
    """Per-owner delivery settings. Created lazily with defaults."""
    owner_id: str
    push_enabled: bool = True
    email_enabled: bool = True
    by_category: Dict[str, bool] = field(default_factory=default_categories)
    quiet_hours_start: Optional[str] = None  # "HH:MM" local time
    quiet_hours_end: Optional[str] = None
    timezone: str = "UTC"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def category_enabled(self, category: str) -> bool:
        if category in self.by_category:
            return bool(self.by_category[category])
        return DEFAULT_CATEGORIES.get(category, True)

    def channel_enabled(self, channel: str) -> bool:
        if channel == Channel.PUSH:
            return self.push_enabled
        if channel == Channel.EMAIL:
            return self.email_enabled
        return False


@dataclass
class Notification:
    """In-app notification. Only the read flag changes after creation."""
    id: str
    owner_id: str
    title: str
    message: str
    category: str = Category.ALERT.value
    priority: str = Priority.MEDIUM.value
    read: bool = False
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
