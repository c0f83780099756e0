from datetime import datetime
from typing import Optional

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text

class Base(DeclarativeBase):
    pass

class AlertRuleRecord(Base):
    __tablename__ = "alert_rules"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)              # uuid4
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)           # ex: PETR4, BTCUSDT
    kind: Mapped[str] = mapped_column(String(16), nullable=False)             # price | volume | technical | composite
    condition_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)  # null for composite
    target_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    target_upper: Mapped[Optional[float]] = mapped_column(Float, nullable=True)       # only for between
    cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    trigger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)  # naive UTC
    meta: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    conditions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # composite legs
    logic: Mapped[str] = mapped_column(String(3), nullable=False, default="AND")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_rule_owner", "owner_id"),
        Index("ix_rule_state_symbol", "state", "symbol"),
    )

class NotificationRecord(Base):
    __tablename__ = "notifications"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False, default="alert")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_notif_owner_created", "owner_id", "created_at"),
    )

class NotificationPreferenceRecord(Base):
    __tablename__ = "notification_preferences"
    owner_id: Mapped[str] = mapped_column(String(64), primary_key=True)      # 1:1 with owner
    push_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    by_category: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    quiet_hours_start: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)  # "HH:MM"
    quiet_hours_end: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
