import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import sessionmaker

from src.notif.records import Notification, NotificationPreference, default_categories
from src.rules.rule_defs import AlertRule, RuleSpec, RuleState, SubCondition
from .db import session_scope, utc_now
from .models import AlertRuleRecord, NotificationPreferenceRecord, NotificationRecord


def new_id() -> str:
    return str(uuid.uuid4())


def _rule_from_record(row: AlertRuleRecord) -> AlertRule:
    target: Any = row.target_value
    if row.target_upper is not None:
        target = (row.target_value, row.target_upper)

    return AlertRule(
        id=row.id,
        owner_id=row.owner_id,
        symbol=row.symbol,
        kind=row.kind,
        condition_type=row.condition_type,
        target_value=target,
        cooldown_minutes=row.cooldown_minutes,
        state=row.state,
        trigger_count=row.trigger_count,
        last_triggered_at=row.last_triggered_at,
        metadata=dict(row.meta or {}),
        conditions=[SubCondition.from_dict(c) for c in (row.conditions or [])],
        logic=row.logic,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _split_target(target: Any):
    if isinstance(target, (list, tuple)):
        return float(target[0]), float(target[1])
    if target is None:
        return None, None
    return float(target), None


class RuleStore:
    """AlertRule persistence. All writes go through session_scope (StoreError on failure)."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def add(self, spec: RuleSpec) -> AlertRule:
        """Insert a validated spec as a new Active rule."""
        now = utc_now()
        lower, upper = _split_target(spec.target_value)
        row = AlertRuleRecord(
            id=new_id(),
            owner_id=spec.owner_id,
            symbol=spec.symbol,
            kind=spec.kind,
            condition_type=spec.condition_type,
            target_value=lower,
            target_upper=upper,
            cooldown_minutes=spec.cooldown_minutes,
            state=RuleState.ACTIVE.value,
            trigger_count=0,
            last_triggered_at=None,
            meta=dict(spec.metadata),
            conditions=[c.to_dict() for c in spec.conditions],
            logic=spec.logic,
            created_at=now,
            updated_at=now,
        )
        with session_scope(self.session_factory) as session:
            session.add(row)
        return _rule_from_record(row)

    def get(self, rule_id: str) -> Optional[AlertRule]:
        with session_scope(self.session_factory) as session:
            row = session.get(AlertRuleRecord, rule_id)
            return _rule_from_record(row) if row else None

    def list_by_owner(self, owner_id: str) -> List[AlertRule]:
        """Owner's rules, newest first."""
        with session_scope(self.session_factory) as session:
            rows = session.scalars(
                select(AlertRuleRecord)
                .where(AlertRuleRecord.owner_id == owner_id)
                .order_by(AlertRuleRecord.created_at.desc())
            ).all()
            return [_rule_from_record(r) for r in rows]

    def list_by_state(self, state: str, symbol: Optional[str] = None) -> List[AlertRule]:
        with session_scope(self.session_factory) as session:
            stmt = select(AlertRuleRecord).where(AlertRuleRecord.state == state)
            if symbol:
                stmt = stmt.where(AlertRuleRecord.symbol == symbol)
            rows = session.scalars(stmt.order_by(AlertRuleRecord.created_at.asc())).all()
            return [_rule_from_record(r) for r in rows]

    def save_fields(self, rule_id: str, spec: RuleSpec) -> Optional[AlertRule]:
        """Overwrite the editable fields of a rule from a validated spec."""
        lower, upper = _split_target(spec.target_value)
        with session_scope(self.session_factory) as session:
            row = session.get(AlertRuleRecord, rule_id)
            if row is None:
                return None
            row.target_value = lower
            row.target_upper = upper
            row.cooldown_minutes = spec.cooldown_minutes
            row.meta = dict(spec.metadata)
            row.conditions = [c.to_dict() for c in spec.conditions]
            row.logic = spec.logic
            row.updated_at = utc_now()
            session.flush()
            return _rule_from_record(row)

    def transition(
        self,
        rule_id: str,
        from_state: str,
        to_state: str,
        clear_last_triggered: bool = False,
    ) -> bool:
        """
        Compare-and-set a rule's state.
        Returns False if the rule is missing or no longer in `from_state`.
        """
        values: Dict[str, Any] = {"state": to_state, "updated_at": utc_now()}
        if clear_last_triggered:
            values["last_triggered_at"] = None

        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(AlertRuleRecord)
                .where(AlertRuleRecord.id == rule_id, AlertRuleRecord.state == from_state)
                .values(**values)
            )
            return result.rowcount == 1

    def mark_triggered(self, rule_id: str, when: Optional[datetime] = None) -> bool:
        """
        Atomic Active -> Triggered in one conditional UPDATE.
        Two concurrent callers: the second matches zero rows and gets False.
        """
        when = when or utc_now()
        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(AlertRuleRecord)
                .where(
                    AlertRuleRecord.id == rule_id,
                    AlertRuleRecord.state == RuleState.ACTIVE.value,
                )
                .values(
                    state=RuleState.TRIGGERED.value,
                    trigger_count=AlertRuleRecord.trigger_count + 1,
                    last_triggered_at=when,
                    updated_at=when,
                )
            )
            return result.rowcount == 1

    def delete(self, rule_id: str) -> bool:
        with session_scope(self.session_factory) as session:
            result = session.execute(delete(AlertRuleRecord).where(AlertRuleRecord.id == rule_id))
            return result.rowcount > 0

    def delete_triggered_before(self, cutoff: datetime) -> int:
        with session_scope(self.session_factory) as session:
            result = session.execute(
                delete(AlertRuleRecord).where(
                    AlertRuleRecord.state == RuleState.TRIGGERED.value,
                    AlertRuleRecord.last_triggered_at.is_not(None),
                    AlertRuleRecord.last_triggered_at < cutoff,
                )
            )
            return result.rowcount

    def deactivate_all(self, owner_id: str) -> int:
        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(AlertRuleRecord)
                .where(
                    AlertRuleRecord.owner_id == owner_id,
                    AlertRuleRecord.state == RuleState.ACTIVE.value,
                )
                .values(state=RuleState.INACTIVE.value, updated_at=utc_now())
            )
            return result.rowcount


def _notification_from_record(row: NotificationRecord) -> Notification:
    return Notification(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        message=row.message,
        category=row.category,
        priority=row.priority,
        read=bool(row.read),
        data=dict(row.data or {}),
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


class NotificationStore:
    """Notification persistence (in-app inbox)."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def add(
        self,
        owner_id: str,
        title: str,
        message: str,
        category: str,
        priority: str,
        data: Optional[Dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
    ) -> Notification:
        row = NotificationRecord(
            id=new_id(),
            owner_id=owner_id,
            title=title,
            message=message,
            category=category,
            priority=priority,
            read=False,
            data=dict(data or {}),
            created_at=utc_now(),
            expires_at=expires_at,
        )
        with session_scope(self.session_factory) as session:
            session.add(row)
        return _notification_from_record(row)

    def get(self, notification_id: str) -> Optional[Notification]:
        with session_scope(self.session_factory) as session:
            row = session.get(NotificationRecord, notification_id)
            return _notification_from_record(row) if row else None

    def list_by_owner(self, owner_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        with session_scope(self.session_factory) as session:
            stmt = select(NotificationRecord).where(NotificationRecord.owner_id == owner_id)
            if unread_only:
                stmt = stmt.where(NotificationRecord.read.is_(False))
            stmt = stmt.order_by(NotificationRecord.created_at.desc()).limit(limit)
            return [_notification_from_record(r) for r in session.scalars(stmt).all()]

    def mark_read(self, notification_id: str) -> bool:
        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(NotificationRecord)
                .where(NotificationRecord.id == notification_id)
                .values(read=True)
            )
            return result.rowcount > 0

    def mark_all_read(self, owner_id: str) -> int:
        with session_scope(self.session_factory) as session:
            result = session.execute(
                update(NotificationRecord)
                .where(NotificationRecord.owner_id == owner_id, NotificationRecord.read.is_(False))
                .values(read=True)
            )
            return result.rowcount

    def delete(self, notification_id: str) -> bool:
        with session_scope(self.session_factory) as session:
            result = session.execute(delete(NotificationRecord).where(NotificationRecord.id == notification_id))
            return result.rowcount > 0

    def delete_by_owner(self, owner_id: str) -> int:
        with session_scope(self.session_factory) as session:
            result = session.execute(delete(NotificationRecord).where(NotificationRecord.owner_id == owner_id))
            return result.rowcount

    def delete_expired(self, cutoff: datetime, now: Optional[datetime] = None) -> int:
        """Delete notifications created before `cutoff` or whose expires_at has passed."""
        now = now or utc_now()
        with session_scope(self.session_factory) as session:
            result = session.execute(
                delete(NotificationRecord).where(
                    or_(
                        NotificationRecord.created_at < cutoff,
                        NotificationRecord.expires_at <= now,
                    )
                )
            )
            return result.rowcount

    def counts(self, owner_id: str) -> Dict[str, Any]:
        """Totals grouped by read flag, category and priority."""
        with session_scope(self.session_factory) as session:
            base = NotificationRecord.owner_id == owner_id
            total = session.scalar(select(func.count(NotificationRecord.id)).where(base)) or 0
            unread = session.scalar(
                select(func.count(NotificationRecord.id)).where(base, NotificationRecord.read.is_(False))
            ) or 0
            by_category = session.execute(
                select(NotificationRecord.category, func.count(NotificationRecord.id))
                .where(base)
                .group_by(NotificationRecord.category)
            ).all()
            by_priority = session.execute(
                select(NotificationRecord.priority, func.count(NotificationRecord.id))
                .where(base)
                .group_by(NotificationRecord.priority)
            ).all()

        return {
            "total": total,
            "unread": unread,
            "by_category": {category: count for category, count in by_category},
            "by_priority": {priority: count for priority, count in by_priority},
        }


def _preference_from_record(row: NotificationPreferenceRecord) -> NotificationPreference:
    categories = default_categories()
    categories.update(row.by_category or {})
    return NotificationPreference(
        owner_id=row.owner_id,
        push_enabled=bool(row.push_enabled),
        email_enabled=bool(row.email_enabled),
        by_category=categories,
        quiet_hours_start=row.quiet_hours_start,
        quiet_hours_end=row.quiet_hours_end,
        timezone=row.timezone,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PreferenceStore:
    """NotificationPreference persistence, one row per owner."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def get(self, owner_id: str) -> Optional[NotificationPreference]:
        with session_scope(self.session_factory) as session:
            row = session.get(NotificationPreferenceRecord, owner_id)
            return _preference_from_record(row) if row else None

    def get_or_create(self, owner_id: str) -> NotificationPreference:
        """Return the owner's preferences, inserting defaults on first access."""
        with session_scope(self.session_factory) as session:
            row = session.get(NotificationPreferenceRecord, owner_id)
            if row is None:
                defaults = NotificationPreference(owner_id=owner_id)
                now = utc_now()
                row = NotificationPreferenceRecord(
                    owner_id=owner_id,
                    push_enabled=defaults.push_enabled,
                    email_enabled=defaults.email_enabled,
                    by_category=dict(defaults.by_category),
                    quiet_hours_start=defaults.quiet_hours_start,
                    quiet_hours_end=defaults.quiet_hours_end,
                    timezone=defaults.timezone,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
            return _preference_from_record(row)

    def save(self, preference: NotificationPreference) -> NotificationPreference:
        with session_scope(self.session_factory) as session:
            row = session.get(NotificationPreferenceRecord, preference.owner_id)
            now = utc_now()
            if row is None:
                row = NotificationPreferenceRecord(owner_id=preference.owner_id, created_at=now)
                session.add(row)
            row.push_enabled = preference.push_enabled
            row.email_enabled = preference.email_enabled
            row.by_category = dict(preference.by_category)
            row.quiet_hours_start = preference.quiet_hours_start
            row.quiet_hours_end = preference.quiet_hours_end
            row.timezone = preference.timezone
            row.updated_at = now
            session.flush()
            return _preference_from_record(row)
