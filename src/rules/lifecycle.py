# -*- coding: utf-8 -*-
"""
Rule lifecycle manager.

Owns rule CRUD and the Active / Inactive / Triggered state machine:

    Active   --toggle-->        Inactive
    Inactive --toggle-->        Active
    Active   --mark_triggered-> Triggered   (compare-and-set, once per trigger)
    Triggered --rearm-->        Active      (after cooldown, or forced)

A triggered rule never goes back to Active through toggle.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from loguru import logger

from src.errors import NotFoundError, ValidationError
from src.rules.rule_defs import AlertRule, RuleSpec, RuleState
from src.rules.validation import validate_rule_spec
from src.storage.db import utc_now
from src.storage.repo import RuleStore

_UNSET = object()


class RuleLifecycleManager:
    """Rule CRUD and state transitions on top of a RuleStore."""

    def __init__(self, store: Optional[RuleStore] = None):
        self.store = store or RuleStore()

    def create(self, spec: RuleSpec) -> AlertRule:
        """
        Validate and persist a new rule in state Active.

        Raises:
            ValidationError: with every violated constraint
            StoreError: if the insert fails
        """
        clean = validate_rule_spec(spec)
        rule = self.store.add(clean)
        logger.info(f"Rule created: {rule.id} {rule.symbol} {rule.kind} owner={rule.owner_id}")
        return rule

    def get(self, rule_id: str) -> AlertRule:
        rule = self.store.get(rule_id)
        if rule is None:
            raise NotFoundError("rule", rule_id)
        return rule

    def list_rules(self, owner_id: str) -> List[AlertRule]:
        return self.store.list_by_owner(owner_id)

    def list_active(self, symbol: Optional[str] = None) -> List[AlertRule]:
        return self.store.list_by_state(RuleState.ACTIVE.value, symbol=symbol.upper() if symbol else None)

    def update(
        self,
        rule_id: str,
        target_value: Any = _UNSET,
        cooldown_minutes: Any = _UNSET,
        metadata: Any = _UNSET,
    ) -> AlertRule:
        """Change target, cooldown or metadata; the merged rule is revalidated."""
        rule = self.get(rule_id)

        spec = RuleSpec(
            owner_id=rule.owner_id,
            symbol=rule.symbol,
            kind=rule.kind,
            condition_type=rule.condition_type,
            target_value=rule.target_value if target_value is _UNSET else target_value,
            cooldown_minutes=rule.cooldown_minutes if cooldown_minutes is _UNSET else cooldown_minutes,
            metadata=rule.metadata if metadata is _UNSET else metadata,
            conditions=rule.conditions,
            logic=rule.logic,
        )
        clean = validate_rule_spec(spec)

        updated = self.store.save_fields(rule_id, clean)
        if updated is None:
            raise NotFoundError("rule", rule_id)
        logger.info(f"Rule updated: {rule_id}")
        return updated

    def toggle(self, rule_id: str) -> AlertRule:
        """
        Flip Active <-> Inactive. Always flips; never a no-op.

        Raises:
            NotFoundError: unknown id
            ValidationError: rule is Triggered (use rearm)
        """
        rule = self.get(rule_id)

        if rule.state == RuleState.TRIGGERED:
            raise ValidationError([f"rule {rule_id} is triggered; re-arm it instead of toggling"])

        target_state = RuleState.INACTIVE if rule.is_active else RuleState.ACTIVE
        if not self.store.transition(rule_id, rule.state, target_state.value):
            # State moved under us (e.g. a sweep triggered it); report the fresh state
            current = self.get(rule_id)
            raise ValidationError([f"rule {rule_id} changed state to {current.state}; retry"])

        logger.info(f"Rule {rule_id} toggled: {rule.state} -> {target_state.value}")
        return self.get(rule_id)

    def delete(self, rule_id: str) -> None:
        """Remove a rule regardless of state."""
        if not self.store.delete(rule_id):
            raise NotFoundError("rule", rule_id)
        logger.info(f"Rule deleted: {rule_id}")

    def mark_triggered(self, rule_id: str, observed_value: float, when: Optional[datetime] = None) -> bool:
        """
        Atomic Active -> Triggered.
        Returns False (no error) if the rule is no longer Active.
        """
        won = self.store.mark_triggered(rule_id, when=when)
        if won:
            logger.info(f"Rule {rule_id} triggered at observed value {observed_value}")
        else:
            logger.debug(f"Rule {rule_id} not active anymore, trigger skipped")
        return won

    def rearm(self, rule_id: str, force: bool = False, now: Optional[datetime] = None) -> AlertRule:
        """
        Move a Triggered rule back to Active and clear last_triggered_at.

        trigger_count is kept. Refused while the cooldown window is still
        open unless `force` is set.
        """
        rule = self.get(rule_id)
        now = now or utc_now()

        if rule.state != RuleState.TRIGGERED:
            raise ValidationError([f"rule {rule_id} is {rule.state}; only triggered rules can be re-armed"])

        ends_at = rule.cooldown_ends_at()
        if not force and ends_at is not None and now < ends_at:
            raise ValidationError([f"rule {rule_id} is cooling down until {ends_at.isoformat()}"])

        if not self.store.transition(
            rule_id,
            RuleState.TRIGGERED.value,
            RuleState.ACTIVE.value,
            clear_last_triggered=True,
        ):
            raise ValidationError([f"rule {rule_id} changed state while re-arming; retry"])

        logger.info(f"Rule {rule_id} re-armed (trigger_count={rule.trigger_count})")
        return self.get(rule_id)

    def rearm_expired(self, now: Optional[datetime] = None) -> int:
        """Re-arm triggered rules flagged auto_rearm whose cooldown has elapsed."""
        now = now or utc_now()
        count = 0

        for rule in self.store.list_by_state(RuleState.TRIGGERED.value):
            if not rule.metadata.get("auto_rearm"):
                continue
            ends_at = rule.cooldown_ends_at()
            if ends_at is not None and now < ends_at:
                continue
            if self.store.transition(
                rule.id,
                RuleState.TRIGGERED.value,
                RuleState.ACTIVE.value,
                clear_last_triggered=True,
            ):
                count += 1

        if count:
            logger.info(f"Auto re-armed {count} rule(s)")
        return count

    def deactivate_all(self, owner_id: str) -> int:
        count = self.store.deactivate_all(owner_id)
        logger.info(f"Deactivated {count} rule(s) for owner {owner_id}")
        return count

    def cleanup_triggered(self, older_than_days: int = 30, now: Optional[datetime] = None) -> int:
        """Delete Triggered rules whose last trigger is older than the cutoff."""
        now = now or utc_now()
        cutoff = now - timedelta(days=older_than_days)
        removed = self.store.delete_triggered_before(cutoff)
        logger.info(f"Removed {removed} triggered rule(s) older than {older_than_days}d")
        return removed

    def stats(self, owner_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts for an owner's rules, including recent trigger activity."""
        now = now or utc_now()
        rules = self.store.list_by_owner(owner_id)

        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_ago = now - timedelta(days=7)
        states = Counter(r.state for r in rules)

        return {
            "total": len(rules),
            "active": states.get(RuleState.ACTIVE.value, 0),
            "inactive": states.get(RuleState.INACTIVE.value, 0),
            "triggered": states.get(RuleState.TRIGGERED.value, 0),
            "triggered_today": sum(
                1 for r in rules if r.last_triggered_at and r.last_triggered_at >= start_of_day
            ),
            "triggered_this_week": sum(
                1 for r in rules if r.last_triggered_at and r.last_triggered_at >= week_ago
            ),
            "by_kind": dict(Counter(r.kind for r in rules)),
            "by_symbol": dict(Counter(r.symbol for r in rules)),
        }
