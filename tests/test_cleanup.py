"""Tests for retention cleanup."""
from datetime import datetime, timedelta, timezone

from src.storage.cleanup import run_cleanup, seconds_until
from src.storage.db import utc_now


class TestRunCleanup:
    """Tests for the one-shot cleanup pass."""

    def test_removes_old_triggered_rules_and_notifications(self, test_env_vars, lifecycle, inbox, price_spec):
        old_rule = lifecycle.create(price_spec)
        fresh_rule = lifecycle.create(price_spec)
        lifecycle.mark_triggered(old_rule.id, 36.0, when=utc_now() - timedelta(days=40))
        lifecycle.mark_triggered(fresh_rule.id, 36.0)

        inbox.notifications.add('user-1', 'expired', 'x', 'alert', 'medium',
                                expires_at=utc_now() - timedelta(minutes=1))
        kept = inbox.notifications.add('user-1', 'kept', 'x', 'alert', 'medium')

        result = run_cleanup(lifecycle, inbox)

        assert result == {"rules_deleted": 1, "notifications_deleted": 1}
        assert [r.id for r in lifecycle.list_rules('user-1')] == [fresh_rule.id]
        assert [n.id for n in inbox.list_notifications('user-1')] == [kept.id]

    def test_disabled(self, write_config, test_config_dict, lifecycle, inbox, price_spec):
        test_config_dict['database']['cleanup']['enabled'] = False
        write_config(test_config_dict)
        rule = lifecycle.create(price_spec)
        lifecycle.mark_triggered(rule.id, 36.0, when=utc_now() - timedelta(days=400))

        assert run_cleanup(lifecycle, inbox) == {"rules_deleted": 0, "notifications_deleted": 0}
        assert lifecycle.get(rule.id)


class TestSecondsUntil:
    """Tests for next-run computation."""

    def test_later_today(self):
        now = datetime(2025, 1, 15, 1, 30, tzinfo=timezone.utc)
        assert seconds_until(3, now) == 90 * 60

    def test_tomorrow(self):
        now = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)
        assert seconds_until(3, now) == 24 * 3600
