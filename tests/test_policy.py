"""Tests for the notification policy filter (categories and quiet hours)."""
from datetime import datetime, time

import pytest

from src.notif.policy import (
    decide,
    in_quiet_hours,
    in_window,
    local_time,
    parse_hhmm,
    should_notify,
)
from src.notif.records import NotificationPreference
from src.rules.rule_defs import TriggerEvent


def make_event(category: str = 'alert') -> TriggerEvent:
    return TriggerEvent(
        rule_id='r1',
        owner_id='user-1',
        symbol='PETR4',
        condition_summary='price above 35',
        observed_value=36.0,
        triggered_at=datetime(2025, 1, 15, 12, 0),
        category=category,
    )


def quiet_pref(start='22:00', end='07:00', tz='UTC') -> NotificationPreference:
    return NotificationPreference(
        owner_id='user-1',
        quiet_hours_start=start,
        quiet_hours_end=end,
        timezone=tz,
    )


class TestParseHHMM:
    """Tests for HH:MM parsing."""

    def test_valid(self):
        assert parse_hhmm("07:05") == time(7, 5)
        assert parse_hhmm("23:59") == time(23, 59)

    @pytest.mark.parametrize("value", ["24:00", "7", "ab:cd", "12:60", "", None])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_hhmm(value)


class TestWindow:
    """Tests for [start, end) windows, including midnight wraparound."""

    def test_same_day_window(self):
        assert in_window(time(13, 0), time(12, 0), time(14, 0)) is True
        assert in_window(time(14, 0), time(12, 0), time(14, 0)) is False

    def test_wraparound(self):
        start, end = time(22, 0), time(7, 0)
        assert in_window(time(23, 30), start, end) is True
        assert in_window(time(3, 0), start, end) is True
        assert in_window(time(12, 0), start, end) is False
        assert in_window(time(7, 0), start, end) is False

    def test_ten_pm_to_six_am(self):
        start, end = parse_hhmm("22:00"), parse_hhmm("06:00")
        assert in_window(time(23, 30), start, end) is True
        assert in_window(time(12, 0), start, end) is False

    def test_equal_bounds_is_empty(self):
        assert in_window(time(9, 0), time(9, 0), time(9, 0)) is False


class TestQuietHours:
    """Tests for quiet hours against owner timezone."""

    def test_late_night_suppressed(self):
        pref = quiet_pref()
        assert should_notify(make_event(), pref, now=datetime(2025, 1, 15, 23, 30)) is False

    def test_midday_delivered(self):
        pref = quiet_pref()
        assert should_notify(make_event(), pref, now=datetime(2025, 1, 15, 12, 0)) is True

    def test_owner_timezone_applied(self):
        """02:00 UTC is 23:00 in Sao Paulo, inside 22:00-07:00 local."""
        pref = quiet_pref(tz='America/Sao_Paulo')
        assert in_quiet_hours(pref, now=datetime(2025, 1, 15, 2, 0)) is True
        assert in_quiet_hours(pref, now=datetime(2025, 1, 15, 15, 0)) is False

    def test_not_configured(self):
        pref = NotificationPreference(owner_id='user-1')
        assert in_quiet_hours(pref, now=datetime(2025, 1, 15, 23, 30)) is False

    def test_malformed_bounds_ignored(self):
        pref = quiet_pref(start='late')
        assert in_quiet_hours(pref, now=datetime(2025, 1, 15, 23, 30)) is False

    def test_unknown_timezone_uses_utc(self):
        assert local_time(datetime(2025, 1, 15, 23, 30), 'Mars/Olympus') == time(23, 30)


class TestDecide:
    """Tests for the persist/deliver decision."""

    def test_category_disabled_drops_everything(self):
        pref = NotificationPreference(owner_id='user-1')
        decision = decide(make_event(category='news'), pref)
        assert decision.persist is False
        assert decision.deliver is False
        assert decision.reason == 'category_disabled'

    def test_quiet_hours_persist_only(self):
        decision = decide(make_event(), quiet_pref(), now=datetime(2025, 1, 15, 23, 30))
        assert decision.persist is True
        assert decision.deliver is False
        assert decision.reason == 'quiet_hours'

    def test_ok(self):
        decision = decide(make_event(), quiet_pref(), now=datetime(2025, 1, 15, 12, 0))
        assert decision.persist is True
        assert decision.deliver is True
        assert decision.reason == 'ok'

    def test_explicitly_disabled_alert_category(self):
        pref = NotificationPreference(owner_id='user-1', by_category={'alert': False})
        assert should_notify(make_event(), pref) is False
