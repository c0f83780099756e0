"""Tests for the pure condition evaluator."""
import pytest

from src.rules.conditions import (
    compare,
    condition_summary,
    evaluate,
    observed_value,
)
from src.rules.rule_defs import AlertRule, MarketSample, SubCondition


def make_rule(kind='price', condition_type='above', target=35.0, **kwargs) -> AlertRule:
    return AlertRule(
        id='r1',
        owner_id='user-1',
        symbol=kwargs.pop('symbol', 'PETR4'),
        kind=kind,
        condition_type=condition_type,
        target_value=target,
        **kwargs,
    )


class TestEquals:
    """Tests for equals tolerance (absolute 0.01)."""

    def test_exact_difference_of_tolerance_is_false(self):
        assert compare('equals', 10.01, 10.0) is False
        assert compare('equals', 32.49, 32.50) is False

    def test_within_tolerance_is_true(self):
        assert compare('equals', 32.495, 32.50) is True
        assert compare('equals', 32.505, 32.50) is True
        assert compare('equals', 10.0, 10.0) is True

    def test_far_values_are_false(self):
        assert compare('equals', 33.0, 32.5) is False


class TestAboveBelow:
    """Tests for strict above/below."""

    def test_above_is_strict(self):
        rule = make_rule(target=35.0)
        assert evaluate(rule, _sample(35.0)) is False
        assert evaluate(rule, _sample(35.01)) is True

    def test_below_is_strict(self):
        rule = make_rule(condition_type='below', target=35.0)
        assert evaluate(rule, _sample(35.0)) is False
        assert evaluate(rule, _sample(34.99)) is True

    def test_above_monotonic(self):
        """Once true, a higher observed value never flips above to false."""
        rule = make_rule(target=35.0)
        results = [evaluate(rule, _sample(p)) for p in (30.0, 34.99, 35.0, 35.5, 40.0, 1000.0)]
        first_true = results.index(True)
        assert all(results[first_true:])

    def test_volume_rule_reads_volume(self):
        rule = make_rule(kind='volume', target=1_000_000)
        assert evaluate(rule, _sample(1.0, volume=1_500_000)) is True
        assert evaluate(rule, _sample(99999.0, volume=10)) is False


class TestCrossing:
    """Tests for cross_above / cross_below."""

    def test_cross_above_with_prior(self):
        rule = make_rule(condition_type='cross_above', target=35.0)
        assert evaluate(rule, _sample(36.0), prior=_sample(34.0)) is True

    def test_cross_above_prior_at_target_counts(self):
        rule = make_rule(condition_type='cross_above', target=35.0)
        assert evaluate(rule, _sample(36.0), prior=_sample(35.0)) is True

    def test_cross_above_already_above_is_false(self):
        rule = make_rule(condition_type='cross_above', target=35.0)
        assert evaluate(rule, _sample(37.0), prior=_sample(36.0)) is False

    def test_cross_below_with_prior(self):
        rule = make_rule(condition_type='cross_below', target=35.0)
        assert evaluate(rule, _sample(34.0), prior=_sample(36.0)) is True
        assert evaluate(rule, _sample(33.0), prior=_sample(34.0)) is False

    def test_no_prior_falls_back_to_above_below(self):
        above = make_rule(condition_type='cross_above', target=35.0)
        below = make_rule(condition_type='cross_below', target=35.0)
        assert evaluate(above, _sample(36.0)) is True
        assert evaluate(above, _sample(34.0)) is False
        assert evaluate(below, _sample(34.0)) is True


class TestBetween:
    """Tests for inclusive between."""

    @pytest.mark.parametrize("price,expected", [
        (30.0, True),
        (40.0, True),
        (35.0, True),
        (29.99, False),
        (40.01, False),
    ])
    def test_inclusive_bounds(self, price, expected):
        rule = make_rule(condition_type='between', target=(30.0, 40.0))
        assert evaluate(rule, _sample(price)) is expected

    def test_inverted_range_is_false(self):
        assert compare('between', 35.0, [40.0, 30.0]) is False


class TestTechnical:
    """Tests for technical (indicator) rules."""

    def test_reads_named_indicator(self):
        rule = make_rule(kind='technical', condition_type='below', target=30.0,
                         metadata={'indicator': 'rsi'})
        assert evaluate(rule, _sample(10.0, indicators={'rsi': 25.0})) is True
        assert evaluate(rule, _sample(10.0, indicators={'rsi': 45.0})) is False

    def test_missing_indicator_is_false(self):
        rule = make_rule(kind='technical', condition_type='below', target=30.0,
                         metadata={'indicator': 'rsi'})
        assert evaluate(rule, _sample(10.0, indicators={'macd': 1.0})) is False

    def test_non_numeric_indicator_is_false(self):
        rule = make_rule(kind='technical', condition_type='below', target=30.0,
                         metadata={'indicator': 'rsi'})
        assert evaluate(rule, _sample(10.0, indicators={'rsi': 'n/a'})) is False
        assert evaluate(rule, _sample(10.0, indicators={'rsi': float('nan')})) is False


class TestComposite:
    """Tests for composite AND/OR rules."""

    def _rule(self, logic: str) -> AlertRule:
        return make_rule(
            kind='composite',
            condition_type=None,
            target=None,
            logic=logic,
            conditions=[
                SubCondition('price', 'above', 30.0),
                SubCondition('volume', 'above', 1_000_000),
                SubCondition('change_percent', 'between', (2.0, 5.0)),
            ],
        )

    def test_and_all_true(self):
        sample = _sample(31.0, volume=1_200_000, change_percent=3.0)
        assert evaluate(self._rule('AND'), sample) is True

    def test_and_one_false(self):
        sample = _sample(31.0, volume=900_000, change_percent=3.0)
        assert evaluate(self._rule('AND'), sample) is False

    def test_or_one_true(self):
        sample = _sample(29.0, volume=900_000, change_percent=4.0)
        assert evaluate(self._rule('OR'), sample) is True

    def test_or_none_true(self):
        sample = _sample(29.0, volume=900_000, change_percent=7.0)
        assert evaluate(self._rule('OR'), sample) is False

    def test_unknown_field_is_false(self):
        rule = make_rule(kind='composite', condition_type=None, target=None,
                         conditions=[SubCondition('open_interest', 'above', 1.0)])
        assert evaluate(rule, _sample(50.0)) is False

    def test_alias_and_indicator_fields(self):
        rule = make_rule(kind='composite', condition_type=None, target=None,
                         conditions=[
                             SubCondition('changePercent', 'below', -1.0),
                             SubCondition('indicator:rsi', 'below', 30.0),
                         ])
        sample = _sample(50.0, change_percent=-2.5, indicators={'rsi': 22.0})
        assert evaluate(rule, sample) is True

    def test_reference_scenario(self):
        """price>30, volume>1M, change in [2,5] against price 32, volume 1.5M, change 3.5."""
        matching = _sample(32.0, volume=1_500_000, change_percent=3.5)
        low_volume = _sample(32.0, volume=500_000, change_percent=3.5)

        assert evaluate(self._rule('AND'), matching) is True
        assert evaluate(self._rule('AND'), low_volume) is False
        assert evaluate(self._rule('OR'), low_volume) is True

    def test_observed_value_is_price(self):
        sample = _sample(31.0, volume=1_200_000, change_percent=3.0)
        assert observed_value(self._rule('AND'), sample) == 31.0


class TestBadInput:
    """Anything unrecognised evaluates to False."""

    def test_unknown_operator(self):
        assert compare('roughly', 10.0, 10.0) is False

    def test_unknown_kind(self):
        rule = make_rule(kind='sentiment')
        assert evaluate(rule, _sample(100.0)) is False

    def test_bool_value_rejected(self):
        assert compare('above', True, 0.5) is False


class TestConditionSummary:
    """Tests for human-readable summaries."""

    def test_price_above(self):
        assert condition_summary(make_rule(target=35.0)) == "price above 35"

    def test_between(self):
        rule = make_rule(condition_type='between', target=(30.0, 40.5))
        assert condition_summary(rule) == "price between 30 and 40.5"

    def test_technical_uses_indicator_name(self):
        rule = make_rule(kind='technical', condition_type='cross_above', target=70.0,
                         metadata={'indicator': 'rsi'})
        assert condition_summary(rule) == "rsi cross above 70"

    def test_composite(self):
        rule = make_rule(kind='composite', condition_type=None, target=None, logic='OR',
                         conditions=[SubCondition('price', 'above', 30.0),
                                     SubCondition('volume', 'below', 500.0)])
        assert condition_summary(rule) == "price above 30 OR volume below 500"


def _sample(price, **kwargs) -> MarketSample:
    return MarketSample(
        symbol='PETR4',
        price=price,
        volume=kwargs.get('volume', 0.0),
        change_percent=kwargs.get('change_percent', 0.0),
        indicators=kwargs.get('indicators', {}),
    )
