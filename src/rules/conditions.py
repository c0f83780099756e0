# -*- coding: utf-8 -*-
"""
Condition evaluator.

Pure functions: (rule, sample, prior sample) -> bool. No I/O, no logging.
Anything the evaluator does not recognise (kind, operator, field, target
shape) evaluates to False instead of raising.
"""
import math
from typing import Any, Callable, Dict, Optional, Tuple

from src.rules.rule_defs import (
    AlertRule,
    ConditionType,
    EQUALS_TOLERANCE,
    Logic,
    MarketSample,
    RuleKind,
    SubCondition,
)


def as_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None (bools and NaN rejected)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def as_range(value: Any) -> Optional[Tuple[float, float]]:
    """Return a (min, max) pair from a 2-item list/tuple, or None."""
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    low, high = as_number(value[0]), as_number(value[1])
    if low is None or high is None or low > high:
        return None
    return low, high


def _equals(value: float, target: float) -> bool:
    # round() keeps 10.01 - 10.0 from landing a hair under the tolerance
    return abs(round(value - target, 9)) < EQUALS_TOLERANCE


_COMPARATORS: Dict[ConditionType, Callable[[float, float], bool]] = {
    ConditionType.ABOVE: lambda value, target: value > target,
    ConditionType.BELOW: lambda value, target: value < target,
    ConditionType.EQUALS: _equals,
}


def compare(
    operator: Any,
    value: Any,
    target: Any,
    prior_value: Any = None,
) -> bool:
    """
    Compare an observed value against a target with one condition type.

    Args:
        operator: ConditionType value (e.g. "above", "between")
        value: Observed value
        target: Threshold, or [min, max] for "between"
        prior_value: Previous observed value, used by crossing operators

    Returns:
        True if the condition holds, False otherwise (including bad input)
    """
    try:
        op = ConditionType(operator)
    except ValueError:
        return False

    current = as_number(value)
    if current is None:
        return False

    if op is ConditionType.BETWEEN:
        bounds = as_range(target)
        if bounds is None:
            return False
        return bounds[0] <= current <= bounds[1]

    threshold = as_number(target)
    if threshold is None:
        return False

    if op in _COMPARATORS:
        return _COMPARATORS[op](current, threshold)

    previous = as_number(prior_value)
    if op is ConditionType.CROSS_ABOVE:
        if previous is None:
            return current > threshold
        return previous <= threshold < current
    if op is ConditionType.CROSS_BELOW:
        if previous is None:
            return current < threshold
        return previous >= threshold > current

    return False


def rule_value(rule: AlertRule, sample: Optional[MarketSample]) -> Optional[float]:
    """Pick the sample value a single-value rule watches."""
    if sample is None:
        return None

    if rule.kind == RuleKind.PRICE:
        return as_number(sample.price)
    if rule.kind == RuleKind.VOLUME:
        return as_number(sample.volume)
    if rule.kind == RuleKind.TECHNICAL:
        indicator = (rule.metadata or {}).get("indicator")
        if not isinstance(indicator, str):
            return None
        return as_number(sample.indicators.get(indicator))
    return None


def evaluate_sub_condition(condition: SubCondition, sample: MarketSample) -> bool:
    """Evaluate one composite leg. Unknown field or operator -> False."""
    if not isinstance(condition.field, str):
        return False
    value = sample.value_of(condition.field)
    if value is None:
        return False
    return compare(condition.operator, value, condition.value)


def _evaluate_composite(rule: AlertRule, sample: MarketSample) -> bool:
    if not rule.conditions:
        return False

    results = [evaluate_sub_condition(c, sample) for c in rule.conditions]

    if rule.logic == Logic.AND:
        return all(results)
    if rule.logic == Logic.OR:
        return any(results)
    return False


def evaluate(
    rule: AlertRule,
    sample: MarketSample,
    prior: Optional[MarketSample] = None,
) -> bool:
    """
    Evaluate a rule against a market sample.

    Crossing conditions need `prior`; without it they behave like
    above/below. Composite rules ignore `prior`.
    """
    try:
        kind = RuleKind(rule.kind)
    except ValueError:
        return False

    if kind is RuleKind.COMPOSITE:
        return _evaluate_composite(rule, sample)

    value = rule_value(rule, sample)
    if value is None:
        return False

    return compare(rule.condition_type, value, rule.target_value, rule_value(rule, prior))


def observed_value(rule: AlertRule, sample: MarketSample) -> float:
    """Value reported in trigger events (price for composite rules)."""
    value = rule_value(rule, sample)
    if value is None:
        return float(sample.price)
    return value


def _text(value: Any) -> str:
    return str(getattr(value, "value", value))


def _plain(number: float) -> str:
    if number.is_integer():
        return str(int(number))
    return f"{number:.10g}"


def describe_condition(condition_type: Any, target: Any) -> str:
    """Short text like 'above 35' or 'between 2 and 5'."""
    bounds = as_range(target) if condition_type == ConditionType.BETWEEN else None
    if bounds is not None:
        return f"between {_plain(bounds[0])} and {_plain(bounds[1])}"

    label = _text(condition_type).replace("_", " ")
    number = as_number(target)
    if number is None:
        return label
    return f"{label} {_plain(number)}"


def condition_summary(rule: AlertRule) -> str:
    """Human-readable summary of what the rule watches."""
    if rule.kind == RuleKind.COMPOSITE:
        joiner = f" {_text(rule.logic)} "
        return joiner.join(
            f"{c.field} {describe_condition(c.operator, c.value)}" for c in rule.conditions
        )

    subject = _text(rule.kind)
    if rule.kind == RuleKind.TECHNICAL:
        subject = str((rule.metadata or {}).get("indicator", "indicator"))
    return f"{subject} {describe_condition(rule.condition_type, rule.target_value)}"
