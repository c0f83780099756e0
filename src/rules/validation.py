# -*- coding: utf-8 -*-
"""
Rule spec validation.
Collects every violated constraint before raising, so callers can show
all problems at once.
"""
from typing import Any, List, Optional

from src.errors import ValidationError
from src.rules.conditions import as_number, as_range
from src.rules.rule_defs import (
    ConditionType,
    INDICATOR_PREFIX,
    KIND_CONDITIONS,
    FIELD_ALIASES,
    Logic,
    RuleKind,
    RuleSpec,
    SAMPLE_FIELDS,
    SubCondition,
)


def _parse_enum(enum_cls, value: Any):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _validate_target(
    condition: ConditionType,
    target: Any,
    errors: List[str],
    label: str = "target_value",
    positive: bool = True,
):
    """Normalise a target for `condition`; appends to errors and returns None when bad."""
    if condition is ConditionType.BETWEEN:
        if not isinstance(target, (list, tuple)) or len(target) != 2:
            errors.append(f"{label} for 'between' must be a [min, max] pair")
            return None
        bounds = as_range(target)
        if bounds is None:
            errors.append(f"{label} for 'between' must be two numbers with min <= max")
            return None
        if positive and bounds[0] <= 0:
            errors.append(f"{label} for 'between' must be greater than 0")
            return None
        return bounds

    number = as_number(target)
    if number is None:
        errors.append(f"{label} must be a number")
        return None
    if positive and number <= 0:
        errors.append(f"{label} must be greater than 0")
        return None
    return number


def _field_known(field_name: Any) -> bool:
    if not isinstance(field_name, str) or not field_name:
        return False
    if field_name.startswith(INDICATOR_PREFIX):
        return len(field_name) > len(INDICATOR_PREFIX)
    return FIELD_ALIASES.get(field_name, field_name) in SAMPLE_FIELDS


def _validate_conditions(raw_conditions: Any, errors: List[str]) -> List[SubCondition]:
    if not isinstance(raw_conditions, (list, tuple)) or not raw_conditions:
        errors.append("composite rule needs at least one sub-condition")
        return []

    conditions: List[SubCondition] = []
    for index, raw in enumerate(raw_conditions):
        label = f"conditions[{index}]"
        if isinstance(raw, dict):
            raw = SubCondition.from_dict(raw)
        if not isinstance(raw, SubCondition):
            errors.append(f"{label} must be an object with field, operator and value")
            continue

        if not _field_known(raw.field):
            errors.append(f"{label}.field '{raw.field}' is not a known sample field")

        operator = _parse_enum(ConditionType, raw.operator)
        if operator is None:
            errors.append(f"{label}.operator '{raw.operator}' is not supported")
            continue
        if operator in (ConditionType.CROSS_ABOVE, ConditionType.CROSS_BELOW):
            errors.append(f"{label}.operator '{operator.value}' is not supported in composite rules")
            continue

        value = _validate_target(operator, raw.value, errors, label=f"{label}.value", positive=False)
        if value is not None:
            conditions.append(SubCondition(field=raw.field, operator=operator.value, value=value))
    return conditions


def validate_rule_spec(spec: RuleSpec) -> RuleSpec:
    """
    Validate a rule spec and return a normalised copy.

    Normalisation: symbol uppercased and stripped, enums as plain strings,
    `between` targets as (min, max) tuples, composite legs as SubCondition.

    Raises:
        ValidationError: listing every violated constraint
    """
    errors: List[str] = []

    symbol = spec.symbol.strip().upper() if isinstance(spec.symbol, str) else ""
    if not symbol:
        errors.append("symbol must not be empty")

    if not isinstance(spec.owner_id, str) or not spec.owner_id.strip():
        errors.append("owner_id must not be empty")

    cooldown = spec.cooldown_minutes
    if isinstance(cooldown, bool) or not isinstance(cooldown, int) or cooldown < 0:
        errors.append("cooldown_minutes must be an integer >= 0")

    metadata = spec.metadata if spec.metadata is not None else {}
    if not isinstance(metadata, dict):
        errors.append("metadata must be a key/value map")
        metadata = {}

    kind = _parse_enum(RuleKind, spec.kind)
    condition: Optional[ConditionType] = None
    target: Any = None
    conditions: List[SubCondition] = []
    logic = Logic.AND

    if kind is None:
        errors.append(f"kind '{spec.kind}' is not one of: {', '.join(k.value for k in RuleKind)}")
    elif kind is RuleKind.COMPOSITE:
        parsed_logic = _parse_enum(Logic, spec.logic)
        if parsed_logic is None:
            errors.append(f"logic '{spec.logic}' must be AND or OR")
        else:
            logic = parsed_logic
        conditions = _validate_conditions(spec.conditions, errors)
    else:
        condition = _parse_enum(ConditionType, spec.condition_type)
        if condition is None:
            errors.append(f"condition_type '{spec.condition_type}' is not supported")
        else:
            if condition not in KIND_CONDITIONS[kind]:
                errors.append(f"condition_type '{condition.value}' is not compatible with kind '{kind.value}'")
            target = _validate_target(condition, spec.target_value, errors)

        if kind is RuleKind.TECHNICAL:
            indicator = metadata.get("indicator")
            if not isinstance(indicator, str) or not indicator.strip():
                errors.append("technical rule needs metadata.indicator")

    if errors:
        raise ValidationError(errors)

    return RuleSpec(
        owner_id=spec.owner_id.strip(),
        symbol=symbol,
        kind=kind.value,
        condition_type=condition.value if condition is not None else None,
        target_value=target,
        cooldown_minutes=cooldown,
        metadata=dict(metadata),
        conditions=conditions,
        logic=logic.value,
    )
