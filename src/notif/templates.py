# -*- coding: utf-8 -*-
"""
Message templates for trigger notifications.
Numbers use Brazilian formatting (see formatter.py).
"""
from typing import Any, Dict, Optional

from src.notif.formatter import (
    format_datetime_br,
    format_number_br,
    format_price_br,
    format_symbol_display,
    format_volume_br,
)
from src.notif.records import Priority
from src.rules.conditions import as_number, as_range
from src.rules.rule_defs import ConditionType, RuleKind, TriggerEvent

ALERT_DISCLAIMER = "Market condition alert only. Not investment advice."

_CONDITION_PHRASES = {
    ConditionType.ABOVE.value: "is above",
    ConditionType.BELOW.value: "is below",
    ConditionType.EQUALS.value: "is at",
    ConditionType.CROSS_ABOVE.value: "crossed above",
    ConditionType.CROSS_BELOW.value: "crossed below",
}

_PRIORITY_ICONS = {
    Priority.LOW.value: "🔵",
    Priority.MEDIUM.value: "🟡",
    Priority.HIGH.value: "🟠",
    Priority.CRITICAL.value: "🔴",
}


def format_value(kind: str, value: Any) -> str:
    """Format an observed or target value the way its rule kind reads."""
    number = as_number(value)
    if number is None:
        return str(value)
    if kind == RuleKind.VOLUME:
        return format_volume_br(number)
    if kind == RuleKind.TECHNICAL:
        return format_number_br(number, 2)
    return format_price_br(number)


def notification_title(symbol: str) -> str:
    return f"Alert Triggered: {symbol}"


def notification_message(event: TriggerEvent, indicator: Optional[str] = None) -> str:
    """
    Sentence describing what fired.

    Examples:
        "PETR4 price $36,00 is above target $35,00"
        "VALE3 volume 2.000.000 is between 1.000.000 and 3.000.000"
        "PETR4 matched price above 30 AND volume above 1000000 (price $32,00)"
    """
    if event.kind == RuleKind.COMPOSITE:
        return (
            f"{event.symbol} matched {event.condition_summary} "
            f"(price {format_price_br(event.observed_value)})"
        )

    subject = indicator if event.kind == RuleKind.TECHNICAL and indicator else str(event.kind)
    observed = format_value(event.kind, event.observed_value)

    if event.condition_type == ConditionType.BETWEEN:
        bounds = as_range(event.target_value)
        if bounds is not None:
            low = format_value(event.kind, bounds[0])
            high = format_value(event.kind, bounds[1])
            return f"{event.symbol} {subject} {observed} is between {low} and {high}"

    phrase = _CONDITION_PHRASES.get(str(event.condition_type), "matched")
    target = format_value(event.kind, event.target_value)
    return f"{event.symbol} {subject} {observed} {phrase} target {target}"


def notification_data(event: TriggerEvent) -> Dict[str, Any]:
    """Structured payload stored with the notification."""
    target = event.target_value
    if isinstance(target, tuple):
        target = list(target)
    return {
        "rule_id": event.rule_id,
        "symbol": event.symbol,
        "kind": event.kind,
        "condition_type": event.condition_type,
        "target_value": target,
        "observed_value": event.observed_value,
    }


def template_push(title: str, body: str, data: Dict[str, Any], tz_name: str = "UTC") -> str:
    """Telegram (HTML parse mode) text for a delivery payload."""
    icon = _PRIORITY_ICONS.get(data.get("priority", ""), "🔔")
    symbol = data.get("symbol")
    timestamp = format_datetime_br(data.get("created_at"), tz_name)
    header = f"{icon} <b>{title}</b>"
    if symbol:
        header += f" ({format_symbol_display(symbol)})"

    return f"""{header}

{body}

⏰ {timestamp}
<i>{ALERT_DISCLAIMER}</i>"""


def template_email_subject(title: str, data: Dict[str, Any]) -> str:
    priority = data.get("priority", Priority.MEDIUM.value)
    prefix = "[Alert]" if priority == Priority.MEDIUM else f"[{str(priority).upper()}]"
    return f"{prefix} {title}"


def template_email_body(title: str, body: str, data: Dict[str, Any], tz_name: str = "UTC") -> str:
    """Plain-text email body."""
    return f"""{title}

{body}

Category: {data.get("category", "alert")}
Priority: {data.get("priority", Priority.MEDIUM.value)}
Time: {format_datetime_br(data.get("created_at"), tz_name)}

{ALERT_DISCLAIMER}
"""
