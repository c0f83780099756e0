"""
Rule definitions for the alert engine.

Domain types shared by the evaluator, lifecycle manager and scanner.
Persistence rows live in src.storage.models; these are plain dataclasses.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class RuleKind(str, Enum):
    PRICE = "price"
    VOLUME = "volume"
    TECHNICAL = "technical"
    COMPOSITE = "composite"


class ConditionType(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    EQUALS = "equals"
    CROSS_ABOVE = "cross_above"
    CROSS_BELOW = "cross_below"
    BETWEEN = "between"


class RuleState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRIGGERED = "triggered"


class Logic(str, Enum):
    AND = "AND"
    OR = "OR"


# Absolute tolerance for `equals` comparisons
EQUALS_TOLERANCE = 0.01

DEFAULT_COOLDOWN_MINUTES = 60

# Which condition types each single-value kind accepts
KIND_CONDITIONS: Dict[RuleKind, Tuple[ConditionType, ...]] = {
    RuleKind.PRICE: tuple(ConditionType),
    RuleKind.VOLUME: (
        ConditionType.ABOVE,
        ConditionType.BELOW,
        ConditionType.EQUALS,
        ConditionType.BETWEEN,
    ),
    RuleKind.TECHNICAL: tuple(ConditionType),
}

# Sample fields a composite sub-condition may name ("indicator:<name>" also accepted)
SAMPLE_FIELDS = ("price", "volume", "change_percent")
FIELD_ALIASES = {
    "change": "change_percent",
    "changePercent": "change_percent",
}
INDICATOR_PREFIX = "indicator:"

TargetValue = Union[float, Tuple[float, float]]


@dataclass
class SubCondition:
    """One leg of a composite rule: {field, operator, value|[min,max]}."""
    field: str
    operator: str
    value: Any

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubCondition":
        return cls(
            field=data.get("field", ""),
            operator=data.get("operator", ""),
            value=data.get("value"),
        )

    def to_dict(self) -> Dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"field": self.field, "operator": self.operator, "value": value}


@dataclass
class RuleSpec:
    """Caller input for RuleLifecycleManager.create (unvalidated)."""
    owner_id: str
    symbol: str
    kind: str
    condition_type: Optional[str] = None
    target_value: Any = None
    cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES
    metadata: Dict[str, Any] = field(default_factory=dict)
    conditions: List[Any] = field(default_factory=list)
    logic: str = Logic.AND.value


@dataclass
class AlertRule:
    """A user-defined condition over one symbol's market data."""
    id: str
    owner_id: str
    symbol: str
    kind: str
    condition_type: Optional[str]
    target_value: Optional[TargetValue]
    cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES
    state: str = RuleState.ACTIVE.value
    trigger_count: int = 0
    last_triggered_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    conditions: List[SubCondition] = field(default_factory=list)
    logic: str = Logic.AND.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.state == RuleState.ACTIVE

    def cooldown_ends_at(self) -> Optional[datetime]:
        if self.last_triggered_at is None:
            return None
        return self.last_triggered_at + timedelta(minutes=self.cooldown_minutes)


@dataclass(frozen=True)
class MarketSample:
    """One quote for a symbol. Ephemeral, never persisted by the engine."""
    symbol: str
    price: float
    volume: float = 0.0
    change_percent: float = 0.0
    indicators: Dict[str, float] = field(default_factory=dict)
    observed_at: Optional[datetime] = None

    def value_of(self, field_name: str) -> Optional[Any]:
        """
        Resolve a field name to the raw sample value.
        Returns None for unknown fields (evaluates to false upstream).
        """
        if field_name.startswith(INDICATOR_PREFIX):
            return self.indicators.get(field_name[len(INDICATOR_PREFIX):])

        name = FIELD_ALIASES.get(field_name, field_name)
        if name in SAMPLE_FIELDS:
            return getattr(self, name)
        return None


@dataclass(frozen=True)
class TriggerEvent:
    """Raised exactly once per rule transition into Triggered."""
    rule_id: str
    owner_id: str
    symbol: str
    condition_summary: str
    observed_value: float
    triggered_at: datetime
    kind: str = RuleKind.PRICE.value
    condition_type: Optional[str] = None
    target_value: Optional[TargetValue] = None
    category: str = "alert"
    priority: Optional[str] = None
    indicator: Optional[str] = None  # technical rules only
