# -*- coding: utf-8 -*-
"""
Error taxonomy for the alert engine.
Every error is scoped to one rule, symbol or notification; none is fatal.
"""
from typing import List, Optional


class EngineError(Exception):
    """Base class for all alert engine errors."""


class ValidationError(EngineError):
    """Bad rule spec or preference update. Surfaced to caller, never retried."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NotFoundError(EngineError):
    """Unknown rule or notification id."""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} not found: {item_id}")


class ProviderError(EngineError):
    """Market data provider failure for one symbol."""

    def __init__(self, symbol: str, reason: str):
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"Quote fetch failed for {symbol}: {reason}")


class StoreError(EngineError):
    """Persistent store write/read failure."""


class DeliveryError(EngineError):
    """Delivery channel failure. Logged only."""

    def __init__(self, channel: str, reason: str, owner_id: Optional[str] = None):
        self.channel = channel
        self.reason = reason
        self.owner_id = owner_id
        super().__init__(f"Delivery via {channel} failed: {reason}")
