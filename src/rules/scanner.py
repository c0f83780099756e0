"""
Trigger Scanner - evaluates active rules against fresh quotes.
This is the core of the engine's alerting loop.

Full sweeps run on a timer; single-symbol sweeps run when a fresh quote
arrives. One quote fetch per symbol per sweep, symbols fanned out
concurrently, rules of one symbol evaluated in order after its fetch.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set

from loguru import logger

from src.errors import ProviderError, StoreError
from src.datafeeds.provider import MarketDataProvider
from src.rules.conditions import condition_summary, evaluate, observed_value
from src.rules.lifecycle import RuleLifecycleManager
from src.rules.rule_defs import AlertRule, MarketSample, RuleKind, TriggerEvent
from src.storage.db import utc_now


class EventHandler(Protocol):
    async def handle_event(self, event: TriggerEvent): ...


@dataclass
class ScannerContext:
    """
    Transient scanner state, rebuilt on process start.
    Losing it only means crossing rules fall back to above/below once.
    """
    prior_samples: Dict[str, MarketSample] = field(default_factory=dict)  # rule_id -> last sample
    symbol_locks: Dict[str, asyncio.Lock] = field(default_factory=dict)

    def lock_for(self, symbol: str) -> asyncio.Lock:
        lock = self.symbol_locks.get(symbol)
        if lock is None:
            lock = asyncio.Lock()
            self.symbol_locks[symbol] = lock
        return lock

    def forget_missing(self, live_rule_ids: Set[str]) -> None:
        """Drop prior samples of rules that are no longer active."""
        for rule_id in list(self.prior_samples):
            if rule_id not in live_rule_ids:
                del self.prior_samples[rule_id]


@dataclass
class SweepResult:
    symbols: int = 0
    evaluated: int = 0
    events: List[TriggerEvent] = field(default_factory=list)
    failed_symbols: List[str] = field(default_factory=list)


class TriggerScanner:
    """
    Groups active rules by symbol, fetches one sample per symbol and emits
    TriggerEvents for rules that won the Active -> Triggered transition.
    """

    def __init__(
        self,
        lifecycle: RuleLifecycleManager,
        provider: MarketDataProvider,
        handler: Optional[EventHandler] = None,
        context: Optional[ScannerContext] = None,
        interval: int = 120,
        symbol_timeout: float = 10,
        max_concurrent: int = 10,
        rearm_on_sweep: bool = True,
    ):
        """
        Args:
            lifecycle: Rule lifecycle manager (store access + mark_triggered)
            provider: Market data provider
            handler: Receives each TriggerEvent (normally the dispatcher)
            context: Prior-sample cache and per-symbol locks
            interval: Seconds between timer-driven sweeps
            symbol_timeout: Per-symbol quote fetch timeout (seconds)
            max_concurrent: Max symbols fetched at once
            rearm_on_sweep: Re-arm expired auto_rearm rules before each full sweep
        """
        self.lifecycle = lifecycle
        self.provider = provider
        self.handler = handler
        self.context = context or ScannerContext()
        self.interval = interval
        self.symbol_timeout = symbol_timeout
        self.max_concurrent = max(1, max_concurrent)
        self.rearm_on_sweep = rearm_on_sweep
        self.running = False

        # Counters for /status
        self.sweeps = 0
        self.triggers = 0
        self.provider_failures = 0
        self.last_sweep_at: Optional[datetime] = None
        self.last_trigger_at: Optional[datetime] = None

    async def sweep_all(self) -> SweepResult:
        """Timer-driven sweep over every active rule."""
        if self.rearm_on_sweep:
            try:
                self.lifecycle.rearm_expired()
            except StoreError as e:
                logger.error(f"Auto re-arm skipped: {e}")

        rules = self.lifecycle.list_active()
        by_symbol: Dict[str, List[AlertRule]] = defaultdict(list)
        for rule in rules:
            by_symbol[rule.symbol].append(rule)

        self.context.forget_missing({r.id for r in rules})

        result = SweepResult(symbols=len(by_symbol))
        if not by_symbol:
            logger.debug("Sweep: no active rules")
            self._finish_sweep()
            return result

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _bounded(symbol: str, group: List[AlertRule]) -> SweepResult:
            async with semaphore:
                return await self._sweep_group(symbol, group)

        partials = await asyncio.gather(*(_bounded(s, g) for s, g in by_symbol.items()))
        for partial in partials:
            result.evaluated += partial.evaluated
            result.events.extend(partial.events)
            result.failed_symbols.extend(partial.failed_symbols)

        self._finish_sweep()
        logger.info(
            f"Sweep complete: {result.symbols} symbol(s), {result.evaluated} rule(s), "
            f"{len(result.events)} trigger(s), {len(result.failed_symbols)} failed"
        )
        return result

    async def sweep_symbol(self, symbol: str, sample: Optional[MarketSample] = None) -> SweepResult:
        """
        On-demand sweep for one symbol.
        With `sample` (e.g. from the quote stream) no fetch is made.
        """
        symbol = symbol.upper()
        rules = self.lifecycle.list_active(symbol=symbol)
        result = await self._sweep_group(symbol, rules, sample=sample)
        result.symbols = 1
        return result

    async def _fetch(self, symbol: str) -> Optional[MarketSample]:
        try:
            return await asyncio.wait_for(self.provider.get_quote(symbol), timeout=self.symbol_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Quote fetch for {symbol} timed out after {self.symbol_timeout}s, skipping")
        except ProviderError as e:
            logger.warning(f"{e}, skipping")
        except Exception as e:
            logger.exception(f"Unexpected error fetching {symbol}, skipping: {e}")
        self.provider_failures += 1
        return None

    async def _sweep_group(
        self,
        symbol: str,
        rules: List[AlertRule],
        sample: Optional[MarketSample] = None,
    ) -> SweepResult:
        result = SweepResult()
        if not rules:
            return result

        async with self.context.lock_for(symbol):
            if sample is None:
                sample = await self._fetch(symbol)
                if sample is None:
                    result.failed_symbols.append(symbol)
                    return result

            emitted: Set[str] = set()
            for rule in rules:
                if rule.id in emitted:
                    continue
                result.evaluated += 1

                prior = self.context.prior_samples.get(rule.id)
                matched = evaluate(rule, sample, prior)
                self.context.prior_samples[rule.id] = sample
                logger.debug(f"Rule {rule.id} {symbol} {condition_summary(rule)} -> {matched}")

                if not matched:
                    continue

                event = self._trigger(rule, sample)
                if event is None:
                    continue

                emitted.add(rule.id)
                result.events.append(event)

        # Delivery runs after the symbol lock is released
        for event in result.events:
            await self._emit(event)

        return result

    def _trigger(self, rule: AlertRule, sample: MarketSample) -> Optional[TriggerEvent]:
        """mark_triggered then build the event; None if the race was lost or the write failed."""
        value = observed_value(rule, sample)
        now = utc_now()
        try:
            won = self.lifecycle.mark_triggered(rule.id, value, when=now)
        except StoreError as e:
            # Rule stays Active; the next sweep re-evaluates it
            logger.error(f"Could not mark rule {rule.id} triggered: {e}")
            return None
        if not won:
            return None

        self.triggers += 1
        self.last_trigger_at = now
        self.context.prior_samples.pop(rule.id, None)

        metadata = rule.metadata or {}
        return TriggerEvent(
            rule_id=rule.id,
            owner_id=rule.owner_id,
            symbol=rule.symbol,
            condition_summary=condition_summary(rule),
            observed_value=value,
            triggered_at=now,
            kind=rule.kind,
            condition_type=rule.condition_type,
            target_value=rule.target_value,
            category=metadata.get("category", "alert"),
            priority=metadata.get("priority"),
            indicator=metadata.get("indicator") if rule.kind == RuleKind.TECHNICAL else None,
        )

    async def _emit(self, event: TriggerEvent) -> None:
        if self.handler is None:
            logger.info(f"Trigger event (no handler): {event.rule_id} {event.symbol}")
            return
        try:
            await self.handler.handle_event(event)
        except StoreError as e:
            logger.error(f"Notification for rule {event.rule_id} not stored: {e}")
        except Exception as e:
            logger.exception(f"Notification for rule {event.rule_id} failed: {e}")

    def _finish_sweep(self) -> None:
        self.sweeps += 1
        self.last_sweep_at = utc_now()

    async def run(self):
        """Main loop: full sweep every `interval` seconds."""
        self.running = True
        logger.info(f"Trigger scanner started (interval={self.interval}s)")

        while self.running:
            try:
                await self.sweep_all()
            except Exception as e:
                logger.exception(f"Error in trigger scanner loop: {e}")
            await asyncio.sleep(self.interval)

    async def stop(self):
        """Stop the scanner gracefully."""
        logger.info("Stopping trigger scanner...")
        self.running = False

    def status(self) -> Dict[str, object]:
        return {
            "sweeps": self.sweeps,
            "triggers": self.triggers,
            "provider_failures": self.provider_failures,
            "tracked_rules": len(self.context.prior_samples),
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_trigger_at": self.last_trigger_at.isoformat() if self.last_trigger_at else None,
        }
