# src/datafeeds/quote_stream.py
"""
Binance combined miniTicker stream.
Each fresh quote triggers an on-demand sweep for that symbol.
"""
import asyncio
import json
import random
import urllib.parse
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

import websockets
from loguru import logger
from websockets.exceptions import (
    ConnectionClosed, ConnectionClosedError, ConnectionClosedOK,
    InvalidStatus, WebSocketException
)

from src.datafeeds.provider import normalize_ticker
from src.rules.rule_defs import MarketSample

BINANCE_WS_COMBINED = "wss://stream.binance.com:9443/stream"

QuoteCallback = Callable[[str, MarketSample], Awaitable[object]]


def multi_ticker_url(symbols: List[str], base_url: str = BINANCE_WS_COMBINED) -> str:
    streams = [f"{s.lower()}@miniTicker" for s in symbols]
    q = urllib.parse.urlencode({"streams": "/".join(streams)}, safe="@/")
    return f"{base_url}?{q}"


def parse_message(raw: str) -> Optional[MarketSample]:
    """Combined-stream message -> MarketSample, or None for anything else."""
    try:
        data = json.loads(raw).get("data") or {}
    except (json.JSONDecodeError, AttributeError):
        return None
    if data.get("e") != "24hrMiniTicker" or "s" not in data:
        return None
    try:
        return normalize_ticker(data)
    except (KeyError, TypeError, ValueError):
        return None


class QuoteStream:
    """
    Combined stream with robust reconnection:
    - exponential backoff with jitter (1s -> 2 -> 4 ... up to 30s, +/-20%)
    - inactivity watchdog: no message in 90s forces a reconnect
    - recv with 30s timeout (never hangs forever)
    """

    def __init__(
        self,
        symbols: List[str],
        on_quote: QuoteCallback,
        base_url: str = BINANCE_WS_COMBINED,
        watchdog_seconds: int = 90,
    ):
        self.symbols = [s.upper() for s in symbols]
        self.on_quote = on_quote
        self.url = multi_ticker_url(self.symbols, base_url)
        self.watchdog_seconds = watchdog_seconds
        self.running = False
        self.connected = False
        self.messages = 0

    async def handle_raw(self, raw: str) -> bool:
        """Parse one message and hand the sample to the callback."""
        sample = parse_message(raw)
        if sample is None or sample.symbol not in self.symbols:
            return False
        self.messages += 1
        try:
            await self.on_quote(sample.symbol, sample)
        except Exception as e:
            logger.exception(f"Quote handler failed for {sample.symbol}: {e}")
        return True

    async def run(self) -> None:
        if not self.symbols:
            logger.info("Quote stream has no symbols, not starting")
            return

        self.running = True
        base_backoff = 1
        max_backoff = 30

        while self.running:
            try:
                logger.info(f"Connecting to {self.url} ...")
                async with websockets.connect(
                    self.url,
                    ping_interval=20,
                    ping_timeout=20,
                    close_timeout=5,
                    max_size=2**20,
                ) as ws:
                    logger.info(f"Quote stream connected ({len(self.symbols)} symbols)")
                    self.connected = True
                    base_backoff = 1
                    last_msg_ts = datetime.now(timezone.utc)

                    while self.running:
                        now = datetime.now(timezone.utc)
                        if (now - last_msg_ts).total_seconds() > self.watchdog_seconds:
                            logger.warning(f"Watchdog: {self.watchdog_seconds}s without messages, reconnecting")
                            await ws.close(code=1000)
                            break

                        try:
                            raw = await asyncio.wait_for(ws.recv(), timeout=30)
                        except asyncio.TimeoutError:
                            continue

                        if await self.handle_raw(raw):
                            last_msg_ts = datetime.now(timezone.utc)

            except asyncio.CancelledError:
                raise
            except (ConnectionClosed, ConnectionClosedError, ConnectionClosedOK, InvalidStatus, WebSocketException) as e:
                jitter = random.uniform(0.8, 1.2)
                base_backoff = min(max_backoff, max(1, int((base_backoff * 2) * jitter)))
                logger.warning(f"Quote stream disconnected: {type(e).__name__}: {e}, reconnecting in {base_backoff}s")
                await asyncio.sleep(base_backoff)
            except Exception as e:
                jitter = random.uniform(0.8, 1.2)
                base_backoff = min(max_backoff, max(1, int((base_backoff * 2) * jitter)))
                logger.exception(f"Quote stream error: {e}, reconnecting in {base_backoff}s")
                await asyncio.sleep(base_backoff)
            finally:
                self.connected = False

    async def stop(self) -> None:
        logger.info("Stopping quote stream...")
        self.running = False
