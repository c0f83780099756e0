"""
Market data providers.
One quote per symbol per call; failures surface as ProviderError.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from src.errors import ProviderError
from src.rules.rule_defs import MarketSample
from src.storage.db import utc_now

BINANCE_API_BASE = "https://api.binance.com"


class MarketDataProvider(ABC):
    """get_quote(symbol) -> MarketSample, or ProviderError."""

    @abstractmethod
    async def get_quote(self, symbol: str) -> MarketSample:
        ...

    async def close(self) -> None:
        return None


def normalize_ticker(payload: Dict[str, Any]) -> MarketSample:
    """
    Convert a Binance 24hr ticker (REST) or miniTicker (WS) payload into a MarketSample.

    REST keys: symbol, lastPrice, volume, priceChangePercent
    WS keys:   s, c (close), v (volume), o (open)
    """
    if "lastPrice" in payload:
        return MarketSample(
            symbol=str(payload["symbol"]).upper(),
            price=float(payload["lastPrice"]),
            volume=float(payload.get("volume", 0.0)),
            change_percent=float(payload.get("priceChangePercent", 0.0)),
            observed_at=utc_now(),
        )

    close = float(payload["c"])
    open_price = float(payload.get("o", 0.0))
    change = ((close - open_price) / open_price * 100) if open_price else 0.0
    return MarketSample(
        symbol=str(payload["s"]).upper(),
        price=close,
        volume=float(payload.get("v", 0.0)),
        change_percent=round(change, 4),
        observed_at=utc_now(),
    )


class BinanceQuoteProvider(MarketDataProvider):
    """Quotes from Binance's public 24hr ticker endpoint."""

    def __init__(self, base_url: str = BINANCE_API_BASE, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def get_quote(self, symbol: str) -> MarketSample:
        url = f"{self.base_url}/api/v3/ticker/24hr"
        session = await self._get_session()

        try:
            async with session.get(url, params={"symbol": symbol.upper()}) as response:
                if response.status != 200:
                    body = await response.text()
                    raise ProviderError(symbol, f"status {response.status}: {body[:200]}")
                data = await response.json()
        except asyncio.TimeoutError as e:
            raise ProviderError(symbol, "timeout") from e
        except aiohttp.ClientError as e:
            raise ProviderError(symbol, f"connection error: {e}") from e
        except json.JSONDecodeError as e:
            raise ProviderError(symbol, f"invalid JSON: {e}") from e

        try:
            sample = normalize_ticker(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(symbol, f"unexpected payload: {e}") from e

        logger.debug(f"Quote {sample.symbol}: price={sample.price} volume={sample.volume}")
        return sample

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


class StaticQuoteProvider(MarketDataProvider):
    """
    Fixed quotes from config (dry runs and tests).

    quotes: {"PETR4": {"price": 36.0, "volume": 1500000, "change_percent": 1.2,
                       "indicators": {"rsi": 72.5}}}
    """

    def __init__(self, quotes: Optional[Dict[str, Dict[str, Any]]] = None):
        self.quotes = {str(k).upper(): v for k, v in (quotes or {}).items()}

    def set_quote(self, symbol: str, **values: Any) -> None:
        self.quotes[symbol.upper()] = values

    async def get_quote(self, symbol: str) -> MarketSample:
        quote = self.quotes.get(symbol.upper())
        if quote is None:
            raise ProviderError(symbol, "no quote configured")
        try:
            return MarketSample(
                symbol=symbol.upper(),
                price=float(quote["price"]),
                volume=float(quote.get("volume", 0.0)),
                change_percent=float(quote.get("change_percent", 0.0)),
                indicators={k: v for k, v in (quote.get("indicators") or {}).items()},
                observed_at=utc_now(),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(symbol, f"bad static quote: {e}") from e


def build_provider(config: Dict[str, Any]) -> MarketDataProvider:
    """Provider from get_provider_config() output."""
    if config.get("type") == "static":
        logger.info(f"Using static quote provider ({len(config.get('quotes', {}))} symbols)")
        return StaticQuoteProvider(config.get("quotes", {}))

    logger.info(f"Using Binance quote provider ({config.get('base_url', BINANCE_API_BASE)})")
    return BinanceQuoteProvider(
        base_url=config.get("base_url", BINANCE_API_BASE),
        timeout=int(config.get("timeout_seconds", 10)),
    )
