# -*- coding: utf-8 -*-
"""
Brazilian formatting utilities for notifications.
Handles timezone conversion, number formatting, and date formatting.
"""
from datetime import datetime, timezone
from typing import Optional
import pytz


def format_number_br(value: float, decimals: int = 2) -> str:
    """
    Format a number in Brazilian format: 1.234.567,89
    (dot for thousands, comma for decimals)

    Args:
        value: Number to format
        decimals: Decimal places

    Returns:
        Formatted string (e.g., "67.420,50")
    """
    formatted = f"{value:,.{decimals}f}"

    # Swap separators: "," -> ".", "." -> ","
    formatted = formatted.replace(",", "TEMP")
    formatted = formatted.replace(".", ",")
    formatted = formatted.replace("TEMP", ".")

    return formatted


def format_price_br(price: float) -> str:
    """
    Format price in Brazilian format: $67.420,50

    Args:
        price: Price value (e.g., 67420.50)

    Returns:
        Formatted string (e.g., "$67.420,50")
    """
    return f"${format_number_br(price, 2)}"


def format_volume_br(volume: float) -> str:
    """Format traded volume without decimals: 1.500.000"""
    return format_number_br(volume, 0)


def to_local_time(dt: Optional[datetime], tz_name: str = "UTC") -> datetime:
    """
    Convert a datetime to the given timezone.
    Naive datetimes are taken as UTC (that is how the store keeps them).
    Unknown timezone names display in UTC.
    """
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        tz = pytz.utc
    if dt is None:
        return datetime.now(tz)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz)


def format_datetime_br(dt: Optional[datetime] = None, tz_name: str = "UTC") -> str:
    """
    Format datetime in Brazilian format: 11/11/2025 11:30 UTC

    Args:
        dt: datetime object (if None, uses current time)
        tz_name: pytz timezone name used for display

    Returns:
        Formatted string (e.g., "11/11/2025 08:30 -03")
    """
    local = to_local_time(dt, tz_name)
    return local.strftime("%d/%m/%Y %H:%M %Z")


def format_symbol_display(symbol: str) -> str:
    """
    Format symbol for display (e.g., BTCUSDT -> BTC/USDT).
    B3 tickers such as PETR4 are returned unchanged.
    """
    if symbol.endswith("USDT") and len(symbol) > 4:
        return f"{symbol[:-4]}/USDT"
    if symbol.endswith("BRL") and len(symbol) > 3:
        return f"{symbol[:-3]}/BRL"
    return symbol
