from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation

import pandas as pd

from .config import DEFAULTS

# ===============================
# UTIL — MONEY / PERCENT
# ===============================
MINUS = "-"


def baht(x, symbol: str = DEFAULTS.CURRENCY_SYMBOL) -> str:
    try:
        value = Decimal(str(x))
        sign = MINUS if value < 0 else ""
        return f"{sign}{symbol}{abs(value):,.0f}"
    except (InvalidOperation, TypeError, ValueError):
        return f"{symbol}0"


def signed_baht(x, symbol: str = DEFAULTS.CURRENCY_SYMBOL) -> str:
    """History deltas: always show the direction."""
    text = baht(x, symbol)
    return text if text.startswith(MINUS) else "+" + text


def percent(x, digits: int = 2) -> str:
    """``x`` is already a percentage (0..100)."""
    try:
        return f"{Decimal(str(x)):.{digits}f}%"
    except (InvalidOperation, TypeError, ValueError):
        return f"{0:.{digits}f}%"


def local_time(at: datetime, tz: str = DEFAULTS.DISPLAY_TZ) -> str:
    ts = pd.Timestamp(at)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.tz_convert(tz).strftime("%d/%m/%Y %H:%M:%S")
