"""
utils.py
Utility functions for date handling, name keys and display formatting
"""

from datetime import date, datetime, timedelta
from typing import Optional
import uuid

import pandas as pd


def as_date(x) -> Optional[date]:
    """Convert various formats to date object (None for blanks)"""
    if x is None:
        return None
    if isinstance(x, datetime):
        return x.date()
    if isinstance(x, date):
        return x
    if isinstance(x, float) and pd.isna(x):
        return None
    s = str(x).strip()
    if s == "":
        return None
    ts = pd.to_datetime(s, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()


def today() -> date:
    return date.today()


def month_start(year: int, month: int) -> date:
    return date(int(year), int(month), 1)


def month_end(d: date) -> date:
    """Get month-end date for given date"""
    return (pd.Timestamp(d) + pd.offsets.MonthEnd(0)).date()


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=int(days))


def days_between(start: date, end: date) -> int:
    """Whole days from start to end, floored at zero"""
    return max(0, (end - start).days)


def normalize_key(name: str, fallback: str = "") -> str:
    """Trimmed, case-folded key used to merge partner entries across apartments."""
    key = (name or "").strip() or (fallback or "").strip() or "unknown"
    return key.casefold()


def new_id() -> str:
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def fmt_date(x) -> str:
    """Format date for display"""
    d = as_date(x)
    return d.isoformat() if d else "—"


def fmt_money(x, currency: str = "USD") -> str:
    """Format a money amount with two decimals and its currency code"""
    try:
        if x is None or (isinstance(x, float) and pd.isna(x)):
            return "—"
        return f"{float(x):,.2f} {currency}"
    except (TypeError, ValueError):
        return "—"


def fmt_pct(x) -> str:
    try:
        return f"{float(x):.1f}%"
    except (TypeError, ValueError):
        return "—"


def to_float(x, default: float = 0.0) -> float:
    """Coerce a stored value to float; blanks, NaN and garbage give default."""
    if x is None:
        return default
    if isinstance(x, str) and x.strip() == "":
        return default
    try:
        v = float(x)
    except (TypeError, ValueError):
        return default
    if pd.isna(v):
        return default
    return v
