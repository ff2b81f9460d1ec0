"""
metrics.py
Investment recovery metrics: XIRR, recovery percentage, status colour
"""

from datetime import date
from typing import List, Tuple, Optional
from scipy.optimize import brentq

from config import ROI_GREEN_THRESHOLD, ROI_YELLOW_THRESHOLD


def xnpv(rate: float, cfs: List[Tuple[date, float]]) -> float:
    """
    Net present value with irregular cashflow dates

    Args:
        rate: Annual discount rate (as decimal, e.g., 0.15 for 15%)
        cfs: List of (date, amount) tuples

    Returns:
        Net present value
    """
    if not cfs or rate <= -1.0:
        return float('inf')

    cfs = sorted(cfs, key=lambda t: t[0])
    t0 = cfs[0][0]

    npv = 0.0
    for d, amount in cfs:
        years = (d - t0).days / 365.0
        npv += amount / ((1 + rate) ** years)

    return npv


def xirr(cfs: List[Tuple[date, float]]) -> Optional[float]:
    """
    Internal Rate of Return with irregular cashflow dates

    Args:
        cfs: List of (date, amount) tuples
             Negative amounts = investment
             Positive amounts = recoveries

    Returns:
        Annual IRR as decimal (e.g., 0.15 for 15%)
        None if unable to calculate
    """
    if not cfs or len(cfs) < 2:
        return None

    amounts = [a for _, a in cfs]

    if min(amounts) >= 0 or max(amounts) <= 0:
        return None

    try:
        irr = brentq(lambda r: xnpv(r, cfs), -0.99, 10.0, maxiter=100)
        return float(irr)
    except (ValueError, RuntimeError):
        return None


def recovery_percentage(recovered: float, target: float) -> float:
    """Share of the investment target recovered, capped at 100"""
    if target <= 0:
        return 0.0
    return min(100.0, recovered / target * 100.0)


def roi_status_color(pct: float) -> str:
    if pct >= ROI_GREEN_THRESHOLD:
        return "green"
    if pct >= ROI_YELLOW_THRESHOLD:
        return "yellow"
    return "red"


def recovery_multiple(recovered: float, target: float) -> float:
    """Recovered / invested (1.0 = break-even)"""
    if target <= 0:
        return 0.0
    return recovered / target


def recovery_irr(
    start_date: date,
    target: float,
    recoveries: List[Tuple[date, float]],
    as_of: Optional[date] = None,
) -> Optional[float]:
    """
    Annualised IRR of an apartment investment

    The target is treated as a single outflow on start_date; each booking's
    broker profit is an inflow on its recovery date. When recovery is not
    complete, nothing is assumed about the unrecovered remainder.

    Args:
        start_date: Investment start
        target: Amount invested (USD)
        recoveries: (date, amount) inflows
        as_of: Ignore inflows dated after this

    Returns:
        Annual IRR as decimal, or None
    """
    if target <= 0 or start_date is None:
        return None
    inflows = [(d, float(a)) for d, a in recoveries
               if d is not None and a > 0 and (as_of is None or d <= as_of)]
    if not inflows:
        return None
    return xirr([(start_date, -abs(float(target)))] + inflows)
