"""
commission.py
Platform and transfer commission recognition

KEY PRINCIPLES:
- Commission is earned once the stay has checked out (checkout <= as_of)
- It is recognised in exactly one period: the one containing the checkout
- The stored commission_status is a write-time cache; reports recompute it
- Transfer commission follows the same rule, keyed to the destination
  booking's checkout
"""

from datetime import date
from typing import Dict, Optional, Tuple

from models import Booking
from periods import ReportPeriod
from currency import to_usd
from utils import today

APPLIED = "applied"
PENDING = "pending"

# Recognition rules used by the two report families
CHECKOUT_PERIOD = "checkout_period"   # dashboard
STATEMENT = "statement"               # monthly statement


# ============================================================
# STATUS
# ============================================================

def commission_status(booking: Booking, as_of: Optional[date] = None) -> str:
    """applied iff the checkout date is on or before as_of (default today).

    Open-ended stays have not checked out and stay pending.
    """
    as_of = as_of or today()
    if booking.check_out is not None and booking.check_out <= as_of:
        return APPLIED
    return PENDING


def commission_cache(booking: Booking, as_of: Optional[date] = None) -> Tuple[str, Optional[str]]:
    """(commission_status, commission_applied_date) to persist at write time."""
    status = commission_status(booking, as_of)
    if status == APPLIED:
        return status, booking.check_out.isoformat()
    return status, None


# ============================================================
# PERIOD RECOGNITION
# ============================================================

def recognized_in_period(booking: Booking, period_end: Optional[date]) -> bool:
    """True iff the stay has a checkout on or before period_end."""
    if booking.check_out is None:
        return False
    if period_end is None:
        return True
    return booking.check_out <= period_end


def recognized_in_checkout_period(booking: Booking, period: ReportPeriod,
                                  as_of: Optional[date] = None) -> bool:
    """
    Dashboard rule: the checkout falls inside the period and has passed.

    For the unbounded view this reduces to the live status.
    """
    if commission_status(booking, as_of) != APPLIED:
        return False
    if period.is_all:
        return True
    return period.contains(booking.check_out)


def recognized_for_statement(booking: Booking, period: ReportPeriod,
                             as_of: Optional[date] = None) -> bool:
    """
    Monthly-statement rule: the stay has completed as of now, or its checkout
    falls on or before the period end.
    """
    if commission_status(booking, as_of) == APPLIED:
        return True
    if period.is_all:
        return False
    return recognized_in_period(booking, period.end)


def is_recognized(booking: Booking, period: ReportPeriod, rule: str = CHECKOUT_PERIOD,
                  as_of: Optional[date] = None) -> bool:
    if rule == STATEMENT:
        return recognized_for_statement(booking, period, as_of)
    return recognized_in_checkout_period(booking, period, as_of)


def recognized_commission_usd(
    booking: Booking,
    period: ReportPeriod,
    rule: str = CHECKOUT_PERIOD,
    as_of: Optional[date] = None,
    live_rates: Optional[Dict[str, float]] = None,
) -> Tuple[float, float]:
    """
    Recognised (platform_commission_usd, transfer_commission_usd) of a booking.

    Both are zero until the booking is recognised under the given rule, and
    never split across periods.
    """
    if booking.is_cancelled or not is_recognized(booking, period, rule, as_of):
        return 0.0, 0.0
    platform = to_usd(booking, "platform_commission", live_rates)
    transfer = to_usd(booking, "transfer_commission_amount", live_rates)
    return max(0.0, platform), max(0.0, transfer)


def pending_commission_usd(booking: Booking, as_of: Optional[date] = None,
                           live_rates: Optional[Dict[str, float]] = None) -> float:
    """Platform commission not yet earned (stay still running or upcoming)."""
    if booking.is_cancelled or commission_status(booking, as_of) == APPLIED:
        return 0.0
    return max(0.0, to_usd(booking, "platform_commission", live_rates))
