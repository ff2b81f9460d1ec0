"""
periods.py
Reporting periods and revenue attribution strategies

Two attribution rules are in use and are deliberately kept apart:
- ProportionalByNights (dashboard): revenue prorated by nights in period
- CheckInMonthOnly (monthly statement): full amount to the check-in period

They disagree for stays that cross a month boundary. Both outputs are
relied upon, so neither is derived from the other.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from exceptions import ValidationError
from models import Booking
from utils import add_days, days_between, month_end, month_start


# ============================================================
# REPORT PERIOD
# ============================================================

@dataclass(frozen=True)
class ReportPeriod:
    """A month, a year, or "all" (start and end both None)."""
    start: Optional[date] = None
    end: Optional[date] = None
    year: Optional[int] = None
    month: Optional[int] = None

    @property
    def is_all(self) -> bool:
        return self.start is None or self.end is None

    @property
    def months(self) -> int:
        """Number of calendar months covered (1 for the unbounded view)."""
        if self.is_all:
            return 1
        return (self.end.year - self.start.year) * 12 + self.end.month - self.start.month + 1

    def contains(self, d: Optional[date]) -> bool:
        if self.is_all:
            return True
        if d is None:
            return False
        return self.start <= d <= self.end

    @classmethod
    def all_time(cls) -> "ReportPeriod":
        return cls()

    @classmethod
    def for_month(cls, year: int, month: int) -> "ReportPeriod":
        start = month_start(year, month)
        return cls(start=start, end=month_end(start), year=int(year), month=int(month))

    @classmethod
    def for_year(cls, year: int) -> "ReportPeriod":
        return cls(start=date(int(year), 1, 1), end=date(int(year), 12, 31), year=int(year))

    @classmethod
    def from_query(cls, year=None, month=None) -> "ReportPeriod":
        """Build from optional query values (strings allowed); absent → all."""
        y = int(year) if year not in (None, "", "all") else None
        m = int(month) if month not in (None, "", "all") else None
        if y and m:
            if not 1 <= m <= 12:
                raise ValidationError(f"month out of range: {m}")
            return cls.for_month(y, m)
        if y:
            return cls.for_year(y)
        return cls.all_time()


# ============================================================
# DATE ARITHMETIC
# ============================================================

def effective_check_out(booking: Booking) -> Optional[date]:
    """Checkout date, or check-in + stored nights for open-ended stays."""
    if booking.check_out is not None:
        return booking.check_out
    if booking.check_in is None:
        return None
    return add_days(booking.check_in, booking.nights)


def overlaps_period(check_in: date, check_out: Optional[date],
                    period_start: date, period_end: date) -> bool:
    """True iff check_in <= period_end and check_out >= period_start.

    An open-ended stay (no checkout) is still running, so it overlaps every
    period from its check-in onwards.
    """
    if check_in is None:
        return False
    if check_out is None:
        return check_in <= period_end
    return check_in <= period_end and check_out >= period_start


def nights_in_period(check_in: date, check_out: date, period_start: date, period_end: date) -> int:
    """
    Nights of a stay that fall inside [period_start, period_end].

    The period end is inclusive, so a stay continuing past it is counted up
    to the following midnight.
    """
    lo = max(check_in, period_start)
    hi = min(check_out, add_days(period_end, 1))
    return days_between(lo, hi)


def split_by_nights(booking: Booking, period_start: date, period_end: date) -> float:
    """Fraction of a stay's nights inside the period, clamped to [0, 1]."""
    if booking.check_in is None:
        return 0.0
    check_out = effective_check_out(booking)
    # zero-night stay occupies its check-in night
    if check_out <= booking.check_in:
        check_out = add_days(booking.check_in, 1)
    inside = nights_in_period(booking.check_in, check_out, period_start, period_end)
    fraction = inside / float(booking.nights)
    return min(1.0, max(0.0, fraction))


# ============================================================
# ATTRIBUTION STRATEGIES
# ============================================================

class ProportionalByNights:
    """Dashboard view: every overlapping stay contributes its nights-in-period share."""
    name = "proportional_by_nights"

    def includes(self, booking: Booking, period: ReportPeriod) -> bool:
        if period.is_all:
            return True
        return overlaps_period(booking.check_in, booking.check_out, period.start, period.end)

    def fraction(self, booking: Booking, period: ReportPeriod) -> float:
        if period.is_all:
            return 1.0
        return split_by_nights(booking, period.start, period.end)


class CheckInMonthOnly:
    """Monthly-statement view: the whole stay belongs to its check-in period."""
    name = "check_in_month_only"

    def includes(self, booking: Booking, period: ReportPeriod) -> bool:
        return period.contains(booking.check_in)

    def fraction(self, booking: Booking, period: ReportPeriod) -> float:
        return 1.0 if self.includes(booking, period) else 0.0


PROPORTIONAL_BY_NIGHTS = ProportionalByNights()
CHECK_IN_MONTH_ONLY = CheckInMonthOnly()
