"""
waterfall.py
Two-stage profit waterfall per apartment

KEY PRINCIPLES:
- Operating Profit = Revenue - Platform Commission - Transfer Commission - Expenses
- Investors take their percentage of max(0, Operating Profit)
- Company Profit is the residual: max(0, Operating Profit - investor shares)
- Company owners take their percentage of Company Profit
- Losses are absorbed by the company, never distributed as negative shares
- Apartments without a roster route everything to the company
- Partner totals are merged across apartments by normalised name
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from config import DEFAULT_PARTNER_TYPE, TRANSFER_COMMISSION_CATEGORY
from models import Apartment, Booking, Expense, Partner, PartnerShare
from periods import ReportPeriod, PROPORTIONAL_BY_NIGHTS
from commission import CHECKOUT_PERIOD, recognized_commission_usd
from currency import convert_to_usd, to_usd, usd_rate as _usd_rate
from utils import normalize_key

logger = logging.getLogger(__name__)


@dataclass
class PartnerPayout:
    apartment_id: str
    name: str
    partner_type: str
    percentage: float
    amount: float = 0.0   # USD
    partner_id: Optional[str] = None

    @property
    def key(self) -> str:
        return normalize_key(self.name, self.partner_id or "")


@dataclass
class ApartmentFinancials:
    """Waterfall result for one apartment over one reporting window (USD)."""
    apartment_id: str
    apartment_name: str = ""
    booking_count: int = 0
    revenue: float = 0.0
    platform_commission: float = 0.0
    transfer_commission: float = 0.0
    expenses: float = 0.0
    operating_profit: float = 0.0
    investor_payouts: List[PartnerPayout] = field(default_factory=list)
    company_profit: float = 0.0
    company_owner_payouts: List[PartnerPayout] = field(default_factory=list)
    absorbed_loss: float = 0.0

    @property
    def total_investor_payouts(self) -> float:
        return sum(p.amount for p in self.investor_payouts)

    @property
    def total_company_owner_payouts(self) -> float:
        return sum(p.amount for p in self.company_owner_payouts)

    @property
    def payouts(self) -> List[PartnerPayout]:
        return self.investor_payouts + self.company_owner_payouts


@dataclass
class PartnerProfit:
    """Per-partner total across every apartment the partner holds."""
    key: str
    name: str
    partner_type: str
    total_usd: float = 0.0
    total_egp: float = 0.0
    apartments: List[str] = field(default_factory=list)


# ============================================================
# PARTNER TYPE RESOLUTION
# ============================================================

def resolve_partner_type(share: PartnerShare, partners: Optional[Iterable[Partner]] = None) -> str:
    """
    Type of a roster entry: the Partner record (matched by id, then by
    normalised name) wins over the type written on the roster.
    """
    for p in partners or []:
        if (share.partner_id and p.id == share.partner_id) or p.key == share.key:
            return p.partner_type
    return share.partner_type or DEFAULT_PARTNER_TYPE


# ============================================================
# DISTRIBUTION
# ============================================================

def distribute(
    operating_profit: float,
    shares: List[PartnerShare],
    partners: Optional[Iterable[Partner]] = None,
    apartment_id: str = "",
) -> Tuple[List[PartnerPayout], float, List[PartnerPayout], float]:
    """
    Run the two tiers of the waterfall over one apartment's operating profit.

    Args:
        operating_profit: USD operating profit (may be negative)
        shares: Apartment roster
        partners: Partner records used to resolve types
        apartment_id: Stamped on the payouts

    Returns:
        (investor_payouts, company_profit, company_owner_payouts, absorbed_loss)
    """
    partners = list(partners or [])
    distributable = max(0.0, float(operating_profit))
    absorbed_loss = max(0.0, -float(operating_profit))

    active = [s for s in shares if s.percentage > 0]
    if not active:
        return [], distributable, [], absorbed_loss

    typed = [(s, resolve_partner_type(s, partners)) for s in active]

    investor_payouts = [
        PartnerPayout(apartment_id=apartment_id, name=s.name, partner_type="investor",
                      percentage=s.percentage, amount=distributable * s.percentage / 100.0,
                      partner_id=s.partner_id)
        for s, t in typed if t == "investor"
    ]
    investor_total = sum(p.amount for p in investor_payouts)

    # Residual, not recomputed from percentages
    company_profit = max(0.0, distributable - investor_total)
    if distributable - investor_total < 0:
        logger.warning(f"Apartment {apartment_id}: investor shares exceed operating profit, "
                       f"company profit floored at 0")

    owner_payouts = [
        PartnerPayout(apartment_id=apartment_id, name=s.name, partner_type="company_owner",
                      percentage=s.percentage, amount=company_profit * s.percentage / 100.0,
                      partner_id=s.partner_id)
        for s, t in typed if t == "company_owner"
    ]
    return investor_payouts, company_profit, owner_payouts, absorbed_loss


# ============================================================
# PER-APARTMENT WATERFALL
# ============================================================

def waterfall_bookings(bookings: Iterable[Booking], period: ReportPeriod,
                       strategy=PROPORTIONAL_BY_NIGHTS) -> List[Booking]:
    """Bookings that feed the waterfall: not cancelled, not open-ended, in scope."""
    return [
        b for b in bookings
        if not b.is_cancelled and not b.is_open_ended and strategy.includes(b, period)
    ]


def apartment_expenses_usd(
    apartment: Apartment,
    expenses: Iterable[Expense],
    period: ReportPeriod,
    live_rates: Optional[Dict[str, float]] = None,
) -> float:
    """
    Monthly fixed costs (base currency, once per month of the window) plus ad
    hoc expenses dated in the window. Transfer-commission expenses are
    excluded; they are already counted on the booking.
    """
    usd = _usd_rate(live_rates)
    total = apartment.monthly_expenses_total / usd * period.months
    for e in expenses:
        if e.apartment_id != apartment.id or e.category == TRANSFER_COMMISSION_CATEGORY:
            continue
        if not period.is_all and not period.contains(e.expense_date):
            continue
        total += convert_to_usd(e.amount, e.currency, live_rates or {})
    return total


def run_apartment_waterfall(
    apartment: Apartment,
    bookings: Iterable[Booking],
    expenses: Iterable[Expense],
    period: ReportPeriod,
    partners: Optional[Iterable[Partner]] = None,
    strategy=PROPORTIONAL_BY_NIGHTS,
    commission_rule: str = CHECKOUT_PERIOD,
    as_of: Optional[date] = None,
    live_rates: Optional[Dict[str, float]] = None,
) -> ApartmentFinancials:
    """
    Waterfall for one apartment.

    Bookings are filtered to this apartment and to the window by the
    attribution strategy. An apartment without bookings in the window
    reports zeros, with every roster partner listed at 0.
    """
    fin = ApartmentFinancials(apartment_id=apartment.id, apartment_name=apartment.name)
    scoped = waterfall_bookings([b for b in bookings if b.apartment_id == apartment.id],
                                period, strategy)
    fin.booking_count = len(scoped)

    if scoped:
        for b in scoped:
            fin.revenue += to_usd(b, "total_amount", live_rates) * strategy.fraction(b, period)
            platform, transfer = recognized_commission_usd(b, period, commission_rule, as_of, live_rates)
            fin.platform_commission += platform
            fin.transfer_commission += transfer
        fin.expenses = apartment_expenses_usd(apartment, expenses, period, live_rates)

    fin.operating_profit = fin.revenue - fin.platform_commission - fin.transfer_commission - fin.expenses

    investors, company_profit, owners, absorbed = distribute(
        fin.operating_profit, apartment.partners, partners, apartment.id)
    fin.investor_payouts = investors
    fin.company_profit = company_profit
    fin.company_owner_payouts = owners
    fin.absorbed_loss = absorbed
    return fin


def run_waterfall(
    apartments: Iterable[Apartment],
    bookings: Iterable[Booking],
    expenses: Iterable[Expense],
    period: ReportPeriod,
    partners: Optional[Iterable[Partner]] = None,
    strategy=PROPORTIONAL_BY_NIGHTS,
    commission_rule: str = CHECKOUT_PERIOD,
    as_of: Optional[date] = None,
    live_rates: Optional[Dict[str, float]] = None,
) -> List[ApartmentFinancials]:
    """Run the apartment waterfall for every apartment in scope."""
    bookings = list(bookings)
    expenses = list(expenses)
    partners = list(partners or [])
    return [
        run_apartment_waterfall(apt, bookings, expenses, period, partners,
                                strategy, commission_rule, as_of, live_rates)
        for apt in apartments
    ]


# ============================================================
# AGGREGATION
# ============================================================

def aggregate_partner_profits(financials: Iterable[ApartmentFinancials], usd_rate: float) -> List[PartnerProfit]:
    """
    Merge payouts across apartments keyed by normalised name.

    Partners whose payouts are all zero are still listed. The first
    spelling seen is kept for display.
    """
    merged: Dict[str, PartnerProfit] = {}
    for fin in financials:
        for p in fin.payouts:
            entry = merged.get(p.key)
            if entry is None:
                entry = PartnerProfit(key=p.key, name=p.name.strip() or p.key,
                                      partner_type=p.partner_type)
                merged[p.key] = entry
            entry.total_usd += p.amount
            entry.total_egp += p.amount * usd_rate
            if fin.apartment_id not in entry.apartments:
                entry.apartments.append(fin.apartment_id)
    return sorted(merged.values(), key=lambda e: (-e.total_usd, e.name.casefold()))


def waterfall_totals(financials: Iterable[ApartmentFinancials]) -> Dict[str, float]:
    """Summed waterfall lines across apartments (USD)."""
    financials = list(financials)
    return {
        "revenue": sum(f.revenue for f in financials),
        "platform_commission": sum(f.platform_commission for f in financials),
        "transfer_commission": sum(f.transfer_commission for f in financials),
        "expenses": sum(f.expenses for f in financials),
        "operating_profit": sum(f.operating_profit for f in financials),
        "investor_payouts": sum(f.total_investor_payouts for f in financials),
        "company_profit": sum(f.company_profit for f in financials),
        "company_owner_payouts": sum(f.total_company_owner_payouts for f in financials),
        "absorbed_loss": sum(f.absorbed_loss for f in financials),
    }
