"""
currency.py
Currency resolution and USD normalisation of booking money fields

KEY PRINCIPLES:
- Every rate is "units of base currency (EGP) per unit of currency"
- A booking's locked snapshot (exchange_rate_at_booking) overrides the live
  table, so historical values never move when live rates change
- Non-USD, non-base currencies convert through the base currency:
  amount × rate_to_base ÷ USD rate
- Currency detection for legacy, untagged records is a heuristic and lives
  in guess_currency() only
"""

from datetime import date
from typing import Dict, Iterable, NamedTuple, Optional
import logging

from config import (AMOUNT_EPSILON, BASE_CURRENCY, DEFAULT_CURRENCY_RATES,
                    DEFAULT_USD_RATE, REPORT_CURRENCY)
from models import Booking, CurrencyRate
from utils import to_float as _num

logger = logging.getLogger(__name__)

PRIMARY_FIELD = "total_amount"

_DEFAULT_TABLE = {r["currency"]: float(r["rate_to_base"]) for r in DEFAULT_CURRENCY_RATES}


class ResolvedAmount(NamedTuple):
    currency: str
    value: float        # amount in `currency`
    base_value: float   # amount in BASE_CURRENCY


# ============================================================
# RATE TABLES
# ============================================================

def rate_table(rates: Iterable[CurrencyRate]) -> Dict[str, float]:
    """Build {currency: rate_to_base} from stored rate rows (base pinned at 1)."""
    table = {r.currency.upper(): float(r.rate_to_base) for r in rates if r.rate_to_base > 0}
    table[BASE_CURRENCY] = 1.0
    return table


def usd_rate(rates: Optional[Dict[str, float]]) -> float:
    """USD rate from a table, falling back to the fixed default."""
    r = _num((rates or {}).get(REPORT_CURRENCY))
    if r > 0:
        return r
    logger.warning(f"No {REPORT_CURRENCY} rate available, using default {DEFAULT_USD_RATE}")
    return DEFAULT_USD_RATE


def rate_for(currency: str, rates: Dict[str, float]) -> float:
    """Rate to base for a currency: table, then defaults, then the USD rate."""
    c = (currency or BASE_CURRENCY).upper()
    if c == BASE_CURRENCY:
        return 1.0
    r = _num(rates.get(c))
    if r > 0:
        return r
    if c in _DEFAULT_TABLE:
        return _DEFAULT_TABLE[c]
    logger.warning(f"No rate for {c}, treating it at the {REPORT_CURRENCY} rate")
    return usd_rate(rates)


def lock_rates(live_rates: Dict[str, float]) -> Dict[str, float]:
    """Snapshot of the live table to store on a booking at creation time."""
    snap = dict(_DEFAULT_TABLE)
    snap.update({k.upper(): float(v) for k, v in (live_rates or {}).items() if _num(v) > 0})
    snap[BASE_CURRENCY] = 1.0
    return snap


def effective_rates(record, live_rates: Optional[Dict[str, float]]) -> Dict[str, float]:
    """
    Rates that apply to one record.

    A locked snapshot is authoritative: gaps in it are filled from the fixed
    defaults, never from the live table, so the result is independent of
    live_rates whenever a snapshot exists.
    """
    locked = getattr(record, "exchange_rate_at_booking", None) or {}
    if locked:
        table = dict(_DEFAULT_TABLE)
        table.update({k.upper(): float(v) for k, v in locked.items() if _num(v) > 0})
    else:
        table = {k.upper(): float(v) for k, v in (live_rates or {}).items() if _num(v) > 0}
    table[BASE_CURRENCY] = 1.0
    return table


# ============================================================
# CONVERSION
# ============================================================

def convert_to_base(amount: float, currency: str, rates: Dict[str, float]) -> float:
    return float(amount or 0.0) * rate_for(currency, rates)


def convert_to_usd(amount: float, currency: str, rates: Dict[str, float]) -> float:
    """Convert an amount to USD, routing non-USD currencies through the base."""
    amount = float(amount or 0.0)
    if amount == 0:
        return 0.0
    c = (currency or BASE_CURRENCY).upper()
    if c == REPORT_CURRENCY:
        return amount
    usd = usd_rate(rates)
    if c == BASE_CURRENCY:
        return amount / usd
    return amount * rate_for(c, rates) / usd


def convert_from_usd(amount_usd: float, currency: str, rates: Dict[str, float]) -> float:
    c = (currency or BASE_CURRENCY).upper()
    if c == REPORT_CURRENCY:
        return float(amount_usd or 0.0)
    return float(amount_usd or 0.0) * usd_rate(rates) / rate_for(c, rates)


# ============================================================
# CURRENCY DETECTION
# ============================================================

def guess_currency(value: float, usd_mirror: Optional[float], record_currency: Optional[str],
                   label: str = "") -> tuple:
    """
    Legacy heuristic for records whose currency cannot be read off a tag.

    Called only after the explicit tag and the exact USD-mirror comparisons
    have failed. Order matters and mirrors the historical behaviour:
      1. a USD mirror >= 1 wins (a raw value under 1 is treated as a bad save)
      2. the record's own non-USD currency, when the value is positive
      3. USD when tagged USD and the value is >= 1
      4. anything else (values under 1, zero) falls back to the base currency

    Mid-range values without tags can be misclassified; that is accepted.

    Returns:
        (currency, value) tuple
    """
    has_mirror = usd_mirror is not None and usd_mirror > 0

    if has_mirror and usd_mirror >= 1:
        if value < 1:
            logger.warning(
                f"[currency] {label} has small value ({value}) but USD mirror "
                f"({usd_mirror}), assuming {REPORT_CURRENCY}")
        return REPORT_CURRENCY, float(usd_mirror)

    currency = (record_currency or REPORT_CURRENCY).upper()
    if currency != REPORT_CURRENCY and value > 0:
        return currency, value

    if currency == REPORT_CURRENCY and value >= 1:
        return REPORT_CURRENCY, value

    if value > 0:
        logger.warning(
            f"[currency] {label} missing currency info, defaulting to "
            f"{BASE_CURRENCY}. Value: {value}")
    return BASE_CURRENCY, value


def resolve_amount(record, field: str = PRIMARY_FIELD,
                   live_rates: Optional[Dict[str, float]] = None) -> ResolvedAmount:
    """
    Determine the true currency and base-currency value of a money field.

    Priority:
      1. explicit tag stored alongside the field (``<field>_currency``)
      2. USD mirror (``<field>_usd``): equal → USD; raw ÷ USD rate equal → base
      3. secondary booking fields share the booking's resolved currency
      4. guess_currency() heuristic (record currency, magnitude)
    """
    rates = effective_rates(record, live_rates)
    value = _num(getattr(record, field, 0.0))

    tag = getattr(record, f"{field}_currency", None)
    if tag:
        return ResolvedAmount(tag.upper(), value, convert_to_base(value, tag, rates))

    mirror_attr = f"{field}_usd"
    if isinstance(record, Booking) and field != PRIMARY_FIELD and not hasattr(record, mirror_attr):
        currency = resolve_amount(record, PRIMARY_FIELD, live_rates).currency
        return ResolvedAmount(currency, value, convert_to_base(value, currency, rates))

    mirror = getattr(record, mirror_attr, None)
    if mirror is not None and mirror > 0:
        if abs(mirror - value) < AMOUNT_EPSILON:
            return ResolvedAmount(REPORT_CURRENCY, float(mirror),
                                  convert_to_base(mirror, REPORT_CURRENCY, rates))
        if abs(value / usd_rate(rates) - mirror) < AMOUNT_EPSILON:
            return ResolvedAmount(BASE_CURRENCY, value, value)

    label = f"{type(record).__name__} {getattr(record, 'id', '')}".strip()
    currency, value = guess_currency(value, mirror, getattr(record, "currency", None), label)
    return ResolvedAmount(currency, value, convert_to_base(value, currency, rates))


def booking_currency(booking: Booking, live_rates: Optional[Dict[str, float]] = None) -> str:
    """Settlement currency of a booking as resolved from its total."""
    return resolve_amount(booking, PRIMARY_FIELD, live_rates).currency


# ============================================================
# USD VIEWS OF A BOOKING
# ============================================================

def to_usd(record, field: str = PRIMARY_FIELD,
           live_rates: Optional[Dict[str, float]] = None) -> float:
    """USD value of a money field, using locked rates when the record has them."""
    resolved = resolve_amount(record, field, live_rates)
    return convert_to_usd(resolved.value, resolved.currency, effective_rates(record, live_rates))


def paid_amount_usd(booking: Booking, live_rates: Optional[Dict[str, float]] = None) -> float:
    """
    Paid amount in USD, never above the booking total.

    paid_amount is stored in USD. Legacy bookings with no paid_amount but a
    payments sub-ledger are summed from the payments instead.
    """
    total_usd = to_usd(booking, PRIMARY_FIELD, live_rates)
    paid = max(0.0, _num(booking.paid_amount))

    if paid < AMOUNT_EPSILON and booking.payments:
        rates = effective_rates(booking, live_rates)
        paid = sum(convert_to_usd(p.amount, p.currency, rates) for p in booking.payments if p.amount)

    if paid > total_usd + AMOUNT_EPSILON:
        logger.warning(f"Booking {booking.id}: paid {paid:.2f} exceeds total {total_usd:.2f}, capping")
    return min(paid, total_usd)


def remaining_amount_usd(booking: Booking, as_of: date,
                         live_rates: Optional[Dict[str, float]] = None) -> float:
    """Outstanding balance in USD; residual crumbs on completed stays read as zero."""
    residual = max(0.0, to_usd(booking, PRIMARY_FIELD, live_rates) - paid_amount_usd(booking, live_rates))
    if booking.is_completed(as_of) and residual < AMOUNT_EPSILON:
        return 0.0
    return residual
