"""
fund.py
Development fund ledger

KEY PRINCIPLES:
- Balance = deposits - withdrawals, summed separately in USD and in EGP
- The EGP column is never derived from the USD column at read time
- Booking deductions create one system-generated deposit per booking
- Removing a deduction turns that deposit into a withdrawal (reversal);
  ledger rows are never deleted
- Withdrawals may overdraw the fund; they are flagged, not blocked
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from config import AMOUNT_EPSILON, DEFAULT_USD_RATE, REPORT_CURRENCY
from exceptions import ValidationError
from models import Booking, FundTransaction
from currency import effective_rates, to_usd, usd_rate as _usd_rate
from utils import as_date, new_id, now_iso, to_float

logger = logging.getLogger(__name__)

NEGATIVE_BALANCE_WARNING = "Balance will be negative (fund in debt)"


@dataclass
class FundBalance:
    balance: float = 0.0        # USD
    balance_egp: float = 0.0
    transaction_count: int = 0


# ============================================================
# BALANCE
# ============================================================

def fund_balance(transactions: Iterable[FundTransaction]) -> FundBalance:
    """Deposits minus withdrawals, in both denominations independently."""
    out = FundBalance()
    for t in transactions:
        out.balance += t.sign * t.amount
        out.balance_egp += t.sign * t.amount_egp
        out.transaction_count += 1
    return out


def sort_transactions(transactions: Iterable[FundTransaction]) -> List[FundTransaction]:
    """Newest first; undated entries last."""
    def sort_key(t: FundTransaction):
        return t.transaction_date or ""
    return sorted(transactions, key=sort_key, reverse=True)


# ============================================================
# BOOKING DEDUCTIONS
# ============================================================

def _deduction_amounts(booking: Booking, live_rates: Optional[Dict[str, float]]) -> Tuple[float, float]:
    """(USD, EGP) value of a booking's development deduction at its locked rate."""
    amount = to_usd(booking, "development_deduction", live_rates)
    rate = _usd_rate(effective_rates(booking, live_rates))
    return amount, amount * rate


def _booking_label(booking: Booking) -> str:
    return booking.booking_code or booking.id or "N/A"


def find_booking_deposit(booking_id: str, transactions: Iterable[FundTransaction]) -> Optional[FundTransaction]:
    """The system-generated deposit linked to a booking, if any."""
    for t in transactions:
        if t.booking_id == booking_id and t.type == "deposit" and t.is_system_generated:
            return t
    return None


def record_booking_deduction(booking: Booking,
                             live_rates: Optional[Dict[str, float]] = None) -> Optional[FundTransaction]:
    """Deposit for a newly created booking's deduction (None when there is none)."""
    if booking.development_deduction <= 0:
        return None
    amount, amount_egp = _deduction_amounts(booking, live_rates)
    logger.info(f"Fund deposit {amount:.2f} {REPORT_CURRENCY} from booking {_booking_label(booking)}")
    return FundTransaction(
        id=new_id(),
        type="deposit",
        amount=amount,
        amount_egp=amount_egp,
        currency=REPORT_CURRENCY,
        description=f"Development Fund Contribution from Booking {_booking_label(booking)}",
        booking_id=booking.id,
        apartment_id=booking.apartment_id or None,
        transaction_date=now_iso(),
        is_system_generated=True,
    )


def reconcile_booking_deduction(
    booking: Booking,
    transactions: Iterable[FundTransaction],
    old_deduction: float,
    live_rates: Optional[Dict[str, float]] = None,
) -> Optional[FundTransaction]:
    """
    Bring the fund ledger in line with an edited booking's deduction.

    Only acts when the deduction moved by more than AMOUNT_EPSILON:
      - deposit exists, new deduction > 0  → deposit updated in place
      - deposit exists, new deduction == 0 → deposit converted to a withdrawal
      - no deposit, new deduction > 0      → new deposit

    Returns:
        The transaction to persist (upsert by id), or None when nothing changes
    """
    new_deduction = booking.development_deduction
    if abs(new_deduction - to_float(old_deduction)) <= AMOUNT_EPSILON:
        return None

    existing = find_booking_deposit(booking.id, transactions)
    label = _booking_label(booking)

    if existing is not None:
        if new_deduction > 0:
            existing.amount, existing.amount_egp = _deduction_amounts(booking, live_rates)
            existing.description = f"Development Fund Contribution from Booking {label} (Updated)"
            logger.info(f"Fund deposit for booking {label} updated to {existing.amount:.2f}")
        else:
            existing.type = "withdrawal"
            existing.description = f"Reversal: Development Deduction removed from Booking {label}"
            logger.info(f"Fund deposit for booking {label} reversed")
        return existing

    if new_deduction > 0:
        return record_booking_deduction(booking, live_rates)
    return None


# ============================================================
# MANUAL MOVEMENTS
# ============================================================

def plan_deposit(
    amount,
    amount_egp=None,
    currency: str = REPORT_CURRENCY,
    description: str = "",
    source: Optional[str] = None,
    transaction_date=None,
    apartment_id: Optional[str] = None,
    usd_rate: float = DEFAULT_USD_RATE,
) -> FundTransaction:
    """Manual deposit; the EGP mirror defaults to amount × USD rate."""
    amount = to_float(amount)
    if amount <= 0:
        raise ValidationError("Amount is required and must be greater than zero")
    d = as_date(transaction_date)
    if description:
        desc = description
    elif source:
        desc = f"External deposit from {source}"
    else:
        desc = "Manual deposit to development fund"
    return FundTransaction(
        id=new_id(),
        type="deposit",
        amount=amount,
        amount_egp=to_float(amount_egp) or amount * usd_rate,
        currency=(currency or REPORT_CURRENCY).upper(),
        description=desc,
        source=source or None,
        apartment_id=apartment_id or None,
        transaction_date=d.isoformat() if d else now_iso(),
        is_system_generated=False,
    )


def plan_withdrawal(
    transactions: Iterable[FundTransaction],
    amount,
    amount_egp=None,
    currency: str = REPORT_CURRENCY,
    description: str = "",
    apartment_id: Optional[str] = None,
    inventory_item_id: Optional[str] = None,
    usd_rate: float = DEFAULT_USD_RATE,
) -> Tuple[FundTransaction, Optional[str]]:
    """
    Manual withdrawal with a soft negative-balance check.

    A negative amount is recorded as a deposit of its absolute value.

    Returns:
        (transaction, warning) where warning is None unless the fund would
        go negative
    """
    raw = to_float(amount)
    value = abs(raw)
    if value <= 0:
        raise ValidationError("Amount is required and must be greater than zero")

    is_deposit = raw < 0
    current = fund_balance(transactions).balance
    will_be_negative = (not is_deposit) and (current - value) < 0
    if will_be_negative:
        logger.warning(f"Fund withdrawal of {value:.2f} leaves balance at {current - value:.2f}")

    if not description:
        description = "Manual deposit to development fund" if is_deposit else "Withdrawal from development fund"

    txn = FundTransaction(
        id=new_id(),
        type="deposit" if is_deposit else "withdrawal",
        amount=value,
        amount_egp=abs(to_float(amount_egp)) or value * usd_rate,
        currency=(currency or REPORT_CURRENCY).upper(),
        description=description,
        apartment_id=apartment_id or None,
        inventory_item_id=inventory_item_id or None,
        transaction_date=now_iso(),
        is_system_generated=False,
        will_create_negative_balance=will_be_negative,
    )
    return txn, (NEGATIVE_BALANCE_WARNING if will_be_negative else None)


def record_inventory_purchase(
    name: str,
    quantity,
    value_per_unit_egp,
    usd_rate: float = DEFAULT_USD_RATE,
    inventory_item_id: Optional[str] = None,
) -> FundTransaction:
    """System-generated withdrawal for stock bought out of the fund."""
    qty = int(to_float(quantity))
    if not name or qty <= 0:
        raise ValidationError("Name and a positive quantity are required")
    total_egp = to_float(value_per_unit_egp) * qty
    if total_egp <= 0:
        raise ValidationError("Inventory value must be greater than zero")
    amount_usd = total_egp / (usd_rate if usd_rate > 0 else DEFAULT_USD_RATE)
    logger.info(f"Fund withdrawal {amount_usd:.2f} {REPORT_CURRENCY} for inventory: {name} x{qty}")
    return FundTransaction(
        id=new_id(),
        type="withdrawal",
        amount=amount_usd,
        amount_egp=total_egp,
        currency=REPORT_CURRENCY,
        description=f"Inventory purchase: {name} ({qty} pcs)",
        inventory_item_id=inventory_item_id or new_id(),
        transaction_date=now_iso(),
        is_system_generated=True,
    )
