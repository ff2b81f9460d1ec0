"""
models.py
Data structures for the rental ledger
"""

from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Dict, List, Optional
import json

import pandas as pd

from config import (DEFAULT_PARTNER_TYPE, INACTIVE_STATUSES, REPORT_CURRENCY,
                    normalize_partner_type)
from utils import as_date, days_between, normalize_key, to_float


# ============================================================
# FIELD COERCION
# ============================================================

_num = to_float


def _opt_num(x) -> Optional[float]:
    if x is None or (isinstance(x, str) and x.strip() == ""):
        return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(v) else v


def _opt_str(x) -> Optional[str]:
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return None
    s = str(x).strip()
    return s or None


def _str(x, default: str = "") -> str:
    return _opt_str(x) or default


def _bool(x) -> bool:
    if isinstance(x, str):
        return x.strip().lower() in ("1", "true", "yes", "y")
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return False
    return bool(x)


def _json(x, default):
    """Decode a JSON text column; pass through values that are already decoded."""
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return default
    if isinstance(x, (list, dict)):
        return x
    s = str(x).strip()
    if not s:
        return default
    try:
        return json.loads(s)
    except ValueError:
        return default


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


# ============================================================
# CURRENCY RATES
# ============================================================

@dataclass
class CurrencyRate:
    """One row of the live rate table (units of base currency per unit)."""
    currency: str
    rate_to_base: float
    symbol: str = ""
    source: Optional[str] = None       # None = manually entered
    last_updated: Optional[str] = None

    @property
    def is_manual(self) -> bool:
        return not self.source

    @classmethod
    def from_record(cls, r: Dict) -> "CurrencyRate":
        currency = _str(r.get("currency")).upper()
        return cls(
            currency=currency,
            rate_to_base=_num(r.get("rate_to_base")),
            symbol=_str(r.get("symbol"), currency),
            source=_opt_str(r.get("source")),
            last_updated=_opt_str(r.get("last_updated")),
        )

    def to_record(self) -> Dict:
        return asdict(self)


# ============================================================
# BOOKINGS
# ============================================================

@dataclass
class Payment:
    """One entry of a booking's payment sub-ledger."""
    amount: float
    currency: str = "EGP"
    method: str = "cash"

    @classmethod
    def from_record(cls, r: Dict) -> "Payment":
        return cls(
            amount=_num(r.get("amount")),
            currency=_str(r.get("currency"), "EGP").upper(),
            method=_str(r.get("method"), "cash"),
        )


@dataclass
class Booking:
    """
    A single guest stay

    Monetary settlement fields (platform_commission, development_deduction,
    owner_amount, broker_profit, transfer_commission_amount) are held in the
    booking's settlement currency. paid_amount is USD-denominated.

    exchange_rate_at_booking is the locked {currency: rate_to_base} snapshot
    taken at creation; when present it overrides the live rate table.
    """
    id: str
    apartment_id: str
    room_id: str = ""
    booking_code: str = ""
    guest_name: str = ""
    check_in: Optional[date] = None
    check_out: Optional[date] = None    # None = open-ended stay
    number_of_nights: int = 0

    total_amount: float = 0.0
    currency: Optional[str] = None
    total_amount_currency: Optional[str] = None  # explicit tag for total_amount
    total_amount_usd: Optional[float] = None      # USD mirror of total_amount
    paid_amount: float = 0.0
    remaining_amount: float = 0.0
    payments: List[Payment] = field(default_factory=list)
    payment_method: str = "cash"
    exchange_rate: Optional[float] = None
    exchange_rate_at_booking: Dict[str, float] = field(default_factory=dict)

    platform_commission: float = 0.0
    original_platform_commission: float = 0.0
    commission_status: str = "pending"
    commission_applied_date: Optional[str] = None

    dev_deduction_type: str = "none"
    dev_deduction_value: float = 0.0
    development_deduction: float = 0.0
    final_distributable_amount: Optional[float] = None
    owner_amount: float = 0.0
    broker_profit: Optional[float] = None

    origin_type: str = "external"
    transfer_from_booking_id: Optional[str] = None
    transfer_commission_amount: float = 0.0

    source: str = "External"
    status: str = "confirmed"
    notes: str = ""
    created_at: Optional[str] = None

    # ------------------------------------------------------------------

    @property
    def nights(self) -> int:
        """Stored night count, else the date span; zero-night stays count as one."""
        if self.number_of_nights and self.number_of_nights > 0:
            return int(self.number_of_nights)
        if self.check_in and self.check_out:
            return max(1, days_between(self.check_in, self.check_out))
        return 1

    @property
    def is_open_ended(self) -> bool:
        return self.check_out is None

    @property
    def is_cancelled(self) -> bool:
        return (self.status or "").strip().lower() in INACTIVE_STATUSES

    @property
    def settlement_currency(self) -> str:
        return self.total_amount_currency or self.currency or REPORT_CURRENCY

    def computed_status(self, as_of: date) -> str:
        """Status derived from dates: completed / active / upcoming.

        Cancelled and ended-early bookings keep their stored status.
        """
        if self.is_cancelled:
            return self.status
        if self.check_out is not None and self.check_out < as_of:
            return "completed"
        if self.check_in is not None and self.check_in > as_of:
            return "upcoming"
        return "active"

    def is_completed(self, as_of: date) -> bool:
        return self.status == "completed" or self.computed_status(as_of) == "completed"

    @classmethod
    def from_record(cls, r: Dict) -> "Booking":
        rates = _json(r.get("exchange_rate_at_booking"), {}) or {}
        return cls(
            id=_str(r.get("id")),
            apartment_id=_str(r.get("apartment_id")),
            room_id=_str(r.get("room_id")),
            booking_code=_str(r.get("booking_code")),
            guest_name=_str(r.get("guest_name")),
            check_in=as_date(r.get("check_in")),
            check_out=as_date(r.get("check_out")),
            number_of_nights=int(_num(r.get("number_of_nights"))),
            total_amount=_num(r.get("total_amount")),
            currency=(_opt_str(r.get("currency")) or "").upper() or None,
            total_amount_currency=(_opt_str(r.get("total_amount_currency")) or "").upper() or None,
            total_amount_usd=_opt_num(r.get("total_amount_usd")),
            paid_amount=_num(r.get("paid_amount")),
            remaining_amount=_num(r.get("remaining_amount")),
            payments=[Payment.from_record(p) for p in _json(r.get("payments"), []) if p],
            payment_method=_str(r.get("payment_method"), "cash"),
            exchange_rate=_opt_num(r.get("exchange_rate")),
            exchange_rate_at_booking={str(k).upper(): _num(v) for k, v in rates.items() if _num(v) > 0},
            platform_commission=_num(r.get("platform_commission")),
            original_platform_commission=_num(r.get("original_platform_commission")),
            commission_status=_str(r.get("commission_status"), "pending"),
            commission_applied_date=_opt_str(r.get("commission_applied_date")),
            dev_deduction_type=_str(r.get("dev_deduction_type"), "none"),
            dev_deduction_value=_num(r.get("dev_deduction_value")),
            development_deduction=_num(r.get("development_deduction")),
            final_distributable_amount=_opt_num(r.get("final_distributable_amount")),
            owner_amount=_num(r.get("owner_amount")),
            broker_profit=_opt_num(r.get("broker_profit")),
            origin_type=_str(r.get("origin_type"), "external"),
            transfer_from_booking_id=_opt_str(r.get("transfer_from_booking_id")),
            transfer_commission_amount=_num(r.get("transfer_commission_amount")),
            source=_str(r.get("source"), "External"),
            status=_str(r.get("status"), "confirmed"),
            notes=_str(r.get("notes")),
            created_at=_opt_str(r.get("created_at")),
        )

    def to_record(self) -> Dict:
        r = asdict(self)
        r["check_in"] = _iso(self.check_in)
        r["check_out"] = _iso(self.check_out)
        r["payments"] = json.dumps([asdict(p) for p in self.payments])
        r["exchange_rate_at_booking"] = json.dumps(self.exchange_rate_at_booking)
        return r


# ============================================================
# APARTMENTS & PARTNERS
# ============================================================

@dataclass
class Partner:
    """Normalised partner record; percentages live on PartnerShare, not here."""
    id: str
    name: str
    partner_type: str = DEFAULT_PARTNER_TYPE
    phone: str = ""
    email: str = ""
    notes: str = ""

    @property
    def key(self) -> str:
        return normalize_key(self.name, self.id)

    @classmethod
    def from_record(cls, r: Dict) -> "Partner":
        return cls(
            id=_str(r.get("id")),
            name=_str(r.get("name")),
            partner_type=normalize_partner_type(_str(r.get("partner_type"))),
            phone=_str(r.get("phone")),
            email=_str(r.get("email")),
            notes=_str(r.get("notes")),
        )

    def to_record(self) -> Dict:
        return asdict(self)


@dataclass
class PartnerShare:
    """Join record: one partner's stake in one apartment."""
    apartment_id: str
    name: str
    percentage: float
    partner_type: Optional[str] = None   # None = fall back to the Partner record
    partner_id: Optional[str] = None

    @property
    def key(self) -> str:
        return normalize_key(self.name, self.partner_id or "")

    @classmethod
    def from_record(cls, r: Dict) -> "PartnerShare":
        raw_type = _opt_str(r.get("partner_type"))
        return cls(
            apartment_id=_str(r.get("apartment_id")),
            name=_str(r.get("name")),
            percentage=_num(r.get("percentage")),
            partner_type=normalize_partner_type(raw_type) if raw_type else None,
            partner_id=_opt_str(r.get("partner_id")),
        )

    def to_record(self) -> Dict:
        return asdict(self)


@dataclass
class MonthlyExpense:
    """Recurring fixed cost of an apartment, in base currency."""
    name: str
    amount: float


@dataclass
class Apartment:
    id: str
    name: str = ""
    partners: List[PartnerShare] = field(default_factory=list)
    monthly_expenses: List[MonthlyExpense] = field(default_factory=list)
    platform_commission_rate: float = 0.0
    investment_target: float = 0.0
    investment_start_date: Optional[date] = None

    @property
    def has_roster(self) -> bool:
        return any(p.percentage > 0 for p in self.partners)

    @property
    def monthly_expenses_total(self) -> float:
        return sum(e.amount for e in self.monthly_expenses)

    @property
    def roster_percentage(self) -> float:
        return sum(p.percentage for p in self.partners)

    @classmethod
    def from_record(cls, r: Dict, partners: Optional[List[PartnerShare]] = None) -> "Apartment":
        monthly = [
            MonthlyExpense(name=_str(e.get("name"), "monthly"), amount=_num(e.get("amount")))
            for e in _json(r.get("monthly_expenses"), []) if e
        ]
        return cls(
            id=_str(r.get("id")),
            name=_str(r.get("name")),
            partners=list(partners or []),
            monthly_expenses=monthly,
            platform_commission_rate=_num(r.get("platform_commission_rate")),
            investment_target=_num(r.get("investment_target")),
            investment_start_date=as_date(r.get("investment_start_date")),
        )

    def to_record(self) -> Dict:
        """Apartment row without the roster (stored in the join table)."""
        return {
            "id": self.id,
            "name": self.name,
            "monthly_expenses": json.dumps([asdict(e) for e in self.monthly_expenses]),
            "platform_commission_rate": self.platform_commission_rate,
            "investment_target": self.investment_target,
            "investment_start_date": _iso(self.investment_start_date),
        }


# ============================================================
# EXPENSES & FUND
# ============================================================

@dataclass
class Expense:
    id: str
    amount: float
    category: str
    currency: str = "EGP"
    apartment_id: Optional[str] = None
    expense_date: Optional[date] = None
    description: str = ""
    is_system_generated: bool = False
    transfer_from_booking_id: Optional[str] = None
    transfer_to_booking_id: Optional[str] = None

    @classmethod
    def from_record(cls, r: Dict) -> "Expense":
        return cls(
            id=_str(r.get("id")),
            amount=_num(r.get("amount")),
            category=_str(r.get("category")),
            currency=_str(r.get("currency"), "EGP").upper(),
            apartment_id=_opt_str(r.get("apartment_id")),
            expense_date=as_date(r.get("expense_date")),
            description=_str(r.get("description")),
            is_system_generated=_bool(r.get("is_system_generated")),
            transfer_from_booking_id=_opt_str(r.get("transfer_from_booking_id")),
            transfer_to_booking_id=_opt_str(r.get("transfer_to_booking_id")),
        )

    def to_record(self) -> Dict:
        r = asdict(self)
        r["expense_date"] = _iso(self.expense_date)
        return r


@dataclass
class FundTransaction:
    """
    Development-fund ledger entry

    amount is the USD equivalent; amount_egp is an independently recorded
    EGP mirror. The two are never derived from each other at read time.
    """
    id: str
    type: str                        # deposit | withdrawal
    amount: float
    amount_egp: float = 0.0
    currency: str = "USD"
    description: str = ""
    booking_id: Optional[str] = None
    apartment_id: Optional[str] = None
    inventory_item_id: Optional[str] = None
    source: Optional[str] = None
    transaction_date: Optional[str] = None
    is_system_generated: bool = False
    will_create_negative_balance: bool = False

    @property
    def sign(self) -> int:
        if self.type == "deposit":
            return 1
        if self.type == "withdrawal":
            return -1
        return 0

    @classmethod
    def from_record(cls, r: Dict) -> "FundTransaction":
        return cls(
            id=_str(r.get("id")),
            type=_str(r.get("type")).lower(),
            amount=_num(r.get("amount")),
            amount_egp=_num(r.get("amount_egp")),
            currency=_str(r.get("currency"), "USD").upper(),
            description=_str(r.get("description")),
            booking_id=_opt_str(r.get("booking_id")),
            apartment_id=_opt_str(r.get("apartment_id")),
            inventory_item_id=_opt_str(r.get("inventory_item_id")),
            source=_opt_str(r.get("source")),
            transaction_date=_opt_str(r.get("transaction_date")),
            is_system_generated=_bool(r.get("is_system_generated")),
            will_create_negative_balance=_bool(r.get("will_create_negative_balance")),
        )

    def to_record(self) -> Dict:
        return asdict(self)
