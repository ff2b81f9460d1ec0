"""
api.py
Request handlers for reports, bookings, the development fund and rates

Handlers are transport-agnostic: each takes plain values or a JSON payload
(camelCase or snake_case keys) and returns (body, status). Bodies use
camelCase keys. Domain errors become {"error": message} with 400, 404 or
502.
"""

from dataclasses import asdict, is_dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional, Tuple
import functools
import logging

import pandas as pd

from config import REPORT_CURRENCY
from exceptions import NotFoundError, RateFetchError, ValidationError
from models import Apartment, MonthlyExpense, Partner, PartnerShare
from repository import Repository
from periods import ReportPeriod
from currency import usd_rate as _usd_rate
from settlement import apply_update, build_booking, extend_booking, validate_roster
from fund import (fund_balance, plan_deposit, plan_withdrawal, reconcile_booking_deduction,
                  record_booking_deduction, record_inventory_purchase, sort_transactions)
from reporting import dashboard_summary, monthly_revenue_table, monthly_summary, roi_summary
from loaders import (APARTMENT_ALIASES, BOOKING_ALIASES, FUND_ALIASES, PARTNER_ALIASES,
                     SHARE_ALIASES, normalize_record)
import rates as rate_service
from utils import as_date, new_id, to_float, today

logger = logging.getLogger(__name__)

Response = Tuple[Any, int]

_UPPER_WORDS = {"usd", "egp", "irr", "roi"}


# ============================================================
# SERIALISATION
# ============================================================

def camel_key(key: str) -> str:
    """total_revenue_egp -> totalRevenueEGP, usd_rate -> usdRate"""
    parts = [p for p in str(key).split("_") if p]
    if not parts:
        return key
    head, rest = parts[0], parts[1:]
    return head + "".join(p.upper() if p in _UPPER_WORDS else p.capitalize() for p in rest)


def to_plain(obj):
    """Dataclasses, dates and numpy scalars to JSON-ready Python values."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return to_plain(asdict(obj))
    if isinstance(obj, dict):
        return {k: to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain(v) for v in obj]
    if isinstance(obj, date):
        return obj.isoformat()
    if hasattr(obj, "item") and not isinstance(obj, (str, bytes)):
        return obj.item()
    return obj


def camelize(obj):
    plain = to_plain(obj)
    if isinstance(plain, dict):
        return {camel_key(k): camelize(v) for k, v in plain.items()}
    if isinstance(plain, list):
        return [camelize(v) for v in plain]
    return plain


def endpoint(fn: Callable) -> Callable:
    """Map domain exceptions onto error responses."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs) -> Response:
        try:
            return fn(*args, **kwargs)
        except ValidationError as e:
            logger.warning(f"{fn.__name__}: {e}")
            return {"error": str(e)}, 400
        except NotFoundError as e:
            logger.warning(f"{fn.__name__}: {e}")
            return {"error": str(e)}, 404
        except RateFetchError as e:
            logger.error(f"{fn.__name__}: {e}")
            return {"error": str(e)}, 502
    return wrapper


def _period(year=None, month=None) -> ReportPeriod:
    try:
        return ReportPeriod.from_query(year, month)
    except ValueError as e:
        if isinstance(e, ValidationError):
            raise
        raise ValidationError(f"Invalid period: year={year!r} month={month!r}") from e


# ============================================================
# API
# ============================================================

class LedgerAPI:
    """
    Handlers bound to one repository.

    as_of is injectable so reports and commission status can be pinned to a
    fixed date.
    """

    def __init__(self, repo: Repository, as_of: Optional[Callable[[], date]] = None):
        self.repo = repo
        self._as_of = as_of or today

    @property
    def as_of(self) -> date:
        return self._as_of()

    def _snapshot(self):
        rate_service.ensure_default_rates(self.repo)
        return self.repo.snapshot()

    # --------------------------------------------------------
    # Reports
    # --------------------------------------------------------

    @endpoint
    def monthly_report(self, year=None, month=None, apartment_id=None) -> Response:
        period = _period(year, month)
        report = monthly_summary(self._snapshot(), period, apartment_id or None, self.as_of)
        return camelize(report), 200

    @endpoint
    def dashboard(self, year=None, month=None, apartment_id=None) -> Response:
        period = _period(year, month)
        report = dashboard_summary(self._snapshot(), period, apartment_id or None, self.as_of)
        return camelize(report), 200

    @endpoint
    def revenue_by_month(self, year, apartment_id=None) -> Response:
        if not str(year or "").strip().isdigit():
            raise ValidationError(f"Invalid year: {year!r}")
        table = monthly_revenue_table(self._snapshot(), int(year), apartment_id or None, self.as_of)
        table = table.reset_index()
        table.columns = [str(c).strip().lower().replace(" ", "_") for c in table.columns]
        return camelize(table.to_dict("records")), 200

    @endpoint
    def roi(self, apartment_id: str) -> Response:
        snap = self._snapshot()
        if snap.apartment(apartment_id) is None:
            raise NotFoundError(f"Apartment not found: {apartment_id}")
        return camelize(roi_summary(snap, apartment_id, self.as_of)), 200

    # --------------------------------------------------------
    # Apartments
    # --------------------------------------------------------

    @endpoint
    def list_apartments(self) -> Response:
        return camelize(self._snapshot().apartments), 200

    @endpoint
    def save_apartment(self, payload: Dict) -> Response:
        data = normalize_record(payload, APARTMENT_ALIASES)
        apartment_id = str(data.get("id") or new_id())
        if not str(data.get("name") or "").strip():
            raise ValidationError("Apartment name is required")

        shares = [
            PartnerShare.from_record({**normalize_record(p, SHARE_ALIASES), "apartment_id": apartment_id})
            for p in data.get("partners") or []
        ]
        validate_roster(shares)

        apartment = Apartment(
            id=apartment_id,
            name=str(data["name"]).strip(),
            partners=shares,
            monthly_expenses=[
                MonthlyExpense(name=str(e.get("name") or "monthly"), amount=to_float(e.get("amount")))
                for e in data.get("monthly_expenses") or []
            ],
            platform_commission_rate=to_float(data.get("platform_commission_rate")),
            investment_target=to_float(data.get("investment_target")),
            investment_start_date=as_date(data.get("investment_start_date")),
        )
        self.repo.save_apartment(apartment)
        logger.info(f"Apartment {apartment.name} saved with {len(shares)} partner(s)")
        return camelize(apartment), 200

    @endpoint
    def save_partner(self, payload: Dict) -> Response:
        data = normalize_record(payload, PARTNER_ALIASES)
        if not str(data.get("name") or "").strip():
            raise ValidationError("Partner name is required")
        data["id"] = str(data.get("id") or new_id())
        partner = Partner.from_record(data)
        self.repo.save_partner(partner)
        return camelize(partner), 200

    # --------------------------------------------------------
    # Bookings
    # --------------------------------------------------------

    @endpoint
    def create_booking(self, payload: Dict) -> Response:
        data = normalize_record(payload, BOOKING_ALIASES)
        snap = self._snapshot()
        apartment = snap.apartment(str(data.get("apartment_id") or ""))
        if data.get("apartment_id") and apartment is None:
            raise NotFoundError(f"Apartment not found: {data['apartment_id']}")

        booking, expense = build_booking(data, apartment, snap.bookings, snap.apartments_by_id,
                                         snap.rates, self.as_of)
        self.repo.save_booking(booking)
        if expense is not None:
            self.repo.save_expense(expense)

        deposit = record_booking_deduction(booking, snap.rates)
        if deposit is not None:
            self.repo.save_fund_transaction(deposit)

        logger.info(f"Booking {booking.booking_code} created for {booking.guest_name}")
        return camelize({"booking": booking, "fund_transaction": deposit,
                         "transfer_expense": expense}), 201

    @endpoint
    def update_booking(self, booking_id: str, changes: Dict) -> Response:
        data = normalize_record(changes, BOOKING_ALIASES)
        existing = self.repo.get_booking(booking_id)
        live = self.repo.live_rates()
        apartment_id = str(data.get("apartment_id") or existing.apartment_id)
        apartment = self.repo.get_apartment(apartment_id)

        updated = apply_update(existing, data, apartment, live, self.as_of)
        self.repo.save_booking(updated)

        txn = reconcile_booking_deduction(updated, self.repo.list_fund_transactions(),
                                          existing.development_deduction, live)
        if txn is not None:
            self.repo.save_fund_transaction(txn)

        return camelize({"booking": updated, "fund_transaction": txn}), 200

    @endpoint
    def extend_booking(self, booking_id: str, days, amount) -> Response:
        booking = self.repo.get_booking(booking_id)
        extended = extend_booking(booking, days, amount, self.repo.live_rates(), self.as_of)
        self.repo.save_booking(extended)
        return camelize({"booking": extended}), 200

    @endpoint
    def get_booking(self, booking_id: str) -> Response:
        return camelize(self.repo.get_booking(booking_id)), 200

    # --------------------------------------------------------
    # Development fund
    # --------------------------------------------------------

    def _usd_rate(self) -> float:
        return _usd_rate(self.repo.live_rates())

    @endpoint
    def fund_balance(self) -> Response:
        bal = fund_balance(self.repo.list_fund_transactions())
        return camelize({"balance": bal.balance, "balance_egp": bal.balance_egp,
                         "transaction_count": bal.transaction_count,
                         "currency": REPORT_CURRENCY}), 200

    @endpoint
    def fund_transactions(self) -> Response:
        return camelize(sort_transactions(self.repo.list_fund_transactions())), 200

    @endpoint
    def deposit(self, payload: Dict) -> Response:
        data = normalize_record(payload, FUND_ALIASES)
        txn = plan_deposit(
            data.get("amount"),
            amount_egp=data.get("amount_egp"),
            currency=data.get("currency") or REPORT_CURRENCY,
            description=data.get("description") or "",
            source=data.get("source"),
            transaction_date=data.get("date") or data.get("transaction_date"),
            apartment_id=data.get("apartment_id"),
            usd_rate=self._usd_rate(),
        )
        self.repo.save_fund_transaction(txn)
        return camelize({"transaction": txn, "warning": None}), 201

    @endpoint
    def withdraw(self, payload: Dict) -> Response:
        data = normalize_record(payload, FUND_ALIASES)
        txn, warning = plan_withdrawal(
            self.repo.list_fund_transactions(),
            data.get("amount"),
            amount_egp=data.get("amount_egp"),
            currency=data.get("currency") or REPORT_CURRENCY,
            description=data.get("description") or "",
            apartment_id=data.get("apartment_id"),
            inventory_item_id=data.get("inventory_item_id"),
            usd_rate=self._usd_rate(),
        )
        self.repo.save_fund_transaction(txn)
        return camelize({"transaction": txn, "warning": warning}), 201

    @endpoint
    def purchase_inventory(self, payload: Dict) -> Response:
        data = normalize_record(payload)
        txn = record_inventory_purchase(
            str(data.get("name") or "").strip(),
            data.get("quantity"),
            data.get("value_per_unit") or data.get("value_per_unit_egp"),
            usd_rate=self._usd_rate(),
            inventory_item_id=data.get("inventory_item_id"),
        )
        self.repo.save_fund_transaction(txn)
        return camelize({"transaction": txn}), 201

    # --------------------------------------------------------
    # Currency rates
    # --------------------------------------------------------

    @endpoint
    def list_rates(self) -> Response:
        rows = sorted(rate_service.ensure_default_rates(self.repo), key=lambda r: r.currency)
        return camelize(rows), 200

    @endpoint
    def set_rate(self, payload: Dict) -> Response:
        data = normalize_record(payload, {"rate_to_egp": "rate_to_base", "rate": "rate_to_base"})
        saved = rate_service.set_rate(self.repo, data.get("currency"), data.get("rate_to_base"),
                                      data.get("symbol"))
        return camelize(saved), 200

    @endpoint
    def refresh_rates(self, session=None) -> Response:
        rows = rate_service.refresh_live_rates(self.repo, session)
        return camelize({"rates": rows, "updated": len(rows)}), 200

    @endpoint
    def delete_rate(self, currency: str) -> Response:
        code = (currency or "").strip().upper()
        if code == REPORT_CURRENCY:
            raise ValidationError(f"{REPORT_CURRENCY} rate cannot be deleted")
        self.repo.delete_currency_rate(code)
        return {"deleted": code}, 200


def revenue_frame(body) -> pd.DataFrame:
    """Revenue-by-month response back into a month-indexed DataFrame."""
    df = pd.DataFrame(body)
    if df.empty:
        return df
    return df.set_index("month")
