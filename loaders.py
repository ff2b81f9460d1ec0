"""
loaders.py
Tabular normalisation of stored records into ledger models

Accepts DataFrames read from SQLite or CSV exports, including legacy
camelCase column names, and returns model lists.
"""

import json
import re
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from models import (Apartment, Booking, CurrencyRate, Expense, FundTransaction,
                    Partner, PartnerShare)


# Columns whose snake_case form is not the field name
BOOKING_ALIASES = {
    "_id": "id",
    "apartment": "apartment_id",
    "booking_id": "booking_code",
    "total_booking_price": "total_amount",
    "transfer_commission_expense": "transfer_commission_amount",
}

EXPENSE_ALIASES = {
    "_id": "id",
    "apartment": "apartment_id",
    "date": "expense_date",
}

FUND_ALIASES = {
    "_id": "id",
    "apartment": "apartment_id",
}

RATE_ALIASES = {
    "rate_to_egp": "rate_to_base",
}

PARTNER_ALIASES = {
    "_id": "id",
    "type": "partner_type",
}

SHARE_ALIASES = {
    "apartment": "apartment_id",
    "type": "partner_type",
}

APARTMENT_ALIASES = {
    "_id": "id",
}

BOOKING_NUMERIC = [
    "number_of_nights", "total_amount", "total_amount_usd", "paid_amount", "remaining_amount",
    "exchange_rate", "platform_commission", "original_platform_commission",
    "dev_deduction_value", "development_deduction", "final_distributable_amount",
    "owner_amount", "broker_profit", "transfer_commission_amount",
]


def snake_case(name: str) -> str:
    """checkIn -> check_in, totalAmountUSD -> total_amount_usd"""
    s = str(name).strip()
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s)
    return s.replace(" ", "_").replace("-", "_").lower()


def normalize_columns(df: pd.DataFrame, aliases: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """Strip, snake_case and alias column names. Existing columns win over aliases."""
    out = df.copy()
    out.columns = [snake_case(c) for c in out.columns]
    out = out.loc[:, ~out.columns.duplicated()]
    renames = {k: v for k, v in (aliases or {}).items() if k in out.columns and v not in out.columns}
    return out.rename(columns=renames)


def _coerce_numeric(df: pd.DataFrame, cols: List[str]) -> pd.DataFrame:
    for c in cols:
        if c in df.columns:
            df[c] = pd.to_numeric(df[c], errors="coerce")
    return df


def _records(df: pd.DataFrame) -> List[Dict]:
    """DataFrame rows as dicts with NaN turned into None."""
    if df is None or df.empty:
        return []
    clean = df.astype(object).replace({np.nan: None})
    return clean.to_dict("records")


# ============================================================
# LOADERS
# ============================================================

def load_bookings(df: pd.DataFrame) -> List[Booking]:
    """
    Normalise a bookings table.

    Args:
        df: Raw bookings rows (snake_case or legacy camelCase columns)

    Returns:
        List of Booking
    """
    if df is None or df.empty:
        return []
    b = normalize_columns(df, BOOKING_ALIASES)
    b = _coerce_numeric(b, BOOKING_NUMERIC)
    if "id" not in b.columns:
        raise ValueError("bookings table missing columns: ['id']")
    b["id"] = b["id"].astype(str).str.strip()
    return [Booking.from_record(r) for r in _records(b)]


def load_partner_shares(df: pd.DataFrame) -> List[PartnerShare]:
    if df is None or df.empty:
        return []
    s = normalize_columns(df, SHARE_ALIASES)
    s = _coerce_numeric(s, ["percentage"])
    return [PartnerShare.from_record(r) for r in _records(s)]


def load_apartments(df: pd.DataFrame, shares: Optional[List[PartnerShare]] = None) -> List[Apartment]:
    """
    Normalise apartments and attach their rosters.

    Rosters come from the join table when given; otherwise a legacy embedded
    ``partners`` column (JSON list) is used.
    """
    if df is None or df.empty:
        return []
    a = normalize_columns(df, APARTMENT_ALIASES)
    a = _coerce_numeric(a, ["platform_commission_rate", "investment_target"])

    by_apartment: Dict[str, List[PartnerShare]] = {}
    for s in shares or []:
        by_apartment.setdefault(s.apartment_id, []).append(s)

    out = []
    for r in _records(a):
        apt_id = str(r.get("id") or "").strip()
        roster = by_apartment.get(apt_id)
        if roster is None and r.get("partners"):
            embedded = r["partners"]
            if isinstance(embedded, str):
                embedded = json.loads(embedded) if embedded.strip() else []
            roster = [PartnerShare.from_record({**normalize_record(p, SHARE_ALIASES), "apartment_id": apt_id})
                      for p in embedded]
        out.append(Apartment.from_record(r, roster or []))
    return out


def load_partners(df: pd.DataFrame) -> List[Partner]:
    if df is None or df.empty:
        return []
    p = normalize_columns(df, PARTNER_ALIASES)
    return [Partner.from_record(r) for r in _records(p)]


def load_expenses(df: pd.DataFrame) -> List[Expense]:
    if df is None or df.empty:
        return []
    e = normalize_columns(df, EXPENSE_ALIASES)
    e = _coerce_numeric(e, ["amount"])
    return [Expense.from_record(r) for r in _records(e)]


def load_fund_transactions(df: pd.DataFrame) -> List[FundTransaction]:
    if df is None or df.empty:
        return []
    f = normalize_columns(df, FUND_ALIASES)
    f = _coerce_numeric(f, ["amount", "amount_egp"])
    return [FundTransaction.from_record(r) for r in _records(f)]


def load_currency_rates(df: pd.DataFrame) -> List[CurrencyRate]:
    if df is None or df.empty:
        return []
    c = normalize_columns(df, RATE_ALIASES)
    c = _coerce_numeric(c, ["rate_to_base"])
    c["currency"] = c["currency"].astype(str).str.strip().str.upper()
    return [CurrencyRate.from_record(r) for r in _records(c)]


def normalize_record(record: Dict, aliases: Optional[Dict[str, str]] = None) -> Dict:
    """snake_case the keys of one JSON payload, applying aliases."""
    out = {}
    for k, v in (record or {}).items():
        out[snake_case(k)] = v
    for old, new in (aliases or {}).items():
        if old in out and new not in out:
            out[new] = out.pop(old)
    return out
