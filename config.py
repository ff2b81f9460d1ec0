"""
config.py
Configuration and constants for the rental ledger
"""

import os

# ============================================================
# STORAGE
# ============================================================
DB_PATH = os.environ.get("RENTALS_DB_PATH", "rentals.db")

# ============================================================
# CURRENCIES
# ============================================================
BASE_CURRENCY = "EGP"      # every rate is expressed as units of EGP per unit
REPORT_CURRENCY = "USD"    # reports are normalised to USD

DEFAULT_USD_RATE = 50.0

DEFAULT_CURRENCY_RATES = [
    {"currency": "USD", "rate_to_base": 50.0, "symbol": "$"},
    {"currency": "EUR", "rate_to_base": 54.0, "symbol": "€"},
    {"currency": "GBP", "rate_to_base": 63.0, "symbol": "£"},
    {"currency": "SAR", "rate_to_base": 13.3, "symbol": "ر.س"},
    {"currency": "AED", "rate_to_base": 13.6, "symbol": "د.إ"},
]

# Tolerance for amount comparisons (currency detection, residual balances)
AMOUNT_EPSILON = 0.01

# Live rate refresh
RATES_API_URL = "https://api.exchangerate-api.com/v4/latest/{base}"
RATES_API_TIMEOUT = 10
RATES_API_SOURCE = "exchangerate-api.com"

# Units of each currency per 1 USD, used when the live payload omits one
FALLBACK_CROSS_RATES = {
    "EUR": 0.92,
    "GBP": 0.79,
    "SAR": 3.75,
    "AED": 3.67,
}

# ============================================================
# BOOKINGS & EXPENSES
# ============================================================
EXTERNAL_SOURCE = "External"
TRANSFER_ORIGIN = "internal_transfer"
TRANSFER_COMMISSION_CATEGORY = "transfer_commission"

INACTIVE_STATUSES = {"cancelled", "ended-early"}
TRANSFERABLE_STATUSES = {"confirmed", "completed"}

DEDUCTION_TYPES = ("none", "fixed", "percent")

# ============================================================
# PARTNERS
# ============================================================
PARTNER_TYPES = ("investor", "company_owner")
DEFAULT_PARTNER_TYPE = "investor"

# ============================================================
# ROI
# ============================================================
ROI_GREEN_THRESHOLD = 80.0
ROI_YELLOW_THRESHOLD = 30.0


def normalize_partner_type(value: str) -> str:
    """Map a roster or partner-record type string onto PARTNER_TYPES.

    Accepts spacing/case variants ("Company Owner", "company-owner").
    Anything unrecognised is treated as an investor.
    """
    t = (value or "").strip().lower().replace("-", "_").replace(" ", "_")
    if t in PARTNER_TYPES:
        return t
    return DEFAULT_PARTNER_TYPE


def normalize_deduction_type(value: str) -> str:
    """Return the development-fund deduction type, or "" when unknown."""
    t = (value or "none").strip().lower()
    if t in ("", "0"):
        return "none"
    if t in ("percentage", "pct", "%"):
        return "percent"
    return t if t in DEDUCTION_TYPES else ""
