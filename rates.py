"""
rates.py
Currency rate table maintenance: defaults, manual edits, live refresh

Live rates come from exchangerate-api (USD base). The API quotes units of X
per 1 USD; stored rates are units of EGP per 1 X, so
    rate_to_base(X) = EGP per USD / X per USD
"""

from typing import Dict, List, Optional
import logging

import requests

from config import (BASE_CURRENCY, DEFAULT_CURRENCY_RATES, FALLBACK_CROSS_RATES,
                    RATES_API_SOURCE, RATES_API_TIMEOUT, RATES_API_URL, REPORT_CURRENCY)
from exceptions import RateFetchError, ValidationError
from models import CurrencyRate
from currency import rate_table
from repository import Repository
from utils import now_iso, to_float

logger = logging.getLogger(__name__)

SYMBOLS = {r["currency"]: r["symbol"] for r in DEFAULT_CURRENCY_RATES}
STANDARD_CURRENCIES = [r["currency"] for r in DEFAULT_CURRENCY_RATES]


def ensure_default_rates(repo: Repository) -> List[CurrencyRate]:
    """Seed the defaults into an empty table; back-fill AED when missing."""
    rates = repo.list_currency_rates()
    if not rates:
        for r in DEFAULT_CURRENCY_RATES:
            repo.save_currency_rate(CurrencyRate(currency=r["currency"], rate_to_base=r["rate_to_base"],
                                                 symbol=r["symbol"]))
        logger.info("Seeded default currency rates")
        return repo.list_currency_rates()

    if not any(r.currency == "AED" for r in rates):
        aed = next(r for r in DEFAULT_CURRENCY_RATES if r["currency"] == "AED")
        repo.save_currency_rate(CurrencyRate(currency="AED", rate_to_base=aed["rate_to_base"],
                                             symbol=aed["symbol"]))
        logger.info("Added missing AED rate")
        return repo.list_currency_rates()
    return rates


def live_rate_table(repo: Repository) -> Dict[str, float]:
    """Current {currency: rate_to_base} table, defaults seeded if empty."""
    return rate_table(ensure_default_rates(repo))


def set_rate(repo: Repository, currency: str, rate_to_base, symbol: Optional[str] = None) -> CurrencyRate:
    """Create or update a manually entered rate."""
    code = (currency or "").strip().upper()
    rate = to_float(rate_to_base)
    if not code:
        raise ValidationError("Currency code is required")
    if rate <= 0:
        raise ValidationError(f"Rate for {code} must be greater than zero")
    if code == BASE_CURRENCY:
        raise ValidationError(f"{BASE_CURRENCY} is the base currency and is fixed at 1")

    existing = {r.currency: r for r in repo.list_currency_rates()}.get(code)
    saved = CurrencyRate(
        currency=code,
        rate_to_base=rate,
        symbol=symbol or (existing.symbol if existing else SYMBOLS.get(code, code)),
        source=None,
        last_updated=now_iso(),
    )
    repo.save_currency_rate(saved)
    logger.info(f"Rate {code} set to {rate} {BASE_CURRENCY}")
    return saved


def fetch_usd_quotes(session: Optional[requests.Session] = None) -> Dict[str, float]:
    """
    Units of each currency per 1 USD from the live API.

    Raises:
        RateFetchError: network failure, bad status or unreadable payload
    """
    http = session or requests
    url = RATES_API_URL.format(base=REPORT_CURRENCY)
    try:
        resp = http.get(url, timeout=RATES_API_TIMEOUT)
        resp.raise_for_status()
        data = resp.json()
    except requests.RequestException as e:
        raise RateFetchError(f"Could not fetch exchange rates: {e}") from e
    except ValueError as e:
        raise RateFetchError(f"Invalid exchange rate payload: {e}") from e

    quotes = data.get("rates") if isinstance(data, dict) else None
    if not isinstance(quotes, dict):
        raise RateFetchError("Exchange rate payload has no rates")
    return {str(k).upper(): to_float(v) for k, v in quotes.items()}


def derive_base_rates(quotes: Dict[str, float]) -> Dict[str, float]:
    """Rate to EGP for each standard currency, rounded to 2 decimals."""
    egp_per_usd = to_float(quotes.get(BASE_CURRENCY))
    if egp_per_usd <= 0:
        raise RateFetchError(f"No {BASE_CURRENCY} rate found in response")

    out = {REPORT_CURRENCY: round(egp_per_usd, 2)}
    for code in STANDARD_CURRENCIES:
        if code == REPORT_CURRENCY:
            continue
        per_usd = to_float(quotes.get(code)) or FALLBACK_CROSS_RATES.get(code, 0.0)
        if per_usd <= 0:
            continue
        out[code] = round(egp_per_usd / per_usd, 2)
    return out


def refresh_live_rates(repo: Repository, session: Optional[requests.Session] = None) -> List[CurrencyRate]:
    """
    Pull live rates and write them for the standard currencies.

    Currencies outside the standard list are left untouched.

    Returns:
        Updated standard rates followed by the preserved manual currencies
    """
    derived = derive_base_rates(fetch_usd_quotes(session))
    stamp = now_iso()
    existing = {r.currency: r for r in repo.list_currency_rates()}

    updated = []
    for code, rate in derived.items():
        prev = existing.get(code)
        row = CurrencyRate(
            currency=code,
            rate_to_base=rate,
            symbol=prev.symbol if prev else SYMBOLS.get(code, code),
            source=RATES_API_SOURCE,
            last_updated=stamp,
        )
        repo.save_currency_rate(row)
        updated.append(row)

    kept = [r for code, r in existing.items() if code not in derived and r.is_manual]
    logger.info(f"Refreshed {len(updated)} live rates ({REPORT_CURRENCY} = {derived[REPORT_CURRENCY]} {BASE_CURRENCY})")
    return updated + kept
