"""
settlement.py
Single-booking settlement: validation, deduction, owner/broker split,
transfers and extensions

Settlement fields are resolved once at write time in the booking's own
currency:
    developmentDeduction      = percent of total, or a fixed EGP amount
    finalDistributableAmount  = total - platformCommission - developmentDeduction
    ownerAmount               = final × Σ roster % / 100
    brokerProfit              = max(0, final - ownerAmount)
"""

from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from config import (AMOUNT_EPSILON, BASE_CURRENCY, EXTERNAL_SOURCE, REPORT_CURRENCY,
                    TRANSFER_COMMISSION_CATEGORY, TRANSFER_ORIGIN, TRANSFERABLE_STATUSES,
                    normalize_deduction_type)
from exceptions import ValidationError
from models import Apartment, Booking, Expense, Payment, PartnerShare
from currency import (convert_from_usd, convert_to_base, convert_to_usd, effective_rates,
                      lock_rates, resolve_amount, to_usd)
from commission import commission_cache
from utils import add_days, as_date, days_between, new_id, normalize_key, now_iso, to_float, today

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "apartment_id": "apartment",
    "room_id": "room",
    "guest_name": "guest name",
    "check_in": "check-in date",
}

MONEY_FIELDS = ["total_amount", "paid_amount", "platform_commission", "dev_deduction_value"]


# ============================================================
# VALIDATION
# ============================================================

def validate_booking_payload(payload: Dict, partial: bool = False) -> None:
    """
    Reject malformed booking input before it reaches the ledger.

    Args:
        payload: snake_case booking fields
        partial: True for updates (required fields only checked when present)
    """
    for key, label in REQUIRED_FIELDS.items():
        if partial and key not in payload:
            continue
        if not str(payload.get(key) or "").strip():
            raise ValidationError(f"Booking data incomplete: {label} is required")

    for key in MONEY_FIELDS:
        if key in payload and payload[key] not in (None, ""):
            if to_float(payload[key], default=-1.0) < 0:
                raise ValidationError(f"{key} must be a non-negative number")

    if "dev_deduction_type" in payload:
        raw = payload.get("dev_deduction_type") or "none"
        dtype = normalize_deduction_type(raw)
        if not dtype:
            raise ValidationError(f"Invalid deduction type: {raw}")
        if dtype == "percent" and not 0 <= to_float(payload.get("dev_deduction_value")) <= 100:
            raise ValidationError("Percent deduction must be between 0 and 100")

    check_in = as_date(payload.get("check_in"))
    check_out = as_date(payload.get("check_out"))
    if payload.get("check_in") and check_in is None:
        raise ValidationError(f"Invalid check-in date: {payload.get('check_in')}")
    if payload.get("check_out") and check_out is None:
        raise ValidationError(f"Invalid check-out date: {payload.get('check_out')}")
    if check_in and check_out and check_out < check_in:
        raise ValidationError("Check-out cannot be before check-in")


def validate_roster(shares: Iterable[PartnerShare]) -> None:
    """Percentages within 0..100 each and at most 100 in total."""
    shares = list(shares)
    for s in shares:
        if not 0 <= s.percentage <= 100:
            raise ValidationError(f"Invalid percentage for partner {s.name}: {s.percentage}")
    total = sum(s.percentage for s in shares)
    if total > 100 + AMOUNT_EPSILON:
        raise ValidationError(f"Partner percentages add up to {total:.2f}%, above 100%")


# ============================================================
# SETTLEMENT MATH
# ============================================================

def compute_development_deduction(total: float, deduction_type: str, value: float,
                                  currency: str, rates: Dict[str, float]) -> float:
    """
    Deduction in the booking's currency.

    percent: total × value / 100
    fixed:   value is entered in EGP and converted to the booking currency
    """
    dtype = normalize_deduction_type(deduction_type) or "none"
    value = to_float(value)
    if value <= 0 or dtype == "none":
        return 0.0
    if dtype == "percent":
        return total * value / 100.0
    return convert_from_usd(convert_to_usd(value, BASE_CURRENCY, rates), currency, rates)


def settle(booking: Booking, apartment: Optional[Apartment],
           live_rates: Optional[Dict[str, float]] = None) -> Booking:
    """Recompute the settlement fields of a booking in place."""
    if booking.source == EXTERNAL_SOURCE:
        booking.platform_commission = 0.0

    rates = effective_rates(booking, live_rates)
    currency = resolve_amount(booking, "total_amount", live_rates).currency
    total = booking.total_amount

    booking.development_deduction = compute_development_deduction(
        total, booking.dev_deduction_type, booking.dev_deduction_value, currency, rates)
    final = total - booking.platform_commission - booking.development_deduction
    booking.final_distributable_amount = final

    roster_pct = apartment.roster_percentage if apartment and apartment.partners else 0.0
    booking.owner_amount = final * roster_pct / 100.0
    booking.broker_profit = max(0.0, final - booking.owner_amount)
    return booking


def default_remaining(booking: Booking, as_of: Optional[date] = None) -> float:
    """total - paid, with sub-epsilon crumbs on completed stays read as zero."""
    remaining = booking.total_amount - booking.paid_amount
    if booking.is_completed(as_of or today()) and abs(remaining) < AMOUNT_EPSILON:
        return 0.0
    return remaining


def broker_profit_of(booking: Booking) -> float:
    """Stored broker profit, or max(0, total - owner - platform) for legacy rows."""
    if booking.broker_profit is not None:
        return booking.broker_profit
    return max(0.0, booking.total_amount - booking.owner_amount - booking.platform_commission)


# ============================================================
# INTERNAL TRANSFERS
# ============================================================

def resolve_transfer_source(
    bookings: Iterable[Booking],
    transfer_from_booking_id: Optional[str] = None,
    origin_apartment_id: Optional[str] = None,
    origin_room_id: Optional[str] = None,
    guest_name: str = "",
    as_of: Optional[date] = None,
) -> Optional[Booking]:
    """
    Find the booking a guest is being moved out of.

    Explicit id first; otherwise the same guest in the origin apartment/room
    on a confirmed or completed booking that has not checked out yet.
    """
    bookings = list(bookings)
    as_of = as_of or today()
    if transfer_from_booking_id:
        for b in bookings:
            if b.id == transfer_from_booking_id:
                return b
    if not (origin_apartment_id and origin_room_id):
        return None
    guest_key = normalize_key(guest_name)
    for b in bookings:
        if (b.apartment_id == origin_apartment_id and b.room_id == origin_room_id
                and normalize_key(b.guest_name) == guest_key
                and b.status in TRANSFERABLE_STATUSES
                and (b.check_out is None or b.check_out >= as_of)):
            return b
    return None


def transfer_commission_for(source: Optional[Booking], currency: str,
                            rates: Dict[str, float],
                            live_rates: Optional[Dict[str, float]] = None) -> float:
    """
    Commission inherited from the source booking, in the destination's currency.

    Zero unless the source carried a positive platform commission and did not
    come from the External channel.
    """
    if source is None:
        return 0.0
    if source.platform_commission <= 0 or (source.source or EXTERNAL_SOURCE) == EXTERNAL_SOURCE:
        return 0.0
    usd = to_usd(source, "platform_commission", live_rates)
    return convert_from_usd(usd, currency, rates)


def transfer_commission_expense(booking: Booking, source: Booking,
                                apartments: Optional[Dict[str, Apartment]] = None,
                                live_rates: Optional[Dict[str, float]] = None) -> Optional[Expense]:
    """System-generated base-currency expense recording an inherited commission."""
    if booking.transfer_commission_amount <= 0:
        return None
    apartments = apartments or {}
    rates = effective_rates(booking, live_rates)
    currency = resolve_amount(booking, "total_amount", live_rates).currency
    amount_base = convert_to_base(booking.transfer_commission_amount, currency, rates)
    origin = apartments.get(source.apartment_id)
    dest = apartments.get(booking.apartment_id)
    return Expense(
        id=new_id(),
        amount=amount_base,
        category=TRANSFER_COMMISSION_CATEGORY,
        currency=BASE_CURRENCY,
        apartment_id=booking.apartment_id,
        expense_date=booking.check_in,
        description=(f"Transfer Commission: Guest {booking.guest_name} transferred from "
                     f"{origin.name if origin else 'Apt'} Room {source.room_id} to "
                     f"{dest.name if dest else 'Apt'} Room {booking.room_id}"),
        is_system_generated=True,
        transfer_from_booking_id=source.id,
        transfer_to_booking_id=booking.id,
    )


# ============================================================
# WRITE PIPELINE
# ============================================================

def _payments_from(payload: Dict, paid: float, currency: str, method: str) -> List[Payment]:
    raw = payload.get("payments")
    if raw:
        return [p if isinstance(p, Payment) else Payment.from_record(p) for p in raw]
    if paid > 0 and method:
        return [Payment(amount=paid, currency=currency, method=method)]
    return []


def build_booking(
    payload: Dict,
    apartment: Optional[Apartment],
    bookings: Iterable[Booking] = (),
    apartments: Optional[Dict[str, Apartment]] = None,
    live_rates: Optional[Dict[str, float]] = None,
    as_of: Optional[date] = None,
) -> Tuple[Booking, Optional[Expense]]:
    """
    Create a settled booking from validated input.

    Returns:
        (booking, transfer_commission_expense or None)
    """
    validate_booking_payload(payload)
    as_of = as_of or today()

    currency = str(payload.get("currency") or REPORT_CURRENCY).upper()
    raw_source = payload.get("source")
    source_channel = str(raw_source or EXTERNAL_SOURCE)
    locked = lock_rates(live_rates or {})
    total = to_float(payload.get("total_amount"))
    paid = to_float(payload.get("paid_amount"))
    commission = 0.0 if raw_source == EXTERNAL_SOURCE else to_float(payload.get("platform_commission"))
    method = str(payload.get("payment_method") or "cash")

    check_in = as_date(payload.get("check_in"))
    check_out = as_date(payload.get("check_out"))
    nights = int(to_float(payload.get("number_of_nights")))
    if nights <= 0:
        nights = max(1, days_between(check_in, check_out)) if check_out else 1

    booking = Booking(
        id=str(payload.get("id") or new_id()),
        apartment_id=str(payload["apartment_id"]),
        room_id=str(payload.get("room_id") or ""),
        booking_code=str(payload.get("booking_code") or f"BK{new_id()[:10].upper()}"),
        guest_name=str(payload.get("guest_name") or "").strip(),
        check_in=check_in,
        check_out=check_out,
        number_of_nights=nights,
        total_amount=total,
        currency=currency,
        total_amount_currency=currency,
        total_amount_usd=convert_to_usd(total, currency, locked),
        paid_amount=paid,
        payments=_payments_from(payload, paid, currency, method),
        payment_method=method,
        exchange_rate=to_float(payload.get("exchange_rate")) or None,
        exchange_rate_at_booking=locked,
        platform_commission=commission,
        original_platform_commission=commission,
        dev_deduction_type=normalize_deduction_type(payload.get("dev_deduction_type") or "none"),
        dev_deduction_value=to_float(payload.get("dev_deduction_value")),
        origin_type=str(payload.get("origin_type") or "external"),
        source=source_channel,
        status=str(payload.get("status") or "confirmed"),
        notes=str(payload.get("notes") or ""),
        created_at=now_iso(),
    )

    expense = None
    if booking.origin_type == TRANSFER_ORIGIN:
        src = resolve_transfer_source(
            bookings,
            transfer_from_booking_id=payload.get("transfer_from_booking_id"),
            origin_apartment_id=payload.get("origin_apartment_id"),
            origin_room_id=payload.get("origin_room_id"),
            guest_name=booking.guest_name,
            as_of=as_of,
        )
        booking.transfer_from_booking_id = src.id if src else payload.get("transfer_from_booking_id")
        if src is not None:
            booking.transfer_commission_amount = transfer_commission_for(src, currency, locked, live_rates)
            expense = transfer_commission_expense(booking, src, apartments, live_rates)
        else:
            logger.warning(f"Transfer booking for {booking.guest_name}: source booking not found")

    if payload.get("remaining_amount") not in (None, ""):
        booking.remaining_amount = to_float(payload.get("remaining_amount"))
    else:
        booking.remaining_amount = default_remaining(booking, as_of)

    settle(booking, apartment, live_rates)
    booking.commission_status, booking.commission_applied_date = commission_cache(booking, as_of)
    return booking, expense


def apply_update(
    existing: Booking,
    changes: Dict,
    apartment: Optional[Apartment],
    live_rates: Optional[Dict[str, float]] = None,
    as_of: Optional[date] = None,
) -> Booking:
    """
    Merge changes into a copy of a booking and recompute its settlement.

    The locked rate snapshot is kept; an edit never re-prices history.
    """
    validate_booking_payload(changes, partial=True)
    updated = replace(existing, payments=list(existing.payments),
                      exchange_rate_at_booking=dict(existing.exchange_rate_at_booking))

    for key in ("room_id", "guest_name", "booking_code", "payment_method", "source", "status",
                "notes", "apartment_id", "origin_type"):
        if changes.get(key) not in (None, ""):
            setattr(updated, key, str(changes[key]))
    if "check_in" in changes:
        updated.check_in = as_date(changes["check_in"])
    if "check_out" in changes:
        updated.check_out = as_date(changes["check_out"])
    if changes.get("number_of_nights") not in (None, ""):
        updated.number_of_nights = int(to_float(changes["number_of_nights"]))
    elif ("check_in" in changes or "check_out" in changes) and updated.check_in and updated.check_out:
        updated.number_of_nights = max(1, days_between(updated.check_in, updated.check_out))
    if changes.get("total_amount") not in (None, ""):
        updated.total_amount = to_float(changes["total_amount"])
        if updated.total_amount_usd is not None:
            currency = resolve_amount(existing, "total_amount", live_rates).currency
            updated.total_amount_usd = convert_to_usd(
                updated.total_amount, currency, effective_rates(existing, live_rates))
    if changes.get("paid_amount") not in (None, ""):
        updated.paid_amount = to_float(changes["paid_amount"])
    if changes.get("payments"):
        updated.payments = [p if isinstance(p, Payment) else Payment.from_record(p)
                            for p in changes["payments"]]
    if changes.get("platform_commission") not in (None, ""):
        updated.platform_commission = to_float(changes["platform_commission"])
    if changes.get("dev_deduction_type") not in (None, ""):
        updated.dev_deduction_type = normalize_deduction_type(changes["dev_deduction_type"])
    if "dev_deduction_value" in changes:
        updated.dev_deduction_value = to_float(changes["dev_deduction_value"])

    if updated.check_in and updated.check_out and updated.check_out < updated.check_in:
        raise ValidationError("Check-out cannot be before check-in")

    if changes.get("remaining_amount") not in (None, ""):
        updated.remaining_amount = to_float(changes["remaining_amount"])
    elif any(k in changes for k in ("total_amount", "paid_amount")):
        updated.remaining_amount = default_remaining(updated, as_of)

    settle(updated, apartment, live_rates)
    updated.commission_status, updated.commission_applied_date = commission_cache(updated, as_of)
    return updated


def extend_booking(booking: Booking, days, amount,
                   live_rates: Optional[Dict[str, float]] = None,
                   as_of: Optional[date] = None) -> Booking:
    """
    Push the checkout forward and add the extension price.

    The platform commission is restored to the original commission and is not
    recomputed for the added nights. Settlement fields are left as they were.
    """
    days = int(to_float(days))
    amount = to_float(amount)
    if days <= 0:
        raise ValidationError("Extension days are required and must be greater than zero")
    if amount <= 0:
        raise ValidationError("Extension amount is required and must be greater than zero")
    if booking.check_out is None:
        raise ValidationError("Open-ended stay has no check-out to extend")

    updated = replace(booking, payments=list(booking.payments),
                      exchange_rate_at_booking=dict(booking.exchange_rate_at_booking))
    updated.check_out = add_days(booking.check_out, days)
    updated.number_of_nights = booking.nights + days
    updated.total_amount = booking.total_amount + amount
    updated.remaining_amount = booking.remaining_amount + amount
    updated.platform_commission = booking.original_platform_commission or booking.platform_commission
    if booking.total_amount_usd is not None:
        currency = resolve_amount(booking, "total_amount", live_rates).currency
        updated.total_amount_usd = convert_to_usd(
            updated.total_amount, currency, effective_rates(booking, live_rates))
    updated.commission_status, updated.commission_applied_date = commission_cache(updated, as_of)
    logger.info(f"Booking {booking.id} extended by {days} night(s) to {updated.check_out}")
    return updated
