"""
reporting.py
Report aggregation: monthly statement, dashboard, revenue by month, ROI,
Excel export

Every report is recomputed from one Snapshot. Amounts are USD with EGP
mirrors at the live USD rate.

Two report families attribute revenue differently and are kept apart:
- monthly_summary:   CHECK_IN_MONTH_ONLY + statement commission rule
- dashboard_summary: PROPORTIONAL_BY_NIGHTS + checkout-period commission rule
"""

from datetime import date
from io import BytesIO
from typing import Dict, List, Optional

import pandas as pd

from config import TRANSFER_COMMISSION_CATEGORY
from models import Booking
from repository import Snapshot
from periods import (CHECK_IN_MONTH_ONLY, PROPORTIONAL_BY_NIGHTS, ReportPeriod,
                     effective_check_out)
from currency import (booking_currency, convert_to_usd, paid_amount_usd,
                      remaining_amount_usd, to_usd, usd_rate as _usd_rate)
from commission import (CHECKOUT_PERIOD, STATEMENT, commission_status,
                        recognized_commission_usd)
from waterfall import aggregate_partner_profits, run_waterfall, waterfall_totals
from metrics import recovery_irr, recovery_multiple, recovery_percentage, roi_status_color
from utils import fmt_date, today

BOOKING_COLUMNS = [
    "id", "booking_code", "apartment_id", "apartment_name", "room_id", "guest_name",
    "check_in", "check_out", "nights", "fraction", "nights_in_period", "status", "source",
    "payment_method", "currency", "total_usd", "revenue_usd", "paid_usd", "remaining_usd",
    "platform_commission_usd", "transfer_commission_usd", "owner_usd", "broker_profit_usd",
    "development_deduction_usd", "commission_status",
]


def broker_profit_usd(booking: Booking, live_rates: Optional[Dict[str, float]] = None) -> float:
    """Stored broker profit in USD; legacy rows without one are derived."""
    if booking.broker_profit is not None:
        return to_usd(booking, "broker_profit", live_rates)
    total = to_usd(booking, "total_amount", live_rates)
    owner = to_usd(booking, "owner_amount", live_rates)
    platform = to_usd(booking, "platform_commission", live_rates)
    return max(0.0, total - owner - platform)


# ============================================================
# BOOKING FRAME
# ============================================================

def bookings_frame(
    snapshot: Snapshot,
    period: ReportPeriod,
    strategy=PROPORTIONAL_BY_NIGHTS,
    commission_rule: str = CHECKOUT_PERIOD,
    as_of: Optional[date] = None,
    include_cancelled: bool = False,
) -> pd.DataFrame:
    """
    One row per booking in scope with every money field normalised to USD.

    revenue_usd is total_usd × the strategy's fraction for the period.
    Commission columns hold only what is recognised under the rule.
    """
    as_of = as_of or today()
    rates = snapshot.rates
    names = {a.id: a.name for a in snapshot.apartments}

    rows = []
    for b in snapshot.bookings:
        if b.is_cancelled and not include_cancelled:
            continue
        if not strategy.includes(b, period):
            continue
        fraction = strategy.fraction(b, period)
        total = to_usd(b, "total_amount", rates)
        platform, transfer = recognized_commission_usd(b, period, commission_rule, as_of, rates)
        rows.append({
            "id": b.id,
            "booking_code": b.booking_code,
            "apartment_id": b.apartment_id,
            "apartment_name": names.get(b.apartment_id, ""),
            "room_id": b.room_id,
            "guest_name": b.guest_name,
            "check_in": b.check_in,
            "check_out": b.check_out,
            "nights": b.nights,
            "fraction": fraction,
            "nights_in_period": round(b.nights * fraction),
            "status": b.computed_status(as_of),
            "source": b.source,
            "payment_method": b.payment_method or "cash",
            "currency": booking_currency(b, rates),
            "total_usd": total,
            "revenue_usd": total * fraction,
            "paid_usd": paid_amount_usd(b, rates),
            "remaining_usd": remaining_amount_usd(b, as_of, rates),
            "platform_commission_usd": platform,
            "transfer_commission_usd": transfer,
            "owner_usd": to_usd(b, "owner_amount", rates),
            "broker_profit_usd": broker_profit_usd(b, rates),
            "development_deduction_usd": to_usd(b, "development_deduction", rates),
            "commission_status": commission_status(b, as_of),
        })
    return pd.DataFrame(rows, columns=BOOKING_COLUMNS)


def expenses_frame(snapshot: Snapshot, period: ReportPeriod,
                   apartment_ids_with_bookings: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Ad hoc expenses dated in the period, plus one synthetic row per fixed
    monthly cost of each apartment that had bookings.
    """
    rates = snapshot.rates
    usd = _usd_rate(rates)
    rows = []
    for e in snapshot.expenses:
        if not period.is_all and not period.contains(e.expense_date):
            continue
        rows.append({
            "id": e.id,
            "apartment_id": e.apartment_id,
            "category": e.category,
            "description": e.description,
            "expense_date": e.expense_date,
            "amount": e.amount,
            "currency": e.currency,
            "amount_usd": convert_to_usd(e.amount, e.currency, rates),
            "is_system_generated": e.is_system_generated,
            "is_monthly": False,
        })

    with_bookings = set(apartment_ids_with_bookings or [])
    for apt in snapshot.apartments:
        if apt.id not in with_bookings:
            continue
        for m in apt.monthly_expenses:
            amount = m.amount * period.months
            rows.append({
                "id": f"monthly-{apt.id}-{m.name}",
                "apartment_id": apt.id,
                "category": "monthly",
                "description": m.name,
                "expense_date": period.start,
                "amount": amount,
                "currency": "EGP",
                "amount_usd": amount / usd,
                "is_system_generated": True,
                "is_monthly": True,
            })
    return pd.DataFrame(rows, columns=[
        "id", "apartment_id", "category", "description", "expense_date", "amount",
        "currency", "amount_usd", "is_system_generated", "is_monthly",
    ])


def _operating_expenses_usd(expenses: pd.DataFrame) -> float:
    if expenses.empty:
        return 0.0
    mask = expenses["category"] != TRANSFER_COMMISSION_CATEGORY
    return float(expenses.loc[mask, "amount_usd"].sum())


def _breakdown(df: pd.DataFrame, by: str, value: str) -> Dict[str, float]:
    if df.empty:
        return {}
    g = df.groupby(by)[value].sum()
    return {str(k): float(v) for k, v in g.items()}


def _financials_records(financials) -> List[Dict]:
    out = []
    for f in financials:
        out.append({
            "apartment_id": f.apartment_id,
            "apartment_name": f.apartment_name,
            "booking_count": f.booking_count,
            "revenue": f.revenue,
            "platform_commission": f.platform_commission,
            "transfer_commission": f.transfer_commission,
            "expenses": f.expenses,
            "operating_profit": f.operating_profit,
            "investor_payouts": [vars(p).copy() for p in f.investor_payouts],
            "company_profit": f.company_profit,
            "company_owner_payouts": [vars(p).copy() for p in f.company_owner_payouts],
            "absorbed_loss": f.absorbed_loss,
        })
    return out


def _partner_records(profits) -> List[Dict]:
    return [{
        "name": p.name,
        "type": p.partner_type,
        "total_usd": p.total_usd,
        "total_egp": p.total_egp,
        "amount": p.total_usd,
        "apartments": list(p.apartments),
    } for p in profits]


def _booking_records(df: pd.DataFrame) -> List[Dict]:
    if df.empty:
        return []
    out = df.copy()
    out["check_in"] = out["check_in"].apply(fmt_date)
    out["check_out"] = out["check_out"].apply(lambda d: fmt_date(d) if d else None)
    return out.to_dict("records")


def _expense_records(df: pd.DataFrame) -> List[Dict]:
    if df.empty:
        return []
    out = df.copy()
    out["expense_date"] = out["expense_date"].apply(lambda d: fmt_date(d) if d else None)
    return out.to_dict("records")


# ============================================================
# MONTHLY STATEMENT
# ============================================================

def monthly_summary(snapshot: Snapshot, period: ReportPeriod,
                    apartment_id: Optional[str] = None,
                    as_of: Optional[date] = None) -> Dict:
    """
    Monthly statement: every stay belongs wholly to its check-in month.

    Returns:
        Dict with summary, apartment_financials, partner_profits, bookings,
        expenses and payment-method breakdown
    """
    as_of = as_of or today()
    snap = snapshot.scoped(apartment_id)
    rates = snap.rates
    usd = _usd_rate(rates)

    df = bookings_frame(snap, period, CHECK_IN_MONTH_ONLY, STATEMENT, as_of)
    with_bookings = sorted(df["apartment_id"].unique().tolist()) if not df.empty else []
    expenses = expenses_frame(snap, period, with_bookings)

    financials = run_waterfall(snap.apartments, snap.bookings, snap.expenses, period, snap.partners,
                               CHECK_IN_MONTH_ONLY, STATEMENT, as_of, rates)
    totals = waterfall_totals(financials)
    partner_profits = aggregate_partner_profits(financials, usd)

    active, upcoming = _expected_profit(snap, as_of)

    summary = {
        "total_revenue": totals["revenue"],
        "total_platform_commission": totals["platform_commission"],
        "total_transfer_commission": totals["transfer_commission"],
        "total_operating_expenses": _operating_expenses_usd(expenses),
        "total_operating_profit": totals["operating_profit"],
        "total_investor_payouts": totals["investor_payouts"],
        "total_company_profit": totals["company_profit"],
        "total_company_owner_payouts": totals["company_owner_payouts"],
        "absorbed_loss": totals["absorbed_loss"],
        "net_profit": float(df["broker_profit_usd"].sum()) if not df.empty else 0.0,
        "pending_amount": float(df["remaining_usd"].sum()) if not df.empty else 0.0,
        "collected_amount": float(df["paid_usd"].sum()) if not df.empty else 0.0,
        "development_deductions": float(df["development_deduction_usd"].sum()) if not df.empty else 0.0,
        "expected_profit_from_active": active["profit"],
        "expected_profit_from_upcoming": upcoming["profit"],
        "active_bookings": active["count"],
        "upcoming_bookings": upcoming["count"],
        "booking_count": int(len(df)),
        "usd_rate": usd,
    }
    _add_egp_mirrors(summary, usd)

    return {
        "summary": summary,
        "apartment_financials": _financials_records(financials),
        "partner_profits": _partner_records(partner_profits),
        "payment_methods": _breakdown(df, "payment_method", "paid_usd"),
        "bookings": _booking_records(df),
        "expenses": _expense_records(expenses),
        "period": {"year": period.year, "month": period.month,
                   "start": fmt_date(period.start) if period.start else None,
                   "end": fmt_date(period.end) if period.end else None},
    }


def _expected_profit(snapshot: Snapshot, as_of: date):
    """Broker profit still to come from running and future stays."""
    rates = snapshot.rates
    active = {"count": 0, "profit": 0.0}
    upcoming = {"count": 0, "profit": 0.0}
    for b in snapshot.bookings:
        status = b.computed_status(as_of)
        if status == "active":
            active["count"] += 1
            active["profit"] += broker_profit_usd(b, rates)
        elif status == "upcoming":
            upcoming["count"] += 1
            upcoming["profit"] += broker_profit_usd(b, rates)
    return active, upcoming


COUNT_KEYS = {"usd_rate", "booking_count", "active_bookings", "upcoming_bookings",
              "completed_bookings", "cancelled_bookings", "apartment_count"}


def _add_egp_mirrors(summary: Dict, usd: float):
    money = [k for k in summary if k not in COUNT_KEYS and not k.endswith("_egp")]
    for k in money:
        summary[k] = float(summary[k])
        summary[f"{k}_egp"] = summary[k] * usd


# ============================================================
# DASHBOARD
# ============================================================

def dashboard_summary(snapshot: Snapshot, period: ReportPeriod,
                      apartment_id: Optional[str] = None,
                      as_of: Optional[date] = None) -> Dict:
    """
    Dashboard: revenue prorated by nights in the period, commission
    recognised only in the checkout period once the checkout has passed.
    """
    as_of = as_of or today()
    snap = snapshot.scoped(apartment_id)
    rates = snap.rates
    usd = _usd_rate(rates)

    df = bookings_frame(snap, period, PROPORTIONAL_BY_NIGHTS, CHECKOUT_PERIOD, as_of)
    with_bookings = sorted(df["apartment_id"].unique().tolist()) if not df.empty else []
    expenses = expenses_frame(snap, period, with_bookings)

    financials = run_waterfall(snap.apartments, snap.bookings, snap.expenses, period, snap.partners,
                               PROPORTIONAL_BY_NIGHTS, CHECKOUT_PERIOD, as_of, rates)
    totals = waterfall_totals(financials)

    if df.empty:
        revenue = owner = broker = paid = remaining = platform = transfer = 0.0
    else:
        revenue = float(df["revenue_usd"].sum())
        owner = float((df["owner_usd"] * df["fraction"]).sum())
        broker = float((df["broker_profit_usd"] * df["fraction"]).sum())
        paid = float(df["paid_usd"].sum())
        remaining = float(df["remaining_usd"].sum())
        platform = float(df["platform_commission_usd"].sum())
        transfer = float(df["transfer_commission_usd"].sum())

    status_counts = df["status"].value_counts().to_dict() if not df.empty else {}
    cancelled = sum(1 for b in snap.bookings if b.is_cancelled and
                    PROPORTIONAL_BY_NIGHTS.includes(b, period))

    summary = {
        "total_revenue": revenue,
        "total_platform_commission": platform,
        "total_transfer_commission": transfer,
        "total_owner_payments": owner,
        "total_expenses": _operating_expenses_usd(expenses),
        "total_broker_profit": broker,
        "collected_amount": paid,
        "pending_amount": remaining,
        "total_operating_profit": totals["operating_profit"],
        "total_investor_payouts": totals["investor_payouts"],
        "total_company_profit": totals["company_profit"],
        "total_company_owner_payouts": totals["company_owner_payouts"],
        "net_profit": broker,
        "usd_rate": usd,
        "booking_count": int(len(df)),
        "completed_bookings": int(status_counts.get("completed", 0)),
        "active_bookings": int(status_counts.get("active", 0)),
        "upcoming_bookings": int(status_counts.get("upcoming", 0)),
        "cancelled_bookings": cancelled,
        "apartment_count": len(snap.apartments),
    }
    _add_egp_mirrors(summary, usd)

    return {
        "summary": summary,
        "apartment_financials": _financials_records(financials),
        "partner_profits": _partner_records(aggregate_partner_profits(financials, usd)),
        "by_source": _breakdown(df, "source", "revenue_usd"),
        "by_apartment": _breakdown(df, "apartment_id", "revenue_usd"),
        "payment_methods": _breakdown(df, "payment_method", "paid_usd"),
        "bookings": _booking_records(df),
        "expenses": _expense_records(expenses),
    }


def monthly_revenue_table(snapshot: Snapshot, year: int,
                          apartment_id: Optional[str] = None,
                          as_of: Optional[date] = None) -> pd.DataFrame:
    """
    Revenue by month for one year, proportional view

    Returns DataFrame indexed by month number with revenue, commission,
    expenses, operating profit, broker profit and booking count
    """
    as_of = as_of or today()
    snap = snapshot.scoped(apartment_id)
    rates = snap.rates

    rows = []
    for month in range(1, 13):
        period = ReportPeriod.for_month(year, month)
        df = bookings_frame(snap, period, PROPORTIONAL_BY_NIGHTS, CHECKOUT_PERIOD, as_of)
        fin = run_waterfall(snap.apartments, snap.bookings, snap.expenses, period, snap.partners,
                            PROPORTIONAL_BY_NIGHTS, CHECKOUT_PERIOD, as_of, rates)
        t = waterfall_totals(fin)
        rows.append({
            "Month": month,
            "Revenue": float(df["revenue_usd"].sum()) if not df.empty else 0.0,
            "Platform Commission": t["platform_commission"],
            "Expenses": t["expenses"],
            "Operating Profit": t["operating_profit"],
            "Broker Profit": float((df["broker_profit_usd"] * df["fraction"]).sum()) if not df.empty else 0.0,
            "Bookings": int(len(df)),
        })

    out = pd.DataFrame(rows).set_index("Month")
    out.loc["Total"] = out.sum(numeric_only=True)
    return out


def revenue_table_to_excel(table: pd.DataFrame, title: str = "Revenue by Month") -> bytes:
    """Formatted Excel workbook of a month-indexed revenue table.

    The "Total" row gets bold text and a solid top border; count columns
    keep integer format, everything else is USD.

    Returns:
        Bytes suitable for st.download_button.
    """
    from openpyxl import Workbook
    from openpyxl.styles import Font, PatternFill, Alignment, Border, Side

    wb = Workbook()
    ws = wb.active
    ws.title = title[:31]

    df = table.reset_index()
    cols = list(df.columns)
    count_cols = {c for c in cols if str(c).lower() == "bookings"}

    # --- Header row ---
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="1F3B57", end_color="1F3B57", fill_type="solid")

    for col_idx, col_name in enumerate(cols, start=1):
        cell = ws.cell(row=1, column=col_idx, value=str(col_name))
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")

    bold_font = Font(bold=True)
    top_border = Border(top=Side(style='medium'))

    # --- Data rows ---
    for row_idx, (_, row) in enumerate(df.iterrows(), start=2):
        is_total = str(row[cols[0]]) == "Total"

        for col_idx, col_name in enumerate(cols, start=1):
            val = row[col_name]
            cell = ws.cell(row=row_idx, column=col_idx)

            if col_idx == 1:
                cell.value = val if isinstance(val, str) else int(val)
            elif col_name in count_cols:
                cell.value = int(val) if pd.notna(val) else 0
                cell.number_format = '#,##0'
            else:
                cell.value = float(val) if pd.notna(val) else 0.0
                cell.number_format = '$#,##0.00'

            if is_total:
                cell.font = bold_font
                cell.border = top_border

    # --- Auto-width ---
    for col_idx, col_name in enumerate(cols, start=1):
        max_len = len(str(col_name))
        for row_idx in range(2, len(df) + 2):
            cell_val = ws.cell(row=row_idx, column=col_idx).value
            if cell_val is not None:
                max_len = max(max_len, len(str(cell_val)))
        ws.column_dimensions[ws.cell(row=1, column=col_idx).column_letter].width = min(max_len + 4, 30)

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ============================================================
# ROI
# ============================================================

def roi_summary(snapshot: Snapshot, apartment_id: str, as_of: Optional[date] = None) -> Dict:
    """
    Investment recovery of one apartment

    Recovered = Σ broker profit (USD) of non-cancelled bookings checked in
    on or after the investment start date.
    """
    as_of = as_of or today()
    apt = snapshot.apartment(apartment_id)
    if apt is None:
        return {"has_investment": False, "apartment_id": apartment_id}

    target = apt.investment_target
    start = apt.investment_start_date
    if target <= 0 or start is None:
        return {"has_investment": False, "apartment_id": apartment_id}

    rates = snapshot.rates
    relevant = [
        b for b in snapshot.bookings
        if b.apartment_id == apartment_id and b.status != "cancelled"
        and b.check_in is not None and b.check_in >= start
    ]
    flows = [(effective_check_out(b) or b.check_in, broker_profit_usd(b, rates)) for b in relevant]
    recovered = sum(a for _, a in flows)
    pct = recovery_percentage(recovered, target)

    return {
        "has_investment": True,
        "apartment_id": apartment_id,
        "investment_target": target,
        "investment_start_date": fmt_date(start),
        "recovered_amount": recovered,
        "remaining": max(0.0, target - recovered),
        "recovery_percentage": pct,
        "status_color": roi_status_color(pct),
        "is_complete": pct >= 100.0,
        "booking_count": len(relevant),
        "multiple": recovery_multiple(recovered, target),
        "irr": recovery_irr(start, target, flows, as_of),
    }
