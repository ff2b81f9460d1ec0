# app.py
# Rental Ledger dashboard
# - Reads everything through api.LedgerAPI (no financial logic here)
# - Monthly statement and dashboard views side by side
# - Revenue by month chart (altair), fund balance, rates
# - Table CSV export and backups from the sidebar

from datetime import date

import altair as alt
import pandas as pd
import streamlit as st

from config import DB_PATH, REPORT_CURRENCY
from database import TABLE_DEFINITIONS, SqliteRepository
from api import LedgerAPI, revenue_frame
from reporting import revenue_table_to_excel
from utils import fmt_money, fmt_pct

CLR_DARK = "#1f3b57"
CLR_ACCENT = "#d9822b"
ROI_COLORS = {"green": "#2e7d32", "yellow": "#f9a825", "red": "#c62828"}


@st.cache_resource
def get_repo(db_path: str) -> SqliteRepository:
    return SqliteRepository(db_path)


def show_error(body) -> bool:
    if isinstance(body, dict) and "error" in body:
        st.error(body["error"])
        return True
    return False


# ============================================================
# STREAMLIT UI
# ============================================================
st.set_page_config(layout="wide")
st.title("Rental Ledger")

repo = get_repo(DB_PATH)
api = LedgerAPI(repo)

apartments, _ = api.list_apartments()
apt_names = {a["id"]: a["name"] for a in apartments} if isinstance(apartments, list) else {}

with st.sidebar:
    st.header("Report Settings")
    view = st.radio("View", ["Monthly statement", "Dashboard"], index=0)
    this_year = date.today().year
    year = st.number_input("Year", min_value=2000, max_value=2100, value=this_year, step=1)
    month_opt = st.selectbox("Month", ["All"] + list(range(1, 13)), index=date.today().month)
    apt_opt = st.selectbox("Apartment", ["All"] + list(apt_names), format_func=lambda k: apt_names.get(k, k))

    st.divider()
    st.header("Currency Rates")
    if st.button("Refresh live rates"):
        body, status = api.refresh_rates()
        if not show_error(body):
            st.success(f"Updated {body['updated']} rates")

    st.divider()
    st.header("Data")
    table_opt = st.selectbox("Table", list(TABLE_DEFINITIONS))
    st.download_button(
        label="Export CSV",
        data=repo.table_csv(table_opt),
        file_name=TABLE_DEFINITIONS[table_opt]["csv"],
        mime="text/csv",
        key="download_table",
    )
    if st.button("Back up all tables"):
        result = repo.backup()
        failed = [t for t, r in result["tables"].items() if r["status"] != "success"]
        if failed:
            st.error(f"Backup failed for: {', '.join(failed)}")
        else:
            st.success(f"Backup written to {result['backup_dir']}")

month = None if month_opt == "All" else int(month_opt)
apartment_id = None if apt_opt == "All" else apt_opt

if view == "Monthly statement":
    report, status = api.monthly_report(year, month, apartment_id)
else:
    report, status = api.dashboard(year, month, apartment_id)

if show_error(report):
    st.stop()

summary = report["summary"]


# ============================================================
# KPI ROW
# ============================================================
cols = st.columns(6)
with cols[0]:
    st.metric("Revenue", fmt_money(summary["totalRevenue"], REPORT_CURRENCY))
with cols[1]:
    st.metric("Platform Commission", fmt_money(summary["totalPlatformCommission"], REPORT_CURRENCY))
with cols[2]:
    st.metric("Operating Profit", fmt_money(summary["totalOperatingProfit"], REPORT_CURRENCY))
with cols[3]:
    st.metric("Investor Payouts", fmt_money(summary["totalInvestorPayouts"], REPORT_CURRENCY))
with cols[4]:
    st.metric("Company Profit", fmt_money(summary["totalCompanyProfit"], REPORT_CURRENCY))
with cols[5]:
    st.metric("Net Profit", fmt_money(summary["netProfit"], REPORT_CURRENCY))

st.caption(f"USD rate: {summary['usdRate']:,.2f} EGP · "
           f"Collected {fmt_money(summary['collectedAmount'])} · "
           f"Pending {fmt_money(summary['pendingAmount'])}")


# ============================================================
# WATERFALL BY APARTMENT
# ============================================================
st.subheader("Apartment Waterfall")
fin = pd.DataFrame(report["apartmentFinancials"])
if fin.empty:
    st.info("No apartments in scope.")
else:
    table = fin[["apartmentName", "bookingCount", "revenue", "platformCommission",
                 "transferCommission", "expenses", "operatingProfit", "companyProfit"]].copy()
    table["investorPayouts"] = fin["investorPayouts"].apply(lambda ps: sum(p["amount"] for p in ps))
    table["companyOwnerPayouts"] = fin["companyOwnerPayouts"].apply(lambda ps: sum(p["amount"] for p in ps))
    st.dataframe(table, use_container_width=True, hide_index=True)

st.subheader("Partner Profits")
partners = pd.DataFrame(report["partnerProfits"])
if partners.empty:
    st.info("No partners on the selected apartments.")
else:
    st.dataframe(partners[["name", "type", "totalUSD", "totalEGP"]], use_container_width=True, hide_index=True)


# ============================================================
# REVENUE BY MONTH  (altair)
# ============================================================
st.subheader(f"Revenue by Month ({year})")
body, status = api.revenue_by_month(year, apartment_id)
if not show_error(body):
    monthly = revenue_frame(body)
    monthly = monthly[monthly.index != "Total"].reset_index()
    long = monthly.melt(id_vars="month", value_vars=["revenue", "operatingProfit"],
                        var_name="Series", value_name="USD")
    chart = alt.Chart(long).mark_bar().encode(
        x=alt.X("month:O", title="Month"),
        xOffset="Series:N",
        y=alt.Y("USD:Q", title=f"Amount ({REPORT_CURRENCY})"),
        color=alt.Color("Series:N", scale=alt.Scale(range=[CLR_DARK, CLR_ACCENT]),
                        legend=alt.Legend(orient="bottom", direction="horizontal")),
        tooltip=["month", "Series", alt.Tooltip("USD:Q", format=",.2f")],
    ).properties(height=320)
    st.altair_chart(chart, use_container_width=True)

    st.download_button(
        label="Download Excel",
        data=revenue_table_to_excel(revenue_frame(body), f"Revenue {year}"),
        file_name=f"revenue_{year}.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        key="download_revenue",
    )


# ============================================================
# FUND & ROI
# ============================================================
col_fund, col_roi = st.columns(2)

with col_fund:
    st.subheader("Development Fund")
    bal, _ = api.fund_balance()
    if not show_error(bal):
        st.metric("Balance", fmt_money(bal["balance"]), help=f"{bal['balanceEGP']:,.2f} EGP")
    txns, _ = api.fund_transactions()
    if isinstance(txns, list) and txns:
        st.dataframe(pd.DataFrame(txns)[["transactionDate", "type", "amount", "amountEGP", "description"]],
                     use_container_width=True, hide_index=True)

with col_roi:
    st.subheader("Investment Recovery")
    if apartment_id is None:
        st.info("Select an apartment to see its recovery.")
    else:
        roi, _ = api.roi(apartment_id)
        if not show_error(roi):
            if not roi["hasInvestment"]:
                st.info("No investment target set for this apartment.")
            else:
                color = ROI_COLORS.get(roi["statusColor"], CLR_DARK)
                st.markdown(f"<h3 style='color:{color}'>{fmt_pct(roi['recoveryPercentage'])} recovered</h3>",
                            unsafe_allow_html=True)
                st.progress(min(1.0, roi["recoveryPercentage"] / 100.0))
                st.write(f"Recovered {fmt_money(roi['recoveredAmount'])} of "
                         f"{fmt_money(roi['investmentTarget'])} over {roi['bookingCount']} bookings")
                if roi["irr"] is not None:
                    st.write(f"IRR: {roi['irr']:.2%}")
