import pytest
from datetime import date
from io import BytesIO

from openpyxl import load_workbook

from models import Booking, Expense
from periods import ReportPeriod
from reporting import (bookings_frame, broker_profit_usd, dashboard_summary, expenses_frame,
                       monthly_revenue_table, monthly_summary, roi_summary, revenue_table_to_excel)


JAN = ReportPeriod.for_month(2025, 1)
FEB = ReportPeriod.for_month(2025, 2)


@pytest.fixture
def cross_month_repo(repo, make_booking):
    """apt-1 holds one 500 USD stay from 28 Jan to 7 Feb (4 + 6 nights)."""
    repo.save_booking(make_booking(id="x1", check_in=date(2025, 1, 28), check_out=date(2025, 2, 7),
                                   total_amount=500.0, paid_amount=200.0, payment_method="card"))
    return repo


class TestAttributionViews:
    """Dashboard prorates by nights; the monthly statement uses the check-in month."""

    def test_dashboard_prorates(self, cross_month_repo, as_of):
        snap = cross_month_repo.snapshot()
        jan = dashboard_summary(snap, JAN, as_of=as_of)["summary"]
        feb = dashboard_summary(snap, FEB, as_of=as_of)["summary"]
        assert jan["total_revenue"] == pytest.approx(200.0)
        assert feb["total_revenue"] == pytest.approx(300.0)

    def test_statement_takes_check_in_month(self, cross_month_repo, as_of):
        snap = cross_month_repo.snapshot()
        jan = monthly_summary(snap, JAN, as_of=as_of)["summary"]
        feb = monthly_summary(snap, FEB, as_of=as_of)["summary"]
        assert jan["total_revenue"] == pytest.approx(500.0)
        assert feb["total_revenue"] == 0.0

    def test_bookings_frame_columns(self, cross_month_repo, as_of):
        df = bookings_frame(cross_month_repo.snapshot(), JAN, as_of=as_of)
        row = df.iloc[0]
        assert row["nights_in_period"] == 4
        assert row["revenue_usd"] == pytest.approx(200.0)
        assert row["apartment_name"] == "Nile View"
        assert row["status"] == "completed"

    def test_cancelled_excluded_from_frame(self, repo, make_booking, as_of):
        repo.save_booking(make_booking(id="c1", status="cancelled"))
        assert bookings_frame(repo.snapshot(), JAN, as_of=as_of).empty


class TestMonthlySummary:

    def test_totals_and_mirrors(self, cross_month_repo, as_of):
        report = monthly_summary(cross_month_repo.snapshot(), JAN, as_of=as_of)
        s = report["summary"]
        assert s["collected_amount"] == pytest.approx(200.0)
        assert s["pending_amount"] == pytest.approx(300.0)
        assert s["net_profit"] == pytest.approx(500.0)
        assert s["total_investor_payouts"] == pytest.approx(100.0)
        assert s["total_company_profit"] == pytest.approx(400.0)
        assert s["total_revenue_egp"] == pytest.approx(25000.0)
        assert s["usd_rate"] == 50.0
        assert report["payment_methods"] == {"card": pytest.approx(200.0)}
        assert report["bookings"][0]["check_in"] == "2025-01-28"

    def test_partner_without_bookings_listed_at_zero(self, cross_month_repo, as_of):
        report = monthly_summary(cross_month_repo.snapshot(), JAN, as_of=as_of)
        by_name = {p["name"]: p for p in report["partner_profits"]}
        assert by_name["Hana"]["amount"] == 0.0
        assert by_name["Ali"]["total_usd"] == pytest.approx(100.0)

    def test_monthly_costs_listed_as_rows(self, repo, make_booking, as_of):
        repo.save_booking(make_booking(id="m1", apartment_id="apt-2"))
        report = monthly_summary(repo.snapshot(), JAN, as_of=as_of)
        monthly = [e for e in report["expenses"] if e["is_monthly"]]
        assert {e["description"] for e in monthly} == {"Rent", "Internet"}
        assert report["summary"]["total_operating_expenses"] == pytest.approx(100.0)

    def test_active_and_upcoming_expected_profit(self, repo, make_booking, as_of):
        repo.save_booking(make_booking(id="a1", check_in=date(2025, 3, 10), check_out=date(2025, 3, 20),
                                       broker_profit=300.0))
        repo.save_booking(make_booking(id="u1", check_in=date(2025, 4, 1), check_out=date(2025, 4, 3),
                                       broker_profit=120.0))
        s = monthly_summary(repo.snapshot(), ReportPeriod.for_month(2025, 3), as_of=as_of)["summary"]
        assert (s["active_bookings"], s["upcoming_bookings"]) == (1, 1)
        assert s["expected_profit_from_active"] == pytest.approx(300.0)
        assert s["expected_profit_from_upcoming"] == pytest.approx(120.0)

    def test_scoped_to_apartment(self, cross_month_repo, make_booking, as_of):
        cross_month_repo.save_booking(make_booking(id="o1", apartment_id="apt-2"))
        report = monthly_summary(cross_month_repo.snapshot(), JAN, apartment_id="apt-1", as_of=as_of)
        assert [f["apartment_id"] for f in report["apartment_financials"]] == ["apt-1"]
        assert report["summary"]["booking_count"] == 1


class TestDashboard:

    def test_breakdowns(self, repo, make_booking, as_of):
        repo.save_booking(make_booking(id="d1", source="Airbnb"))
        repo.save_booking(make_booking(id="d2", apartment_id="apt-2", source="Booking.com", total_amount=400.0))
        report = dashboard_summary(repo.snapshot(), JAN, as_of=as_of)
        assert report["by_source"] == {"Airbnb": pytest.approx(1000.0), "Booking.com": pytest.approx(400.0)}
        assert report["by_apartment"]["apt-2"] == pytest.approx(400.0)
        assert report["summary"]["completed_bookings"] == 2

    def test_commission_only_in_checkout_month(self, cross_month_repo, make_booking, as_of):
        cross_month_repo.save_booking(make_booking(id="x1", check_in=date(2025, 1, 28),
                                                   check_out=date(2025, 2, 7), total_amount=500.0,
                                                   platform_commission=50.0))
        snap = cross_month_repo.snapshot()
        assert dashboard_summary(snap, JAN, as_of=as_of)["summary"]["total_platform_commission"] == 0.0
        assert dashboard_summary(snap, FEB, as_of=as_of)["summary"]["total_platform_commission"] == pytest.approx(50.0)


class TestRevenueTable:

    def test_months_and_total(self, cross_month_repo, as_of):
        table = monthly_revenue_table(cross_month_repo.snapshot(), 2025, as_of=as_of)
        assert table.loc[1, "Revenue"] == pytest.approx(200.0)
        assert table.loc[2, "Revenue"] == pytest.approx(300.0)
        assert table.loc["Total", "Revenue"] == pytest.approx(500.0)
        assert len(table) == 13

    def test_excel_export(self, cross_month_repo, as_of):
        table = monthly_revenue_table(cross_month_repo.snapshot(), 2025, as_of=as_of)
        wb = load_workbook(BytesIO(revenue_table_to_excel(table)))
        ws = wb.active
        assert ws.title == "Revenue by Month"
        assert ws.cell(row=1, column=1).value == "Month"
        assert ws.cell(row=2, column=2).value == pytest.approx(200.0)
        total = ws.cell(row=14, column=1)
        assert total.value == "Total"
        assert total.font.bold


class TestExpensesFrame:

    def test_dated_expenses_filtered_to_period(self, repo):
        repo.save_expense(Expense(id="e1", amount=500, category="cleaning", apartment_id="apt-1",
                                  expense_date=date(2025, 1, 3)))
        repo.save_expense(Expense(id="e2", amount=500, category="cleaning", apartment_id="apt-1",
                                  expense_date=date(2025, 2, 3)))
        df = expenses_frame(repo.snapshot(), JAN)
        assert df["id"].tolist() == ["e1"]
        assert df["amount_usd"].iloc[0] == pytest.approx(10.0)


class TestROI:

    @pytest.fixture
    def invested_repo(self, repo, simple_apartment, make_booking):
        simple_apartment.investment_target = 1000.0
        simple_apartment.investment_start_date = date(2025, 1, 1)
        repo.save_apartment(simple_apartment)
        repo.save_booking(make_booking(id="r1", broker_profit=250.0))
        repo.save_booking(make_booking(id="r2", check_in=date(2025, 2, 1), check_out=date(2025, 2, 5),
                                       broker_profit=150.0))
        repo.save_booking(make_booking(id="r3", broker_profit=999.0, status="cancelled"))
        repo.save_booking(make_booking(id="r4", check_in=date(2024, 12, 1), check_out=date(2024, 12, 5),
                                       broker_profit=999.0))
        return repo

    def test_recovery(self, invested_repo, as_of):
        roi = roi_summary(invested_repo.snapshot(), "apt-1", as_of)
        assert roi["has_investment"]
        assert roi["recovered_amount"] == pytest.approx(400.0)
        assert roi["remaining"] == pytest.approx(600.0)
        assert roi["recovery_percentage"] == pytest.approx(40.0)
        assert roi["status_color"] == "yellow"
        assert roi["booking_count"] == 2
        assert not roi["is_complete"]

    def test_no_target_means_no_investment(self, repo, as_of):
        assert roi_summary(repo.snapshot(), "apt-1", as_of)["has_investment"] is False

    def test_broker_profit_usd_converts_egp(self, rates):
        b = Booking(id="b", apartment_id="a", total_amount=5000, total_amount_currency="EGP",
                    broker_profit=2500)
        assert broker_profit_usd(b, rates) == pytest.approx(50.0)
